"""libsql access for the memory store.

The ``libsql`` driver is synchronous, so every call is pushed onto a worker
thread with ``asyncio.to_thread()``. The database is picked from settings:

- ``TURSO_DATABASE_URL`` + ``TURSO_AUTH_TOKEN`` → remote Turso
- otherwise → local SQLite file at ``database_path``

Callers work inside ``session()`` (one connection, closed on exit) and wrap
writes in ``transaction()``. Driver failures leave both as ``PersistenceError``.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import libsql

from src.config import settings
from src.memory.errors import MemoryCoreError, PersistenceError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable
    from pathlib import Path

logger = logging.getLogger(__name__)


class Connection:
    """Async facade over one synchronous libsql connection."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    async def run(self, sql: str, params: tuple = ()) -> int:
        """Execute a statement and return the number of rows it changed."""

        def _run() -> int:
            return self._conn.execute(sql, params).rowcount

        return await asyncio.to_thread(_run)

    async def run_many(self, sql: str, rows: Iterable[tuple]) -> None:
        """Execute *sql* once per parameter tuple on a single worker hop."""
        batch = list(rows)

        def _run() -> None:
            for params in batch:
                self._conn.execute(sql, params)

        await asyncio.to_thread(_run)

    async def fetchall(self, sql: str, params: tuple = ()) -> list[tuple]:
        def _fetch() -> list[tuple]:
            return self._conn.execute(sql, params).fetchall()

        return await asyncio.to_thread(_fetch)

    async def fetchone(self, sql: str, params: tuple = ()) -> tuple | None:
        def _fetch() -> tuple | None:
            return self._conn.execute(sql, params).fetchone()

        return await asyncio.to_thread(_fetch)

    async def commit(self) -> None:
        await asyncio.to_thread(self._conn.commit)

    async def rollback(self) -> None:
        await asyncio.to_thread(self._conn.rollback)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


def _open(local_path: Path | None) -> Any:
    if local_path is None and settings.turso_database_url:
        return libsql.connect(
            database=settings.turso_database_url,
            auth_token=settings.turso_auth_token,
        )

    path = local_path or settings.database_path
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = libsql.connect(str(path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


async def connect(local_path_override: Path | None = None) -> Connection:
    """Open a connection.

    If *local_path_override* is given (test isolation), it takes priority
    over Turso and ``database_path``.

    Raises:
        PersistenceError: The database could not be opened.
    """
    try:
        conn = await asyncio.to_thread(_open, local_path_override)
    except Exception as exc:
        raise PersistenceError(f"Could not open memory database: {exc}") from exc
    return Connection(conn)


@asynccontextmanager
async def session(local_path_override: Path | None = None) -> AsyncIterator[Connection]:
    """Yield a connection and close it afterwards.

    Driver errors raised inside the block are re-raised as ``PersistenceError``.
    """
    conn = await connect(local_path_override)
    try:
        yield conn
    except MemoryCoreError:
        raise
    except Exception as exc:
        raise PersistenceError(f"Database operation failed: {exc}") from exc
    finally:
        await conn.close()


@asynccontextmanager
async def transaction(conn: Connection) -> AsyncIterator[Connection]:
    """Commit everything done in the block, or roll all of it back."""
    await conn.run("BEGIN")
    try:
        yield conn
        await conn.commit()
    except Exception as exc:
        try:
            await conn.rollback()
        except Exception:
            logger.warning("Rollback failed", exc_info=True)
        raise PersistenceError(f"Write rejected: {exc}") from exc
