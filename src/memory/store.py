"""MemoryStore — thread-scoped persistence for messages, memories and summaries.

Rows are append-only. The single update path is the one-time embedding
write-back performed by the indexer. Every row carries a ``conversation_id``
and a nullable ``thread_id``; a ``NULL`` thread is the undivided
(non-forum) conversation.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from src.db import session, transaction
from src.memory.errors import ValidationError
from src.memory.models import (
    TYPE_CATEGORIES,
    ConversationSummary,
    InsertEvent,
    MemoryItem,
    MemoryType,
    Message,
    Role,
    ThreadGroup,
    format_ts,
    normalize_ts,
    utc_now,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence
    from datetime import datetime
    from pathlib import Path

    from src.db import Connection

    InsertListener = Callable[[InsertEvent], Awaitable[Any]]

logger = logging.getLogger(__name__)

MESSAGES = "messages"
MEMORY = "memory"
SUMMARIES = "conversation_summaries"

# Column holding the embeddable text, per table.
CONTENT_COLUMNS = {MESSAGES: "content", MEMORY: "content", SUMMARIES: "summary"}

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS messages (
        id              TEXT PRIMARY KEY,
        conversation_id INTEGER NOT NULL,
        thread_id       INTEGER,
        role            TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
        content         TEXT NOT NULL,
        embedding       TEXT,
        created_at      TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memory (
        id              TEXT PRIMARY KEY,
        conversation_id INTEGER NOT NULL,
        thread_id       INTEGER,
        type            TEXT NOT NULL CHECK (type IN ('fact', 'goal', 'preference', 'date')),
        content         TEXT NOT NULL,
        category        TEXT,
        confidence      REAL NOT NULL DEFAULT 1.0,
        extracted       INTEGER NOT NULL DEFAULT 0,
        embedding       TEXT,
        created_at      TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversation_summaries (
        id              TEXT PRIMARY KEY,
        conversation_id INTEGER NOT NULL,
        thread_id       INTEGER,
        summary         TEXT NOT NULL,
        from_timestamp  TEXT NOT NULL,
        to_timestamp    TEXT NOT NULL,
        message_count   INTEGER NOT NULL,
        embedding       TEXT,
        created_at      TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_chat_thread ON messages(conversation_id, thread_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_created_at ON messages(conversation_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_memory_chat_thread ON memory(conversation_id, thread_id)",
    "CREATE INDEX IF NOT EXISTS idx_summaries_chat_thread"
    " ON conversation_summaries(conversation_id, thread_id)",
)

_MESSAGE_COLUMNS = "id, conversation_id, thread_id, role, content, embedding, created_at"
_MEMORY_COLUMNS = (
    "id, conversation_id, thread_id, type, content, category, confidence, extracted,"
    " embedding, created_at"
)
_SUMMARY_COLUMNS = (
    "id, conversation_id, thread_id, summary, from_timestamp, to_timestamp, message_count,"
    " embedding, created_at"
)


def _new_id() -> str:
    return uuid.uuid4().hex


def _load_embedding(raw: str | None) -> list[float] | None:
    return json.loads(raw) if raw else None


def _dump_embedding(embedding: Sequence[float] | None) -> str | None:
    return json.dumps([float(x) for x in embedding]) if embedding is not None else None


def _require_content(text: str, what: str) -> str:
    if not text or not text.strip():
        raise ValidationError(f"{what} must not be empty")
    return text


def message_from_row(row: tuple) -> Message:
    return Message(
        id=row[0],
        conversation_id=row[1],
        thread_id=row[2],
        role=row[3],
        content=row[4],
        embedding=_load_embedding(row[5]),
        created_at=row[6],
    )


def memory_from_row(row: tuple) -> MemoryItem:
    return MemoryItem(
        id=row[0],
        conversation_id=row[1],
        thread_id=row[2],
        type=row[3],
        content=row[4],
        category=row[5],
        confidence=row[6],
        extracted=bool(row[7]),
        embedding=_load_embedding(row[8]),
        created_at=row[9],
    )


def summary_from_row(row: tuple) -> ConversationSummary:
    return ConversationSummary(
        id=row[0],
        conversation_id=row[1],
        thread_id=row[2],
        summary=row[3],
        from_timestamp=row[4],
        to_timestamp=row[5],
        message_count=row[6],
        embedding=_load_embedding(row[7]),
        created_at=row[8],
    )


class MemoryStore:
    """Persists conversation memory in SQLite / Turso.

    Singleton accessed via ``MemoryStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    _instance: MemoryStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False
        self._listeners: list[InsertListener] = []
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def get(cls) -> MemoryStore:
        """Return the shared MemoryStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[Connection]:
        async with session(self._db_path) as db:
            if not self._initialised:
                for statement in _SCHEMA:
                    await db.run(statement)
                await db.commit()
                self._initialised = True
            yield db

    async def _write(self, sql: str, rows: Iterable[tuple]) -> None:
        """Insert *rows* in a single transaction or not at all."""
        async with self._session() as db, transaction(db):
            await db.run_many(sql, rows)

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[tuple]:
        async with self._session() as db:
            return await db.fetchall(sql, params)

    async def _fetchone(self, sql: str, params: tuple = ()) -> tuple | None:
        async with self._session() as db:
            return await db.fetchone(sql, params)

    # -- Insert notifications --------------------------------------------------

    def add_insert_listener(self, listener: InsertListener) -> None:
        """Register an async callback run after every committed insert."""
        self._listeners.append(listener)

    def _notify(self, events: Iterable[InsertEvent]) -> None:
        if not self._listeners:
            return
        for event in events:
            for listener in self._listeners:
                task = asyncio.create_task(self._run_listener(listener, event))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _run_listener(listener: InsertListener, event: InsertEvent) -> None:
        try:
            await listener(event)
        except Exception:
            logger.exception("Insert listener failed: table=%s id=%s", event.table, event.record_id)

    async def drain(self) -> None:
        """Wait for in-flight insert listeners (tests and shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- Inserts ---------------------------------------------------------------

    async def insert_message(
        self,
        conversation_id: int,
        role: Role | str,
        content: str,
        thread_id: int | None = None,
        created_at: datetime | None = None,
    ) -> Message:
        """Append a conversation turn."""
        message = Message(
            id=_new_id(),
            conversation_id=conversation_id,
            thread_id=thread_id,
            role=Role(role),
            content=_require_content(content, "Message content"),
            created_at=format_ts(created_at) if created_at else utc_now(),
        )
        await self._write(
            f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            [(
                message.id,
                message.conversation_id,
                message.thread_id,
                message.role.value,
                message.content,
                None,
                message.created_at,
            )],
        )
        logger.debug(
            "Stored message %s (chat=%s thread=%s)", message.id, conversation_id, thread_id
        )
        self._notify([InsertEvent(table=MESSAGES, record_id=message.id, content=message.content)])
        return message

    async def insert_memory_items(
        self,
        conversation_id: int,
        items: Sequence[tuple[MemoryType | str, str]],
        thread_id: int | None = None,
        *,
        extracted: bool = True,
        confidence: float = 0.9,
    ) -> list[MemoryItem]:
        """Append ``(type, content)`` pairs as memory rows in one transaction.

        Raises ``PersistenceError`` if the batch is rejected; nothing is
        written in that case.
        """
        now = utc_now()
        memories: list[MemoryItem] = []
        for memory_type, content in items:
            mtype = MemoryType(memory_type)
            memories.append(
                MemoryItem(
                    id=_new_id(),
                    conversation_id=conversation_id,
                    thread_id=thread_id,
                    type=mtype,
                    content=_require_content(content, "Memory content").strip(),
                    category=TYPE_CATEGORIES[mtype],
                    confidence=confidence,
                    extracted=extracted,
                    created_at=now,
                )
            )
        if not memories:
            return []

        await self._write(
            f"INSERT INTO memory ({_MEMORY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                (
                    m.id,
                    m.conversation_id,
                    m.thread_id,
                    m.type.value,
                    m.content,
                    m.category,
                    m.confidence,
                    int(m.extracted),
                    None,
                    m.created_at,
                )
                for m in memories
            ],
        )
        logger.info(
            "Stored %d memories (chat=%s thread=%s)", len(memories), conversation_id, thread_id
        )
        self._notify(
            InsertEvent(table=MEMORY, record_id=m.id, content=m.content) for m in memories
        )
        return memories

    async def insert_summary(
        self,
        conversation_id: int,
        summary: str,
        from_timestamp: datetime | str,
        to_timestamp: datetime | str,
        message_count: int,
        thread_id: int | None = None,
    ) -> ConversationSummary:
        """Append a summary covering ``[from_timestamp, to_timestamp]``.

        Bounds may be datetimes or ISO 8601 strings in any offset; they are
        stored in the same UTC form as message timestamps.
        """
        try:
            from_timestamp = normalize_ts(from_timestamp)
            to_timestamp = normalize_ts(to_timestamp)
        except ValueError as exc:
            raise ValidationError(f"Invalid summary timestamp: {exc}") from exc
        if from_timestamp > to_timestamp:
            raise ValidationError("Summary interval is reversed")
        latest = await self.get_latest_summary(conversation_id, thread_id)
        if latest is not None and from_timestamp <= latest.to_timestamp:
            raise ValidationError(
                f"Summary interval overlaps the previous summary ending {latest.to_timestamp}"
            )

        row = ConversationSummary(
            id=_new_id(),
            conversation_id=conversation_id,
            thread_id=thread_id,
            summary=_require_content(summary, "Summary"),
            from_timestamp=from_timestamp,
            to_timestamp=to_timestamp,
            message_count=message_count,
            created_at=utc_now(),
        )
        await self._write(
            f"INSERT INTO conversation_summaries ({_SUMMARY_COLUMNS})"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [(
                row.id,
                row.conversation_id,
                row.thread_id,
                row.summary,
                row.from_timestamp,
                row.to_timestamp,
                row.message_count,
                None,
                row.created_at,
            )],
        )
        logger.info(
            "Stored summary of %d messages (chat=%s thread=%s)",
            message_count,
            conversation_id,
            thread_id,
        )
        self._notify([InsertEvent(table=SUMMARIES, record_id=row.id, content=row.summary)])
        return row

    # -- Embedding write-back --------------------------------------------------

    async def update_embedding(
        self, table: str, record_id: str, embedding: Sequence[float]
    ) -> bool:
        """Write *embedding* onto a row. Returns True if a row was updated."""
        if table not in CONTENT_COLUMNS:
            raise ValidationError(f"Unknown table: {table}")
        async with self._session() as db, transaction(db):
            changed = await db.run(
                f"UPDATE {table} SET embedding = ? WHERE id = ?",  # noqa: S608
                (_dump_embedding(embedding), record_id),
            )
        return changed > 0

    async def rows_missing_embedding(self, table: str, limit: int = 100) -> list[InsertEvent]:
        """Return rows of *table* that have no embedding yet, oldest first."""
        if table not in CONTENT_COLUMNS:
            raise ValidationError(f"Unknown table: {table}")
        rows = await self._fetchall(
            f"SELECT id, {CONTENT_COLUMNS[table]} FROM {table}"  # noqa: S608
            " WHERE embedding IS NULL ORDER BY created_at LIMIT ?",
            (limit,),
        )
        return [InsertEvent(table=table, record_id=r[0], content=r[1]) for r in rows]

    # -- Group queries -----------------------------------------------------------

    async def get_recent_messages(
        self, conversation_id: int, thread_id: int | None = None, limit: int = 20
    ) -> list[Message]:
        """Return the last *limit* messages of the exact group, oldest first."""
        where, params = ThreadGroup(conversation_id, thread_id).where()
        rows = await self._fetchall(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE {where}"  # noqa: S608
            " ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (*params, limit),
        )
        return [message_from_row(r) for r in reversed(rows)]

    async def get_messages_after(
        self,
        conversation_id: int,
        thread_id: int | None = None,
        after: str | None = None,
        limit: int | None = 20,
        until: str | None = None,
    ) -> list[Message]:
        """Return the oldest messages of the group created strictly after *after*.

        *until* is an inclusive upper bound; ``limit=None`` returns every match.
        """
        where, params = ThreadGroup(conversation_id, thread_id).where()
        if after is not None:
            where += " AND created_at > ?"
            params = (*params, after)
        if until is not None:
            where += " AND created_at <= ?"
            params = (*params, until)
        sql = (
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE {where}"  # noqa: S608
            " ORDER BY created_at, rowid"
        )
        if limit is not None:
            sql += " LIMIT ?"
            params = (*params, limit)
        rows = await self._fetchall(sql, params)
        return [message_from_row(r) for r in rows]

    async def get_memories(
        self, conversation_id: int, thread_id: int | None = None
    ) -> list[MemoryItem]:
        """Return all memories of the exact group, oldest first."""
        where, params = ThreadGroup(conversation_id, thread_id).where()
        rows = await self._fetchall(
            f"SELECT {_MEMORY_COLUMNS} FROM memory WHERE {where}"  # noqa: S608
            " ORDER BY created_at, rowid",
            params,
        )
        return [memory_from_row(r) for r in rows]

    async def get_summaries(
        self, conversation_id: int, thread_id: int | None = None
    ) -> list[ConversationSummary]:
        """Return all summaries of the exact group, oldest first."""
        where, params = ThreadGroup(conversation_id, thread_id).where()
        rows = await self._fetchall(
            f"SELECT {_SUMMARY_COLUMNS} FROM conversation_summaries WHERE {where}"  # noqa: S608
            " ORDER BY created_at, rowid",
            params,
        )
        return [summary_from_row(r) for r in rows]

    async def get_latest_summary(
        self, conversation_id: int, thread_id: int | None = None
    ) -> ConversationSummary | None:
        """Return the most recently created summary of the exact group."""
        where, params = ThreadGroup(conversation_id, thread_id).where()
        row = await self._fetchone(
            f"SELECT {_SUMMARY_COLUMNS} FROM conversation_summaries WHERE {where}"  # noqa: S608
            " ORDER BY created_at DESC, rowid DESC LIMIT 1",
            params,
        )
        return summary_from_row(row) if row else None

    async def count_messages(
        self, conversation_id: int, thread_id: int | None = None, after: str | None = None
    ) -> int:
        """Count messages in the exact group, optionally only those after *after*."""
        where, params = ThreadGroup(conversation_id, thread_id).where()
        if after is not None:
            where += " AND created_at > ?"
            params = (*params, after)
        row = await self._fetchone(
            f"SELECT COUNT(*) FROM messages WHERE {where}",  # noqa: S608
            params,
        )
        return int(row[0]) if row else 0

    async def fetch_embedded(self, table: str, where: str, params: tuple) -> list[tuple]:
        """Return full rows of *table* that have an embedding and match *where*."""
        columns = {
            MESSAGES: _MESSAGE_COLUMNS,
            MEMORY: _MEMORY_COLUMNS,
            SUMMARIES: _SUMMARY_COLUMNS,
        }.get(table)
        if columns is None:
            raise ValidationError(f"Unknown table: {table}")
        return await self._fetchall(
            f"SELECT {columns} FROM {table} WHERE embedding IS NOT NULL AND {where}",  # noqa: S608
            params,
        )
