"""Lightweight async HTTP server for insert-notification webhooks.

Runs alongside the Telegram polling bot in the same asyncio event loop.
Uses aiohttp's AppRunner/TCPSite for non-blocking start/stop.

``POST /webhooks/embed`` accepts either a flat notification::

    {"table": "messages", "recordId": "...", "content": "...", "hasEmbedding": false}

or a database-webhook payload::

    {"type": "INSERT", "table": "memory", "record": {"id": "...", "content": "...", "embedding": null}}

The handler runs inline so the caller learns the outcome from the status
code and can retry on its own schedule: 200 done or skipped, 400 bad
payload, 500 storage failure, 502 embedding provider failure.
"""

from __future__ import annotations

import logging
from typing import Any

import pydantic
from aiohttp import web

from src.config import settings
from src.memory.errors import PersistenceError, ProviderError, ValidationError
from src.memory.indexer import EmbeddingIndexer
from src.memory.models import InsertEvent
from src.memory.store import CONTENT_COLUMNS

logger = logging.getLogger(__name__)

INDEXER_KEY = web.AppKey("indexer", EmbeddingIndexer)


def parse_embed_payload(payload: dict[str, Any]) -> InsertEvent:
    """Normalize a flat or database-webhook payload into an ``InsertEvent``.

    Raises:
        ValidationError: Required fields are missing or mistyped.
    """
    try:
        record = payload.get("record")
        if isinstance(record, dict):
            table = payload.get("table", "")
            column = CONTENT_COLUMNS.get(table, "content")
            return InsertEvent(
                table=table,
                record_id=str(record.get("id") or ""),
                content=record.get(column) or "",
                has_embedding=bool(record.get("embedding")),
            )
        return InsertEvent.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid embed payload: {exc.error_count()} error(s)") from exc


async def _handle_embed(request: web.Request) -> web.Response:
    """POST /webhooks/embed — embed one inserted row."""
    secret = request.headers.get("X-Webhook-Secret", "")
    if not settings.webhook_secret or secret != settings.webhook_secret:
        logger.warning("Webhook rejected: invalid secret (source=embed)")
        return web.json_response({"error": "unauthorized"}, status=401)

    try:
        payload: dict[str, Any] = await request.json()
    except Exception:
        logger.warning("Webhook bad request: invalid JSON (source=embed)")
        return web.json_response({"error": "invalid JSON"}, status=400)
    if not isinstance(payload, dict):
        return web.json_response({"error": "expected a JSON object"}, status=400)

    indexer = request.app[INDEXER_KEY]
    try:
        event = parse_embed_payload(payload)
        if not event.record_id:
            raise ValidationError("Missing record id")
        outcome = await indexer.on_row_inserted(event)
    except ValidationError as exc:
        logger.warning("Embed webhook rejected: %s", exc)
        return web.json_response({"error": str(exc)}, status=400)
    except ProviderError as exc:
        logger.error("Embedding provider failed: %s", exc)
        return web.json_response({"error": str(exc)}, status=502)
    except PersistenceError as exc:
        logger.error("Embedding write-back failed: %s", exc)
        return web.json_response({"error": str(exc)}, status=500)

    return web.json_response({"ok": True, "outcome": outcome.value})


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    return web.json_response({"status": "ok"})


def _create_web_app(indexer: EmbeddingIndexer) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application()
    app[INDEXER_KEY] = indexer
    app.router.add_get("/health", _health)
    app.router.add_post("/webhooks/embed", _handle_embed)
    return app


class WebhookServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(self, indexer: EmbeddingIndexer, port: int | None = None) -> None:
        self.port = port or settings.webhook_port
        self._indexer = indexer
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening for insert notifications."""
        if not settings.webhook_secret:
            logger.warning("WEBHOOK_SECRET empty — webhook server disabled")
            return

        app = _create_web_app(self._indexer)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, "0.0.0.0", self.port)  # noqa: S104
        await site.start()
        logger.info("Webhook server listening on port %d", self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Webhook server stopped")
