"""Telegram application factory."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from telegram.ext import Application, CallbackQueryHandler, MessageHandler, filters

from src.bot.confirmations import CONFIRMATION_KEY
from src.bot.handlers import handle_callback_query, handle_message
from src.config import settings
from src.memory.confirm import MemoryConfirmation
from src.memory.embeddings import OpenAIEmbeddingProvider
from src.memory.indexer import EmbeddingIndexer
from src.memory.pending import PendingConfirmationStore
from src.memory.store import MemoryStore

if TYPE_CHECKING:
    from src.webhooks.server import WebhookServer

logger = logging.getLogger(__name__)

# Module-level reference so post_shutdown can access the server.
_webhook_server: WebhookServer | None = None


def _init_indexing(store: MemoryStore) -> EmbeddingIndexer | None:
    """Embed every newly inserted row in the background."""
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY empty — new rows will not be embedded")
        return None
    indexer = EmbeddingIndexer(OpenAIEmbeddingProvider(), store=store)
    store.add_insert_listener(indexer.on_row_inserted)
    return indexer


async def _post_init(app: Application) -> None:
    """Called after the Application is fully initialized (event loop running)."""
    global _webhook_server  # noqa: PLW0603

    store = MemoryStore.get()
    indexer = _init_indexing(store)
    if indexer is None:
        return

    from src.webhooks.server import WebhookServer

    _webhook_server = WebhookServer(indexer)
    await _webhook_server.start()


async def _post_shutdown(app: Application) -> None:
    """Called during graceful shutdown."""
    if _webhook_server is not None:
        await _webhook_server.stop()
    await MemoryStore.get().drain()


def create_app() -> Application:
    """Build and configure the Telegram application."""
    app = Application.builder().token(settings.telegram_bot_token).concurrent_updates(True).build()

    app.bot_data[CONFIRMATION_KEY] = MemoryConfirmation(
        PendingConfirmationStore(ttl=settings.pending_confirmation_ttl),
        store=MemoryStore.get(),
    )

    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))
    app.add_handler(CallbackQueryHandler(handle_callback_query))

    app.post_init = _post_init
    app.post_shutdown = _post_shutdown

    return app
