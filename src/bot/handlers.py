"""Telegram handlers for conversation logging and memory confirmations."""

import contextlib
import logging

from telegram import Update
from telegram.ext import ContextTypes

from src.bot.confirmations import (
    CONFIRMATION_KEY,
    OUTCOME_TEXT,
    SAVE_FAILED_TEXT,
    UNAVAILABLE_TEXT,
    on_user_action,
)
from src.bot.security import is_allowed
from src.memory.confirm import CALLBACK_PREFIX
from src.memory.errors import PersistenceError, ValidationError
from src.memory.models import Message, Role
from src.memory.store import MemoryStore

logger = logging.getLogger(__name__)


async def log_turn(
    conversation_id: int,
    role: Role | str,
    content: str,
    thread_id: int | None = None,
    store: MemoryStore | None = None,
) -> Message | None:
    """Record a chat turn for history and search.

    Best-effort: storage and validation errors are logged and None is returned.
    """
    store = store or MemoryStore.get()
    try:
        return await store.insert_message(conversation_id, role, content, thread_id=thread_id)
    except (PersistenceError, ValidationError):
        logger.warning(
            "Could not log %s turn for chat %s (non-fatal)", role, conversation_id, exc_info=True
        )
        return None


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Log incoming text messages into the conversation history."""
    if not is_allowed(update):
        return

    message = update.effective_message
    chat = update.effective_chat
    if message is None or chat is None or not message.text:
        return

    thread_id = message.message_thread_id if message.is_topic_message else None
    await log_turn(chat.id, Role.USER, message.text, thread_id=thread_id)


async def handle_callback_query(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle inline-keyboard callbacks for memory confirmations."""
    query = update.callback_query
    data = query.data or ""

    if not data.startswith(CALLBACK_PREFIX):
        await query.answer()
        return

    if not is_allowed(update):
        await query.answer("Not allowed.")
        return

    await query.answer()

    chat = update.effective_chat
    confirmation = context.bot_data.get(CONFIRMATION_KEY)
    if chat is None or confirmation is None:
        with contextlib.suppress(Exception):
            await query.edit_message_text(text=UNAVAILABLE_TEXT)
        return

    try:
        outcome = await on_user_action(confirmation, data, chat.id)
    except PersistenceError:
        logger.exception("Saving confirmed memories failed for chat %s", chat.id)
        with contextlib.suppress(Exception):
            await query.edit_message_text(text=SAVE_FAILED_TEXT)
        return

    with contextlib.suppress(Exception):
        await query.edit_message_text(text=OUTCOME_TEXT[outcome.value])
