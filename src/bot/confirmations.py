"""Telegram side of the memory confirmation flow.

``send_memory_confirmation`` posts the Save / Skip prompt for candidate
memories; ``on_user_action`` resolves a tap. The ``MemoryConfirmation``
instance is created once by the application factory and kept in
``Application.bot_data`` under ``CONFIRMATION_KEY``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from telegram import Bot

    from src.memory.confirm import ConfirmOutcome, MemoryConfirmation
    from src.memory.models import CandidateMemories

logger = logging.getLogger(__name__)

CONFIRMATION_KEY = "memory_confirmation"

OUTCOME_TEXT = {
    "saved": "Memories saved.",
    "skipped": "Skipped — nothing saved.",
    "unknown": "Session expired.",
}
SAVE_FAILED_TEXT = "Save failed — nothing was stored."
UNAVAILABLE_TEXT = "Memory confirmation unavailable."


async def send_memory_confirmation(
    bot: Bot,
    confirmation: MemoryConfirmation,
    conversation_id: int,
    candidates: CandidateMemories,
    thread_id: int | None = None,
) -> bool:
    """Ask the user whether to keep *candidates*.

    Returns False without sending anything when there is nothing to confirm.
    """
    prompt = confirmation.present(conversation_id, candidates, thread_id=thread_id)
    if prompt is None:
        return False

    text, keyboard = prompt
    kwargs: dict[str, Any] = {"reply_markup": keyboard}
    if thread_id:
        kwargs["message_thread_id"] = thread_id

    try:
        await bot.send_message(chat_id=conversation_id, text=text, **kwargs)
    except Exception:
        # The user never saw the prompt, so don't leave it pending.
        confirmation.pending.clear(conversation_id)
        raise
    logger.info("Sent memory confirmation to chat %s (thread=%s)", conversation_id, thread_id)
    return True


async def on_user_action(
    confirmation: MemoryConfirmation, token: str, conversation_id: int
) -> ConfirmOutcome:
    """Resolve a Save / Skip tap. ``PersistenceError`` propagates on a failed save."""
    outcome = await confirmation.handle_callback(token, conversation_id)
    logger.info("Memory confirmation for chat %s: %s", conversation_id, outcome)
    return outcome
