"""Memory confirmation workflow.

Candidate memories the extractor was unsure about are held in a
``PendingConfirmationStore`` and shown to the user with a Save / Skip
keyboard. The tap comes back as a ``memconf:<action>:<chat_id>`` callback:

    NoPending --set--> Pending --save|skip--> NoPending

``set`` while pending replaces the old candidates.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from src.memory.errors import ValidationError
from src.memory.store import MemoryStore

if TYPE_CHECKING:
    from src.memory.models import CandidateMemories
    from src.memory.pending import PendingConfirmationStore

logger = logging.getLogger(__name__)

CALLBACK_PREFIX = "memconf:"
SAVE = "save"
SKIP = "skip"

PROMPT_LEAD_IN = "I noticed a few things you might want me to remember:"
PROMPT_CLOSING = "Save these?"


class ConfirmOutcome(StrEnum):
    SAVED = "saved"
    SKIPPED = "skipped"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Prompt & keyboard
# ---------------------------------------------------------------------------


def build_prompt(memories: CandidateMemories) -> str:
    """Format candidates as a bulleted confirmation message.

    Returns an empty string when there is nothing to confirm; callers must
    then send nothing at all.
    """
    items = [f"• {content}" for _, content in memories.iter_items()]
    if not items:
        return ""
    return f"{PROMPT_LEAD_IN}\n\n" + "\n".join(items) + f"\n\n{PROMPT_CLOSING}"


def callback_token(action: str, conversation_id: int) -> str:
    return f"{CALLBACK_PREFIX}{action}:{conversation_id}"


def build_keyboard(conversation_id: int) -> InlineKeyboardMarkup:
    """Two-button Save / Skip keyboard keyed by conversation id."""
    return InlineKeyboardMarkup([
        [
            InlineKeyboardButton("✓ Save all", callback_data=callback_token(SAVE, conversation_id)),
            InlineKeyboardButton("✗ Skip all", callback_data=callback_token(SKIP, conversation_id)),
        ]
    ])


def parse_token(token: str) -> tuple[str, int]:
    """Split ``memconf:<action>:<id>`` into ``(action, id)``.

    Raises:
        ValidationError: Wrong namespace, unknown action, or non-integer id.
    """
    if not token.startswith(CALLBACK_PREFIX):
        raise ValidationError(f"Not a memory confirmation token: {token!r}")
    parts = token.split(":")
    if len(parts) != 3 or parts[1] not in (SAVE, SKIP):
        raise ValidationError(f"Malformed memory confirmation token: {token!r}")
    try:
        return parts[1], int(parts[2])
    except ValueError as exc:
        raise ValidationError(f"Bad conversation id in token: {token!r}") from exc


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


class MemoryConfirmation:
    """Presents candidate memories and commits or discards them on reply."""

    def __init__(
        self,
        pending: PendingConfirmationStore,
        store: MemoryStore | None = None,
    ) -> None:
        self._pending = pending
        self._store = store

    @property
    def pending(self) -> PendingConfirmationStore:
        return self._pending

    def present(
        self,
        conversation_id: int,
        candidates: CandidateMemories,
        thread_id: int | None = None,
    ) -> tuple[str, InlineKeyboardMarkup] | None:
        """Register candidates as pending and return the prompt and keyboard.

        Returns None (and stores nothing) when there is nothing to confirm.
        """
        text = build_prompt(candidates)
        if not text:
            return None
        self._pending.set(conversation_id, candidates, thread_id=thread_id)
        return text, build_keyboard(conversation_id)

    async def handle_callback(self, token: str, conversation_id: int) -> ConfirmOutcome:
        """Apply a Save / Skip tap.

        Returns ``UNKNOWN`` for foreign or malformed tokens, a token for a
        different conversation, or when nothing is pending (already handled,
        expired, or lost in a restart).

        The pending entry is removed before the write, so a failed save is
        not offered again. ``PersistenceError`` from the write propagates.
        """
        try:
            action, token_conversation = parse_token(token)
        except ValidationError:
            logger.debug("Ignoring callback token %r", token)
            return ConfirmOutcome.UNKNOWN

        if token_conversation != conversation_id:
            logger.warning(
                "Confirmation token for chat %s used in chat %s", token_conversation, conversation_id
            )
            return ConfirmOutcome.UNKNOWN

        entry = self._pending.pop(conversation_id)
        if entry is None:
            return ConfirmOutcome.UNKNOWN

        if action == SKIP:
            logger.info("Skipped pending memories for chat %s", conversation_id)
            return ConfirmOutcome.SKIPPED

        store = self._store or MemoryStore.get()
        await store.insert_memory_items(
            conversation_id,
            list(entry.memories.iter_items()),
            thread_id=entry.thread_id,
        )
        return ConfirmOutcome.SAVED
