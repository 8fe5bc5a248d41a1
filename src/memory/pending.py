"""In-memory store of memory confirmations awaiting the user's answer.

At most one entry exists per conversation. ``set`` replaces any previous
entry outright (candidates are never merged) and ``clear`` removes it.
Entries live only as long as the process; a restart drops them, which at
worst means the user is asked again.

The store is injected into ``MemoryConfirmation`` rather than read from a
module global, so a shared cache can stand in for it later.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from src.memory.models import CandidateMemories

logger = logging.getLogger(__name__)


@dataclass
class PendingConfirmation:
    """Candidate memories waiting for a save/skip tap."""

    conversation_id: int
    memories: CandidateMemories
    thread_id: int | None = None
    created_at: float = field(default_factory=time.monotonic)


class PendingConfirmationStore:
    """Maps conversation id -> ``PendingConfirmation``.

    Args:
        ttl: Seconds after which an untouched entry is treated as gone.
            ``0`` or ``None`` keeps entries until cleared.
        clock: Monotonic time source (overridable in tests).
    """

    def __init__(
        self,
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[int, PendingConfirmation] = {}
        self._ttl = ttl or 0.0
        self._clock = clock

    def _live(self, conversation_id: int) -> PendingConfirmation | None:
        entry = self._entries.get(conversation_id)
        if entry is None:
            return None
        if self._ttl and self._clock() - entry.created_at > self._ttl:
            logger.info("Pending confirmation expired for chat %s", conversation_id)
            del self._entries[conversation_id]
            return None
        return entry

    def set(
        self,
        conversation_id: int,
        memories: CandidateMemories,
        thread_id: int | None = None,
    ) -> None:
        """Store *memories* for the conversation, replacing any existing entry."""
        if conversation_id in self._entries:
            logger.debug("Replacing pending confirmation for chat %s", conversation_id)
        self._entries[conversation_id] = PendingConfirmation(
            conversation_id=conversation_id,
            memories=memories,
            thread_id=thread_id,
            created_at=self._clock(),
        )

    def has(self, conversation_id: int) -> bool:
        return self._live(conversation_id) is not None

    def get(self, conversation_id: int) -> CandidateMemories | None:
        entry = self._live(conversation_id)
        return entry.memories if entry else None

    def get_entry(self, conversation_id: int) -> PendingConfirmation | None:
        return self._live(conversation_id)

    def pop(self, conversation_id: int) -> PendingConfirmation | None:
        """Remove and return the live entry, if any."""
        entry = self._live(conversation_id)
        self._entries.pop(conversation_id, None)
        return entry

    def clear(self, conversation_id: int) -> None:
        """Remove the entry; no-op when there is none."""
        self._entries.pop(conversation_id, None)

    def __len__(self) -> int:
        return len(self._entries)
