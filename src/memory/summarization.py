"""Summarization trigger: how much of a group's history is not yet summarized."""

from __future__ import annotations

import logging

from src.config import settings
from src.memory.store import MemoryStore

logger = logging.getLogger(__name__)


async def unsummarized_count(
    conversation_id: int,
    thread_id: int | None = None,
    store: MemoryStore | None = None,
) -> int:
    """Count messages in the exact (conversation, thread) group newer than its last summary.

    ``thread_id=None`` is the undivided conversation and is counted as its own
    group, never together with numbered threads. With no summary yet, every
    message of the group counts.
    """
    store = store or MemoryStore.get()
    latest = await store.get_latest_summary(conversation_id, thread_id)
    after = latest.to_timestamp if latest is not None else None
    return max(await store.count_messages(conversation_id, thread_id, after=after), 0)


async def should_summarize(
    conversation_id: int,
    thread_id: int | None = None,
    store: MemoryStore | None = None,
) -> bool:
    """True once the unsummarized backlog exceeds ``settings.summarize_threshold``."""
    count = await unsummarized_count(conversation_id, thread_id, store=store)
    logger.debug(
        "Unsummarized backlog chat=%s thread=%s: %d", conversation_id, thread_id, count
    )
    return count > settings.summarize_threshold
