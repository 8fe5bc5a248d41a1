"""EmbeddingIndexer — computes and writes back embeddings for inserted rows.

Invoked once per insert notification (in-process listener, webhook, or the
backfill script). ``has_embedding`` is checked before anything else, which
is what keeps duplicate notifications from re-embedding a row. Failures are
raised to the caller; retrying is the notifier's job.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from src.memory.errors import ValidationError
from src.memory.store import CONTENT_COLUMNS, MemoryStore

if TYPE_CHECKING:
    from src.memory.embeddings import EmbeddingProvider
    from src.memory.models import InsertEvent

logger = logging.getLogger(__name__)


class IndexOutcome(StrEnum):
    EMBEDDED = "embedded"
    SKIPPED = "skipped"
    MISSING = "missing"


class EmbeddingIndexer:
    """Embeds a single row per call and writes the vector back."""

    def __init__(self, provider: EmbeddingProvider, store: MemoryStore | None = None) -> None:
        self._provider = provider
        self._store = store or MemoryStore.get()

    async def on_row_inserted(self, event: InsertEvent) -> IndexOutcome:
        """Embed the row described by *event*.

        Returns ``SKIPPED`` when the row already has an embedding, ``MISSING``
        when the row vanished before the write-back, else ``EMBEDDED``.

        Raises:
            ValidationError: Unknown table or empty content.
            ProviderError: The embedding call failed; the row is untouched.
            PersistenceError: The write-back failed; the row is untouched.
        """
        if event.has_embedding:
            logger.debug("Already embedded: %s/%s", event.table, event.record_id)
            return IndexOutcome.SKIPPED

        if event.table not in CONTENT_COLUMNS:
            raise ValidationError(f"Unknown table: {event.table}")
        if not event.content.strip():
            raise ValidationError(f"Empty content for {event.table}/{event.record_id}")

        embedding = await self._provider.embed(event.content)
        updated = await self._store.update_embedding(event.table, event.record_id, embedding)
        if not updated:
            logger.warning("Row disappeared before embedding: %s/%s", event.table, event.record_id)
            return IndexOutcome.MISSING

        logger.info("Embedded %s/%s (%d dims)", event.table, event.record_id, len(embedding))
        return IndexOutcome.EMBEDDED
