"""Semantic retrieval over stored embeddings.

Cosine similarity is computed brute-force with numpy over the rows that
match the conversation/thread filter.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from src.config import settings
from src.memory.errors import ValidationError
from src.memory.models import SearchKind, SearchMatch, ThreadFilter
from src.memory.store import (
    MEMORY,
    MESSAGES,
    SUMMARIES,
    MemoryStore,
    memory_from_row,
    message_from_row,
    summary_from_row,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from src.memory.embeddings import EmbeddingProvider

logger = logging.getLogger(__name__)

_TABLES = {
    SearchKind.MESSAGE: (MESSAGES, message_from_row),
    SearchKind.SUMMARY: (SUMMARIES, summary_from_row),
    SearchKind.MEMORY: (MEMORY, memory_from_row),
}


def default_limit(kind: SearchKind) -> int:
    return {
        SearchKind.MESSAGE: settings.message_match_count,
        SearchKind.SUMMARY: settings.summary_match_count,
        SearchKind.MEMORY: settings.memory_match_count,
    }[kind]


def cosine_similarities(query: Sequence[float], vectors: list[list[float]]) -> np.ndarray:
    """Return ``1 - cosine distance`` between *query* and each vector.

    Zero-norm vectors get a similarity of ``-inf`` so they never match.
    """
    if not vectors:
        return np.empty(0, dtype=np.float64)
    q = np.asarray(query, dtype=np.float64)
    m = np.asarray(vectors, dtype=np.float64)
    norms = np.linalg.norm(m, axis=1) * np.linalg.norm(q)
    scores = np.full(len(vectors), -np.inf)
    nonzero = norms > 0
    scores[nonzero] = (m[nonzero] @ q) / norms[nonzero]
    return scores


class SemanticSearch:
    """Read-only similarity search over messages, summaries and memories."""

    def __init__(
        self,
        store: MemoryStore | None = None,
        provider: EmbeddingProvider | None = None,
    ) -> None:
        self._store = store or MemoryStore.get()
        self._provider = provider

    async def search(
        self,
        kind: SearchKind | str,
        query_embedding: Sequence[float],
        threshold: float | None = None,
        limit: int | None = None,
        conversation_id: int | None = None,
        thread_id: int | None = None,
    ) -> list[SearchMatch]:
        """Return rows of *kind* whose similarity exceeds *threshold*.

        ``conversation_id``/``thread_id`` of ``None`` do not restrict the
        search: with no thread, rows from every thread of the conversation
        match, threadless rows included. A given ``thread_id`` matches only
        rows stored with exactly that thread.

        Results are sorted by descending similarity and truncated to *limit*.
        """
        kind = SearchKind(kind)
        threshold = settings.match_threshold if threshold is None else threshold
        limit = default_limit(kind) if limit is None else limit
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError(f"threshold must be within [0, 1], got {threshold}")
        if limit < 0:
            raise ValidationError(f"limit must not be negative, got {limit}")
        if limit == 0 or len(query_embedding) == 0:
            return []

        table, from_row = _TABLES[kind]
        where, params = ThreadFilter(conversation_id, thread_id).where()
        rows = await self._store.fetch_embedded(table, where, params)

        records = [from_row(r) for r in rows]
        dim = len(query_embedding)
        candidates = [r for r in records if r.embedding and len(r.embedding) == dim]
        if len(candidates) != len(records):
            logger.debug(
                "Skipped %d %s rows with mismatched dimensions",
                len(records) - len(candidates),
                kind,
            )

        scores = cosine_similarities(query_embedding, [r.embedding for r in candidates])
        ranked = sorted(
            (
                (float(score), record)
                for score, record in zip(scores, candidates, strict=True)
                if score > threshold
            ),
            key=lambda pair: pair[0],
            reverse=True,
        )
        return [
            SearchMatch(kind=kind, record=record, similarity=score)
            for score, record in ranked[:limit]
        ]

    async def search_text(
        self,
        kind: SearchKind | str,
        query: str,
        threshold: float | None = None,
        limit: int | None = None,
        conversation_id: int | None = None,
        thread_id: int | None = None,
    ) -> list[SearchMatch]:
        """Embed *query* with the configured provider, then ``search``."""
        if self._provider is None:
            raise ValidationError("No embedding provider configured for text search")
        if not query.strip():
            raise ValidationError("Search query must not be empty")
        embedding = await self._provider.embed(query)
        return await self.search(
            kind,
            embedding,
            threshold=threshold,
            limit=limit,
            conversation_id=conversation_id,
            thread_id=thread_id,
        )
