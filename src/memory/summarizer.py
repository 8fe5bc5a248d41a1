"""Rolling conversation summaries.

Once a (conversation, thread) group has more unsummarized messages than
``settings.summarize_threshold``, the oldest chunk after the latest summary
is sent to Claude Haiku and the result stored as a ``ConversationSummary``.
Original messages are kept.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import anthropic

from src.config import settings
from src.memory.store import MemoryStore
from src.memory.summarization import should_summarize

if TYPE_CHECKING:
    from src.memory.models import ConversationSummary, Message

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You compress chat history into durable notes. Summarize the conversation "
    "below in 3-6 sentences. Keep names, decisions, commitments, dates and open "
    "questions. Write in the third person. Return only the summary."
)

_summary_client: anthropic.AsyncAnthropic | None = None


def _get_summary_client() -> anthropic.AsyncAnthropic:
    global _summary_client  # noqa: PLW0603
    if _summary_client is None:
        _summary_client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
    return _summary_client


def format_transcript(messages: list[Message]) -> str:
    """Render messages as ``<role>content</role>`` lines for the model."""
    return "\n".join(f"<{m.role.value}>{m.content}</{m.role.value}>" for m in messages)


class Summarizer:
    """Writes summaries for groups whose backlog is large enough."""

    def __init__(
        self,
        store: MemoryStore | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self._store = store or MemoryStore.get()
        self._client = client

    async def _complete(self, transcript: str) -> str:
        client = self._client or _get_summary_client()
        response = await client.messages.create(
            model=settings.summary_model,
            max_tokens=512,
            system=_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": f"<conversation>\n{transcript}\n</conversation>"}],
        )
        return "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        ).strip()

    async def summarize_next_chunk(
        self, conversation_id: int, thread_id: int | None = None
    ) -> ConversationSummary | None:
        """Summarize the oldest unsummarized chunk of the group.

        Returns the stored summary, or None when there is nothing to summarize
        or the model returned an empty answer.
        """
        latest = await self._store.get_latest_summary(conversation_id, thread_id)
        after = latest.to_timestamp if latest else None
        chunk_size = settings.summarize_chunk_size
        messages = await self._store.get_messages_after(
            conversation_id, thread_id, after=after, limit=chunk_size + 1
        )
        if not messages:
            return None

        # The summary's to_timestamp covers every message at that instant, so a
        # chunk may not end in the middle of a run of equal created_at values.
        if len(messages) > chunk_size:
            boundary = messages[chunk_size - 1].created_at
            if messages[chunk_size].created_at == boundary:
                messages = await self._store.get_messages_after(
                    conversation_id, thread_id, after=after, until=boundary, limit=None
                )
            else:
                messages = messages[:chunk_size]

        text = await self._complete(format_transcript(messages))
        if not text:
            logger.warning(
                "Empty summary for chat=%s thread=%s; skipping", conversation_id, thread_id
            )
            return None

        return await self._store.insert_summary(
            conversation_id,
            text,
            from_timestamp=messages[0].created_at,
            to_timestamp=messages[-1].created_at,
            message_count=len(messages),
            thread_id=thread_id,
        )

    async def run_if_needed(
        self, conversation_id: int, thread_id: int | None = None
    ) -> ConversationSummary | None:
        """Polling entry point: summarize one chunk if the backlog is over threshold."""
        if not await should_summarize(conversation_id, thread_id, store=self._store):
            return None
        try:
            return await self.summarize_next_chunk(conversation_id, thread_id)
        except anthropic.APIError:
            logger.exception(
                "Summarization failed (chat=%s thread=%s)", conversation_id, thread_id
            )
            return None
