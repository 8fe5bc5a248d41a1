"""Data models for memory and conversation storage."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


class MemoryType(StrEnum):
    FACT = "fact"
    GOAL = "goal"
    PREFERENCE = "preference"
    DATE = "date"


class SearchKind(StrEnum):
    MESSAGE = "message"
    SUMMARY = "summary"
    MEMORY = "memory"


# Candidate category -> stored memory type, in prompt order.
CATEGORY_TYPES: dict[str, MemoryType] = {
    "facts": MemoryType.FACT,
    "preferences": MemoryType.PREFERENCE,
    "goals": MemoryType.GOAL,
    "dates": MemoryType.DATE,
}

# Stored category label for each memory type.
TYPE_CATEGORIES: dict[MemoryType, str] = {
    MemoryType.FACT: "personal",
    MemoryType.PREFERENCE: "preference",
    MemoryType.GOAL: "goal",
    MemoryType.DATE: "date",
}


def format_ts(dt: datetime) -> str:
    """Serialize a datetime as a UTC ISO 8601 string with microseconds.

    Fixed precision keeps lexical order equal to chronological order.
    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def normalize_ts(value: datetime | str) -> str:
    """Re-emit a datetime or ISO 8601 string in the ``format_ts`` form.

    Accepts any offset, a trailing ``Z``, and missing fractional seconds.

    Raises:
        ValueError: *value* is not an ISO 8601 timestamp.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip())
    return format_ts(value)


def utc_now() -> str:
    return format_ts(datetime.now(UTC))


# -- Stored rows -------------------------------------------------------------


class Message(BaseModel):
    """A single conversation turn."""

    id: str
    conversation_id: int
    thread_id: int | None = None
    role: Role
    content: str
    embedding: list[float] | None = None
    created_at: str


class MemoryItem(BaseModel):
    """A confirmed fact, goal, preference or date."""

    id: str
    conversation_id: int
    thread_id: int | None = None
    type: MemoryType
    content: str
    category: str | None = None
    confidence: float = 1.0
    extracted: bool = False
    embedding: list[float] | None = None
    created_at: str


class ConversationSummary(BaseModel):
    """A compressed span of a conversation group's messages."""

    id: str
    conversation_id: int
    thread_id: int | None = None
    summary: str
    from_timestamp: str
    to_timestamp: str
    message_count: int
    embedding: list[float] | None = None
    created_at: str


class SearchMatch(BaseModel):
    """A retrieval hit and its cosine similarity to the query."""

    kind: SearchKind
    record: Message | MemoryItem | ConversationSummary
    similarity: float

    @property
    def content(self) -> str:
        if isinstance(self.record, ConversationSummary):
            return self.record.summary
        return self.record.content


# -- Candidate memories ------------------------------------------------------


class CandidateMemories(BaseModel):
    """Unconfirmed memories extracted from a conversation, by category."""

    facts: list[str] = Field(default_factory=list)
    preferences: list[str] = Field(default_factory=list)
    goals: list[str] = Field(default_factory=list)
    dates: list[str] = Field(default_factory=list)

    def iter_items(self) -> Iterator[tuple[MemoryType, str]]:
        """Yield ``(type, content)`` for every non-blank item, in prompt order."""
        for category, memory_type in CATEGORY_TYPES.items():
            for content in getattr(self, category):
                if content.strip():
                    yield memory_type, content.strip()

    def has_items(self) -> bool:
        return next(self.iter_items(), None) is not None


# -- Insert notifications ----------------------------------------------------


class InsertEvent(BaseModel):
    """Notification that a row was inserted and may need an embedding."""

    model_config = ConfigDict(populate_by_name=True)

    table: str
    record_id: str = Field(alias="recordId")
    content: str
    has_embedding: bool = Field(default=False, alias="hasEmbedding")


# -- Thread scopes -----------------------------------------------------------
#
# ``thread_id=None`` means two different things depending on the caller:
# for grouping/counting it is its own group, for retrieval it is "any thread".
# Each meaning gets its own type so the two are never compared the same way.


@dataclass(frozen=True)
class ThreadGroup:
    """An exact (conversation, thread) group.

    ``thread_id=None`` is the undivided conversation and matches only rows
    whose thread is also absent.
    """

    conversation_id: int
    thread_id: int | None = None

    def where(self) -> tuple[str, tuple]:
        # SQLite's IS is null-safe equality.
        return "conversation_id = ? AND thread_id IS ?", (self.conversation_id, self.thread_id)


@dataclass(frozen=True)
class ThreadFilter:
    """An optional retrieval filter; ``None`` on either field means no restriction."""

    conversation_id: int | None = None
    thread_id: int | None = None

    def where(self) -> tuple[str, tuple]:
        clauses: list[str] = []
        params: list[int] = []
        if self.conversation_id is not None:
            clauses.append("conversation_id = ?")
            params.append(self.conversation_id)
        if self.thread_id is not None:
            clauses.append("thread_id = ?")
            params.append(self.thread_id)
        return " AND ".join(clauses) or "1 = 1", tuple(params)
