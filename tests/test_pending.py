"""Tests for PendingConfirmationStore."""

from src.memory.models import CandidateMemories
from src.memory.pending import PendingConfirmationStore


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _candidates(*facts: str) -> CandidateMemories:
    return CandidateMemories(facts=list(facts))


def test_set_then_get() -> None:
    pending = PendingConfirmationStore()
    pending.set(1, _candidates("Likes tea"), thread_id=4)

    assert pending.has(1)
    assert pending.get(1) == _candidates("Likes tea")
    entry = pending.get_entry(1)
    assert entry is not None
    assert entry.thread_id == 4


def test_missing_conversation() -> None:
    pending = PendingConfirmationStore()
    assert pending.has(1) is False
    assert pending.get(1) is None
    assert pending.pop(1) is None


def test_set_replaces_without_merging() -> None:
    pending = PendingConfirmationStore()
    pending.set(1, _candidates("A"))
    pending.set(1, CandidateMemories(goals=["B"]))

    assert pending.get(1) == CandidateMemories(goals=["B"])
    assert len(pending) == 1


def test_entries_are_per_conversation() -> None:
    pending = PendingConfirmationStore()
    pending.set(1, _candidates("A"))
    pending.set(2, _candidates("B"))

    pending.clear(1)

    assert not pending.has(1)
    assert pending.get(2) == _candidates("B")


def test_clear_without_entry_is_noop() -> None:
    pending = PendingConfirmationStore()
    pending.clear(42)
    assert len(pending) == 0


def test_pop_removes_entry() -> None:
    pending = PendingConfirmationStore()
    pending.set(1, _candidates("A"))

    entry = pending.pop(1)

    assert entry is not None
    assert entry.memories == _candidates("A")
    assert pending.pop(1) is None


def test_ttl_expires_entries() -> None:
    clock = FakeClock()
    pending = PendingConfirmationStore(ttl=60, clock=clock)
    pending.set(1, _candidates("A"))

    clock.now += 59
    assert pending.has(1)

    clock.now += 2
    assert not pending.has(1)
    assert len(pending) == 0


def test_zero_ttl_never_expires() -> None:
    clock = FakeClock()
    pending = PendingConfirmationStore(ttl=0, clock=clock)
    pending.set(1, _candidates("A"))

    clock.now += 10**9
    assert pending.has(1)


def test_replacing_resets_ttl() -> None:
    clock = FakeClock()
    pending = PendingConfirmationStore(ttl=60, clock=clock)
    pending.set(1, _candidates("A"))
    clock.now += 50
    pending.set(1, _candidates("B"))
    clock.now += 50

    assert pending.get(1) == _candidates("B")
