"""Shared test fixtures."""

from pathlib import Path

import pytest

from src.memory.store import MemoryStore


class FakeEmbeddingProvider:
    """Returns canned vectors and records every call."""

    def __init__(self, vectors: dict[str, list[float]] | None = None) -> None:
        self.vectors = vectors or {}
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        return self.vectors.get(text, [1.0, 0.0, 0.0])


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("src.config.settings.turso_database_url", "")


@pytest.fixture
def store(tmp_path: Path, _no_turso: None) -> MemoryStore:
    """Create a MemoryStore backed by a temp database."""
    return MemoryStore(db_path=tmp_path / "test.db")


@pytest.fixture
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()
