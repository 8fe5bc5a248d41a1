"""Tests for application wiring in src/bot/app."""

from unittest.mock import patch

import pytest

from src.bot.app import _init_indexing
from src.memory.indexer import EmbeddingIndexer
from src.memory.store import MemoryStore

pytestmark = pytest.mark.usefixtures("_no_turso")


def test_no_api_key_skips_indexing(store: MemoryStore) -> None:
    with patch("src.bot.app.settings.openai_api_key", ""):
        assert _init_indexing(store) is None
    assert store._listeners == []


def test_indexer_listens_for_inserts(store: MemoryStore) -> None:
    with patch("src.bot.app.settings.openai_api_key", "sk-test"):
        indexer = _init_indexing(store)

    assert isinstance(indexer, EmbeddingIndexer)
    assert store._listeners == [indexer.on_row_inserted]
