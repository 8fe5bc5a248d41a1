"""Tests for message logging in src/bot/handlers."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.bot.handlers import handle_message, log_turn
from src.memory.errors import PersistenceError
from src.memory.models import Role
from src.memory.store import MemoryStore

pytestmark = pytest.mark.usefixtures("_no_turso")

CHAT = 555


def _make_update(text: str | None, *, topic: bool = False) -> MagicMock:
    update = MagicMock()
    update.effective_chat.id = CHAT
    update.effective_message.text = text
    update.effective_message.is_topic_message = topic
    update.effective_message.message_thread_id = 12 if topic else None
    return update


# -- log_turn ----------------------------------------------------------------


async def test_log_turn_stores_message(store: MemoryStore) -> None:
    msg = await log_turn(CHAT, Role.ASSISTANT, "Sure thing", thread_id=3, store=store)

    assert msg is not None
    stored = await store.get_recent_messages(CHAT, 3)
    assert [(m.role, m.content) for m in stored] == [(Role.ASSISTANT, "Sure thing")]


async def test_log_turn_swallows_storage_failure(store: MemoryStore) -> None:
    with patch.object(store, "insert_message", AsyncMock(side_effect=PersistenceError("down"))):
        assert await log_turn(CHAT, "user", "hi", store=store) is None


async def test_log_turn_swallows_empty_content(store: MemoryStore) -> None:
    assert await log_turn(CHAT, "user", "  ", store=store) is None


# -- handle_message ----------------------------------------------------------


async def test_handle_message_logs_user_text() -> None:
    with (
        patch("src.bot.handlers.is_allowed", return_value=True),
        patch("src.bot.handlers.log_turn", AsyncMock()) as log,
    ):
        await handle_message(_make_update("hello"), MagicMock())

    log.assert_awaited_once_with(CHAT, Role.USER, "hello", thread_id=None)


async def test_handle_message_keeps_topic_thread() -> None:
    with (
        patch("src.bot.handlers.is_allowed", return_value=True),
        patch("src.bot.handlers.log_turn", AsyncMock()) as log,
    ):
        await handle_message(_make_update("hello", topic=True), MagicMock())

    assert log.call_args.kwargs["thread_id"] == 12


async def test_handle_message_ignores_disallowed_user() -> None:
    with (
        patch("src.bot.handlers.is_allowed", return_value=False),
        patch("src.bot.handlers.log_turn", AsyncMock()) as log,
    ):
        await handle_message(_make_update("hello"), MagicMock())

    log.assert_not_awaited()


async def test_handle_message_ignores_non_text() -> None:
    with (
        patch("src.bot.handlers.is_allowed", return_value=True),
        patch("src.bot.handlers.log_turn", AsyncMock()) as log,
    ):
        await handle_message(_make_update(None), MagicMock())

    log.assert_not_awaited()
