"""Tests for src/bot/confirmations."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.bot.confirmations import on_user_action, send_memory_confirmation
from src.memory.confirm import PROMPT_LEAD_IN, ConfirmOutcome, MemoryConfirmation
from src.memory.models import CandidateMemories
from src.memory.pending import PendingConfirmationStore
from src.memory.store import MemoryStore

pytestmark = pytest.mark.usefixtures("_no_turso")

CHAT = 555

# -- Helpers -----------------------------------------------------------------


def _make_mock_bot() -> AsyncMock:
    """Create a mock telegram.Bot with send_message returning a Message."""
    bot = AsyncMock()
    msg = MagicMock()
    msg.message_id = 42
    bot.send_message = AsyncMock(return_value=msg)
    return bot


@pytest.fixture
def confirmation(store: MemoryStore) -> MemoryConfirmation:
    return MemoryConfirmation(PendingConfirmationStore(), store=store)


# -- send_memory_confirmation ------------------------------------------------


async def test_sends_prompt_with_keyboard(confirmation: MemoryConfirmation) -> None:
    bot = _make_mock_bot()

    sent = await send_memory_confirmation(
        bot, confirmation, CHAT, CandidateMemories(goals=["Learn Rust"])
    )

    assert sent is True
    kwargs = bot.send_message.call_args.kwargs
    assert kwargs["chat_id"] == CHAT
    assert kwargs["text"].startswith(PROMPT_LEAD_IN)
    assert "• Learn Rust" in kwargs["text"]
    assert "message_thread_id" not in kwargs
    buttons = kwargs["reply_markup"].inline_keyboard[0]
    assert buttons[1].callback_data == f"memconf:skip:{CHAT}"
    assert confirmation.pending.has(CHAT)


async def test_sends_into_topic_thread(confirmation: MemoryConfirmation) -> None:
    bot = _make_mock_bot()

    await send_memory_confirmation(
        bot, confirmation, CHAT, CandidateMemories(facts=["x"]), thread_id=9
    )

    assert bot.send_message.call_args.kwargs["message_thread_id"] == 9
    entry = confirmation.pending.get_entry(CHAT)
    assert entry is not None
    assert entry.thread_id == 9


async def test_nothing_to_confirm_sends_nothing(confirmation: MemoryConfirmation) -> None:
    bot = _make_mock_bot()

    sent = await send_memory_confirmation(bot, confirmation, CHAT, CandidateMemories(facts=[" "]))

    assert sent is False
    bot.send_message.assert_not_awaited()
    assert not confirmation.pending.has(CHAT)


async def test_send_failure_clears_pending(confirmation: MemoryConfirmation) -> None:
    bot = _make_mock_bot()
    bot.send_message.side_effect = RuntimeError("chat not found")

    with pytest.raises(RuntimeError):
        await send_memory_confirmation(bot, confirmation, CHAT, CandidateMemories(facts=["x"]))

    assert not confirmation.pending.has(CHAT)


# -- on_user_action ----------------------------------------------------------


async def test_on_user_action_resolves(confirmation: MemoryConfirmation) -> None:
    confirmation.present(CHAT, CandidateMemories(facts=["x"]))

    assert await on_user_action(confirmation, f"memconf:skip:{CHAT}", CHAT) is ConfirmOutcome.SKIPPED
    assert await on_user_action(confirmation, f"memconf:skip:{CHAT}", CHAT) is ConfirmOutcome.UNKNOWN
