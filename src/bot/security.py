"""Allowlist gate for chat messages and memory-confirmation taps."""

import logging

from telegram import Update

from src.config import settings

logger = logging.getLogger(__name__)

_allowed: frozenset[int] | None = None


def allowed_user_ids() -> frozenset[int]:
    """Return ALLOWED_USER_IDS, parsed once per process."""
    global _allowed  # noqa: PLW0603
    if _allowed is None:
        _allowed = frozenset(settings.get_allowed_user_ids())
        if not _allowed:
            logger.warning("ALLOWED_USER_IDS is empty; every update will be rejected")
    return _allowed


def _reset() -> None:
    """Drop the cached allowlist (for testing)."""
    global _allowed  # noqa: PLW0603
    _allowed = None


def is_allowed_user(user_id: int | None) -> bool:
    return user_id is not None and user_id in allowed_user_ids()


def is_allowed(update: Update) -> bool:
    """True when the message or button tap comes from an allowlisted user.

    Rejections are silent towards the user and logged at debug level.
    """
    user = update.effective_user
    user_id = user.id if user is not None else None
    if is_allowed_user(user_id):
        return True

    kind = "callback" if update.callback_query is not None else "message"
    logger.debug("Rejected %s from user %s", kind, user_id)
    return False
