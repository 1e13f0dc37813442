# =============================================================================
# File: topicbridge/infra/telegram/errors.py
# Description: Classify python-telegram-bot errors into the bridge taxonomy
# =============================================================================

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from telegram.error import (
    BadRequest,
    ChatMigrated,
    Conflict,
    EndPointNotFound,
    Forbidden,
    InvalidToken,
    NetworkError,
    RetryAfter,
    TelegramError,
    TimedOut,
)

from topicbridge.common.exceptions.exceptions import (
    BridgeException,
    PermanentConfigError,
    PermanentContentError,
    TransientError,
)

# BadRequest descriptions caused by missing rights or a wrong group, not by content
CONFIG_MARKERS = (
    "not enough rights",
    "have no rights",
    "need administrator rights",
    "chat_admin_required",
    "chat not found",
    "not a forum",
    "topic_closed",
    "message thread not found",
    "thread not found",
    "bot was kicked",
)


def _seconds(value) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def classify_telegram_error(error: Exception) -> BridgeException:
    """
    Map a python-telegram-bot exception to TransientError,
    PermanentContentError or PermanentConfigError.

    BadRequest subclasses NetworkError in PTB, so it is checked first.
    """
    if isinstance(error, BridgeException):
        return error

    if isinstance(error, RetryAfter):
        retry_after = _seconds(error.retry_after)
        return TransientError(f"Telegram flood control: retry after {retry_after}s", retry_after=retry_after)

    if isinstance(error, (Forbidden, InvalidToken, EndPointNotFound)):
        return PermanentConfigError(f"Telegram rejected the bot: {error}")

    if isinstance(error, ChatMigrated):
        return PermanentConfigError(f"Destination group migrated to {error.new_chat_id}")

    if isinstance(error, BadRequest):
        message = str(error).lower()
        if any(marker in message for marker in CONFIG_MARKERS):
            return PermanentConfigError(f"Telegram bad request: {error}")
        return PermanentContentError(f"Telegram bad request: {error}")

    if isinstance(error, (TimedOut, NetworkError, Conflict)):
        return TransientError(f"Telegram network error: {error}")

    if isinstance(error, TelegramError):
        return TransientError(f"Telegram error: {error}")

    return TransientError(f"Unexpected Telegram client error: {error}")
