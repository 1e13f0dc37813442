# =============================================================================
# Telegram Adapter (Infrastructure Layer)
# =============================================================================
#
# Destination platform adapter for a forum-enabled supergroup.
#
# Architecture:
#   - TelegramAdapter: DestinationPlatformPort facade, webhook and polling ingress
#   - TelegramBotClient: python-telegram-bot Bot API client (send, topics, files)
#   - update_parser: Telegram Message -> DestinationUpdate
#   - errors: TelegramError -> bridge failure taxonomy
#
# Dependencies:
#   - python-telegram-bot 22.x for the Bot API
# =============================================================================

from topicbridge.config.telegram_config import (
    TelegramConfig,
    get_telegram_config,
    reset_telegram_config,
)
from topicbridge.infra.telegram.bot_client import (
    TelegramBotClient,
    SendMessageResult,
)
from topicbridge.infra.telegram.adapter import (
    TelegramAdapter,
)
from topicbridge.infra.telegram.errors import classify_telegram_error
from topicbridge.infra.telegram.update_parser import parse_message

__all__ = [
    "TelegramConfig",
    "get_telegram_config",
    "reset_telegram_config",
    "TelegramBotClient",
    "SendMessageResult",
    "TelegramAdapter",
    "classify_telegram_error",
    "parse_message",
]
