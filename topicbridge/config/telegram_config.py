# =============================================================================
# File: topicbridge/config/telegram_config.py
# Description: Telegram Bot API configuration (destination platform)
# =============================================================================

from typing import Optional
from pydantic import Field, SecretStr
from pydantic_settings import SettingsConfigDict

from topicbridge.common.base.base_config import BaseConfig
from topicbridge.config.logging_config import get_logger

log = get_logger("topicbridge.config.telegram")


class TelegramConfig(BaseConfig):
    """
    Telegram integration configuration.

    Controls:
    - Bot API token and API base
    - Webhook vs polling ingress
    - Rate limiting
    """

    # Inherits env_file and case handling from BaseConfig
    model_config = SettingsConfigDict(env_prefix="TELEGRAM_")

    # =========================================================================
    # Bot API Settings
    # =========================================================================

    bot_token: SecretStr = Field(
        default=SecretStr(""),
        description="Bot API token from @BotFather"
    )

    api_base_url: str = Field(
        default="https://api.telegram.org",
        description="Bot API server (override for a local Bot API server)"
    )

    # =========================================================================
    # Webhook Settings
    # =========================================================================

    webhook_url: Optional[str] = Field(
        default=None,
        description="Public base URL for the webhook (e.g., https://bridge.example.com)"
    )

    webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Secret token for webhook verification"
    )

    webhook_path: str = Field(
        default="/api/telegram/webhook",
        description="Webhook endpoint path"
    )

    verify_source_ip: bool = Field(
        default=False,
        description="Reject webhook calls that do not come from Telegram networks"
    )

    # =========================================================================
    # Polling Settings
    # =========================================================================

    enable_polling: bool = Field(
        default=False,
        description="Use getUpdates long polling instead of a webhook"
    )

    polling_timeout: int = Field(
        default=30,
        description="Long polling timeout (seconds)"
    )

    # =========================================================================
    # Rate Limiting
    # =========================================================================

    messages_per_chat_per_minute: int = Field(
        default=20,
        description="Per-chat rate limit (Telegram group limit is about 20 msg/min)"
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def full_webhook_url(self) -> str:
        """Get full webhook URL."""
        if not self.webhook_url:
            return ""
        return f"{self.webhook_url.rstrip('/')}{self.webhook_path}"

    @property
    def bot_api_available(self) -> bool:
        """Check if Bot API is configured."""
        return bool(self.bot_token.get_secret_value())

    def file_download_url(self, file_path: str) -> str:
        """Full download URL for a file_path returned by getFile."""
        token = self.bot_token.get_secret_value()
        return f"{self.api_base_url.rstrip('/')}/file/bot{token}/{file_path}"

    def validate_config(self) -> None:
        """Validate configuration and log warnings."""
        if not self.bot_api_available:
            log.warning("TELEGRAM_BOT_TOKEN not set - destination platform disabled")
        if not self.enable_polling and not self.webhook_url:
            log.warning("Neither TELEGRAM_WEBHOOK_URL nor TELEGRAM_ENABLE_POLLING set - no topic replies will arrive")


# =============================================================================
# Singleton
# =============================================================================

_telegram_config: TelegramConfig | None = None


def get_telegram_config() -> TelegramConfig:
    """Get Telegram configuration singleton."""
    global _telegram_config
    if _telegram_config is None:
        _telegram_config = TelegramConfig()
        _telegram_config.validate_config()
    return _telegram_config


def reset_telegram_config() -> None:
    """Reset config singleton (for testing)."""
    global _telegram_config
    _telegram_config = None
