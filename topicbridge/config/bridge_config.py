# =============================================================================
# File: topicbridge/config/bridge_config.py
# Description: Bridge engine configuration (routing, limits, retry, timeouts)
# =============================================================================

from typing import Optional, List
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import SettingsConfigDict

from topicbridge.common.base.base_config import BaseConfig
from topicbridge.config.logging_config import get_logger

log = get_logger("topicbridge.config.bridge")

MB = 1024 * 1024


class BridgeConfig(BaseConfig):
    """
    Bridge engine configuration.

    Controls:
    - Destination group and operator channel
    - Per-kind media byte ceilings
    - Retry/backoff and per-call timeouts
    - Dedup, reply-index and queue sizing
    - Shutdown grace period
    """

    # Inherits env_file and case handling from BaseConfig
    model_config = SettingsConfigDict(env_prefix="BRIDGE_")

    # =========================================================================
    # Routing
    # =========================================================================

    destination_group_id: int = Field(
        default=0,
        description="Forum supergroup that receives one topic per source conversation"
    )

    operator_chat_id: Optional[int] = Field(
        default=None,
        description="Chat receiving operator notices (suspensions, invariant violations)"
    )

    operator_topic_id: Optional[int] = Field(
        default=None,
        description="Topic inside the operator chat, if it is a forum"
    )

    admin_user_ids: List[int] = Field(
        default_factory=list,
        description="Destination users allowed to run bridge commands, as a JSON list ([123, 456])"
    )

    operator_api_token: SecretStr = Field(
        default=SecretStr(""),
        description="Bearer token for the /api/bridge operator routes; they stay closed while unset"
    )

    enabled: bool = Field(
        default=True,
        description="Initial state of the bridge enable flag"
    )

    self_display_name: str = Field(
        default="You",
        description="Name used for messages sent from the bridged account itself"
    )

    send_topic_welcome: bool = Field(
        default=True,
        description="Post a contact info card into newly created topics"
    )

    status_topic_name: str = Field(
        default="📊 Status Updates",
        description="Topic name for the status broadcast conversation"
    )

    contact_stale_after_seconds: int = Field(
        default=7 * 24 * 3600,
        description="Contact display names older than this fall back to the handle"
    )

    # =========================================================================
    # Media Limits
    # =========================================================================

    max_image_bytes: int = Field(default=10 * MB, description="Byte ceiling for images")
    max_video_bytes: int = Field(default=50 * MB, description="Byte ceiling for videos")
    max_audio_bytes: int = Field(default=50 * MB, description="Byte ceiling for audio files")
    max_voice_bytes: int = Field(default=20 * MB, description="Byte ceiling for voice notes")
    max_document_bytes: int = Field(default=50 * MB, description="Byte ceiling for documents")
    max_sticker_bytes: int = Field(default=5 * MB, description="Byte ceiling for stickers")

    stream_chunk_size: int = Field(
        default=64 * 1024,
        description="Chunk size used when streaming media to disk"
    )

    temp_dir: Optional[str] = Field(
        default=None,
        description="Parent directory for per-invocation media scratch dirs (system temp if unset)"
    )

    # =========================================================================
    # Transcoding
    # =========================================================================

    ffmpeg_binary: str = Field(default="ffmpeg", description="ffmpeg executable")

    voice_sample_rate: int = Field(default=16000, description="Voice note sample rate (Hz)")

    voice_bitrate: str = Field(default="32k", description="Voice note Opus bitrate")

    # =========================================================================
    # Retry Settings
    # =========================================================================

    max_attempts: int = Field(default=3, description="Delivery attempts per queue item")

    backoff_base_seconds: float = Field(default=1.0, description="Initial retry delay")

    backoff_max_seconds: float = Field(default=30.0, description="Maximum retry delay")

    backoff_jitter: bool = Field(default=True, description="Add 0-25% random jitter to delays")

    # =========================================================================
    # Timeouts
    # =========================================================================

    api_timeout_seconds: float = Field(default=30.0, description="Destination/source API call timeout")
    download_timeout_seconds: float = Field(default=120.0, description="Media download timeout")
    upload_timeout_seconds: float = Field(default=180.0, description="Media upload timeout")
    store_timeout_seconds: float = Field(default=10.0, description="Document store call timeout")
    transcode_timeout_seconds: float = Field(default=120.0, description="ffmpeg run timeout")

    # =========================================================================
    # Queues, Dedup, Reply Index
    # =========================================================================

    queue_max_size: int = Field(default=1000, description="Bound of each per-conversation queue")

    queue_idle_seconds: float = Field(
        default=60.0,
        description="Idle per-conversation workers retire after this long"
    )

    dedup_ttl_seconds: int = Field(default=3600, description="Replay protection window")
    dedup_max_size: int = Field(default=20000, description="Max tracked dedup keys")

    reply_index_ttl_seconds: int = Field(default=2 * 24 * 3600, description="Reply-index retention")
    reply_index_max_size: int = Field(default=20000, description="Max reply-index entries")

    shutdown_grace_seconds: float = Field(
        default=15.0,
        description="Time allowed for queues to drain on shutdown"
    )

    operator_notice_window_seconds: float = Field(
        default=60.0,
        description="Suspension notices raised within this window are aggregated"
    )

    # =========================================================================
    # Markers
    # =========================================================================

    success_reaction: str = Field(default="👍", description="Reaction for a delivered reply")
    failure_reaction: str = Field(default="❌", description="Reaction for a failed reply")

    # =========================================================================
    # Source Platform
    # =========================================================================

    source_adapter: str = Field(
        default="",
        description="Factory for the source platform adapter, 'package.module:callable'"
    )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator('max_attempts')
    @classmethod
    def validate_max_attempts(cls, v):
        if v < 1:
            raise ValueError("max_attempts must be at least 1")
        return v

    @field_validator('backoff_max_seconds')
    @classmethod
    def validate_backoff_max(cls, v):
        if v <= 0:
            raise ValueError("backoff_max_seconds must be positive")
        return v

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def limit_for(self, kind: str) -> int:
        """Byte ceiling for a media kind ("image", "video", ...)."""
        return {
            "image": self.max_image_bytes,
            "video": self.max_video_bytes,
            "audio": self.max_audio_bytes,
            "voice": self.max_voice_bytes,
            "document": self.max_document_bytes,
            "sticker": self.max_sticker_bytes,
        }.get(kind, self.max_document_bytes)

    def is_admin(self, user_id: Optional[int]) -> bool:
        return user_id is not None and user_id in self.admin_user_ids

    @property
    def operator_channel_configured(self) -> bool:
        return self.operator_chat_id is not None

    def validate_config(self) -> None:
        """Validate configuration and log warnings."""
        if not self.destination_group_id:
            log.warning("BRIDGE_DESTINATION_GROUP_ID not set - topics cannot be created")
        if not self.source_adapter:
            log.warning("BRIDGE_SOURCE_ADAPTER not set - the bridge runtime cannot start")
        if self.operator_chat_id is None:
            log.warning("BRIDGE_OPERATOR_CHAT_ID not set - operator notices only go to the log")
        if not self.admin_user_ids:
            log.warning("BRIDGE_ADMIN_USER_IDS not set - bridge commands are refused for everyone")


# =============================================================================
# Singleton
# =============================================================================

_bridge_config: BridgeConfig | None = None


def get_bridge_config() -> BridgeConfig:
    """Get bridge configuration singleton."""
    global _bridge_config
    if _bridge_config is None:
        _bridge_config = BridgeConfig()
        _bridge_config.validate_config()
    return _bridge_config


def reset_bridge_config() -> None:
    """Reset config singleton (for testing)."""
    global _bridge_config
    _bridge_config = None
