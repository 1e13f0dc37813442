# =============================================================================
# File: topicbridge/config/redis_config.py
# Description: Configuration for the Redis-backed mapping store
# =============================================================================
from functools import lru_cache
from typing import Optional, Dict, Any
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import SettingsConfigDict

from topicbridge.common.base.base_config import BaseConfig


# noinspection PyMethodParameters
class RedisConfig(BaseConfig):
    """
    Redis settings for the mapping document store.

    Mappings are small and written once per conversation, so a modest pool
    and short timeouts are enough. Every collection lives under key_prefix.
    """

    # Inherits env_file and case handling from BaseConfig
    model_config = SettingsConfigDict(env_prefix='REDIS_')

    # =========================================================================
    # Connection
    # =========================================================================

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Connection URL (redis://, rediss:// or unix://)"
    )

    redis_username: Optional[str] = Field(default=None, description="ACL username")

    redis_password: Optional[SecretStr] = Field(default=None, description="Password, overrides the URL")

    max_connections: int = Field(default=10, description="Connection pool size")

    socket_timeout: float = Field(default=5.0, description="Read/write timeout (seconds)")

    socket_connect_timeout: float = Field(default=5.0, description="Connect timeout (seconds)")

    health_check_interval: int = Field(
        default=30,
        description="Idle connections are pinged before reuse after this many seconds"
    )

    # =========================================================================
    # Namespace
    # =========================================================================

    key_prefix: str = Field(
        default="topicbridge",
        description="Prefix for collection hash keys (<prefix>:<collection>)"
    )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator('redis_url')
    def validate_redis_url(cls, v):
        if not v.startswith(('redis://', 'rediss://', 'unix://')):
            raise ValueError(f"Unsupported Redis URL scheme: {v!r}")
        return v

    @field_validator('max_connections')
    def validate_max_connections(cls, v):
        if v < 1:
            raise ValueError("max_connections must be at least 1")
        return v

    def get_connection_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for redis.asyncio.from_url."""
        kwargs: Dict[str, Any] = {
            'decode_responses': True,
            'max_connections': self.max_connections,
            'socket_timeout': self.socket_timeout,
            'socket_connect_timeout': self.socket_connect_timeout,
            'health_check_interval': self.health_check_interval,
        }
        if self.redis_username:
            kwargs['username'] = self.redis_username
        if self.redis_password:
            kwargs['password'] = self.redis_password.get_secret_value()
        return kwargs


@lru_cache(maxsize=1)
def get_redis_config() -> RedisConfig:
    """Get Redis configuration singleton (cached)."""
    return RedisConfig()


def reset_redis_config() -> None:
    """Reset config singleton (for testing)."""
    get_redis_config.cache_clear()
