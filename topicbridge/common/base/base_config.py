# =============================================================================
# File: topicbridge/common/base/base_config.py
# Description: Shared settings base for the BRIDGE_, TELEGRAM_ and REDIS_ configs
# =============================================================================
#
# Subclasses only set their own env_prefix (pydantic merges the rest of
# model_config from this class) and expose a cached get_*_config()
# factory plus a reset_*_config() hook for tests:
#
#     class ExampleConfig(BaseConfig):
#         model_config = SettingsConfigDict(env_prefix="EXAMPLE_")
#         token: SecretStr = SecretStr("")
#
# Tokens are SecretStr; read them with .get_secret_value().
# =============================================================================

from typing import Any, Dict

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

_MASK = "**********"


class BaseConfig(BaseSettings):
    """Settings loaded from the environment and an optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    def _field_items(self, reveal: bool):
        for name in type(self).model_fields:
            value = getattr(self, name)
            if isinstance(value, SecretStr):
                value = value.get_secret_value() if reveal else _MASK
            yield name, value

    def to_dict(self, mask_secrets: bool = True) -> Dict[str, Any]:
        """Plain dict of the settings, secrets masked unless asked otherwise."""
        return dict(self._field_items(reveal=not mask_secrets))

    def __repr__(self) -> str:
        fields = ", ".join(f"{name}={value!r}" for name, value in self._field_items(reveal=False))
        return f"{type(self).__name__}({fields})"
