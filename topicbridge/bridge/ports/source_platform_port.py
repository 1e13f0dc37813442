# =============================================================================
# File: topicbridge/bridge/ports/source_platform_port.py
# Description: Port interface for the one-to-one/group source platform
# Pattern: Hexagonal Architecture / Ports & Adapters
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Optional, Any, Dict, AsyncIterator, runtime_checkable, TYPE_CHECKING

if TYPE_CHECKING:
    from topicbridge.bridge.artifacts import OutboundContent


@dataclass
class SourceProfile:
    """Profile of a source conversation (contact or group)"""
    chat_id: str
    display_name: Optional[str] = None
    handle: Optional[str] = None
    is_group: bool = False
    participants: int = 0
    description: Optional[str] = None


@runtime_checkable
class SourcePlatformPort(Protocol):
    """
    Port: Source Platform

    Defined by: bridge engine
    Implemented by: the deployment's source adapter, loaded from
    BRIDGE_SOURCE_ADAPTER ("package.module:factory")

    Raw events are dicts in the multi-device web client message shape:
        {"key": {"remoteJid", "participant", "fromMe", "id"},
         "pushName", "messageTimestamp", "message": {...}}

    Contact/profile updates are delivered through the same stream as
        {"type": "contact_update", "id": <chat id>, "name": <display name>}

    Methods raise topicbridge.common.exceptions taxonomy errors on failure.
    """

    @property
    def supports_streaming(self) -> bool:
        """True when stream_media() can yield the payload chunk by chunk."""
        ...

    def events(self) -> AsyncIterator[Dict[str, Any]]:
        """Inbound event stream."""
        ...

    async def send(self, chat_id: str, content: 'OutboundContent') -> str:
        """
        Send one artifact to a source conversation.

        Returns:
            Source message id
        """
        ...

    async def download_media(self, handle: Any) -> bytes:
        """Download a media payload in one piece."""
        ...

    def stream_media(self, handle: Any) -> AsyncIterator[bytes]:
        """Download a media payload as a stream of chunks."""
        ...

    async def get_profile(self, chat_id: str) -> SourceProfile:
        """Look up the profile for a conversation."""
        ...
