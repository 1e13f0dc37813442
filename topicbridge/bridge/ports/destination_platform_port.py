# =============================================================================
# File: topicbridge/bridge/ports/destination_platform_port.py
# Description: Port interface for the topic-capable destination platform
# Pattern: Hexagonal Architecture / Ports & Adapters
# =============================================================================

from __future__ import annotations

from typing import Protocol, Optional, runtime_checkable, TYPE_CHECKING

if TYPE_CHECKING:
    from topicbridge.bridge.artifacts import OutboundContent


@runtime_checkable
class DestinationPlatformPort(Protocol):
    """
    Port: Destination Platform

    Defined by: bridge engine
    Implemented by: TelegramAdapter (topicbridge/infra/telegram/adapter.py)

    Every method raises an exception from topicbridge.common.exceptions on
    failure (TransientError, PermanentContentError, PermanentConfigError);
    platform-specific errors never leak through this port.
    """

    # =========================================================================
    # Topic Management
    # =========================================================================

    async def create_topic(self, group_id: int, name: str) -> int:
        """
        Create a forum topic.

        Returns:
            The new topic id (message_thread_id)
        """
        ...

    async def edit_topic(self, group_id: int, topic_id: int, name: str) -> None:
        """Rename a forum topic."""
        ...

    # =========================================================================
    # Messaging
    # =========================================================================

    async def send(self, group_id: int, topic_id: Optional[int], content: 'OutboundContent') -> int:
        """
        Send one artifact into a topic (or into the chat itself when topic_id is None).

        Returns:
            Destination message id
        """
        ...

    async def set_reaction(self, chat_id: int, message_id: int, emoji: str) -> None:
        """Set a native reaction on a message."""
        ...

    async def pin_message(self, chat_id: int, message_id: int) -> None:
        """Pin a message in its chat/topic."""
        ...

    # =========================================================================
    # Files
    # =========================================================================

    async def get_file_link(self, file_id: str) -> str:
        """Resolve a file id into a download URL."""
        ...
