# =============================================================================
# File: topicbridge/bridge/artifacts.py
# Description: Outbound content handed to platform send primitives
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, List, Union, Any

from topicbridge.bridge.enums import MessageKind, DeliveryOutcome


@dataclass
class TextContent:
    text: str
    reply_to_message_id: Optional[Any] = None


@dataclass
class MediaContent:
    """A media file on local disk, ready to upload."""
    kind: MessageKind
    path: str
    caption: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    duration: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    # Sticker fallback: a converted static image is published as a photo
    as_photo: bool = False
    animation: bool = False
    reply_to_message_id: Optional[Any] = None


@dataclass
class LocationContent:
    latitude: float
    longitude: float
    reply_to_message_id: Optional[Any] = None


@dataclass
class ContactContent:
    display_name: str
    phone_number: str
    vcard: Optional[str] = None


@dataclass
class ReactionContent:
    """Reaction on a message of the receiving platform."""
    target_message_id: Any
    emoji: str


OutboundContent = Union[TextContent, MediaContent, LocationContent, ContactContent, ReactionContent]


@dataclass
class DeliveryResult:
    """Result of emitting one envelope"""
    success: bool
    outcome: DeliveryOutcome = DeliveryOutcome.DELIVERED
    message_ids: List[Any] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def primary_message_id(self) -> Optional[Any]:
        return self.message_ids[0] if self.message_ids else None
