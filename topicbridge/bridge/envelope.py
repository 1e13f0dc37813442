# =============================================================================
# File: topicbridge/bridge/envelope.py
# Description: Transient in-flight message types (envelope, media ref, pending delivery)
# =============================================================================

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from topicbridge.bridge.enums import MessageKind, Direction


@dataclass
class MediaRef:
    """Reference to media still held by the platform it came from."""
    handle: Any                       # source: raw message/key; destination: file_id
    kind: MessageKind
    mime_type: Optional[str] = None
    file_name: Optional[str] = None
    declared_size: Optional[int] = None
    duration: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    is_video_note: bool = False
    is_animated: bool = False
    gif_playback: bool = False


@dataclass
class LocationData:
    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None


@dataclass
class ContactCard:
    display_name: str
    phone_number: Optional[str] = None
    vcard: Optional[str] = None


@dataclass
class ReactionData:
    emoji: str
    target_origin_id: str


@dataclass
class DestinationUpdate:
    """
    A message observed on the destination platform, already lifted out of the
    platform's wire format by its adapter.
    """
    chat_id: int
    message_id: int
    topic_id: Optional[int] = None
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    is_bot: bool = False
    is_private_chat: bool = False
    text: Optional[str] = None
    media: Optional[MediaRef] = None
    location: Optional[LocationData] = None
    contact: Optional[ContactCard] = None
    reply_to_message_id: Optional[int] = None
    spoiler: bool = False
    unsupported_label: Optional[str] = None
    is_service: bool = False
    date: Optional[float] = None


@dataclass
class MessageEnvelope:
    """
    Platform-neutral representation of one inbound message.

    Built once per inbound event by the translator and consumed once by the
    controller. Never persisted.
    """
    origin_id: str
    source_chat_id: str
    sender_id: str
    sender_display_name: str
    timestamp: float
    kind: MessageKind
    text_or_caption: Optional[str] = None
    media_ref: Optional[MediaRef] = None
    from_self: bool = False

    direction: Direction = Direction.TO_DESTINATION
    is_group: bool = False
    is_status: bool = False
    location: Optional[LocationData] = None
    contact: Optional[ContactCard] = None
    reaction: Optional[ReactionData] = None
    unsupported_label: Optional[str] = None

    # Reply threading: origin id of the quoted message on the other side
    reply_to_origin_id: Optional[str] = None
    spoiler: bool = False

    # Destination-side coordinates (set for TO_SOURCE envelopes)
    destination_chat_id: Optional[int] = None
    destination_topic_id: Optional[int] = None
    destination_message_id: Optional[int] = None
    destination_user_id: Optional[int] = None
    destination_reply_to_message_id: Optional[int] = None

    @property
    def dedup_key(self) -> str:
        if self.direction == Direction.TO_DESTINATION:
            return f"src:{self.source_chat_id}:{self.origin_id}"
        return f"dst:{self.destination_chat_id}:{self.origin_id}"

    @property
    def queue_key(self) -> str:
        """Ordering key; items sharing a key are delivered strictly in order."""
        if self.direction == Direction.TO_DESTINATION:
            return f"src:{self.source_chat_id}"
        if self.destination_topic_id is not None:
            return f"dst:{self.destination_topic_id}"
        return f"dst:user:{self.destination_user_id}"


@dataclass
class PendingDelivery:
    """
    Queue item wrapping an envelope while it is retried.

    completed_steps maps each already-delivered artifact step to the message
    id it produced, so a retry resumes after the last delivered step instead
    of re-sending it.
    """
    envelope: MessageEnvelope
    attempts: int = 0
    max_attempts: int = 3
    enqueued_at: float = field(default_factory=time.time)
    completed_steps: Dict[str, Any] = field(default_factory=dict)
    last_error: Optional[str] = None

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def mark_step(self, step: str, message_id: Any) -> None:
        self.completed_steps[step] = message_id

    def step_done(self, step: str) -> bool:
        return step in self.completed_steps
