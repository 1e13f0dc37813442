# =============================================================================
# File: topicbridge/bridge/enums.py
# Description: Enumerations shared by the bridge engine
# =============================================================================

from enum import Enum


class MessageKind(str, Enum):
    """Platform-neutral content kind of a message envelope"""
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    VOICE = "voice"
    DOCUMENT = "document"
    STICKER = "sticker"
    LOCATION = "location"
    CONTACT = "contact"
    REACTION = "reaction"
    UNSUPPORTED = "unsupported"

    @property
    def is_media(self) -> bool:
        return self in MEDIA_KINDS


MEDIA_KINDS = frozenset({
    MessageKind.IMAGE,
    MessageKind.VIDEO,
    MessageKind.AUDIO,
    MessageKind.VOICE,
    MessageKind.DOCUMENT,
    MessageKind.STICKER,
})


class ChatType(str, Enum):
    """Source conversation type"""
    PRIVATE = "private"
    GROUP = "group"


class ConversationState(str, Enum):
    """Per-conversation lifecycle state"""
    UNMAPPED = "unmapped"
    TOPIC_PENDING = "topic_pending"
    TOPIC_ACTIVE = "topic_active"
    SUSPENDED = "suspended"


class Direction(str, Enum):
    """Which way a message travels through the bridge"""
    TO_DESTINATION = "to_destination"  # source chat -> forum topic
    TO_SOURCE = "to_source"            # forum topic -> source chat


class DeliveryOutcome(str, Enum):
    """Final outcome of one queue item"""
    DELIVERED = "delivered"
    NOTICE = "notice"        # permanent-content failure surfaced as a notice
    SUSPENDED = "suspended"  # permanent-config failure, conversation suspended
    DROPPED = "dropped"      # retries exhausted or abandoned on shutdown
    SKIPPED = "skipped"      # filtered (disabled bridge, module hook, duplicate)
