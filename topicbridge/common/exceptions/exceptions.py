# topicbridge/common/exceptions/exceptions.py
# =============================================================================
# Failure taxonomy for the bridge
#
# Every adapter converts its platform errors into one of these classes so the
# controller can decide retry, notice, suspend or drop without knowing which
# platform raised.
# =============================================================================

from typing import Optional


class BridgeException(Exception):
    """Base exception for topicbridge"""
    pass


class TransientError(BridgeException):
    """Network failure, timeout or rate limit. Safe to retry."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class PermanentContentError(BridgeException):
    """Unsupported, corrupt or oversized content. Never retried."""
    pass


class MediaTooLargeError(PermanentContentError):
    """Media is above the configured byte ceiling for its kind"""

    def __init__(self, kind: str, size: int, limit: int):
        super().__init__(f"{kind} of {size} bytes exceeds limit of {limit} bytes")
        self.kind = kind
        self.size = size
        self.limit = limit


class TranscodeError(PermanentContentError):
    """ffmpeg or image conversion failed"""
    pass


class PermanentConfigError(BridgeException):
    """Missing permissions or invalid credentials on a platform"""
    pass


class InvariantViolationError(BridgeException):
    """Internal state contradicts a bridge invariant (e.g. two topics for one chat)"""
    pass


class TopicUnavailableError(BridgeException):
    """No destination topic could be produced for a conversation"""

    def __init__(self, source_chat_id: str, reason: str = ""):
        super().__init__(f"Topic unavailable for {source_chat_id}: {reason}")
        self.source_chat_id = source_chat_id
        self.reason = reason


class ConversationSuspendedError(BridgeException):
    """Conversation is suspended and does not accept deliveries"""

    def __init__(self, source_chat_id: str):
        super().__init__(f"Conversation {source_chat_id} is suspended")
        self.source_chat_id = source_chat_id


class MappingNotFoundError(BridgeException):
    """No mapping exists for a destination topic or user"""
    pass


class AmbiguousMappingError(BridgeException):
    """More than one active mapping points at the same destination topic"""
    pass
