# =============================================================================
# File: topicbridge/bridge/models.py
# Description: Persisted mapping documents (chat, contact, user)
# =============================================================================

from __future__ import annotations

from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field

from topicbridge.bridge.enums import ChatType

# Collection names in the document store
CHAT_MAPPINGS = "chat_mappings"
CONTACT_MAPPINGS = "contact_mappings"
USER_MAPPINGS = "user_mappings"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MappingDocument(BaseModel):
    """Base for documents stored in the mapping collections"""

    model_config = ConfigDict(use_enum_values=False, extra="ignore")

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, document: Dict[str, Any]):
        return cls.model_validate(document)


class ChatMapping(MappingDocument):
    """One source conversation bound to one destination topic. Keyed by source_chat_id."""

    source_chat_id: str
    destination_topic_id: int
    chat_type: ChatType = ChatType.PRIVATE
    topic_name: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    last_message_at: Optional[datetime] = None
    message_count: int = 0
    active: bool = True

    @property
    def key(self) -> str:
        return self.source_chat_id

    def touched(self, when: Optional[datetime] = None) -> ChatMapping:
        """Copy with the activity counters advanced by one message."""
        return self.model_copy(update={
            "last_message_at": when or utc_now(),
            "message_count": self.message_count + 1,
        })


class ContactMapping(MappingDocument):
    """Display name known for a source conversation. Keyed by source_chat_id."""

    source_chat_id: str
    display_name: Optional[str] = None
    handle: str
    last_synced: datetime = Field(default_factory=utc_now)

    @property
    def key(self) -> str:
        return self.source_chat_id

    def effective_name(self, stale_after_seconds: Optional[int] = None, now: Optional[datetime] = None) -> str:
        """Display name, or the handle when the name is missing or stale."""
        if not self.display_name or not self.display_name.strip():
            return self.handle
        if stale_after_seconds is not None:
            now = now or utc_now()
            if now - self.last_synced > timedelta(seconds=stale_after_seconds):
                return self.handle
        return self.display_name


class UserMapping(MappingDocument):
    """Destination user routed to a source conversation. Keyed by destination_user_id."""

    destination_user_id: int
    source_chat_id: str
    linked_at: datetime = Field(default_factory=utc_now)

    @property
    def key(self) -> str:
        return str(self.destination_user_id)
