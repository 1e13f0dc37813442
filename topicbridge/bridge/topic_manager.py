# =============================================================================
# File: topicbridge/bridge/topic_manager.py
# Description: Idempotent source-chat -> destination-topic resolution
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Set, Tuple

from topicbridge.bridge.artifacts import TextContent
from topicbridge.bridge.enums import ChatType, ConversationState
from topicbridge.bridge.jid import is_group_jid, is_broadcast_jid, handle_for, STATUS_BROADCAST, CALL_BROADCAST
from topicbridge.bridge.keyed_lock import KeyedLock
from topicbridge.bridge.mapping_store import MappingStore
from topicbridge.bridge.models import ChatMapping, ContactMapping, utc_now
from topicbridge.bridge.ports.destination_platform_port import DestinationPlatformPort
from topicbridge.bridge.ports.source_platform_port import SourcePlatformPort, SourceProfile
from topicbridge.common.exceptions.exceptions import (
    BridgeException,
    ConversationSuspendedError,
    TopicUnavailableError,
)
from topicbridge.config.bridge_config import BridgeConfig
from topicbridge.config.logging_config import get_logger
from topicbridge.infra.metrics.bridge_metrics import (
    bridge_suspended_conversations,
    record_invariant_violation,
    record_topic_created,
    record_topic_rename,
)
from topicbridge.infra.reliability.retry import call_with_timeout

log = get_logger("topicbridge.bridge.topic_manager")

CALL_LOG_TOPIC_NAME = "📞 Call Logs"
DUPLICATE_MARKER = "[duplicate]"
MAX_TOPIC_NAME = 128


@dataclass
class TopicHint:
    """What the caller knows about a conversation when it asks for its topic"""
    display_name: Optional[str] = None   # sender push name / group subject from the event
    is_group: bool = False


class TopicManager:
    """
    Resolves the destination topic for a source conversation.

    - get_or_create_topic() creates a topic at most once per conversation,
      even when first-contact messages race. The per-key lock is held only
      across create-or-fetch; the welcome card is posted after release.
    - The mapping is persisted before a new topic id is returned.
    - Contact name drift renames the topic best-effort.
    - Tracks the per-conversation state machine
      UNMAPPED -> TOPIC_PENDING -> TOPIC_ACTIVE <-> SUSPENDED.
    """

    def __init__(
        self,
        config: BridgeConfig,
        store: MappingStore,
        destination: DestinationPlatformPort,
        source: Optional[SourcePlatformPort] = None,
    ):
        self.config = config
        self._store = store
        self._destination = destination
        self._source = source
        self._locks = KeyedLock()
        self._pending: Set[str] = set()
        self._suspended: Dict[str, str] = {}   # source_chat_id -> reason
        # Topics created whose mapping write failed; reused by the next attempt
        self._unpersisted: Dict[str, Tuple[int, str]] = {}

    # =========================================================================
    # State
    # =========================================================================

    def state(self, source_chat_id: str) -> ConversationState:
        if source_chat_id in self._suspended:
            return ConversationState.SUSPENDED
        if source_chat_id in self._pending:
            return ConversationState.TOPIC_PENDING
        if self._store.cached_chat(source_chat_id) is not None:
            return ConversationState.TOPIC_ACTIVE
        return ConversationState.UNMAPPED

    def is_suspended(self, source_chat_id: str) -> bool:
        return source_chat_id in self._suspended

    def suspended(self) -> Dict[str, str]:
        return dict(self._suspended)

    def suspend(self, source_chat_id: str, reason: str) -> bool:
        """Move a conversation to SUSPENDED. Returns False if it already was."""
        if source_chat_id in self._suspended:
            return False
        self._suspended[source_chat_id] = reason
        bridge_suspended_conversations.set(len(self._suspended))
        log.warning(f"Conversation {source_chat_id} suspended: {reason}")
        return True

    def resume(self, source_chat_id: str) -> bool:
        if self._suspended.pop(source_chat_id, None) is None:
            return False
        bridge_suspended_conversations.set(len(self._suspended))
        log.info(f"Conversation {source_chat_id} resumed")
        return True

    # =========================================================================
    # Topic Resolution
    # =========================================================================

    async def get_or_create_topic(self, source_chat_id: str, hint: Optional[TopicHint] = None) -> int:
        """
        Return the topic for a conversation, creating it exactly once.

        Raises:
            ConversationSuspendedError: conversation is suspended
            TopicUnavailableError: no destination group configured or creation returned nothing
            TransientError / PermanentConfigError: from the destination platform or store
        """
        if source_chat_id in self._suspended:
            raise ConversationSuspendedError(source_chat_id)

        cached = self._store.cached_chat(source_chat_id)
        if cached is not None:
            return cached.destination_topic_id

        hint = hint or TopicHint(is_group=is_group_jid(source_chat_id))
        created: Optional[ChatMapping] = None

        async with self._locks.hold(source_chat_id):
            mapping = await self._store.get_chat(source_chat_id)
            if mapping is None:
                self._pending.add(source_chat_id)
                try:
                    mapping, created = await self._create_mapping(source_chat_id, hint)
                finally:
                    self._pending.discard(source_chat_id)

        if created is not None and self.config.send_topic_welcome:
            await self._post_welcome(created, hint)

        return mapping.destination_topic_id

    async def _create_mapping(self, source_chat_id: str, hint: TopicHint) -> Tuple[ChatMapping, Optional[ChatMapping]]:
        group_id = self.config.destination_group_id
        if not group_id:
            raise TopicUnavailableError(source_chat_id, "destination group not configured")

        if source_chat_id in self._unpersisted:
            topic_id, name = self._unpersisted[source_chat_id]
            log.info(f"Reusing topic {topic_id} created earlier for {source_chat_id}")
        else:
            name = await self.resolve_topic_name(source_chat_id, hint)
            topic_id = await call_with_timeout(
                self._destination.create_topic(group_id, name),
                self.config.api_timeout_seconds,
                context=f"create topic for {source_chat_id}",
            )
            if not topic_id:
                raise TopicUnavailableError(source_chat_id, "destination returned no topic id")
            self._unpersisted[source_chat_id] = (topic_id, name)

        mapping = ChatMapping(
            source_chat_id=source_chat_id,
            destination_topic_id=topic_id,
            chat_type=ChatType.GROUP if hint.is_group else ChatType.PRIVATE,
            topic_name=name,
        )

        # Another writer may have mapped this chat between our read and now
        existing = await self._store.refresh_chat(source_chat_id)
        if existing is not None and existing.destination_topic_id != topic_id:
            self._unpersisted.pop(source_chat_id, None)
            kept = self._resolve_duplicate(existing, mapping)
            discarded = mapping if kept is existing else existing
            if kept is mapping:
                await self._store.put_chat(mapping)
            await self._mark_duplicate_topic(discarded)
            return kept, None

        await self._store.put_chat(mapping)
        self._unpersisted.pop(source_chat_id, None)
        record_topic_created(mapping.chat_type.value)
        log.info(f"Created topic '{name}' (ID: {topic_id}) for {source_chat_id}")
        return mapping, mapping

    def _resolve_duplicate(self, existing: ChatMapping, candidate: ChatMapping) -> ChatMapping:
        """Two topics for one conversation: the earliest-created mapping wins."""
        record_invariant_violation("duplicate_topic")
        kept = existing if existing.created_at <= candidate.created_at else candidate
        log.error(
            f"Duplicate topic for {existing.source_chat_id}: "
            f"{existing.destination_topic_id} (created {existing.created_at.isoformat()}) vs "
            f"{candidate.destination_topic_id} (created {candidate.created_at.isoformat()}); "
            f"keeping {kept.destination_topic_id}"
        )
        return kept

    async def _mark_duplicate_topic(self, discarded: ChatMapping) -> None:
        name = f"{DUPLICATE_MARKER} {discarded.topic_name}"[:MAX_TOPIC_NAME]
        try:
            await call_with_timeout(
                self._destination.edit_topic(self.config.destination_group_id, discarded.destination_topic_id, name),
                self.config.api_timeout_seconds,
                context="mark duplicate topic",
            )
        except BridgeException as e:
            log.warning(f"Could not mark duplicate topic {discarded.destination_topic_id}: {e}")

    async def resolve_topic_name(self, source_chat_id: str, hint: TopicHint) -> str:
        if source_chat_id == STATUS_BROADCAST:
            return self.config.status_topic_name
        if source_chat_id == CALL_BROADCAST:
            return CALL_LOG_TOPIC_NAME

        if not hint.is_group:
            contact = await self._store.get_contact(source_chat_id)
            if contact is not None:
                return self._clip(contact.effective_name(self.config.contact_stale_after_seconds))

        profile = await self._lookup_profile(source_chat_id)
        if profile is not None and profile.display_name:
            return self._clip(profile.display_name)
        if hint.is_group and hint.display_name:
            return self._clip(hint.display_name)
        return self._clip(handle_for(source_chat_id))

    async def _lookup_profile(self, source_chat_id: str) -> Optional[SourceProfile]:
        if self._source is None:
            return None
        try:
            return await call_with_timeout(
                self._source.get_profile(source_chat_id),
                self.config.api_timeout_seconds,
                context=f"profile {source_chat_id}",
            )
        except BridgeException as e:
            log.debug(f"Profile lookup failed for {source_chat_id}: {e}")
            return None

    @staticmethod
    def _clip(name: str) -> str:
        return name.strip()[:MAX_TOPIC_NAME] or "Unknown"

    # =========================================================================
    # Welcome Card
    # =========================================================================

    async def _post_welcome(self, mapping: ChatMapping, hint: TopicHint) -> None:
        """Post and pin an info card in a new topic. Failures are logged only."""
        if mapping.source_chat_id in (STATUS_BROADCAST, CALL_BROADCAST):
            return

        group_id = self.config.destination_group_id
        text = await self._welcome_text(mapping, hint)
        try:
            message_id = await call_with_timeout(
                self._destination.send(group_id, mapping.destination_topic_id, TextContent(text=text)),
                self.config.api_timeout_seconds,
                context="welcome card",
            )
            await call_with_timeout(
                self._destination.pin_message(group_id, message_id),
                self.config.api_timeout_seconds,
                context="pin welcome card",
            )
        except BridgeException as e:
            log.warning(f"Welcome card for topic {mapping.destination_topic_id} failed: {e}")

    async def _welcome_text(self, mapping: ChatMapping, hint: TopicHint) -> str:
        first_contact = mapping.created_at.strftime("%Y-%m-%d")
        if mapping.chat_type == ChatType.GROUP:
            profile = await self._lookup_profile(mapping.source_chat_id)
            lines = [
                "🏷️ Group Information",
                "",
                f"📝 Name: {mapping.topic_name}",
            ]
            if profile is not None and profile.participants:
                lines.append(f"👥 Participants: {profile.participants}")
            lines += [
                f"🆔 Group ID: {mapping.source_chat_id}",
                f"📅 First Message: {first_contact}",
                "",
                "💬 Messages from this group will appear here",
            ]
        else:
            lines = [
                "👤 Contact Information",
                "",
                f"📝 Name: {mapping.topic_name}",
                f"📱 Phone: {handle_for(mapping.source_chat_id)}",
                f"🖐️ Handle: {hint.display_name or 'Unknown'}",
                f"🆔 ID: {mapping.source_chat_id}",
                f"📅 First Contact: {first_contact}",
                "",
                "💬 Messages with this contact will appear here",
            ]
        return "\n".join(lines)

    # =========================================================================
    # Name Drift
    # =========================================================================

    async def record_contact(self, user_jid: str, push_name: Optional[str]) -> Optional[ContactMapping]:
        """
        Store a contact the first time a user is seen. Returns the new mapping,
        or None if the contact was already known or the id is not a user.

        Only the first sighting is written here; later name changes arrive as
        contact updates and go through sync_contact().
        """
        if is_group_jid(user_jid) or is_broadcast_jid(user_jid):
            return None
        if await self._store.get_contact(user_jid) is not None:
            return None

        handle = handle_for(user_jid)
        name = push_name.strip() if push_name and push_name.strip() != handle else None
        contact = await self._store.put_contact(
            ContactMapping(source_chat_id=user_jid, display_name=name or None, handle=handle)
        )
        log.info(f"New contact {user_jid}: {contact.effective_name()}")
        return contact

    async def sync_contact(self, source_chat_id: str, display_name: Optional[str], when: Optional[datetime] = None) -> None:
        """
        Record a contact's current display name and rename its topic if the
        name changed. The rename is best-effort; store errors propagate.
        """
        contact = ContactMapping(
            source_chat_id=source_chat_id,
            display_name=display_name,
            handle=handle_for(source_chat_id),
            last_synced=when or utc_now(),
        )
        await self._store.put_contact(contact)

        mapping = await self._store.get_chat(source_chat_id)
        if mapping is None:
            return
        new_name = self._clip(contact.effective_name(self.config.contact_stale_after_seconds))
        if new_name == mapping.topic_name:
            return
        await self.rename_topic(mapping, new_name)

    async def rename_topic(self, mapping: ChatMapping, new_name: str) -> bool:
        try:
            await call_with_timeout(
                self._destination.edit_topic(self.config.destination_group_id, mapping.destination_topic_id, new_name),
                self.config.api_timeout_seconds,
                context=f"rename topic {mapping.destination_topic_id}",
            )
        except BridgeException as e:
            record_topic_rename(False)
            log.warning(f"Topic rename {mapping.topic_name!r} -> {new_name!r} failed: {e}")
            return False

        record_topic_rename(True)
        log.info(f"Renamed topic {mapping.destination_topic_id}: {mapping.topic_name!r} -> {new_name!r}")
        try:
            await self._store.put_chat(mapping.model_copy(update={"topic_name": new_name}))
        except BridgeException as e:
            log.warning(f"Renamed topic {mapping.destination_topic_id} but could not store the name: {e}")
        return True

    # =========================================================================
    # Resync
    # =========================================================================

    async def resync(self, source_chat_id: str) -> ConversationState:
        """Re-read the mapping from the store, refresh the name and lift suspension."""
        self.resume(source_chat_id)
        mapping = await self._store.refresh_chat(source_chat_id)
        if mapping is not None and mapping.chat_type == ChatType.PRIVATE:
            profile = await self._lookup_profile(source_chat_id)
            if profile is not None and profile.display_name:
                await self.sync_contact(source_chat_id, profile.display_name)
        elif mapping is not None:
            profile = await self._lookup_profile(source_chat_id)
            if profile is not None and profile.display_name and profile.display_name != mapping.topic_name:
                await self.rename_topic(mapping, self._clip(profile.display_name))
        return self.state(source_chat_id)
