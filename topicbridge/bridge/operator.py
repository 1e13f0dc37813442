# =============================================================================
# File: topicbridge/bridge/operator.py
# Description: Operator tooling surface (plain calls) and its chat commands module
# =============================================================================

from __future__ import annotations

from typing import Dict, Any, Optional, List

from topicbridge.bridge.controller import BridgeController
from topicbridge.bridge.enums import ConversationState
from topicbridge.bridge.envelope import MessageEnvelope
from topicbridge.bridge.mapping_store import MappingStore
from topicbridge.bridge.models import UserMapping
from topicbridge.bridge.modules import BridgeModule
from topicbridge.bridge.topic_manager import TopicManager
from topicbridge.common.exceptions.exceptions import MappingNotFoundError
from topicbridge.config.logging_config import get_logger

log = get_logger("topicbridge.bridge.operator")


class BridgeOperator:
    """Administrative operations, exposed as plain async calls."""

    def __init__(self, controller: BridgeController, topics: TopicManager, store: MappingStore):
        self._controller = controller
        self._topics = topics
        self._store = store

    def enable_bridge(self) -> bool:
        self._controller.enable()
        return self._controller.enabled

    def disable_bridge(self) -> bool:
        self._controller.disable()
        return self._controller.enabled

    async def resync_conversation(self, source_chat_id: str) -> ConversationState:
        """Lift suspension, reload the mapping from the store and refresh the topic name."""
        log.info(f"Operator resync of {source_chat_id}")
        return await self._topics.resync(source_chat_id)

    def suspend_conversation(self, source_chat_id: str, reason: str = "suspended by operator") -> bool:
        return self._topics.suspend(source_chat_id, reason)

    def resume_conversation(self, source_chat_id: str) -> bool:
        return self._topics.resume(source_chat_id)

    async def link_user(self, destination_user_id: int, source_chat_id: str) -> UserMapping:
        """Route private messages from a destination user to a source conversation."""
        if await self._store.get_chat(source_chat_id) is None:
            raise MappingNotFoundError(f"Conversation {source_chat_id} is not bridged")
        user = await self._store.put_user(
            UserMapping(destination_user_id=destination_user_id, source_chat_id=source_chat_id)
        )
        log.info(f"Linked destination user {destination_user_id} to {source_chat_id}")
        return user

    def mapping_counts(self) -> Dict[str, int]:
        return self._store.counts()

    def stats(self) -> Dict[str, Any]:
        return self._controller.stats()

    async def topic_conversation(self, topic_id: Optional[int]) -> Optional[str]:
        """Source conversation bridged into a topic, if exactly one."""
        if topic_id is None:
            return None
        mappings = await self._store.chats_for_topic(topic_id)
        return mappings[0].source_chat_id if len(mappings) == 1 else None


# =============================================================================
# Chat Commands
# =============================================================================

def operator_commands_module(operator: BridgeOperator) -> BridgeModule:
    """
    /bridge_status, /bridge_on, /bridge_off, /resync, /suspend, /resume.

    /resync, /suspend and /resume act on the conversation of the topic the
    command was typed in, or on the chat id given as first argument.
    """

    async def _target(envelope: MessageEnvelope, args: List[str]) -> Optional[str]:
        if args:
            return args[0]
        return await operator.topic_conversation(envelope.destination_topic_id)

    async def status(envelope: MessageEnvelope, args: List[str]) -> str:
        stats = operator.stats()
        counts = stats["mappings"]
        lines = [
            f"🔌 Bridge: {'enabled' if stats['enabled'] else 'disabled'}",
            f"💬 Chats: {counts['chats']}  👤 Contacts: {counts['contacts']}  🔗 Users: {counts['users']}",
            f"📬 Active queues: {stats['active_queues']}",
        ]
        if stats["suspended"]:
            lines.append(f"⛔ Suspended: {', '.join(stats['suspended'])}")
        return "\n".join(lines)

    async def bridge_on(envelope: MessageEnvelope, args: List[str]) -> str:
        operator.enable_bridge()
        return "✅ Bridge enabled"

    async def bridge_off(envelope: MessageEnvelope, args: List[str]) -> str:
        operator.disable_bridge()
        return "⏸️ Bridge disabled"

    async def resync(envelope: MessageEnvelope, args: List[str]) -> str:
        chat_id = await _target(envelope, args)
        if chat_id is None:
            return "Usage: /resync <chat id> (or use it inside a bridged topic)"
        state = await operator.resync_conversation(chat_id)
        return f"🔄 {chat_id}: {state.value}"

    async def suspend(envelope: MessageEnvelope, args: List[str]) -> str:
        chat_id = await _target(envelope, args)
        if chat_id is None:
            return "Usage: /suspend <chat id>"
        operator.suspend_conversation(chat_id)
        return f"⛔ {chat_id} suspended"

    async def resume(envelope: MessageEnvelope, args: List[str]) -> str:
        chat_id = await _target(envelope, args)
        if chat_id is None:
            return "Usage: /resume <chat id>"
        return f"▶️ {chat_id} resumed" if operator.resume_conversation(chat_id) else f"{chat_id} was not suspended"

    return BridgeModule(
        name="operator",
        commands={
            "bridge_status": status,
            "bridge_on": bridge_on,
            "bridge_off": bridge_off,
            "resync": resync,
            "suspend": suspend,
            "resume": resume,
        },
    )
