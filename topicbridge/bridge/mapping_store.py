# =============================================================================
# File: topicbridge/bridge/mapping_store.py
# Description: Chat/contact/user mappings over a document store with a read cache
# =============================================================================

from __future__ import annotations

from typing import Optional, Dict, List

from topicbridge.bridge.models import (
    ChatMapping, ContactMapping, UserMapping,
    CHAT_MAPPINGS, CONTACT_MAPPINGS, USER_MAPPINGS,
)
from topicbridge.bridge.ports.document_store_port import DocumentStorePort
from topicbridge.config.logging_config import get_logger
from topicbridge.infra.reliability.retry import call_with_timeout

log = get_logger("topicbridge.bridge.mapping_store")


class MappingStore:
    """
    Mapping persistence with an in-memory read cache.

    The document store is the system of record. The cache only ever receives
    a document after the store accepted it, so a failed write leaves the
    cache untouched.
    """

    def __init__(self, store: DocumentStorePort, timeout: Optional[float] = None):
        self._store = store
        self._timeout = timeout
        self._chats: Dict[str, ChatMapping] = {}
        self._contacts: Dict[str, ContactMapping] = {}
        self._users: Dict[int, UserMapping] = {}

    async def load(self) -> None:
        """Warm the cache from the store."""
        for doc in await self._find(CHAT_MAPPINGS, {}):
            mapping = ChatMapping.from_document(doc)
            if mapping.active:
                self._chats[mapping.source_chat_id] = mapping
        for doc in await self._find(CONTACT_MAPPINGS, {}):
            contact = ContactMapping.from_document(doc)
            self._contacts[contact.source_chat_id] = contact
        for doc in await self._find(USER_MAPPINGS, {}):
            user = UserMapping.from_document(doc)
            self._users[user.destination_user_id] = user
        log.info(
            f"Mapping cache loaded: {len(self._chats)} chats, "
            f"{len(self._contacts)} contacts, {len(self._users)} users"
        )

    # =========================================================================
    # Chat Mappings
    # =========================================================================

    async def get_chat(self, source_chat_id: str) -> Optional[ChatMapping]:
        """Active mapping for a source chat (cache first, then store)."""
        cached = self._chats.get(source_chat_id)
        if cached is not None:
            return cached
        return await self.refresh_chat(source_chat_id)

    async def refresh_chat(self, source_chat_id: str) -> Optional[ChatMapping]:
        """Re-read the mapping from the store, bypassing the cache."""
        docs = await self._find(CHAT_MAPPINGS, {"source_chat_id": source_chat_id, "active": True})
        if not docs:
            self._chats.pop(source_chat_id, None)
            return None
        # One document per key; sorting keeps the earliest if a store ever returns more
        mappings = sorted((ChatMapping.from_document(d) for d in docs), key=lambda m: m.created_at)
        self._chats[source_chat_id] = mappings[0]
        return mappings[0]

    def cached_chat(self, source_chat_id: str) -> Optional[ChatMapping]:
        return self._chats.get(source_chat_id)

    async def put_chat(self, mapping: ChatMapping) -> ChatMapping:
        await self._upsert(CHAT_MAPPINGS, mapping.key, mapping.to_document())
        if mapping.active:
            self._chats[mapping.source_chat_id] = mapping
        else:
            self._chats.pop(mapping.source_chat_id, None)
        return mapping

    async def chats_for_topic(self, topic_id: int) -> List[ChatMapping]:
        """Active mappings pointing at a destination topic."""
        cached = [m for m in self._chats.values() if m.destination_topic_id == topic_id]
        if cached:
            return cached
        docs = await self._find(CHAT_MAPPINGS, {"destination_topic_id": topic_id, "active": True})
        mappings = [ChatMapping.from_document(d) for d in docs]
        for mapping in mappings:
            self._chats[mapping.source_chat_id] = mapping
        return mappings

    async def touch_chat(self, source_chat_id: str) -> None:
        """Advance activity counters of an existing mapping."""
        mapping = self._chats.get(source_chat_id)
        if mapping is None:
            return
        await self.put_chat(mapping.touched())

    # =========================================================================
    # Contact Mappings
    # =========================================================================

    async def get_contact(self, source_chat_id: str) -> Optional[ContactMapping]:
        cached = self._contacts.get(source_chat_id)
        if cached is not None:
            return cached
        docs = await self._find(CONTACT_MAPPINGS, {"source_chat_id": source_chat_id})
        if not docs:
            return None
        contact = ContactMapping.from_document(docs[0])
        self._contacts[source_chat_id] = contact
        return contact

    async def put_contact(self, contact: ContactMapping) -> ContactMapping:
        await self._upsert(CONTACT_MAPPINGS, contact.key, contact.to_document())
        self._contacts[contact.source_chat_id] = contact
        return contact

    # =========================================================================
    # User Mappings
    # =========================================================================

    async def get_user(self, destination_user_id: int) -> Optional[UserMapping]:
        cached = self._users.get(destination_user_id)
        if cached is not None:
            return cached
        docs = await self._find(USER_MAPPINGS, {"destination_user_id": destination_user_id})
        if not docs:
            return None
        user = UserMapping.from_document(docs[0])
        self._users[destination_user_id] = user
        return user

    async def put_user(self, user: UserMapping) -> UserMapping:
        await self._upsert(USER_MAPPINGS, user.key, user.to_document())
        self._users[user.destination_user_id] = user
        return user

    # =========================================================================
    # Stats
    # =========================================================================

    def counts(self) -> Dict[str, int]:
        return {
            "chats": len(self._chats),
            "contacts": len(self._contacts),
            "users": len(self._users),
        }

    # =========================================================================
    # Store Access
    # =========================================================================

    async def _upsert(self, collection: str, key: str, document: dict) -> None:
        await call_with_timeout(
            self._store.upsert(collection, key, document),
            self._timeout,
            context=f"store upsert {collection}/{key}",
        )

    async def _find(self, collection: str, filter: dict) -> List[dict]:
        return await call_with_timeout(
            self._store.find(collection, filter),
            self._timeout,
            context=f"store find {collection}",
        )
