# =============================================================================
# File: topicbridge/bridge/ports/document_store_port.py
# Description: Port interface for the mapping document store
# Pattern: Hexagonal Architecture / Ports & Adapters
# =============================================================================

from __future__ import annotations

from typing import Protocol, Any, Dict, List, runtime_checkable


@runtime_checkable
class DocumentStorePort(Protocol):
    """
    Port: Document Store

    Defined by: MappingStore
    Implemented by: RedisDocumentStore (topicbridge/infra/persistence/redis_store.py)

    Collections are flat; each document is identified by a natural key.
    Both operations are idempotent on that key.
    """

    async def upsert(self, collection: str, key: str, document: Dict[str, Any]) -> None:
        """Insert or replace the document stored under key."""
        ...

    async def find(self, collection: str, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Documents whose fields equal every item of filter ({} returns all)."""
        ...
