# =============================================================================
# File: topicbridge/bridge/reply_index.py
# Description: Bounded map between destination message ids and source origin ids
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from topicbridge.bridge.ttl_cache import BoundedTTLCache


@dataclass(frozen=True)
class ReplyTarget:
    origin_id: str
    source_chat_id: str
    # Status items only: the account that posted the status
    participant: Optional[str] = None


class ReplyIndex:
    """
    destination_message_id -> (origin_id, source_chat_id), plus the reverse
    lookup, retained for a limited window.

    Lets a reply typed in a topic quote the right source message, and lets
    source replies/reactions point at the right topic message.
    """

    def __init__(self, ttl_seconds: int, max_size: int):
        self._by_destination: BoundedTTLCache[int, ReplyTarget] = BoundedTTLCache(ttl_seconds, max_size)
        self._by_origin: BoundedTTLCache[str, int] = BoundedTTLCache(ttl_seconds, max_size)

    def record(
        self, destination_message_id: int, origin_id: str, source_chat_id: str, participant: Optional[str] = None
    ) -> None:
        self._by_destination.put(destination_message_id, ReplyTarget(origin_id, source_chat_id, participant))
        # First artifact of a multi-step emit stays the canonical target
        origin_key = f"{source_chat_id}:{origin_id}"
        if self._by_origin.get(origin_key) is None:
            self._by_origin.put(origin_key, destination_message_id)

    def source_for(self, destination_message_id: int) -> Optional[ReplyTarget]:
        return self._by_destination.get(destination_message_id)

    def destination_for(self, source_chat_id: str, origin_id: str) -> Optional[int]:
        return self._by_origin.get(f"{source_chat_id}:{origin_id}")

    def __len__(self) -> int:
        return len(self._by_destination)
