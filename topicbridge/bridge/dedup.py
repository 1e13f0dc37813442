# =============================================================================
# File: topicbridge/bridge/dedup.py
# Description: Replay protection for inbound events
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from topicbridge.bridge.ttl_cache import BoundedTTLCache


@dataclass
class DeduplicationResult:
    """Result of deduplication check."""
    is_duplicate: bool
    first_seen_at: Optional[float] = None


class MessageDeduplicator:
    """
    In-memory event deduplication with TTL and a size bound.

    Keys are opaque strings, e.g. MessageEnvelope.dedup_key
    ("src:<chat>:<origin id>") or a webhook update id.
    """

    def __init__(self, ttl_seconds: int = 3600, max_size: int = 20000):
        self._seen: BoundedTTLCache[str, bool] = BoundedTTLCache(ttl_seconds, max_size)

    def check_and_mark(self, key: str) -> DeduplicationResult:
        """Check if the key was seen within the window, and mark it as seen."""
        if key in self._seen:
            return DeduplicationResult(is_duplicate=True, first_seen_at=self._seen.stored_at(key))
        self._seen.put(key, True)
        return DeduplicationResult(is_duplicate=False, first_seen_at=self._seen.stored_at(key))

    def forget(self, key: str) -> None:
        """Allow a key to be processed again (used when an event was never accepted)."""
        self._seen.pop(key)

    def __len__(self) -> int:
        return len(self._seen)
