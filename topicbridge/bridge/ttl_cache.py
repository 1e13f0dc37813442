# =============================================================================
# File: topicbridge/bridge/ttl_cache.py
# Description: Size- and age-bounded insertion-ordered map
# =============================================================================

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Generic, TypeVar, Optional, Callable, Tuple

K = TypeVar("K")
V = TypeVar("V")


class BoundedTTLCache(Generic[K, V]):
    """
    Map whose entries expire after `ttl_seconds` and whose size never exceeds
    `max_size` (oldest entries are evicted first).
    """

    def __init__(self, ttl_seconds: float, max_size: int, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._data: OrderedDict[K, Tuple[float, V]] = OrderedDict()

    def _expire(self) -> None:
        cutoff = self._clock() - self._ttl
        while self._data:
            key, (stored_at, _) = next(iter(self._data.items()))
            if stored_at >= cutoff:
                break
            self._data.popitem(last=False)

    def put(self, key: K, value: V) -> None:
        self._expire()
        self._data.pop(key, None)
        self._data[key] = (self._clock(), value)
        while len(self._data) > self._max_size:
            self._data.popitem(last=False)

    def get(self, key: K) -> Optional[V]:
        self._expire()
        entry = self._data.get(key)
        return entry[1] if entry is not None else None

    def stored_at(self, key: K) -> Optional[float]:
        entry = self._data.get(key)
        return entry[0] if entry is not None else None

    def pop(self, key: K) -> Optional[V]:
        entry = self._data.pop(key, None)
        return entry[1] if entry is not None else None

    def __contains__(self, key: K) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        self._expire()
        return len(self._data)
