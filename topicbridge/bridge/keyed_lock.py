# =============================================================================
# File: topicbridge/bridge/keyed_lock.py
# Description: Per-key asyncio lock with reference-counted entries
# =============================================================================

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, AsyncIterator


class _LockEntry:
    __slots__ = ("lock", "refs")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.refs = 0


class KeyedLock:
    """
    One asyncio.Lock per key.

    An entry exists only while some task holds or waits for it, so the map
    does not grow with the number of keys ever seen.
    """

    def __init__(self):
        self._entries: Dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _LockEntry()
        entry.refs += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.refs -= 1
            if entry.refs == 0:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)
