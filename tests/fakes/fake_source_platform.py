# =============================================================================
# File: tests/fakes/fake_source_platform.py
# Description: Fake implementation of SourcePlatformPort for unit testing
# Pattern: Ports & Adapters - Fake/Stub adapter
# =============================================================================

from __future__ import annotations

import asyncio
import itertools
from typing import Optional, List, Dict, Any, AsyncIterator, Tuple

from topicbridge.bridge.artifacts import OutboundContent
from topicbridge.bridge.ports.source_platform_port import SourceProfile


def text_event(chat_id: str, origin_id: str, text: str, push_name: str = "Alice",
               from_me: bool = False, participant: Optional[str] = None, **extra) -> Dict[str, Any]:
    """Raw source event for a plain text message."""
    key = {"remoteJid": chat_id, "fromMe": from_me, "id": origin_id}
    if participant:
        key["participant"] = participant
    return {
        "key": key,
        "pushName": push_name,
        "messageTimestamp": 1_700_000_000,
        "message": {"conversation": text},
        **extra,
    }


def message_event(chat_id: str, origin_id: str, message: Dict[str, Any], push_name: str = "Alice",
                  from_me: bool = False, participant: Optional[str] = None) -> Dict[str, Any]:
    """Raw source event with an arbitrary message body."""
    key = {"remoteJid": chat_id, "fromMe": from_me, "id": origin_id}
    if participant:
        key["participant"] = participant
    return {
        "key": key,
        "pushName": push_name,
        "messageTimestamp": 1_700_000_000,
        "message": message,
    }


class FakeSourcePlatform:
    """
    In-memory source platform.

    Media payloads are registered per origin id with set_media(); the
    handle the bridge passes back is the raw event, whose key.id selects
    the payload. Streamed downloads record how many bytes were actually
    handed out, so tests can see an aborted transfer.
    """

    def __init__(self, supports_streaming: bool = True, chunk_size: int = 1024):
        self._supports_streaming = supports_streaming
        self.chunk_size = chunk_size

        self.sent: List[Tuple[str, OutboundContent]] = []
        self.media: Dict[str, bytes] = {}
        self.media_delays: Dict[str, float] = {}
        self.profiles: Dict[str, SourceProfile] = {}
        self.streamed_bytes: Dict[str, int] = {}
        self.download_calls: List[str] = []

        self._events: asyncio.Queue = asyncio.Queue()
        self._failures: Dict[str, List] = {}   # method -> [error, remaining calls or None]
        self._ids = itertools.count(1)

    # =========================================================================
    # Test Setup
    # =========================================================================

    def set_media(self, origin_id: str, payload: bytes, delay: float = 0.0) -> None:
        self.media[origin_id] = payload
        if delay:
            self.media_delays[origin_id] = delay

    def set_profile(self, chat_id: str, display_name: Optional[str], **kwargs) -> None:
        self.profiles[chat_id] = SourceProfile(chat_id=chat_id, display_name=display_name, **kwargs)

    def configure_failure(self, method: str, error: BaseException, times: Optional[int] = None) -> None:
        """Make a method raise `error`, on every call or on the next `times` calls."""
        self._failures[method] = [error, times]

    def clear_failure(self, method: str) -> None:
        self._failures.pop(method, None)

    def push(self, raw: Dict[str, Any]) -> None:
        self._events.put_nowait(raw)

    def end_stream(self) -> None:
        self._events.put_nowait(None)

    def _check_failure(self, method: str) -> None:
        failure = self._failures.get(method)
        if failure is None:
            return
        error, times = failure
        if times is not None:
            failure[1] = times - 1
            if failure[1] <= 0:
                del self._failures[method]
        raise error

    # =========================================================================
    # SourcePlatformPort
    # =========================================================================

    @property
    def supports_streaming(self) -> bool:
        return self._supports_streaming

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        while True:
            raw = await self._events.get()
            if raw is None:
                return
            yield raw

    async def send(self, chat_id: str, content: OutboundContent) -> str:
        self._check_failure("send")
        self.sent.append((chat_id, content))
        return f"SRC{next(self._ids)}"

    async def download_media(self, handle: Any) -> bytes:
        origin_id = self._origin(handle)
        self.download_calls.append(origin_id)
        self._check_failure("download_media")
        if origin_id in self.media_delays:
            await asyncio.sleep(self.media_delays[origin_id])
        return self.media[origin_id]

    async def stream_media(self, handle: Any) -> AsyncIterator[bytes]:
        origin_id = self._origin(handle)
        self.download_calls.append(origin_id)
        self._check_failure("stream_media")
        if origin_id in self.media_delays:
            await asyncio.sleep(self.media_delays[origin_id])
        payload = self.media[origin_id]
        self.streamed_bytes[origin_id] = 0
        for start in range(0, len(payload), self.chunk_size):
            chunk = payload[start:start + self.chunk_size]
            self.streamed_bytes[origin_id] += len(chunk)
            yield chunk

    async def get_profile(self, chat_id: str) -> SourceProfile:
        self._check_failure("get_profile")
        return self.profiles.get(chat_id) or SourceProfile(chat_id=chat_id)

    @staticmethod
    def _origin(handle: Any) -> str:
        if isinstance(handle, dict):
            return handle["key"]["id"]
        return str(handle)
