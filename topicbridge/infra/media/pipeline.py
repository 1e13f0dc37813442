# =============================================================================
# File: topicbridge/infra/media/pipeline.py
# Description: Media fetch -> transcode -> publish with scoped temp storage
# =============================================================================
# Every pipeline invocation runs inside `MediaPipeline.session()`, which owns
# one scratch directory. All fetched and converted files live there and the
# directory is removed when the session exits, whatever the outcome.
# =============================================================================

from __future__ import annotations

import mimetypes
import os
import tempfile
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Any, AsyncIterator

import aiofiles
import aiofiles.os
import httpx

from topicbridge.bridge.artifacts import MediaContent, DeliveryResult
from topicbridge.bridge.enums import MessageKind, Direction
from topicbridge.bridge.envelope import MediaRef
from topicbridge.bridge.ports.destination_platform_port import DestinationPlatformPort
from topicbridge.bridge.ports.source_platform_port import SourcePlatformPort
from topicbridge.common.exceptions.exceptions import (
    MediaTooLargeError,
    PermanentContentError,
    TranscodeError,
    TransientError,
)
from topicbridge.config.bridge_config import BridgeConfig
from topicbridge.config.logging_config import get_logger
from topicbridge.infra.media.transcoder import MediaTranscoder
from topicbridge.infra.metrics.bridge_metrics import record_media_bytes, record_media_rejected
from topicbridge.infra.reliability.retry import call_with_timeout

log = get_logger("topicbridge.infra.media.pipeline")

DEFAULT_EXTENSIONS = {
    MessageKind.IMAGE: ".jpg",
    MessageKind.VIDEO: ".mp4",
    MessageKind.AUDIO: ".mp3",
    MessageKind.VOICE: ".ogg",
    MessageKind.STICKER: ".webp",
    MessageKind.DOCUMENT: ".bin",
}


@dataclass
class MediaBlob:
    """A media payload materialized on local disk"""
    path: Path
    kind: MessageKind
    size: int
    mime_type: Optional[str] = None
    file_name: Optional[str] = None
    duration: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    is_video_note: bool = False
    gif_playback: bool = False
    as_photo: bool = False


@dataclass
class CaptionMeta:
    caption: Optional[str] = None
    reply_to_message_id: Optional[Any] = None


class MediaSession:
    """One pipeline invocation. Files it creates live in `workdir` only."""

    def __init__(self, pipeline: MediaPipeline, workdir: Path):
        self._pipeline = pipeline
        self.workdir = workdir

    def new_path(self, suffix: str) -> Path:
        return self.workdir / f"{uuid.uuid4().hex[:12]}{suffix}"

    # =========================================================================
    # Fetch
    # =========================================================================

    async def fetch(self, ref: MediaRef, direction: Direction) -> MediaBlob:
        """
        Materialize a media reference into the session directory.

        The declared size is checked before any transfer; streamed transfers
        abort as soon as the running byte count passes the ceiling.
        """
        config = self._pipeline.config
        limit = config.limit_for(ref.kind.value)
        if ref.declared_size is not None and ref.declared_size > limit:
            record_media_rejected(ref.kind.value, "too_large")
            raise MediaTooLargeError(ref.kind.value, ref.declared_size, limit)

        path = self.new_path(_extension_for(ref))
        if direction == Direction.TO_DESTINATION:
            fetch = self._fetch_from_source(ref, path, limit)
        else:
            fetch = self._fetch_from_destination(ref, path, limit)

        size = await call_with_timeout(
            fetch, config.download_timeout_seconds, context=f"download {ref.kind.value}"
        )
        record_media_bytes(direction.value, ref.kind.value, size)

        return MediaBlob(
            path=path,
            kind=ref.kind,
            size=size,
            mime_type=ref.mime_type,
            file_name=ref.file_name,
            duration=ref.duration,
            width=ref.width,
            height=ref.height,
            is_video_note=ref.is_video_note,
            gif_playback=ref.gif_playback,
        )

    async def _fetch_from_source(self, ref: MediaRef, path: Path, limit: int) -> int:
        source = self._pipeline.source
        if source.supports_streaming:
            return await self._write_stream(source.stream_media(ref.handle), path, ref.kind, limit)

        payload = await source.download_media(ref.handle)
        if len(payload) > limit:
            record_media_rejected(ref.kind.value, "too_large")
            raise MediaTooLargeError(ref.kind.value, len(payload), limit)
        async with aiofiles.open(path, "wb") as f:
            await f.write(payload)
        return len(payload)

    async def _fetch_from_destination(self, ref: MediaRef, path: Path, limit: int) -> int:
        url = await self._pipeline.destination.get_file_link(str(ref.handle))
        client = self._pipeline.http_client
        try:
            async with client.stream("GET", url) as response:
                if response.status_code >= 500 or response.status_code == 429:
                    raise TransientError(f"File download returned HTTP {response.status_code}")
                if response.status_code >= 400:
                    raise PermanentContentError(f"File download returned HTTP {response.status_code}")

                content_length = response.headers.get("content-length")
                if content_length and content_length.isdigit() and int(content_length) > limit:
                    record_media_rejected(ref.kind.value, "too_large")
                    raise MediaTooLargeError(ref.kind.value, int(content_length), limit)

                chunks = response.aiter_bytes(self._pipeline.config.stream_chunk_size)
                return await self._write_stream(chunks, path, ref.kind, limit)
        except httpx.TransportError as e:
            raise TransientError(f"File download failed: {e}") from e

    async def _write_stream(
        self,
        chunks: AsyncIterator[bytes],
        path: Path,
        kind: MessageKind,
        limit: int,
    ) -> int:
        written = 0
        async with aiofiles.open(path, "wb") as f:
            async for chunk in chunks:
                written += len(chunk)
                if written > limit:
                    record_media_rejected(kind.value, "too_large")
                    raise MediaTooLargeError(kind.value, written, limit)
                await f.write(chunk)
        return written

    # =========================================================================
    # Transcode
    # =========================================================================

    async def transcode(self, blob: MediaBlob, kind_hint: MessageKind) -> MediaBlob:
        """
        Apply the transcoding policy for a kind.

        Voice notes become mono Opus/Ogg (the original is kept if conversion
        fails). Video notes become a regular MP4. Other kinds pass through;
        stickers are only converted if native delivery fails (see publish).
        """
        transcoder = self._pipeline.transcoder

        if kind_hint == MessageKind.VOICE:
            dst = self.new_path(".ogg")
            try:
                await transcoder.to_voice(blob.path, dst)
            except TranscodeError as e:
                log.warning(f"Voice transcode failed, sending original: {e}")
                return blob
            return replace(blob, path=dst, size=_size(dst), mime_type="audio/ogg", file_name=None)

        if kind_hint == MessageKind.VIDEO and blob.is_video_note:
            dst = self.new_path(".mp4")
            try:
                await transcoder.to_standard_video(blob.path, dst)
            except TranscodeError:
                record_media_rejected(blob.kind.value, "transcode_failed")
                raise
            return replace(blob, path=dst, size=_size(dst), mime_type="video/mp4", is_video_note=False)

        return blob

    # =========================================================================
    # Publish
    # =========================================================================

    async def publish(self, blob: MediaBlob, topic_id: Optional[int], meta: CaptionMeta) -> DeliveryResult:
        """Upload a blob into a destination topic."""
        pipeline = self._pipeline
        group_id = pipeline.config.destination_group_id

        if blob.kind == MessageKind.STICKER and not blob.as_photo:
            try:
                message_id = await self._send_destination(group_id, topic_id, blob, meta)
                return DeliveryResult(success=True, message_ids=[message_id])
            except PermanentContentError as e:
                log.info(f"Native sticker rejected ({e}), falling back to static image")
                png = self.new_path(".png")
                await pipeline.transcoder.to_png(blob.path, png)
                blob = replace(blob, path=png, size=_size(png), mime_type="image/png", as_photo=True)

        message_id = await self._send_destination(group_id, topic_id, blob, meta)
        return DeliveryResult(success=True, message_ids=[message_id])

    async def publish_to_source(self, blob: MediaBlob, source_chat_id: str, meta: CaptionMeta) -> DeliveryResult:
        """Upload a blob into a source conversation."""
        message_id = await call_with_timeout(
            self._pipeline.source.send(source_chat_id, _content_for(blob, meta)),
            self._pipeline.config.upload_timeout_seconds,
            context=f"upload {blob.kind.value} to source",
        )
        return DeliveryResult(success=True, message_ids=[message_id])

    async def _send_destination(self, group_id: int, topic_id: Optional[int], blob: MediaBlob, meta: CaptionMeta):
        return await call_with_timeout(
            self._pipeline.destination.send(group_id, topic_id, _content_for(blob, meta)),
            self._pipeline.config.upload_timeout_seconds,
            context=f"upload {blob.kind.value} to topic {topic_id}",
        )


class MediaPipeline:
    """
    Factory for media sessions plus the shared collaborators they use.

    Usage:
        async with pipeline.session() as media:
            blob = await media.fetch(ref, Direction.TO_DESTINATION)
            blob = await media.transcode(blob, ref.kind)
            result = await media.publish(blob, topic_id, CaptionMeta(caption="hi"))
    """

    def __init__(
        self,
        config: BridgeConfig,
        source: SourcePlatformPort,
        destination: DestinationPlatformPort,
        transcoder: Optional[MediaTranscoder] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.source = source
        self.destination = destination
        self.transcoder = transcoder or MediaTranscoder(
            ffmpeg_binary=config.ffmpeg_binary,
            voice_sample_rate=config.voice_sample_rate,
            voice_bitrate=config.voice_bitrate,
            timeout=config.transcode_timeout_seconds,
        )
        self._http_client = http_client
        self._active_sessions = 0

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.download_timeout_seconds, connect=10.0),
                follow_redirects=True,
            )
        return self._http_client

    @property
    def active_sessions(self) -> int:
        return self._active_sessions

    @asynccontextmanager
    async def session(self) -> AsyncIterator[MediaSession]:
        if self.config.temp_dir:
            os.makedirs(self.config.temp_dir, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix="topicbridge-", dir=self.config.temp_dir))
        self._active_sessions += 1
        try:
            yield MediaSession(self, workdir)
        finally:
            self._active_sessions -= 1
            await _remove_tree(workdir)

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


# =============================================================================
# Helpers
# =============================================================================

def _content_for(blob: MediaBlob, meta: CaptionMeta) -> MediaContent:
    return MediaContent(
        kind=blob.kind,
        path=str(blob.path),
        caption=meta.caption,
        file_name=blob.file_name,
        mime_type=blob.mime_type,
        duration=blob.duration,
        width=blob.width,
        height=blob.height,
        as_photo=blob.as_photo,
        animation=blob.gif_playback,
        reply_to_message_id=meta.reply_to_message_id,
    )


def _extension_for(ref: MediaRef) -> str:
    if ref.file_name and "." in ref.file_name:
        return Path(ref.file_name).suffix.lower()
    if ref.mime_type:
        guessed = mimetypes.guess_extension(ref.mime_type.split(";")[0].strip())
        if guessed:
            return guessed
    return DEFAULT_EXTENSIONS.get(ref.kind, ".bin")


def _size(path: Path) -> int:
    return path.stat().st_size


async def _remove_tree(workdir: Path) -> None:
    """Delete the flat session directory and everything in it."""
    try:
        for name in await aiofiles.os.listdir(workdir):
            await aiofiles.os.remove(workdir / name)
        await aiofiles.os.rmdir(workdir)
    except FileNotFoundError:
        pass
    except OSError as e:
        log.error(f"Failed to clean media scratch dir {workdir}: {e}")
