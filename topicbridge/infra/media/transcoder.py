# =============================================================================
# File: topicbridge/infra/media/transcoder.py
# Description: ffmpeg and Pillow conversions used by the media pipeline
# =============================================================================

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import List

from PIL import Image, UnidentifiedImageError

from topicbridge.common.exceptions.exceptions import TranscodeError
from topicbridge.config.logging_config import get_logger
from topicbridge.infra.metrics.bridge_metrics import bridge_transcode_seconds

log = get_logger("topicbridge.infra.media.transcoder")


class MediaTranscoder:
    """
    Converts media files on disk.

    - Voice notes -> Ogg/Opus, mono, fixed sample rate
    - Video notes -> H.264/AAC MP4 (regular video container)
    - Stickers -> static PNG
    """

    def __init__(
        self,
        ffmpeg_binary: str = "ffmpeg",
        voice_sample_rate: int = 16000,
        voice_bitrate: str = "32k",
        timeout: float = 120.0,
    ):
        self.ffmpeg_binary = ffmpeg_binary
        self.voice_sample_rate = voice_sample_rate
        self.voice_bitrate = voice_bitrate
        self.timeout = timeout

    async def to_voice(self, src: Path, dst: Path) -> Path:
        """Normalize any audio into single-channel Opus in an Ogg container."""
        await self._run_ffmpeg([
            "-i", str(src),
            "-vn",
            "-ac", "1",
            "-ar", str(self.voice_sample_rate),
            "-c:a", "libopus",
            "-b:a", self.voice_bitrate,
            "-f", "ogg",
            str(dst),
        ], target="voice")
        return dst

    async def to_standard_video(self, src: Path, dst: Path) -> Path:
        """Re-encode a round video note into a plain MP4."""
        await self._run_ffmpeg([
            "-i", str(src),
            "-c:v", "libx264",
            "-preset", "veryfast",
            "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            "-movflags", "+faststart",
            "-f", "mp4",
            str(dst),
        ], target="video_note")
        return dst

    async def to_png(self, src: Path, dst: Path) -> Path:
        """Render the first frame of a (possibly animated) WebP sticker as PNG."""
        started = time.monotonic()
        try:
            await asyncio.to_thread(self._convert_png, src, dst)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise TranscodeError(f"Sticker conversion failed: {e}") from e
        bridge_transcode_seconds.labels(target="sticker_png").observe(time.monotonic() - started)
        return dst

    @staticmethod
    def _convert_png(src: Path, dst: Path) -> None:
        with Image.open(src) as image:
            image.seek(0)
            image.convert("RGBA").save(dst, format="PNG")

    async def _run_ffmpeg(self, args: List[str], target: str) -> None:
        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                self.ffmpeg_binary, "-hide_banner", "-loglevel", "error", "-y", *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TranscodeError(f"ffmpeg not found: {self.ffmpeg_binary}") from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            await self._reap(proc)
            raise TranscodeError(f"ffmpeg {target} timed out after {self.timeout:.0f}s") from e
        except BaseException:
            # Cancellation must not leave ffmpeg running
            await self._reap(proc)
            raise

        if proc.returncode != 0:
            err = stderr.decode("utf-8", errors="replace") if stderr else ""
            raise TranscodeError(f"ffmpeg {target} failed (rc={proc.returncode}): {err[:200]}")

        elapsed = time.monotonic() - started
        bridge_transcode_seconds.labels(target=target).observe(elapsed)
        log.debug(f"ffmpeg {target} finished in {elapsed:.2f}s")

    @staticmethod
    async def _reap(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        await proc.wait()
