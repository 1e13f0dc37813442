# =============================================================================
# File: topicbridge/bridge/delivery_notifier.py
# Description: Success/failure markers and operator notices
# =============================================================================

from __future__ import annotations

import asyncio
import time
from typing import Optional, List, Tuple

from topicbridge.bridge.artifacts import TextContent
from topicbridge.bridge.ports.destination_platform_port import DestinationPlatformPort
from topicbridge.config.bridge_config import BridgeConfig
from topicbridge.config.logging_config import get_logger
from topicbridge.infra.reliability.retry import call_with_timeout

log = get_logger("topicbridge.bridge.delivery_notifier")


class DeliveryNotifier:
    """
    Attaches delivery markers to destination messages and raises operator
    notices.

    Markers are a native reaction, or an inline reply when the reaction
    cannot be set. Nothing raised here reaches the caller: the delivery
    outcome is already decided when a marker is attached.
    """

    def __init__(self, config: BridgeConfig, destination: DestinationPlatformPort):
        self.config = config
        self._destination = destination

        self._window_started: Optional[float] = None
        self._buffered: List[Tuple[str, str]] = []
        self._flush_task: Optional[asyncio.Task] = None

    # =========================================================================
    # Markers
    # =========================================================================

    async def mark_success(self, chat_id: int, message_id: int, topic_id: Optional[int] = None) -> bool:
        return await self._mark(chat_id, message_id, topic_id, self.config.success_reaction, None)

    async def mark_failure(
        self,
        chat_id: int,
        message_id: int,
        topic_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> bool:
        return await self._mark(chat_id, message_id, topic_id, self.config.failure_reaction, reason)

    async def _mark(self, chat_id: int, message_id: int, topic_id: Optional[int], emoji: str, reason: Optional[str]) -> bool:
        try:
            await call_with_timeout(
                self._destination.set_reaction(chat_id, message_id, emoji),
                self.config.api_timeout_seconds,
                context="set delivery marker",
            )
            if reason:
                await self.reply(chat_id, message_id, topic_id, f"{emoji} {reason}")
            return True
        except Exception as e:
            log.debug(f"Reaction marker on {chat_id}/{message_id} failed ({e}), replying inline")

        text = f"{emoji} {reason}" if reason else emoji
        return await self.reply(chat_id, message_id, topic_id, text)

    async def reply(self, chat_id: int, message_id: Optional[int], topic_id: Optional[int], text: str) -> bool:
        """Inline reply to a destination message. Failures are logged, not raised."""
        try:
            await call_with_timeout(
                self._destination.send(chat_id, topic_id, TextContent(text=text, reply_to_message_id=message_id)),
                self.config.api_timeout_seconds,
                context="send inline reply",
            )
            return True
        except Exception as e:
            log.warning(f"Could not reply to {chat_id}/{message_id}: {e}")
            return False

    # =========================================================================
    # Operator Notices
    # =========================================================================

    async def notify_operator(self, text: str) -> bool:
        """Post a message to the operator channel, if one is configured."""
        if not self.config.operator_channel_configured:
            log.warning(f"Operator notice (no channel configured): {text}")
            return False
        try:
            await call_with_timeout(
                self._destination.send(
                    self.config.operator_chat_id,
                    self.config.operator_topic_id,
                    TextContent(text=text),
                ),
                self.config.api_timeout_seconds,
                context="operator notice",
            )
            return True
        except Exception as e:
            log.error(f"Operator notice failed: {e}")
            return False

    async def report_suspension(self, source_chat_id: str, reason: str) -> None:
        """
        Raise a suspension notice. The first suspension in a window is sent
        at once; later ones in the same window are sent as one summary when
        the window closes.
        """
        now = time.monotonic()
        window = self.config.operator_notice_window_seconds
        if self._window_started is None or now - self._window_started >= window:
            self._window_started = now
            await self.notify_operator(f"⛔ Conversation suspended: {source_chat_id}\nReason: {reason}")
            return

        self._buffered.append((source_chat_id, reason))
        if self._flush_task is None or self._flush_task.done():
            delay = max(window - (now - self._window_started), 0.0)
            self._flush_task = asyncio.create_task(self._flush_after(delay))

    async def _flush_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.flush()

    async def flush(self) -> None:
        """Send buffered suspension notices as one aggregated message."""
        if not self._buffered:
            return
        entries, self._buffered = self._buffered, []
        self._window_started = time.monotonic()
        lines = [f"⛔ {len(entries)} more conversation(s) suspended:"]
        lines.extend(f"• {chat}: {reason}" for chat, reason in entries)
        await self.notify_operator("\n".join(lines))

    async def close(self) -> None:
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
        await self.flush()
