# =============================================================================
# File: topicbridge/infra/telegram/bot_client.py
# Description: Telegram Bot API client using python-telegram-bot 22.x
# =============================================================================

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List, Dict, Any

from telegram import Bot, Update, ReplyParameters
from telegram.error import TelegramError

from topicbridge.bridge.envelope import DestinationUpdate
from topicbridge.common.exceptions.exceptions import BridgeException, TransientError, PermanentConfigError
from topicbridge.config.logging_config import get_logger
from topicbridge.config.telegram_config import TelegramConfig
from topicbridge.infra.telegram.errors import classify_telegram_error
from topicbridge.infra.telegram.update_parser import parse_message

log = get_logger("topicbridge.telegram.bot_client")


@dataclass
class SendMessageResult:
    """Result of one Bot API call"""
    success: bool
    message_id: Optional[int] = None
    error: Optional[str] = None
    exception: Optional[BridgeException] = None

    def unwrap(self) -> Optional[int]:
        """Return the message id, or raise the classified failure."""
        if self.success:
            return self.message_id
        raise self.exception or TransientError(self.error or "Telegram call failed")


class TelegramBotClient:
    """
    Telegram Bot API client for the destination side of the bridge.

    Uses python-telegram-bot 22.x. Handles:
    - Forum topic creation and renaming
    - Sending text, media, locations and contacts into topics
    - Reactions and pins used as delivery markers and welcome cards
    - Webhook management and update parsing

    Every failed call is returned as a SendMessageResult carrying the
    exception already classified into the bridge taxonomy.
    """

    def __init__(self, config: TelegramConfig):
        self.config = config
        self._bot: Optional[Bot] = None
        self._initialized = False
        self._rate_limiter: Dict[int, List[float]] = {}  # chat_id -> send timestamps

    async def initialize(self) -> bool:
        """Initialize the bot client"""
        if self._initialized:
            return True

        try:
            base = self.config.api_base_url.rstrip("/")
            self._bot = Bot(
                token=self.config.bot_token.get_secret_value(),
                base_url=f"{base}/bot",
                base_file_url=f"{base}/file/bot",
            )
            await self._bot.initialize()

            me = await self._bot.get_me()
            log.info(f"Telegram bot initialized: @{me.username} (ID: {me.id})")

            self._initialized = True
            return True

        except Exception as e:
            log.error(f"Failed to initialize Telegram bot: {e}", exc_info=True)
            return False

    async def close(self) -> None:
        """Close the bot client"""
        if self._bot:
            await self._bot.shutdown()
            self._bot = None
            self._initialized = False
            log.info("Telegram bot client closed")

    @property
    def bot(self) -> Optional[Bot]:
        return self._bot

    @property
    def initialized(self) -> bool:
        return self._initialized

    @staticmethod
    def _normalize_chat_id(chat_id: int) -> int:
        """
        Normalize chat ID to Bot API format.

        Supergroups use -100{id}; a bare positive supergroup id (as shown by
        some clients) is converted. User ids are returned unchanged.
        """
        if chat_id < 0:
            return chat_id
        if chat_id > 1000000000:
            return -int(f"100{chat_id}")
        return chat_id

    def _not_ready(self) -> SendMessageResult:
        return SendMessageResult(
            success=False,
            error="Bot not initialized",
            exception=PermanentConfigError("Telegram bot not initialized"),
        )

    @staticmethod
    def _failure(action: str, error: Exception) -> SendMessageResult:
        classified = classify_telegram_error(error)
        log.warning(f"Telegram {action} failed: {error} -> {type(classified).__name__}")
        return SendMessageResult(success=False, error=str(error), exception=classified)

    # =========================================================================
    # Webhook Management
    # =========================================================================

    async def setup_webhook(self) -> bool:
        """Set up webhook for receiving updates"""
        if not self._initialized:
            log.error("Bot not initialized")
            return False

        if not self.config.webhook_url:
            log.warning("Webhook URL not configured")
            return False

        try:
            webhook_info = await self._bot.get_webhook_info()

            if webhook_info.url == self.config.full_webhook_url:
                log.info(f"Webhook already set to {self.config.full_webhook_url}")
                return True

            secret = self.config.webhook_secret.get_secret_value()
            await self._bot.set_webhook(
                url=self.config.full_webhook_url,
                secret_token=secret or None,
                allowed_updates=["message"],
                drop_pending_updates=False,
            )

            log.info(f"Webhook set to {self.config.full_webhook_url}")
            return True

        except TelegramError as e:
            log.error(f"Failed to set webhook: {e}", exc_info=True)
            return False

    async def remove_webhook(self) -> bool:
        """Remove webhook"""
        if not self._initialized:
            return False

        try:
            await self._bot.delete_webhook(drop_pending_updates=False)
            log.info("Webhook removed")
            return True
        except TelegramError as e:
            log.error(f"Failed to remove webhook: {e}", exc_info=True)
            return False

    def process_update(self, update_data: Dict[str, Any]) -> Optional[DestinationUpdate]:
        """
        Parse a webhook payload.

        Returns a DestinationUpdate for new messages, None for every other
        update type. Edits are not mirrored.
        """
        if not self._initialized:
            return None

        update = Update.de_json(update_data, self._bot)
        return self.parse_update(update)

    @staticmethod
    def parse_update(update: Update) -> Optional[DestinationUpdate]:
        if update is None or update.message is None:
            return None
        return parse_message(update.message)

    async def get_updates(self, offset: Optional[int], timeout: int) -> List[Update]:
        """Long-poll for updates (polling mode)."""
        try:
            return list(await self._bot.get_updates(
                offset=offset,
                timeout=timeout,
                allowed_updates=["message"],
            ))
        except TelegramError as e:
            raise classify_telegram_error(e) from e

    # =========================================================================
    # Forum Topics
    # =========================================================================

    async def create_forum_topic(self, chat_id: int, name: str) -> SendMessageResult:
        if not self._initialized:
            return self._not_ready()
        try:
            topic = await self._bot.create_forum_topic(chat_id=self._normalize_chat_id(chat_id), name=name)
            log.info(f"Created forum topic '{name}' (ID: {topic.message_thread_id})")
            return SendMessageResult(success=True, message_id=topic.message_thread_id)
        except TelegramError as e:
            return self._failure("create_forum_topic", e)

    async def edit_forum_topic(self, chat_id: int, topic_id: int, name: str) -> SendMessageResult:
        if not self._initialized:
            return self._not_ready()
        try:
            await self._bot.edit_forum_topic(
                chat_id=self._normalize_chat_id(chat_id),
                message_thread_id=topic_id,
                name=name,
            )
            return SendMessageResult(success=True, message_id=topic_id)
        except TelegramError as e:
            return self._failure("edit_forum_topic", e)

    # =========================================================================
    # Message Sending
    # =========================================================================

    async def send_message(
        self,
        chat_id: int,
        text: str,
        topic_id: Optional[int] = None,
        reply_to_message_id: Optional[int] = None,
        disable_notification: bool = False,
    ) -> SendMessageResult:
        """Send a plain text message (no parse mode: bridged text is sent verbatim)."""
        return await self._send(
            "send_message",
            chat_id,
            topic_id,
            reply_to_message_id,
            text=text,
            disable_notification=disable_notification,
        )

    async def send_photo(self, chat_id: int, path: str, caption: Optional[str] = None,
                         topic_id: Optional[int] = None, reply_to_message_id: Optional[int] = None) -> SendMessageResult:
        return await self._send("send_photo", chat_id, topic_id, reply_to_message_id, photo=Path(path), caption=caption)

    async def send_video(self, chat_id: int, path: str, caption: Optional[str] = None,
                         duration: Optional[int] = None, width: Optional[int] = None, height: Optional[int] = None,
                         topic_id: Optional[int] = None, reply_to_message_id: Optional[int] = None) -> SendMessageResult:
        return await self._send(
            "send_video", chat_id, topic_id, reply_to_message_id,
            video=Path(path), caption=caption, duration=duration, width=width, height=height,
            supports_streaming=True,
        )

    async def send_animation(self, chat_id: int, path: str, caption: Optional[str] = None,
                             topic_id: Optional[int] = None, reply_to_message_id: Optional[int] = None) -> SendMessageResult:
        return await self._send("send_animation", chat_id, topic_id, reply_to_message_id, animation=Path(path), caption=caption)

    async def send_audio(self, chat_id: int, path: str, caption: Optional[str] = None,
                         duration: Optional[int] = None, file_name: Optional[str] = None,
                         topic_id: Optional[int] = None, reply_to_message_id: Optional[int] = None) -> SendMessageResult:
        return await self._send(
            "send_audio", chat_id, topic_id, reply_to_message_id,
            audio=Path(path), caption=caption, duration=duration, filename=file_name,
        )

    async def send_voice(self, chat_id: int, path: str, caption: Optional[str] = None,
                         duration: Optional[int] = None,
                         topic_id: Optional[int] = None, reply_to_message_id: Optional[int] = None) -> SendMessageResult:
        return await self._send(
            "send_voice", chat_id, topic_id, reply_to_message_id,
            voice=Path(path), caption=caption, duration=duration,
        )

    async def send_document(self, chat_id: int, path: str, caption: Optional[str] = None,
                            file_name: Optional[str] = None,
                            topic_id: Optional[int] = None, reply_to_message_id: Optional[int] = None) -> SendMessageResult:
        return await self._send(
            "send_document", chat_id, topic_id, reply_to_message_id,
            document=Path(path), caption=caption, filename=file_name,
        )

    async def send_sticker(self, chat_id: int, path: str,
                           topic_id: Optional[int] = None, reply_to_message_id: Optional[int] = None) -> SendMessageResult:
        return await self._send("send_sticker", chat_id, topic_id, reply_to_message_id, sticker=Path(path))

    async def send_location(self, chat_id: int, latitude: float, longitude: float,
                            topic_id: Optional[int] = None, reply_to_message_id: Optional[int] = None) -> SendMessageResult:
        return await self._send(
            "send_location", chat_id, topic_id, reply_to_message_id,
            latitude=latitude, longitude=longitude,
        )

    async def send_contact(self, chat_id: int, phone_number: str, first_name: str, vcard: Optional[str] = None,
                           topic_id: Optional[int] = None) -> SendMessageResult:
        return await self._send(
            "send_contact", chat_id, topic_id, None,
            phone_number=phone_number, first_name=first_name, vcard=vcard,
        )

    async def _send(
        self,
        method: str,
        chat_id: int,
        topic_id: Optional[int],
        reply_to_message_id: Optional[int],
        **kwargs,
    ) -> SendMessageResult:
        if not self._initialized:
            return self._not_ready()

        normalized_chat_id = self._normalize_chat_id(chat_id)
        wait = self._rate_limit_wait(normalized_chat_id)
        if wait > 0:
            log.debug(f"Rate limit for chat {normalized_chat_id}, waiting {wait:.1f}s")
            await asyncio.sleep(wait)

        reply_parameters = None
        if reply_to_message_id is not None:
            reply_parameters = ReplyParameters(message_id=reply_to_message_id, allow_sending_without_reply=True)

        try:
            msg = await getattr(self._bot, method)(
                chat_id=normalized_chat_id,
                message_thread_id=topic_id,
                reply_parameters=reply_parameters,
                **kwargs,
            )
            self._record_message(normalized_chat_id)
            return SendMessageResult(success=True, message_id=msg.message_id)

        except TelegramError as e:
            return self._failure(method, e)

        except OSError as e:
            log.error(f"Failed to read upload for {method}: {e}")
            return SendMessageResult(success=False, error=str(e), exception=TransientError(f"Upload file unreadable: {e}"))

    # =========================================================================
    # Reactions & Pins
    # =========================================================================

    async def set_message_reaction(self, chat_id: int, message_id: int, emoji: str) -> SendMessageResult:
        if not self._initialized:
            return self._not_ready()
        try:
            await self._bot.set_message_reaction(
                chat_id=self._normalize_chat_id(chat_id),
                message_id=message_id,
                reaction=emoji,
            )
            return SendMessageResult(success=True, message_id=message_id)
        except TelegramError as e:
            return self._failure("set_message_reaction", e)

    async def pin_chat_message(self, chat_id: int, message_id: int) -> SendMessageResult:
        if not self._initialized:
            return self._not_ready()
        try:
            await self._bot.pin_chat_message(
                chat_id=self._normalize_chat_id(chat_id),
                message_id=message_id,
                disable_notification=True,
            )
            return SendMessageResult(success=True, message_id=message_id)
        except TelegramError as e:
            return self._failure("pin_chat_message", e)

    # =========================================================================
    # File Handling
    # =========================================================================

    async def get_file_url(self, file_id: str) -> str:
        """
        Full download URL for a file.

        PTB already returns an absolute link in File.file_path; a relative
        path (local Bot API server) is expanded with the configured base.
        """
        if not self._initialized:
            raise PermanentConfigError("Telegram bot not initialized")
        try:
            file = await self._bot.get_file(file_id)
        except TelegramError as e:
            raise classify_telegram_error(e) from e

        if not file.file_path:
            raise TransientError(f"Telegram returned no file_path for {file_id}")
        if file.file_path.startswith(("http://", "https://")):
            return file.file_path
        return self.config.file_download_url(file.file_path)

    # =========================================================================
    # Rate Limiting
    # =========================================================================

    def _rate_limit_wait(self, chat_id: int) -> float:
        """Seconds until another message may be sent to this chat (0 if now)."""
        window_start = time.monotonic() - 60
        stamps = [ts for ts in self._rate_limiter.get(chat_id, []) if ts > window_start]
        self._rate_limiter[chat_id] = stamps

        if len(stamps) < self.config.messages_per_chat_per_minute:
            return 0.0
        return max(stamps[0] - window_start, 0.1)

    def _record_message(self, chat_id: int) -> None:
        self._rate_limiter.setdefault(chat_id, []).append(time.monotonic())
