# =============================================================================
# File: topicbridge/infra/telegram/adapter.py
# Description: Telegram adapter implementing DestinationPlatformPort
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Optional, Dict, Any, Callable, Awaitable

from topicbridge.bridge.artifacts import (
    OutboundContent, TextContent, MediaContent, LocationContent, ContactContent, ReactionContent,
)
from topicbridge.bridge.enums import MessageKind
from topicbridge.bridge.envelope import DestinationUpdate
from topicbridge.common.exceptions.exceptions import BridgeException, PermanentConfigError, PermanentContentError
from topicbridge.config.logging_config import get_logger
from topicbridge.config.telegram_config import TelegramConfig, get_telegram_config
from topicbridge.infra.telegram.bot_client import TelegramBotClient, SendMessageResult

log = get_logger("topicbridge.telegram.adapter")

UpdateHandler = Callable[[DestinationUpdate], Awaitable[Any]]

# Telegram only plays Ogg/Opus as a voice note; anything else goes out as audio
VOICE_MIME_TYPES = ("audio/ogg", "audio/opus")


class TelegramAdapter:
    """
    Destination platform adapter (forum supergroup via the Bot API).

    Implements DestinationPlatformPort on top of TelegramBotClient and owns
    update ingress: webhook registration and the long-polling loop.

    Usage:
        adapter = TelegramAdapter()
        await adapter.initialize()

        topic_id = await adapter.create_topic(group_id, "Alice")
        message_id = await adapter.send(group_id, topic_id, TextContent(text="hi"))
    """

    def __init__(self, config: Optional[TelegramConfig] = None, bot_client: Optional[TelegramBotClient] = None):
        self.config = config or get_telegram_config()
        self._bot_client = bot_client
        self._initialized = False

    async def initialize(self) -> bool:
        """Initialize the Bot API client"""
        if self._initialized:
            return True

        if not self.config.bot_api_available:
            log.warning("Telegram bot token not configured, adapter disabled")
            return False

        if self._bot_client is None:
            self._bot_client = TelegramBotClient(self.config)
        if not await self._bot_client.initialize():
            log.error("Bot API client initialization failed")
            return False

        self._initialized = True
        log.info("Telegram adapter initialized")
        return True

    async def close(self) -> None:
        if self._bot_client:
            await self._bot_client.close()
        self._initialized = False
        log.info("Telegram adapter closed")

    @property
    def bot_client(self) -> Optional[TelegramBotClient]:
        return self._bot_client

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _client(self) -> TelegramBotClient:
        if self._bot_client is None or not self._initialized:
            raise PermanentConfigError("Telegram adapter not initialized")
        return self._bot_client

    # =========================================================================
    # DestinationPlatformPort
    # =========================================================================

    async def create_topic(self, group_id: int, name: str) -> int:
        result = await self._client().create_forum_topic(group_id, name)
        return result.unwrap()

    async def edit_topic(self, group_id: int, topic_id: int, name: str) -> None:
        result = await self._client().edit_forum_topic(group_id, topic_id, name)
        result.unwrap()

    async def send(self, group_id: int, topic_id: Optional[int], content: OutboundContent) -> int:
        client = self._client()

        if isinstance(content, TextContent):
            result = await client.send_message(
                group_id, content.text, topic_id=topic_id, reply_to_message_id=content.reply_to_message_id
            )
        elif isinstance(content, MediaContent):
            result = await self._send_media(client, group_id, topic_id, content)
        elif isinstance(content, LocationContent):
            result = await client.send_location(
                group_id, content.latitude, content.longitude,
                topic_id=topic_id, reply_to_message_id=content.reply_to_message_id,
            )
        elif isinstance(content, ContactContent):
            result = await client.send_contact(
                group_id, content.phone_number, content.display_name, vcard=content.vcard, topic_id=topic_id
            )
        elif isinstance(content, ReactionContent):
            await self.set_reaction(group_id, content.target_message_id, content.emoji)
            return content.target_message_id
        else:
            raise PermanentContentError(f"Unsupported outbound content {type(content).__name__}")

        return result.unwrap()

    async def _send_media(
        self,
        client: TelegramBotClient,
        chat_id: int,
        topic_id: Optional[int],
        content: MediaContent,
    ) -> SendMessageResult:
        common = dict(topic_id=topic_id, reply_to_message_id=content.reply_to_message_id)
        kind = content.kind

        if content.as_photo or kind == MessageKind.IMAGE:
            return await client.send_photo(chat_id, content.path, caption=content.caption, **common)

        if kind == MessageKind.VIDEO:
            if content.animation:
                return await client.send_animation(chat_id, content.path, caption=content.caption, **common)
            return await client.send_video(
                chat_id, content.path, caption=content.caption,
                duration=content.duration, width=content.width, height=content.height, **common,
            )

        if kind == MessageKind.VOICE and (content.mime_type or "").startswith(VOICE_MIME_TYPES):
            return await client.send_voice(
                chat_id, content.path, caption=content.caption, duration=content.duration, **common
            )

        if kind in (MessageKind.VOICE, MessageKind.AUDIO):
            return await client.send_audio(
                chat_id, content.path, caption=content.caption,
                duration=content.duration, file_name=content.file_name, **common,
            )

        if kind == MessageKind.STICKER:
            return await client.send_sticker(chat_id, content.path, **common)

        return await client.send_document(
            chat_id, content.path, caption=content.caption, file_name=content.file_name, **common
        )

    async def set_reaction(self, chat_id: int, message_id: int, emoji: str) -> None:
        result = await self._client().set_message_reaction(chat_id, message_id, emoji)
        result.unwrap()

    async def pin_message(self, chat_id: int, message_id: int) -> None:
        result = await self._client().pin_chat_message(chat_id, message_id)
        result.unwrap()

    async def get_file_link(self, file_id: str) -> str:
        return await self._client().get_file_url(file_id)

    # =========================================================================
    # Update Ingress
    # =========================================================================

    async def setup_webhook(self) -> bool:
        if not self._initialized:
            return False
        return await self._bot_client.setup_webhook()

    async def remove_webhook(self) -> bool:
        if not self._initialized:
            return False
        return await self._bot_client.remove_webhook()

    def parse_webhook_update(self, update_data: Dict[str, Any]) -> Optional[DestinationUpdate]:
        if not self._initialized:
            return None
        return self._bot_client.process_update(update_data)

    async def run_polling(self, handler: UpdateHandler, stop: asyncio.Event) -> None:
        """
        getUpdates long-polling loop. Runs until `stop` is set.

        The webhook is removed first, since Telegram refuses getUpdates
        while a webhook is registered.
        """
        if not self._initialized:
            log.warning("Polling requested but Telegram adapter is not initialized")
            return

        await self._bot_client.remove_webhook()
        offset: Optional[int] = None
        failures = 0
        log.info("Telegram polling started")

        while not stop.is_set():
            try:
                updates = await self._bot_client.get_updates(offset, self.config.polling_timeout)
                failures = 0
            except BridgeException as e:
                failures += 1
                delay = min(2 ** failures, 60)
                log.warning(f"getUpdates failed ({e}), retrying in {delay}s")
                try:
                    await asyncio.wait_for(stop.wait(), timeout=delay)
                except TimeoutError:
                    pass
                continue

            for update in updates:
                offset = update.update_id + 1
                parsed = TelegramBotClient.parse_update(update)
                if parsed is None:
                    continue
                try:
                    await handler(parsed)
                except Exception as e:
                    log.error(f"Update handler failed for update {update.update_id}: {e}", exc_info=True)

        log.info("Telegram polling stopped")
