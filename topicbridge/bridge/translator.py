# =============================================================================
# File: topicbridge/bridge/translator.py
# Description: Raw event <-> MessageEnvelope normalization and artifact emission
# =============================================================================

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Callable, Awaitable

from topicbridge.bridge.artifacts import (
    TextContent, LocationContent, ContactContent, DeliveryResult,
)
from topicbridge.bridge.enums import MessageKind, Direction
from topicbridge.bridge.envelope import (
    MessageEnvelope, MediaRef, LocationData, ContactCard, ReactionData,
    PendingDelivery, DestinationUpdate,
)
from topicbridge.bridge.jid import is_group_jid, handle_for, STATUS_BROADCAST
from topicbridge.bridge.ports.destination_platform_port import DestinationPlatformPort
from topicbridge.bridge.ports.source_platform_port import SourcePlatformPort
from topicbridge.bridge.reply_index import ReplyIndex
from topicbridge.common.exceptions.exceptions import MediaTooLargeError, PermanentContentError
from topicbridge.config.bridge_config import BridgeConfig
from topicbridge.config.logging_config import get_logger
from topicbridge.infra.media.pipeline import MediaPipeline, CaptionMeta
from topicbridge.infra.reliability.retry import call_with_timeout

log = get_logger("topicbridge.bridge.translator")

SENDER_PREFIX = "👤"
SPOILER_MARK = "🫥"
MAX_CAPTION = 1024
MAX_TEXT = 4096

# Container messages whose payload sits one level down
WRAPPER_KEYS = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "viewOnceMessageV2Extension",
    "documentWithCaptionMessage",
    "editedMessage",
)

# Message keys that carry no user-visible content
IGNORED_KEYS = frozenset({
    "protocolMessage",
    "senderKeyDistributionMessage",
    "messageContextInfo",
})

UNSUPPORTED_LABELS = {
    "pollCreationMessage": "poll",
    "pollCreationMessageV2": "poll",
    "pollCreationMessageV3": "poll",
    "pollUpdateMessage": "poll vote",
    "liveLocationMessage": "live location",
    "call": "call",
    "callLogMessage": "call",
    "groupInviteMessage": "group invite",
    "productMessage": "product",
    "orderMessage": "order",
    "eventMessage": "event",
    "buttonsMessage": "buttons",
    "listMessage": "list",
    "templateMessage": "template",
    "interactiveMessage": "interactive message",
}

VCARD_TEL = re.compile(r"^TEL[^:]*:(.+)$", re.MULTILINE)

StepRunner = Callable[[], Awaitable[Any]]


@dataclass
class Step:
    """One outbound artifact of an emit sequence"""
    name: str
    run: StepRunner


class MessageTranslator:
    """
    Normalizes inbound events into envelopes and emits each envelope as
    exactly one outbound artifact (or a short fixed sequence for locations).

    Emission is resumable: every artifact is a named step, and steps already
    recorded on the PendingDelivery are skipped on retry.
    """

    def __init__(
        self,
        config: BridgeConfig,
        source: SourcePlatformPort,
        destination: DestinationPlatformPort,
        pipeline: MediaPipeline,
        reply_index: ReplyIndex,
    ):
        self.config = config
        self._source = source
        self._destination = destination
        self._pipeline = pipeline
        self._reply_index = reply_index

        self._to_destination: Dict[MessageKind, Callable[[MessageEnvelope, int], List[Step]]] = {
            MessageKind.TEXT: self._text_steps,
            MessageKind.IMAGE: self._media_steps,
            MessageKind.VIDEO: self._media_steps,
            MessageKind.AUDIO: self._media_steps,
            MessageKind.VOICE: self._media_steps,
            MessageKind.DOCUMENT: self._media_steps,
            MessageKind.STICKER: self._media_steps,
            MessageKind.LOCATION: self._location_steps,
            MessageKind.CONTACT: self._contact_steps,
            MessageKind.REACTION: self._reaction_steps,
            MessageKind.UNSUPPORTED: self._placeholder_steps,
        }
        missing = set(MessageKind) - set(self._to_destination)
        if missing:
            raise RuntimeError(f"No emit handler for kinds: {sorted(k.value for k in missing)}")

    # =========================================================================
    # Normalization: source platform
    # =========================================================================

    def normalize(self, raw: Dict[str, Any]) -> Optional[MessageEnvelope]:
        """
        Build an envelope from a raw source message event.

        Returns None for events without user-visible content (protocol
        messages, key distribution, reaction removals).
        """
        key = raw.get("key") or {}
        chat_id = key.get("remoteJid")
        origin_id = key.get("id")
        if not chat_id or not origin_id:
            log.debug("Ignoring source event without remoteJid/id")
            return None

        message = self._unwrap(raw.get("message") or {})
        content_keys = [k for k in message if k not in IGNORED_KEYS]
        if not content_keys:
            return None

        from_self = bool(key.get("fromMe"))
        is_group = is_group_jid(chat_id)
        sender_id = key.get("participant") or raw.get("participant") or chat_id
        if from_self:
            sender_name = self.config.self_display_name
        else:
            sender_name = raw.get("pushName") or handle_for(sender_id)

        envelope = MessageEnvelope(
            origin_id=origin_id,
            source_chat_id=chat_id,
            sender_id=sender_id,
            sender_display_name=sender_name,
            timestamp=_timestamp(raw.get("messageTimestamp")),
            kind=MessageKind.UNSUPPORTED,
            from_self=from_self,
            direction=Direction.TO_DESTINATION,
            is_group=is_group,
            is_status=chat_id == STATUS_BROADCAST,
        )

        content_key = content_keys[0]
        body = message[content_key] if isinstance(message[content_key], dict) else {}
        if not self._fill_content(envelope, content_key, message[content_key], body, raw):
            return None

        context = body.get("contextInfo") or {}
        if context.get("stanzaId"):
            envelope.reply_to_origin_id = context["stanzaId"]
        return envelope

    @staticmethod
    def _unwrap(message: Dict[str, Any]) -> Dict[str, Any]:
        for _ in range(3):
            for wrapper in WRAPPER_KEYS:
                inner = message.get(wrapper)
                if isinstance(inner, dict) and isinstance(inner.get("message"), dict):
                    message = inner["message"]
                    break
            else:
                return message
        return message

    def _fill_content(self, env: MessageEnvelope, content_key: str, value: Any, body: Dict[str, Any], raw: Dict[str, Any]) -> bool:
        if content_key == "conversation":
            env.kind = MessageKind.TEXT
            env.text_or_caption = value if isinstance(value, str) else str(value)
            return True

        if content_key == "extendedTextMessage":
            env.kind = MessageKind.TEXT
            env.text_or_caption = body.get("text", "")
            return True

        if content_key == "imageMessage":
            env.kind = MessageKind.IMAGE
            env.text_or_caption = body.get("caption")
            env.media_ref = self._media_ref(raw, body, MessageKind.IMAGE)
            return True

        if content_key in ("videoMessage", "ptvMessage"):
            env.kind = MessageKind.VIDEO
            env.text_or_caption = body.get("caption")
            env.media_ref = self._media_ref(raw, body, MessageKind.VIDEO)
            env.media_ref.is_video_note = content_key == "ptvMessage" or bool(body.get("ptv"))
            env.media_ref.gif_playback = bool(body.get("gifPlayback"))
            return True

        if content_key == "audioMessage":
            kind = MessageKind.VOICE if body.get("ptt") else MessageKind.AUDIO
            env.kind = kind
            env.media_ref = self._media_ref(raw, body, kind)
            return True

        if content_key == "documentMessage":
            env.kind = MessageKind.DOCUMENT
            env.text_or_caption = body.get("caption")
            env.media_ref = self._media_ref(raw, body, MessageKind.DOCUMENT)
            env.media_ref.file_name = body.get("fileName") or body.get("title")
            return True

        if content_key == "stickerMessage":
            env.kind = MessageKind.STICKER
            env.media_ref = self._media_ref(raw, body, MessageKind.STICKER)
            env.media_ref.is_animated = bool(body.get("isAnimated"))
            return True

        if content_key == "locationMessage":
            env.kind = MessageKind.LOCATION
            env.location = LocationData(
                latitude=float(body.get("degreesLatitude", 0.0)),
                longitude=float(body.get("degreesLongitude", 0.0)),
                name=body.get("name"),
                address=body.get("address"),
            )
            return True

        if content_key in ("contactMessage", "contactsArrayMessage"):
            if content_key == "contactsArrayMessage":
                contacts = body.get("contacts") or []
                body = contacts[0] if contacts else {}
            env.kind = MessageKind.CONTACT
            vcard = body.get("vcard")
            env.contact = ContactCard(
                display_name=body.get("displayName") or "Contact",
                phone_number=_phone_from_vcard(vcard),
                vcard=vcard,
            )
            return True

        if content_key == "reactionMessage":
            emoji = body.get("text") or ""
            target = (body.get("key") or {}).get("id")
            if not emoji or not target:
                return False
            env.kind = MessageKind.REACTION
            env.reaction = ReactionData(emoji=emoji, target_origin_id=target)
            return True

        env.kind = MessageKind.UNSUPPORTED
        env.unsupported_label = UNSUPPORTED_LABELS.get(content_key, content_key.replace("Message", "") or "message")
        return True

    @staticmethod
    def _media_ref(raw: Dict[str, Any], body: Dict[str, Any], kind: MessageKind) -> MediaRef:
        return MediaRef(
            handle=raw,
            kind=kind,
            mime_type=body.get("mimetype"),
            declared_size=_as_int(body.get("fileLength")),
            duration=_as_int(body.get("seconds")),
            width=_as_int(body.get("width")),
            height=_as_int(body.get("height")),
        )

    # =========================================================================
    # Normalization: destination platform
    # =========================================================================

    def normalize_destination(self, update: DestinationUpdate) -> Optional[MessageEnvelope]:
        """
        Build an envelope from a message typed on the destination platform.

        source_chat_id is left empty; the controller resolves the route from
        the topic (or the user, for private chats with the bot).
        """
        if update.is_bot or update.is_service:
            return None

        envelope = MessageEnvelope(
            origin_id=str(update.message_id),
            source_chat_id="",
            sender_id=str(update.user_id or ""),
            sender_display_name=update.user_name or "",
            timestamp=update.date or time.time(),
            kind=MessageKind.TEXT,
            text_or_caption=update.text,
            direction=Direction.TO_SOURCE,
            spoiler=update.spoiler,
            destination_chat_id=update.chat_id,
            destination_topic_id=None if update.is_private_chat else update.topic_id,
            destination_message_id=update.message_id,
            destination_user_id=update.user_id,
            destination_reply_to_message_id=update.reply_to_message_id,
        )

        if update.media is not None:
            envelope.kind = update.media.kind
            envelope.media_ref = update.media
        elif update.location is not None:
            envelope.kind = MessageKind.LOCATION
            envelope.location = update.location
        elif update.contact is not None:
            envelope.kind = MessageKind.CONTACT
            envelope.contact = update.contact
        elif update.unsupported_label:
            envelope.kind = MessageKind.UNSUPPORTED
            envelope.unsupported_label = update.unsupported_label
        elif not update.text:
            envelope.kind = MessageKind.UNSUPPORTED
            envelope.unsupported_label = "message"

        if update.reply_to_message_id is not None:
            target = self._reply_index.source_for(update.reply_to_message_id)
            if target is not None:
                envelope.reply_to_origin_id = target.origin_id
        return envelope

    # =========================================================================
    # Emission: source -> destination topic
    # =========================================================================

    async def emit(self, envelope: MessageEnvelope, topic_id: int, pending: Optional[PendingDelivery] = None) -> DeliveryResult:
        """Deliver an envelope into its topic, skipping steps already delivered."""
        pending = pending or PendingDelivery(envelope=envelope)
        steps = self._to_destination[envelope.kind](envelope, topic_id)
        return await self._run_steps(steps, pending)

    async def emit_notice(self, envelope: MessageEnvelope, topic_id: Optional[int], text: str,
                          pending: Optional[PendingDelivery] = None) -> DeliveryResult:
        """Post a notice into a topic in place of (or about) an envelope."""
        pending = pending or PendingDelivery(envelope=envelope)
        reply_to = envelope.destination_message_id if envelope.direction == Direction.TO_SOURCE else None
        step = Step("notice", lambda: self._send_destination(topic_id, TextContent(text=text, reply_to_message_id=reply_to)))
        return await self._run_steps([step], pending)

    def _text_steps(self, env: MessageEnvelope, topic_id: int) -> List[Step]:
        content = TextContent(
            text=self._clip(self._attributed(env, env.text_or_caption or ""), MAX_TEXT),
            reply_to_message_id=self._destination_reply_target(env),
        )
        return [Step("text", lambda: self._send_destination(topic_id, content))]

    def _media_steps(self, env: MessageEnvelope, topic_id: int) -> List[Step]:
        meta = CaptionMeta(
            caption=self._media_caption(env),
            reply_to_message_id=self._destination_reply_target(env),
        )

        async def relay():
            async with self._pipeline.session() as media:
                blob = await media.fetch(env.media_ref, Direction.TO_DESTINATION)
                blob = await media.transcode(blob, env.kind)
                result = await media.publish(blob, topic_id, meta)
            return result.primary_message_id

        return [Step("media", relay)]

    def _location_steps(self, env: MessageEnvelope, topic_id: int) -> List[Step]:
        loc = env.location
        attribution = f"{SENDER_PREFIX} {env.sender_display_name} shared location"
        if loc.name or loc.address:
            attribution += "\n📍 " + ", ".join(p for p in (loc.name, loc.address) if p)
        return [
            Step("location", lambda: self._send_destination(
                topic_id, LocationContent(loc.latitude, loc.longitude, self._destination_reply_target(env))
            )),
            Step("attribution", lambda: self._send_destination(topic_id, TextContent(text=attribution))),
        ]

    def _contact_steps(self, env: MessageEnvelope, topic_id: int) -> List[Step]:
        card = env.contact
        if card.phone_number:
            content = ContactContent(display_name=card.display_name, phone_number=card.phone_number, vcard=card.vcard)
        else:
            content = TextContent(text=self._attributed(env, f"📇 Contact: {card.display_name}"))
        return [Step("contact", lambda: self._send_destination(topic_id, content))]

    def _reaction_steps(self, env: MessageEnvelope, topic_id: int) -> List[Step]:
        reaction = env.reaction
        target = self._reply_index.destination_for(env.source_chat_id, reaction.target_origin_id)
        if target is not None:
            async def react():
                await call_with_timeout(
                    self._destination.set_reaction(self.config.destination_group_id, target, reaction.emoji),
                    self.config.api_timeout_seconds,
                    context="set reaction",
                )
                return target
            return [Step("reaction", react)]

        text = f"{SENDER_PREFIX} {env.sender_display_name} reacted {reaction.emoji}"
        return [Step("reaction", lambda: self._send_destination(topic_id, TextContent(text=text)))]

    def _placeholder_steps(self, env: MessageEnvelope, topic_id: int) -> List[Step]:
        text = self._attributed(env, f"⚠️ Unsupported content: {env.unsupported_label or 'message'}", force=True)
        return [Step("placeholder", lambda: self._send_destination(topic_id, TextContent(text=text)))]

    async def _send_destination(self, topic_id: Optional[int], content) -> Any:
        return await call_with_timeout(
            self._destination.send(self.config.destination_group_id, topic_id, content),
            self.config.api_timeout_seconds,
            context=f"send to topic {topic_id}",
        )

    def _destination_reply_target(self, env: MessageEnvelope) -> Optional[int]:
        if not env.reply_to_origin_id:
            return None
        return self._reply_index.destination_for(env.source_chat_id, env.reply_to_origin_id)

    # =========================================================================
    # Emission: destination topic -> source conversation
    # =========================================================================

    async def emit_to_source(self, envelope: MessageEnvelope, pending: Optional[PendingDelivery] = None) -> DeliveryResult:
        """Deliver a topic reply into its source conversation."""
        pending = pending or PendingDelivery(envelope=envelope)
        chat_id = envelope.source_chat_id
        kind = envelope.kind

        if kind == MessageKind.TEXT:
            text = envelope.text_or_caption or ""
            if envelope.spoiler:
                text = f"{SPOILER_MARK} {text}"
            content = TextContent(text=text, reply_to_message_id=envelope.reply_to_origin_id)
            steps = [Step("text", lambda: self._send_source(chat_id, content))]

        elif kind.is_media:
            caption = envelope.text_or_caption
            if caption and envelope.spoiler:
                caption = f"{SPOILER_MARK} {caption}"
            meta = CaptionMeta(caption=caption, reply_to_message_id=envelope.reply_to_origin_id)

            async def relay():
                async with self._pipeline.session() as media:
                    blob = await media.fetch(envelope.media_ref, Direction.TO_SOURCE)
                    blob = await media.transcode(blob, kind)
                    result = await media.publish_to_source(blob, chat_id, meta)
                return result.primary_message_id

            steps = [Step("media", relay)]

        elif kind == MessageKind.LOCATION:
            loc = envelope.location
            content = LocationContent(loc.latitude, loc.longitude, envelope.reply_to_origin_id)
            steps = [Step("location", lambda: self._send_source(chat_id, content))]

        elif kind == MessageKind.CONTACT and envelope.contact.phone_number:
            card = envelope.contact
            content = ContactContent(display_name=card.display_name, phone_number=card.phone_number, vcard=card.vcard)
            steps = [Step("contact", lambda: self._send_source(chat_id, content))]

        else:
            raise PermanentContentError(
                f"{envelope.unsupported_label or kind.value} cannot be sent to the source platform"
            )

        return await self._run_steps(steps, pending)

    async def _send_source(self, chat_id: str, content) -> Any:
        return await call_with_timeout(
            self._source.send(chat_id, content),
            self.config.api_timeout_seconds,
            context=f"send to {chat_id}",
        )

    # =========================================================================
    # Notices
    # =========================================================================

    def size_limit_notice(self, envelope: MessageEnvelope, error: MediaTooLargeError) -> str:
        return self._attributed(
            envelope,
            f"⚠️ {envelope.kind.value.capitalize()} not delivered: "
            f"{_human_size(error.size)} exceeds the {_human_size(error.limit)} limit",
            force=True,
        )

    def content_failure_notice(self, envelope: MessageEnvelope, error: Exception) -> str:
        return self._attributed(
            envelope,
            f"⚠️ Could not deliver {envelope.kind.value}: {error}",
            force=True,
        )

    def exhausted_notice(self, envelope: MessageEnvelope, attempts: int) -> str:
        return self._attributed(
            envelope,
            f"❌ {envelope.kind.value.capitalize()} could not be delivered after {attempts} attempts",
            force=True,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _run_steps(self, steps: List[Step], pending: PendingDelivery) -> DeliveryResult:
        message_ids = []
        for step in steps:
            if pending.step_done(step.name):
                message_ids.append(pending.completed_steps[step.name])
                continue
            message_id = await step.run()
            pending.mark_step(step.name, message_id)
            message_ids.append(message_id)
        return DeliveryResult(success=True, message_ids=message_ids)

    def _attributed(self, env: MessageEnvelope, text: str, force: bool = False) -> str:
        """Prefix text with the sender, except for own messages in private chats."""
        if env.direction == Direction.TO_SOURCE:
            return text
        if env.from_self and not env.is_group and not force:
            return text
        return f"{SENDER_PREFIX} {env.sender_display_name}:\n{text}"

    def _media_caption(self, env: MessageEnvelope) -> Optional[str]:
        """
        Caption for a media artifact. Only group and status captions carry
        the sender prefix: a private topic is named after its contact, and
        the prefix would eat into the caption length limit. Plain text keeps
        the prefix in every chat except own private messages (_attributed).
        """
        if env.kind == MessageKind.STICKER:
            return None
        caption = env.text_or_caption
        if env.is_group or env.is_status:
            caption = f"{SENDER_PREFIX} {env.sender_display_name}:\n{caption}" if caption else f"{SENDER_PREFIX} {env.sender_display_name}"
        return self._clip(caption, MAX_CAPTION) if caption else None

    @staticmethod
    def _clip(text: str, limit: int) -> str:
        return text if len(text) <= limit else text[:limit - 1] + "…"


def _timestamp(value: Any) -> float:
    if isinstance(value, dict):
        value = value.get("low")
    try:
        return float(value) if value is not None else time.time()
    except (TypeError, ValueError):
        return time.time()


def _human_size(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / 1024:.0f} KB"


def _as_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("low")
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _phone_from_vcard(vcard: Optional[str]) -> Optional[str]:
    if not vcard:
        return None
    match = VCARD_TEL.search(vcard)
    if not match:
        return None
    # "TEL;type=CELL;waid=4915112345678:+49 151 12345678"
    phone = re.sub(r"[^\d+]", "", match.group(1))
    return phone or None
