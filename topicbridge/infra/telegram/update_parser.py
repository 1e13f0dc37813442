# =============================================================================
# File: topicbridge/infra/telegram/update_parser.py
# Description: python-telegram-bot Message -> DestinationUpdate
# =============================================================================

from __future__ import annotations

from typing import Optional

from telegram import Message, MessageEntity
from telegram.constants import ChatType as TelegramChatType

from topicbridge.bridge.enums import MessageKind
from topicbridge.bridge.envelope import DestinationUpdate, MediaRef, LocationData, ContactCard

# Message attributes that mark a service message rather than user content
SERVICE_ATTRIBUTES = (
    "forum_topic_created",
    "forum_topic_edited",
    "forum_topic_closed",
    "forum_topic_reopened",
    "general_forum_topic_hidden",
    "general_forum_topic_unhidden",
    "new_chat_members",
    "left_chat_member",
    "new_chat_title",
    "new_chat_photo",
    "delete_chat_photo",
    "pinned_message",
    "group_chat_created",
    "supergroup_chat_created",
    "migrate_to_chat_id",
    "migrate_from_chat_id",
    "message_auto_delete_timer_changed",
    "video_chat_started",
    "video_chat_ended",
    "video_chat_scheduled",
    "video_chat_participants_invited",
)

UNSUPPORTED_ATTRIBUTES = {
    "poll": "poll",
    "dice": "dice",
    "game": "game",
    "story": "story",
    "invoice": "invoice",
    "paid_media": "paid media",
    "giveaway": "giveaway",
}


def parse_message(msg: Message) -> DestinationUpdate:
    """Lift a PTB Message into the bridge's destination-side update."""
    user = msg.from_user
    topic_id = msg.message_thread_id if msg.is_topic_message else None

    update = DestinationUpdate(
        chat_id=msg.chat.id,
        message_id=msg.message_id,
        topic_id=topic_id,
        user_id=user.id if user else None,
        user_name=user.full_name if user else None,
        is_bot=user.is_bot if user else False,
        is_private_chat=msg.chat.type == TelegramChatType.PRIVATE,
        text=msg.text or msg.caption,
        reply_to_message_id=_reply_target(msg, topic_id),
        spoiler=_has_spoiler(msg),
        date=msg.date.timestamp() if msg.date else None,
    )

    if any(getattr(msg, attr, None) for attr in SERVICE_ATTRIBUTES):
        update.is_service = True
        return update

    update.media = _media(msg)
    if update.media is not None:
        return update

    if msg.venue:
        update.location = LocationData(
            latitude=msg.venue.location.latitude,
            longitude=msg.venue.location.longitude,
            name=msg.venue.title,
            address=msg.venue.address,
        )
    elif msg.location:
        if msg.location.live_period:
            update.unsupported_label = "live location"
        else:
            update.location = LocationData(latitude=msg.location.latitude, longitude=msg.location.longitude)
    elif msg.contact:
        name = " ".join(p for p in (msg.contact.first_name, msg.contact.last_name) if p)
        update.contact = ContactCard(
            display_name=name or msg.contact.phone_number,
            phone_number=msg.contact.phone_number,
            vcard=msg.contact.vcard,
        )
    else:
        for attr, label in UNSUPPORTED_ATTRIBUTES.items():
            if getattr(msg, attr, None):
                update.unsupported_label = label
                break

    return update


def _reply_target(msg: Message, topic_id: Optional[int]) -> Optional[int]:
    reply = msg.reply_to_message
    if reply is None:
        return None
    # Inside a topic, a plain message "replies" to the topic's creation message
    if topic_id is not None and reply.message_id == topic_id:
        return None
    return reply.message_id


def _has_spoiler(msg: Message) -> bool:
    if getattr(msg, "has_media_spoiler", False):
        return True
    entities = tuple(msg.entities or ()) + tuple(msg.caption_entities or ())
    return any(e.type == MessageEntity.SPOILER for e in entities)


def _media(msg: Message) -> Optional[MediaRef]:
    if msg.photo:
        photo = msg.photo[-1]
        return MediaRef(
            handle=photo.file_id,
            kind=MessageKind.IMAGE,
            mime_type="image/jpeg",
            declared_size=photo.file_size,
            width=photo.width,
            height=photo.height,
        )

    if msg.animation:
        anim = msg.animation
        return MediaRef(
            handle=anim.file_id,
            kind=MessageKind.VIDEO,
            mime_type=anim.mime_type,
            file_name=anim.file_name,
            declared_size=anim.file_size,
            duration=_seconds(anim.duration),
            width=anim.width,
            height=anim.height,
            gif_playback=True,
        )

    if msg.video:
        video = msg.video
        return MediaRef(
            handle=video.file_id,
            kind=MessageKind.VIDEO,
            mime_type=video.mime_type,
            file_name=video.file_name,
            declared_size=video.file_size,
            duration=_seconds(video.duration),
            width=video.width,
            height=video.height,
        )

    if msg.video_note:
        note = msg.video_note
        return MediaRef(
            handle=note.file_id,
            kind=MessageKind.VIDEO,
            mime_type="video/mp4",
            declared_size=note.file_size,
            duration=_seconds(note.duration),
            width=note.length,
            height=note.length,
            is_video_note=True,
        )

    if msg.voice:
        voice = msg.voice
        return MediaRef(
            handle=voice.file_id,
            kind=MessageKind.VOICE,
            mime_type=voice.mime_type or "audio/ogg",
            declared_size=voice.file_size,
            duration=_seconds(voice.duration),
        )

    if msg.audio:
        audio = msg.audio
        return MediaRef(
            handle=audio.file_id,
            kind=MessageKind.AUDIO,
            mime_type=audio.mime_type,
            file_name=audio.file_name,
            declared_size=audio.file_size,
            duration=_seconds(audio.duration),
        )

    if msg.sticker:
        sticker = msg.sticker
        return MediaRef(
            handle=sticker.file_id,
            kind=MessageKind.STICKER,
            mime_type="video/webm" if sticker.is_video else "image/webp",
            declared_size=sticker.file_size,
            width=sticker.width,
            height=sticker.height,
            is_animated=sticker.is_animated or sticker.is_video,
        )

    if msg.document:
        doc = msg.document
        return MediaRef(
            handle=doc.file_id,
            kind=MessageKind.DOCUMENT,
            mime_type=doc.mime_type,
            file_name=doc.file_name,
            declared_size=doc.file_size,
        )

    return None


def _seconds(value) -> Optional[int]:
    """Durations are ints in older PTB releases and timedeltas in newer ones."""
    if value is None:
        return None
    if hasattr(value, "total_seconds"):
        return int(value.total_seconds())
    return int(value)
