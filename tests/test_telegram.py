"""Tests for Telegram error classification and update parsing."""

from datetime import datetime, timezone

import pytest
from telegram import Chat, Contact, Location, Message, MessageEntity, PhotoSize, User
from telegram.error import (
    BadRequest,
    ChatMigrated,
    Conflict,
    Forbidden,
    InvalidToken,
    NetworkError,
    RetryAfter,
    TimedOut,
)

from topicbridge.bridge.enums import MessageKind
from topicbridge.common.exceptions.exceptions import (
    PermanentConfigError,
    PermanentContentError,
    TransientError,
)
from topicbridge.infra.telegram.errors import classify_telegram_error
from topicbridge.infra.telegram.update_parser import parse_message

from tests.conftest import GROUP_ID

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
GROUP = Chat(id=GROUP_ID, type=Chat.SUPERGROUP, title="Bridge", is_forum=True)
OPERATOR = User(id=42, first_name="Ops", last_name="Person", is_bot=False)


def topic_message(message_id=5001, topic_id=100, **kwargs):
    kwargs.setdefault("from_user", OPERATOR)
    return Message(
        message_id=message_id,
        date=NOW,
        chat=GROUP,
        message_thread_id=topic_id,
        is_topic_message=True,
        **kwargs,
    )


# ============================================================
# Error Classification
# ============================================================

class TestClassifyTelegramError:

    def test_flood_control_is_transient_with_delay(self):
        error = classify_telegram_error(RetryAfter(12))
        assert isinstance(error, TransientError)
        assert error.retry_after == 12

    @pytest.mark.parametrize("exc", [
        Forbidden("Forbidden: bot was kicked from the supergroup chat"),
        InvalidToken(),
        ChatMigrated(-100999),
        BadRequest("Not enough rights to create a topic"),
        BadRequest("Bad Request: message thread not found"),
        BadRequest("Chat not found"),
    ])
    def test_config_errors(self, exc):
        assert isinstance(classify_telegram_error(exc), PermanentConfigError)

    @pytest.mark.parametrize("exc", [
        BadRequest("Wrong file identifier/http url specified"),
        BadRequest("Message is too long"),
    ])
    def test_content_errors(self, exc):
        assert isinstance(classify_telegram_error(exc), PermanentContentError)

    @pytest.mark.parametrize("exc", [
        TimedOut(),
        NetworkError("Connection reset by peer"),
        Conflict("terminated by other getUpdates request"),
        RuntimeError("client closed"),
    ])
    def test_transient_errors(self, exc):
        assert isinstance(classify_telegram_error(exc), TransientError)

    def test_bridge_errors_pass_through(self):
        original = PermanentContentError("already classified")
        assert classify_telegram_error(original) is original


# ============================================================
# Update Parsing
# ============================================================

class TestParseMessage:

    def test_topic_text(self):
        update = parse_message(topic_message(text="hello"))

        assert update.chat_id == GROUP_ID
        assert update.topic_id == 100
        assert update.user_id == 42
        assert update.user_name == "Ops Person"
        assert update.text == "hello"
        assert update.is_private_chat is False
        assert update.reply_to_message_id is None

    def test_reply_to_topic_root_is_not_a_reply(self):
        root = Message(message_id=100, date=NOW, chat=GROUP)
        update = parse_message(topic_message(text="hi", reply_to_message=root))
        assert update.reply_to_message_id is None

    def test_reply_to_bridged_message(self):
        quoted = Message(message_id=1000, date=NOW, chat=GROUP)
        update = parse_message(topic_message(text="hi", reply_to_message=quoted))
        assert update.reply_to_message_id == 1000

    def test_largest_photo_used(self):
        photos = (
            PhotoSize("small", "u1", 90, 90, file_size=1000),
            PhotoSize("large", "u2", 1280, 1280, file_size=90000),
        )
        update = parse_message(topic_message(photo=photos, caption="look"))

        assert update.media.kind == MessageKind.IMAGE
        assert update.media.handle == "large"
        assert update.media.declared_size == 90000
        assert update.text == "look"

    def test_spoiler_entity(self):
        entity = MessageEntity(type=MessageEntity.SPOILER, offset=0, length=6)
        update = parse_message(topic_message(text="secret", entities=(entity,)))
        assert update.spoiler is True

    def test_contact(self):
        contact = Contact(phone_number="+4915112345678", first_name="Alice", last_name="Smith")
        update = parse_message(topic_message(contact=contact))
        assert update.contact.display_name == "Alice Smith"
        assert update.contact.phone_number == "+4915112345678"

    def test_live_location_unsupported(self):
        update = parse_message(topic_message(location=Location(longitude=13.4, latitude=52.5, live_period=600)))
        assert update.location is None
        assert update.unsupported_label == "live location"

    def test_service_message_flagged(self):
        update = parse_message(topic_message(new_chat_title="Renamed"))
        assert update.is_service is True

    def test_private_chat(self):
        chat = Chat(id=42, type=Chat.PRIVATE, first_name="Ops")
        msg = Message(message_id=7, date=NOW, chat=chat, from_user=OPERATOR, text="hi")

        update = parse_message(msg)

        assert update.is_private_chat is True
        assert update.topic_id is None

    def test_bot_author_flagged(self):
        bot = User(id=1, first_name="TopicBot", is_bot=True)
        assert parse_message(topic_message(text="echo", from_user=bot)).is_bot is True
