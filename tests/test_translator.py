"""Tests for MessageTranslator normalization and emission."""

import pytest

from topicbridge.bridge.artifacts import ContactContent, MediaContent, TextContent
from topicbridge.bridge.enums import Direction, MessageKind
from topicbridge.bridge.envelope import DestinationUpdate, MediaRef
from topicbridge.bridge.jid import STATUS_BROADCAST

from tests.conftest import ALICE, BOB, FAMILY_GROUP, GROUP_ID, KB, build_harness, make_config
from tests.fakes.fake_source_platform import message_event, text_event

VCARD = "BEGIN:VCARD\nVERSION:3.0\nFN:Bob\nTEL;type=CELL;waid=4915187654321:+49 151 87654321\nEND:VCARD"


@pytest.fixture
def translator(tmp_path):
    return build_harness(make_config(tmp_path)).translator


# ============================================================
# Source Normalization
# ============================================================

class TestNormalize:

    def test_plain_text(self, translator):
        env = translator.normalize(text_event(ALICE, "M1", "hello"))

        assert env.kind == MessageKind.TEXT
        assert env.text_or_caption == "hello"
        assert env.sender_display_name == "Alice"
        assert env.direction == Direction.TO_DESTINATION
        assert env.dedup_key == f"src:{ALICE}:M1"
        assert env.queue_key == f"src:{ALICE}"

    def test_wrapped_message_unwrapped(self, translator):
        env = translator.normalize(message_event(ALICE, "M1", {
            "ephemeralMessage": {"message": {"extendedTextMessage": {"text": "disappearing"}}},
        }))
        assert env.kind == MessageKind.TEXT
        assert env.text_or_caption == "disappearing"

    def test_quoted_message_recorded(self, translator):
        env = translator.normalize(message_event(ALICE, "M2", {
            "extendedTextMessage": {"text": "yes", "contextInfo": {"stanzaId": "M1"}},
        }))
        assert env.reply_to_origin_id == "M1"

    def test_voice_note(self, translator):
        env = translator.normalize(message_event(ALICE, "A1", {
            "audioMessage": {"ptt": True, "mimetype": "audio/ogg; codecs=opus", "fileLength": {"low": 1234}, "seconds": 3},
        }))
        assert env.kind == MessageKind.VOICE
        assert env.media_ref.declared_size == 1234
        assert env.media_ref.duration == 3

    def test_video_note(self, translator):
        env = translator.normalize(message_event(ALICE, "V1", {"ptvMessage": {"mimetype": "video/mp4"}}))
        assert env.kind == MessageKind.VIDEO
        assert env.media_ref.is_video_note is True

    def test_document_keeps_file_name(self, translator):
        env = translator.normalize(message_event(ALICE, "D1", {
            "documentMessage": {"fileName": "invoice.pdf", "mimetype": "application/pdf", "caption": "March"},
        }))
        assert env.kind == MessageKind.DOCUMENT
        assert env.media_ref.file_name == "invoice.pdf"
        assert env.text_or_caption == "March"

    def test_contact_phone_from_vcard(self, translator):
        env = translator.normalize(message_event(ALICE, "C1", {
            "contactMessage": {"displayName": "Bob", "vcard": VCARD},
        }))
        assert env.kind == MessageKind.CONTACT
        assert env.contact.display_name == "Bob"
        assert env.contact.phone_number == "+4915187654321"

    def test_location(self, translator):
        env = translator.normalize(message_event(ALICE, "L1", {
            "locationMessage": {"degreesLatitude": 52.52, "degreesLongitude": 13.405},
        }))
        assert env.kind == MessageKind.LOCATION
        assert (env.location.latitude, env.location.longitude) == (52.52, 13.405)

    def test_reaction_removal_ignored(self, translator):
        raw = message_event(ALICE, "R1", {"reactionMessage": {"text": "", "key": {"id": "M1"}}})
        assert translator.normalize(raw) is None

    @pytest.mark.parametrize("message", [
        {"protocolMessage": {"type": "REVOKE"}},
        {"senderKeyDistributionMessage": {}},
        {},
    ])
    def test_invisible_events_ignored(self, translator, message):
        assert translator.normalize(message_event(ALICE, "X1", message)) is None

    def test_event_without_key_ignored(self, translator):
        assert translator.normalize({"message": {"conversation": "hi"}}) is None

    def test_unknown_content_becomes_unsupported(self, translator):
        env = translator.normalize(message_event(ALICE, "U1", {"pollCreationMessageV3": {"name": "Lunch?"}}))
        assert env.kind == MessageKind.UNSUPPORTED
        assert env.unsupported_label == "poll"

        env = translator.normalize(message_event(ALICE, "U2", {"fancyNewMessage": {}}))
        assert env.unsupported_label == "fancyNew"

    def test_own_message(self, translator):
        env = translator.normalize(text_event(ALICE, "M1", "hi", from_me=True))
        assert env.from_self is True
        assert env.sender_display_name == "You"

    def test_group_sender_is_participant(self, translator):
        env = translator.normalize(text_event(FAMILY_GROUP, "G1", "hi", push_name="", participant=BOB))
        assert env.is_group is True
        assert env.sender_id == BOB
        assert env.sender_display_name == "+4915187654321"

    def test_status_broadcast(self, translator):
        env = translator.normalize(text_event(STATUS_BROADCAST, "S1", "new status", participant=ALICE))
        assert env.is_status is True


# ============================================================
# Destination Normalization
# ============================================================

class TestNormalizeDestination:

    def test_topic_text(self, translator):
        env = translator.normalize_destination(DestinationUpdate(
            chat_id=GROUP_ID, message_id=5, topic_id=100, user_id=42, text="hi",
        ))
        assert env.direction == Direction.TO_SOURCE
        assert env.source_chat_id == ""
        assert env.queue_key == "dst:100"
        assert env.dedup_key == f"dst:{GROUP_ID}:5"

    def test_private_chat_keyed_by_user(self, translator):
        env = translator.normalize_destination(DestinationUpdate(
            chat_id=42, message_id=6, topic_id=3, user_id=42, is_private_chat=True, text="hi",
        ))
        assert env.destination_topic_id is None
        assert env.queue_key == "dst:user:42"

    def test_bot_and_service_messages_ignored(self, translator):
        assert translator.normalize_destination(DestinationUpdate(chat_id=GROUP_ID, message_id=1, is_bot=True, text="x")) is None
        assert translator.normalize_destination(DestinationUpdate(chat_id=GROUP_ID, message_id=2, is_service=True)) is None

    def test_media_kind_taken_from_ref(self, translator):
        env = translator.normalize_destination(DestinationUpdate(
            chat_id=GROUP_ID, message_id=7, topic_id=100, text="caption",
            media=MediaRef(handle="file-1", kind=MessageKind.IMAGE),
        ))
        assert env.kind == MessageKind.IMAGE
        assert env.text_or_caption == "caption"

    def test_empty_message_unsupported(self, translator):
        env = translator.normalize_destination(DestinationUpdate(chat_id=GROUP_ID, message_id=8, topic_id=100))
        assert env.kind == MessageKind.UNSUPPORTED
        assert env.unsupported_label == "message"


# ============================================================
# Emission
# ============================================================

class TestEmit:

    @pytest.mark.asyncio
    async def test_group_caption_attributed(self, bridge):
        bridge.source.set_media("I1", b"i" * KB)
        await bridge.receive(message_event(FAMILY_GROUP, "I1", {
            "imageMessage": {"caption": "look", "mimetype": "image/jpeg"},
        }, push_name="Bob", participant=BOB))

        content = bridge.destination.messages[-1].content
        assert isinstance(content, MediaContent)
        assert content.caption == "👤 Bob:\nlook"

    @pytest.mark.asyncio
    async def test_private_caption_not_attributed(self, bridge):
        bridge.source.set_media("I2", b"i" * KB)
        await bridge.receive(
            message_event(ALICE, "I2", {"imageMessage": {"caption": "look", "mimetype": "image/jpeg"}}),
            text_event(ALICE, "T2", "and this"),
        )

        media, text = bridge.destination.messages[-2:]
        assert media.content.caption == "look"
        assert text.text == "👤 Alice:\nand this"

    @pytest.mark.asyncio
    async def test_sticker_has_no_caption(self, bridge):
        bridge.source.set_media("S1", b"RIFF" + b"s" * 100)
        await bridge.receive(message_event(ALICE, "S1", {"stickerMessage": {"mimetype": "image/webp"}}))

        content = bridge.destination.messages[-1].content
        assert content.kind == MessageKind.STICKER
        assert content.caption is None

    @pytest.mark.asyncio
    async def test_contact_card(self, bridge):
        await bridge.receive(message_event(ALICE, "C1", {"contactMessage": {"displayName": "Bob", "vcard": VCARD}}))

        content = bridge.destination.messages[-1].content
        assert content == ContactContent(display_name="Bob", phone_number="+4915187654321", vcard=VCARD)

    @pytest.mark.asyncio
    async def test_contact_without_phone_sent_as_text(self, bridge):
        await bridge.receive(message_event(ALICE, "C2", {"contactMessage": {"displayName": "Mystery"}}))
        assert bridge.destination.texts_in(bridge.topic_for(ALICE)) == ["👤 Alice:\n📇 Contact: Mystery"]

    @pytest.mark.asyncio
    async def test_long_text_clipped(self, bridge):
        await bridge.receive(text_event(ALICE, "M1", "x" * 5000))

        text = bridge.destination.texts_in(bridge.topic_for(ALICE))[0]
        assert len(text) == 4096
        assert text.endswith("…")

    @pytest.mark.asyncio
    async def test_spoiler_reply_marked_for_source(self, bridge):
        await bridge.receive(text_event(ALICE, "M1", "hello"))

        await bridge.reply(DestinationUpdate(
            chat_id=GROUP_ID, message_id=5001, topic_id=bridge.topic_for(ALICE),
            user_id=42, text="plot twist", spoiler=True,
        ))

        assert bridge.source.sent == [(ALICE, TextContent(text="🫥 plot twist"))]

    @pytest.mark.asyncio
    async def test_media_reply_relayed_to_source(self, bridge):
        await bridge.receive(text_event(ALICE, "M1", "hello"))

        class _Response:
            status_code = 200
            headers = {"content-length": "3"}

            async def aiter_bytes(self, chunk_size):
                yield b"abc"

        class _Stream:
            async def __aenter__(self):
                return _Response()

            async def __aexit__(self, *exc):
                return False

        class _Client:
            def stream(self, method, url):
                return _Stream()

            async def aclose(self):
                pass

        bridge.pipeline._http_client = _Client()

        await bridge.reply(DestinationUpdate(
            chat_id=GROUP_ID, message_id=5002, topic_id=bridge.topic_for(ALICE), user_id=42,
            text="receipt", media=MediaRef(handle="file-9", kind=MessageKind.DOCUMENT, file_name="receipt.pdf"),
        ))

        chat_id, content = bridge.source.sent[-1]
        assert chat_id == ALICE
        assert isinstance(content, MediaContent)
        assert content.caption == "receipt"
        assert content.file_name == "receipt.pdf"
        assert bridge.destination.get_last_call("get_file_link").args == ("file-9",)
