"""End-to-end bridge scenarios on in-memory platforms."""

import os

import pytest

from topicbridge.bridge.artifacts import MediaContent, TextContent
from topicbridge.bridge.enums import MessageKind
from topicbridge.bridge.envelope import DestinationUpdate
from topicbridge.bridge.models import CHAT_MAPPINGS
from topicbridge.common.exceptions.exceptions import TransientError

from tests.conftest import ALICE, GROUP_ID, KB
from tests.fakes.fake_source_platform import text_event, message_event


# ============================================================
# Source -> Topic
# ============================================================

class TestFirstContact:
    """A message from an unknown chat opens a topic and lands in it."""

    @pytest.mark.asyncio
    async def test_first_text_creates_named_topic(self, bridge):
        await bridge.receive(text_event(ALICE, "M1", "hello"))

        topic_id = bridge.topic_for(ALICE)
        assert bridge.destination.get_call_count("create_topic") == 1
        assert bridge.destination.topics[topic_id].name == "Alice"
        assert bridge.destination.texts_in(topic_id) == ["👤 Alice:\nhello"]

    @pytest.mark.asyncio
    async def test_mapping_persisted(self, bridge):
        await bridge.receive(text_event(ALICE, "M1", "hello"))

        docs = bridge.documents.documents(CHAT_MAPPINGS)
        assert len(docs) == 1
        assert docs[0]["source_chat_id"] == ALICE
        assert docs[0]["destination_topic_id"] == bridge.topic_for(ALICE)
        assert docs[0]["message_count"] == 1

    @pytest.mark.asyncio
    async def test_outcome_counted(self, bridge):
        await bridge.receive(text_event(ALICE, "M1", "hello"))
        assert bridge.controller.stats()["outcomes"] == {"delivered": 1}


class TestCaptionedImage:

    @pytest.mark.asyncio
    async def test_single_media_artifact_with_caption(self, bridge):
        bridge.source.set_media("IMG1", b"\xff\xd8" + b"x" * 2046)
        await bridge.receive(message_event(ALICE, "IMG1", {
            "imageMessage": {"caption": "hi", "mimetype": "image/jpeg", "fileLength": "2048"},
        }))

        messages = bridge.destination.messages_in(bridge.topic_for(ALICE))
        assert len(messages) == 1
        content = messages[0].content
        assert isinstance(content, MediaContent)
        assert content.kind == MessageKind.IMAGE
        assert content.caption == "hi"
        assert not os.path.exists(content.path)


class TestUnsupportedContent:

    @pytest.mark.asyncio
    async def test_poll_becomes_one_placeholder(self, bridge):
        await bridge.receive(message_event(ALICE, "P1", {"pollCreationMessage": {"name": "Lunch?"}}))

        texts = bridge.destination.texts_in(bridge.topic_for(ALICE))
        assert texts == ["👤 Alice:\n⚠️ Unsupported content: poll"]


# ============================================================
# Topic -> Source
# ============================================================

class TestTopicReply:

    @pytest.mark.asyncio
    async def test_reply_reaches_source_and_gets_marker(self, bridge):
        await bridge.receive(text_event(ALICE, "M1", "hello"))
        topic_id = bridge.topic_for(ALICE)

        accepted = await bridge.reply(DestinationUpdate(
            chat_id=GROUP_ID, message_id=5001, topic_id=topic_id,
            user_id=42, user_name="Operator", text="thanks",
        ))

        assert accepted is True
        assert bridge.source.sent == [(ALICE, TextContent(text="thanks"))]
        assert (GROUP_ID, 5001, "👍") in bridge.destination.reactions


# ============================================================
# Reliability
# ============================================================

class TestTransientDownload:

    @pytest.mark.asyncio
    async def test_recovers_after_two_failures(self, bridge):
        bridge.source.set_media("IMG2", b"y" * (4 * KB))
        bridge.source.configure_failure("stream_media", TransientError("connection reset"), times=2)

        await bridge.receive(message_event(ALICE, "IMG2", {"imageMessage": {"mimetype": "image/jpeg"}}))

        messages = bridge.destination.messages_in(bridge.topic_for(ALICE))
        assert len(messages) == 1
        assert isinstance(messages[0].content, MediaContent)
        assert bridge.source.download_calls == ["IMG2", "IMG2", "IMG2"]
        assert bridge.controller.stats()["outcomes"] == {"delivered": 1}
