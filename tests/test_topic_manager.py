"""Tests for TopicManager: exactly-once topic creation, naming and drift."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from topicbridge.bridge.enums import ConversationState
from topicbridge.bridge.jid import CALL_BROADCAST, STATUS_BROADCAST
from topicbridge.bridge.models import ChatMapping, ContactMapping, CHAT_MAPPINGS, CONTACT_MAPPINGS, utc_now
from topicbridge.bridge.topic_manager import TopicHint
from topicbridge.common.exceptions.exceptions import (
    ConversationSuspendedError,
    TopicUnavailableError,
    TransientError,
)

from tests.conftest import ALICE, FAMILY_GROUP, GROUP_ID, build_harness, make_config


# ============================================================
# Exactly-once Creation
# ============================================================

class TestGetOrCreateTopic:

    @pytest.mark.asyncio
    async def test_concurrent_first_contact_creates_one_topic(self, bridge):
        bridge.destination.create_topic_delay = 0.05

        results = await asyncio.gather(*(
            bridge.topics.get_or_create_topic(ALICE, TopicHint("Alice")) for _ in range(10)
        ))

        assert len(set(results)) == 1
        assert bridge.destination.get_call_count("create_topic") == 1
        assert len(bridge.documents.documents(CHAT_MAPPINGS)) == 1

    @pytest.mark.asyncio
    async def test_existing_mapping_reused(self, bridge):
        mapping = ChatMapping(source_chat_id=ALICE, destination_topic_id=55, topic_name="Alice")
        bridge.documents.seed(CHAT_MAPPINGS, ALICE, mapping.to_document())

        assert await bridge.topics.get_or_create_topic(ALICE) == 55
        assert not bridge.destination.was_called("create_topic")

    @pytest.mark.asyncio
    async def test_failed_mapping_write_reuses_created_topic(self, bridge):
        bridge.documents.fail_upserts(TransientError("store down"))
        with pytest.raises(TransientError):
            await bridge.topics.get_or_create_topic(ALICE)
        assert bridge.store.cached_chat(ALICE) is None

        bridge.documents.fail_upserts(None)
        topic_id = await bridge.topics.get_or_create_topic(ALICE)

        assert topic_id == 100
        assert bridge.destination.get_call_count("create_topic") == 1
        assert bridge.store.cached_chat(ALICE).destination_topic_id == 100

    @pytest.mark.asyncio
    async def test_concurrent_writer_earliest_mapping_wins(self, bridge):
        earlier = ChatMapping(
            source_chat_id=ALICE,
            destination_topic_id=77,
            topic_name="Alice",
            created_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
        )

        async def other_instance_maps_first(group_id, name):
            bridge.documents.seed(CHAT_MAPPINGS, ALICE, earlier.to_document())

        bridge.destination.on_create_topic = other_instance_maps_first

        topic_id = await bridge.topics.get_or_create_topic(ALICE)

        assert topic_id == 77
        assert bridge.destination.topics[100].name == "[duplicate] +4915112345678"
        assert bridge.documents.documents(CHAT_MAPPINGS)[0]["destination_topic_id"] == 77

    @pytest.mark.asyncio
    async def test_suspended_conversation_raises(self, bridge):
        bridge.topics.suspend(ALICE, "not enough rights")
        with pytest.raises(ConversationSuspendedError):
            await bridge.topics.get_or_create_topic(ALICE)

    @pytest.mark.asyncio
    async def test_missing_group_raises_topic_unavailable(self, tmp_path):
        harness = build_harness(make_config(tmp_path, destination_group_id=0))
        with pytest.raises(TopicUnavailableError):
            await harness.topics.get_or_create_topic(ALICE)


# ============================================================
# Naming
# ============================================================

class TestTopicNames:

    @pytest.mark.asyncio
    async def test_broadcast_topics(self, bridge):
        assert await bridge.topics.resolve_topic_name(STATUS_BROADCAST, TopicHint()) == "📊 Status Updates"
        assert await bridge.topics.resolve_topic_name(CALL_BROADCAST, TopicHint()) == "📞 Call Logs"

    @pytest.mark.asyncio
    async def test_contact_name_preferred(self, bridge):
        await bridge.store.put_contact(ContactMapping(
            source_chat_id=ALICE, display_name="Alice Smith", handle="+4915112345678",
        ))
        bridge.source.set_profile(ALICE, "alice_p")

        assert await bridge.topics.resolve_topic_name(ALICE, TopicHint("Alice")) == "Alice Smith"

    @pytest.mark.asyncio
    async def test_stale_contact_name_falls_back_to_handle(self, bridge):
        await bridge.store.put_contact(ContactMapping(
            source_chat_id=ALICE,
            display_name="Old Name",
            handle="+4915112345678",
            last_synced=utc_now() - timedelta(days=30),
        ))

        assert await bridge.topics.resolve_topic_name(ALICE, TopicHint()) == "+4915112345678"

    @pytest.mark.asyncio
    async def test_profile_name_used(self, bridge):
        bridge.source.set_profile(ALICE, "Alice P")
        assert await bridge.topics.resolve_topic_name(ALICE, TopicHint()) == "Alice P"

    @pytest.mark.asyncio
    async def test_group_subject_from_hint(self, bridge):
        name = await bridge.topics.resolve_topic_name(FAMILY_GROUP, TopicHint("Family Chat", is_group=True))
        assert name == "Family Chat"

    @pytest.mark.asyncio
    async def test_profile_failure_falls_back_to_handle(self, bridge):
        bridge.source.configure_failure("get_profile", TransientError("timeout"))
        assert await bridge.topics.resolve_topic_name(ALICE, TopicHint()) == "+4915112345678"


# ============================================================
# Welcome Card
# ============================================================

class TestWelcomeCard:

    @pytest.mark.asyncio
    async def test_card_posted_and_pinned(self, tmp_path):
        harness = build_harness(make_config(tmp_path, send_topic_welcome=True))

        topic_id = await harness.topics.get_or_create_topic(ALICE, TopicHint("Alice"))

        texts = harness.destination.texts_in(topic_id)
        assert len(texts) == 1
        assert texts[0].startswith("👤 Contact Information")
        assert "📱 Phone: +4915112345678" in texts[0]
        assert harness.destination.pinned == [(GROUP_ID, harness.destination.messages[0].message_id)]

    @pytest.mark.asyncio
    async def test_card_failure_does_not_fail_creation(self, tmp_path):
        harness = build_harness(make_config(tmp_path, send_topic_welcome=True))
        harness.destination.configure_failure("pin_message", TransientError("flood"))

        assert await harness.topics.get_or_create_topic(ALICE) == 100
        assert harness.destination.pinned == []


# ============================================================
# Name Drift & State
# ============================================================

class TestNameDrift:

    @pytest.mark.asyncio
    async def test_rename_is_best_effort(self, bridge):
        topic_id = await bridge.topics.get_or_create_topic(ALICE)
        bridge.destination.configure_failure("edit_topic", TransientError("flood"))

        await bridge.topics.sync_contact(ALICE, "Alice Smith")

        assert bridge.destination.topics[topic_id].name == "+4915112345678"
        assert bridge.store.cached_chat(ALICE).topic_name == "+4915112345678"
        contact = await bridge.store.get_contact(ALICE)
        assert contact.display_name == "Alice Smith"

    @pytest.mark.asyncio
    async def test_unchanged_name_not_renamed(self, bridge):
        await bridge.topics.get_or_create_topic(ALICE)
        await bridge.topics.sync_contact(ALICE, "+4915112345678")
        assert not bridge.destination.was_called("edit_topic")

    @pytest.mark.asyncio
    async def test_resync_renames_from_profile(self, bridge):
        topic_id = await bridge.topics.get_or_create_topic(ALICE)
        bridge.source.set_profile(ALICE, "Alice Cooper")

        state = await bridge.topics.resync(ALICE)

        assert state == ConversationState.TOPIC_ACTIVE
        assert bridge.destination.topics[topic_id].name == "Alice Cooper"


class TestConversationState:

    @pytest.mark.asyncio
    async def test_lifecycle(self, bridge):
        assert bridge.topics.state(ALICE) == ConversationState.UNMAPPED

        await bridge.topics.get_or_create_topic(ALICE)
        assert bridge.topics.state(ALICE) == ConversationState.TOPIC_ACTIVE

        assert bridge.topics.suspend(ALICE, "rights revoked") is True
        assert bridge.topics.suspend(ALICE, "again") is False
        assert bridge.topics.state(ALICE) == ConversationState.SUSPENDED

        assert bridge.topics.resume(ALICE) is True
        assert bridge.topics.resume(ALICE) is False
        assert bridge.topics.state(ALICE) == ConversationState.TOPIC_ACTIVE

    @pytest.mark.asyncio
    async def test_record_contact_only_first_sighting(self, bridge):
        first = await bridge.topics.record_contact(ALICE, "Alice")
        again = await bridge.topics.record_contact(ALICE, "Ally")

        assert first.display_name == "Alice"
        assert again is None
        assert (await bridge.store.get_contact(ALICE)).display_name == "Alice"

    @pytest.mark.asyncio
    async def test_record_contact_skips_groups_and_broadcasts(self, bridge):
        assert await bridge.topics.record_contact(FAMILY_GROUP, "Family") is None
        assert await bridge.topics.record_contact(STATUS_BROADCAST, "Status") is None
        assert bridge.documents.documents(CONTACT_MAPPINGS) == []

    @pytest.mark.asyncio
    async def test_push_name_equal_to_handle_not_stored(self, bridge):
        contact = await bridge.topics.record_contact(ALICE, "+4915112345678")
        assert contact.display_name is None
        assert contact.effective_name() == "+4915112345678"
