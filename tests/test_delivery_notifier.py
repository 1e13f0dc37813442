"""Tests for DeliveryNotifier markers and operator notice aggregation."""

import asyncio

import pytest

from topicbridge.bridge.delivery_notifier import DeliveryNotifier
from topicbridge.common.exceptions.exceptions import PermanentContentError, TransientError

from tests.conftest import GROUP_ID, OPERATOR_CHAT_ID, make_config
from tests.fakes.fake_telegram_adapter import FakeTelegramAdapter


@pytest.fixture
def destination():
    return FakeTelegramAdapter()


@pytest.fixture
def notifier(tmp_path, destination):
    return DeliveryNotifier(make_config(tmp_path), destination)


class TestMarkers:

    @pytest.mark.asyncio
    async def test_success_reaction(self, notifier, destination):
        assert await notifier.mark_success(GROUP_ID, 10, 100) is True
        assert destination.reactions == [(GROUP_ID, 10, "👍")]
        assert destination.messages == []

    @pytest.mark.asyncio
    async def test_failure_reaction_with_reason(self, notifier, destination):
        await notifier.mark_failure(GROUP_ID, 11, 100, "file too large")

        assert destination.reactions == [(GROUP_ID, 11, "❌")]
        reply = destination.messages[0]
        assert reply.text == "❌ file too large"
        assert reply.topic_id == 100
        assert reply.content.reply_to_message_id == 11

    @pytest.mark.asyncio
    async def test_reaction_failure_falls_back_to_reply(self, notifier, destination):
        destination.configure_failure("set_reaction", PermanentContentError("REACTION_INVALID"))

        assert await notifier.mark_success(GROUP_ID, 12, 100) is True
        assert destination.texts_in(100) == ["👍"]

    @pytest.mark.asyncio
    async def test_errors_never_raised(self, notifier, destination):
        destination.configure_failure("set_reaction", TransientError("down"))
        destination.configure_failure("send", TransientError("down"))

        assert await notifier.mark_failure(GROUP_ID, 13, 100, "oops") is False


class TestOperatorNotices:

    @pytest.mark.asyncio
    async def test_notice_goes_to_operator_chat(self, notifier, destination):
        assert await notifier.notify_operator("hello operator") is True
        assert destination.texts_in(None, chat_id=OPERATOR_CHAT_ID) == ["hello operator"]

    @pytest.mark.asyncio
    async def test_no_operator_chat_configured(self, tmp_path, destination):
        notifier = DeliveryNotifier(make_config(tmp_path, operator_chat_id=None), destination)
        assert await notifier.notify_operator("lost") is False
        assert destination.messages == []

    @pytest.mark.asyncio
    async def test_suspensions_aggregated_within_window(self, notifier, destination):
        await notifier.report_suspension("a@s.whatsapp.net", "no rights")
        await notifier.report_suspension("b@s.whatsapp.net", "no rights")
        await notifier.report_suspension("c@s.whatsapp.net", "topic closed")

        assert len(destination.texts_in(None, chat_id=OPERATOR_CHAT_ID)) == 1

        await asyncio.sleep(0.5)

        notices = destination.texts_in(None, chat_id=OPERATOR_CHAT_ID)
        assert len(notices) == 2
        assert notices[1] == (
            "⛔ 2 more conversation(s) suspended:\n"
            "• b@s.whatsapp.net: no rights\n"
            "• c@s.whatsapp.net: topic closed"
        )

    @pytest.mark.asyncio
    async def test_close_flushes_buffer(self, notifier, destination):
        await notifier.report_suspension("a@s.whatsapp.net", "no rights")
        await notifier.report_suspension("b@s.whatsapp.net", "no rights")

        await notifier.close()

        assert len(destination.texts_in(None, chat_id=OPERATOR_CHAT_ID)) == 2
