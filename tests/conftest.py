"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

import pytest
import pytest_asyncio

from topicbridge.bridge.controller import BridgeController
from topicbridge.bridge.delivery_notifier import DeliveryNotifier
from topicbridge.bridge.mapping_store import MappingStore
from topicbridge.bridge.modules import ModuleRegistry
from topicbridge.bridge.operator import BridgeOperator, operator_commands_module
from topicbridge.bridge.reply_index import ReplyIndex
from topicbridge.bridge.topic_manager import TopicManager
from topicbridge.bridge.translator import MessageTranslator
from topicbridge.config.bridge_config import BridgeConfig
from topicbridge.infra.media.pipeline import MediaPipeline

from tests.fakes.fake_document_store import FakeDocumentStore
from tests.fakes.fake_source_platform import FakeSourcePlatform
from tests.fakes.fake_telegram_adapter import FakeTelegramAdapter
from tests.fakes.fake_transcoder import FakeTranscoder

GROUP_ID = -1001000000001
OPERATOR_CHAT_ID = -1001000000002
ADMIN_ID = 9
ALICE = "4915112345678@s.whatsapp.net"
BOB = "4915187654321@s.whatsapp.net"
FAMILY_GROUP = "120363000000000001@g.us"

KB = 1024


def make_config(tmp_path, **overrides) -> BridgeConfig:
    settings: Dict[str, Any] = dict(
        destination_group_id=GROUP_ID,
        operator_chat_id=OPERATOR_CHAT_ID,
        admin_user_ids=[ADMIN_ID],
        enabled=True,
        send_topic_welcome=False,
        max_attempts=3,
        backoff_base_seconds=0.01,
        backoff_max_seconds=0.05,
        backoff_jitter=False,
        api_timeout_seconds=2.0,
        download_timeout_seconds=2.0,
        upload_timeout_seconds=2.0,
        store_timeout_seconds=2.0,
        transcode_timeout_seconds=2.0,
        queue_idle_seconds=0.5,
        shutdown_grace_seconds=0.5,
        operator_notice_window_seconds=0.3,
        max_image_bytes=64 * KB,
        max_video_bytes=64 * KB,
        max_audio_bytes=64 * KB,
        max_voice_bytes=64 * KB,
        max_document_bytes=64 * KB,
        max_sticker_bytes=16 * KB,
        stream_chunk_size=4 * KB,
        temp_dir=str(tmp_path / "media"),
        source_adapter="",
    )
    settings.update(overrides)
    return BridgeConfig(**settings)


@dataclass
class BridgeHarness:
    """Fully wired bridge on in-memory fakes."""
    config: BridgeConfig
    documents: FakeDocumentStore
    source: FakeSourcePlatform
    destination: FakeTelegramAdapter
    transcoder: FakeTranscoder
    store: MappingStore
    pipeline: MediaPipeline
    reply_index: ReplyIndex
    topics: TopicManager
    translator: MessageTranslator
    notifier: DeliveryNotifier
    modules: ModuleRegistry
    controller: BridgeController
    operator: BridgeOperator

    async def receive(self, *events: Dict[str, Any]) -> None:
        """Feed raw source events and wait until every queue is idle."""
        for raw in events:
            await self.controller.handle_source_event(raw)
        await self.controller.join()

    async def reply(self, update) -> bool:
        accepted = await self.controller.handle_destination_update(update)
        await self.controller.join()
        return accepted

    def topic_for(self, chat_id: str) -> int:
        mapping = self.store.cached_chat(chat_id)
        assert mapping is not None, f"no topic for {chat_id}"
        return mapping.destination_topic_id


def build_harness(config: BridgeConfig, source: FakeSourcePlatform = None) -> BridgeHarness:
    documents = FakeDocumentStore()
    source = source or FakeSourcePlatform()
    destination = FakeTelegramAdapter()
    transcoder = FakeTranscoder()

    store = MappingStore(documents, timeout=config.store_timeout_seconds)
    pipeline = MediaPipeline(config, source, destination, transcoder=transcoder)
    reply_index = ReplyIndex(config.reply_index_ttl_seconds, config.reply_index_max_size)
    topics = TopicManager(config, store, destination, source)
    translator = MessageTranslator(config, source, destination, pipeline, reply_index)
    notifier = DeliveryNotifier(config, destination)
    modules = ModuleRegistry()
    controller = BridgeController(config, store, topics, translator, notifier, reply_index, modules=modules)
    operator = BridgeOperator(controller, topics, store)
    modules.register(operator_commands_module(operator))

    return BridgeHarness(
        config=config,
        documents=documents,
        source=source,
        destination=destination,
        transcoder=transcoder,
        store=store,
        pipeline=pipeline,
        reply_index=reply_index,
        topics=topics,
        translator=translator,
        notifier=notifier,
        modules=modules,
        controller=controller,
        operator=operator,
    )


@pytest.fixture
def bridge_config(tmp_path) -> BridgeConfig:
    return make_config(tmp_path)


@pytest_asyncio.fixture
async def bridge(bridge_config):
    harness = build_harness(bridge_config)
    yield harness
    await harness.controller.stop()
    await harness.pipeline.close()
