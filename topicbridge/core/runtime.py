# =============================================================================
# File: topicbridge/core/runtime.py
# Description: Bridge runtime - builds and owns every long-lived component
# =============================================================================

from __future__ import annotations

import asyncio
import importlib
import inspect
from typing import Optional, List, Dict, Any

from topicbridge.bridge.controller import BridgeController
from topicbridge.bridge.dedup import MessageDeduplicator
from topicbridge.bridge.delivery_notifier import DeliveryNotifier
from topicbridge.bridge.mapping_store import MappingStore
from topicbridge.bridge.modules import ModuleRegistry, BridgeModule
from topicbridge.bridge.operator import BridgeOperator, operator_commands_module
from topicbridge.bridge.ports import DestinationPlatformPort, DocumentStorePort, SourcePlatformPort
from topicbridge.bridge.reply_index import ReplyIndex
from topicbridge.bridge.topic_manager import TopicManager
from topicbridge.bridge.translator import MessageTranslator
from topicbridge.common.exceptions.exceptions import PermanentConfigError
from topicbridge.config.bridge_config import BridgeConfig, get_bridge_config
from topicbridge.config.logging_config import get_logger, log_metrics_table
from topicbridge.config.redis_config import RedisConfig, get_redis_config
from topicbridge.config.telegram_config import TelegramConfig, get_telegram_config
from topicbridge.infra.media.pipeline import MediaPipeline
from topicbridge.infra.persistence.redis_store import RedisDocumentStore, build_redis_client
from topicbridge.infra.telegram.adapter import TelegramAdapter

log = get_logger("topicbridge.runtime")


def load_source_adapter(path: str, config: BridgeConfig) -> Any:
    """
    Resolve BRIDGE_SOURCE_ADAPTER ("package.module:factory") and call the
    factory with the bridge config. The factory may be sync or async.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise PermanentConfigError(f"Source adapter path must look like 'package.module:factory', got '{path}'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise PermanentConfigError(f"Cannot import source adapter module '{module_name}': {e}") from e
    factory = getattr(module, attr, None)
    if factory is None or not callable(factory):
        raise PermanentConfigError(f"'{attr}' in '{module_name}' is not callable")
    return factory(config)


class BridgeRuntime:
    """
    Composition root of the bridge.

    Collaborators can be injected (tests); anything left out is built from
    configuration when start() runs:
        - document store: Redis (REDIS_*)
        - destination: TelegramAdapter (TELEGRAM_*)
        - source: factory named by BRIDGE_SOURCE_ADAPTER
    """

    def __init__(
        self,
        bridge_config: Optional[BridgeConfig] = None,
        telegram_config: Optional[TelegramConfig] = None,
        redis_config: Optional[RedisConfig] = None,
        source: Optional[SourcePlatformPort] = None,
        destination: Optional[DestinationPlatformPort] = None,
        document_store: Optional[DocumentStorePort] = None,
        extra_modules: Optional[List[BridgeModule]] = None,
    ):
        self.bridge_config = bridge_config or get_bridge_config()
        self.telegram_config = telegram_config or get_telegram_config()
        self.redis_config = redis_config or get_redis_config()

        self.source = source
        self.destination = destination
        self.document_store = document_store
        self._extra_modules = list(extra_modules or [])

        self.telegram: Optional[TelegramAdapter] = destination if isinstance(destination, TelegramAdapter) else None
        self.pipeline: Optional[MediaPipeline] = None
        self.mapping_store: Optional[MappingStore] = None
        self.reply_index: Optional[ReplyIndex] = None
        self.topics: Optional[TopicManager] = None
        self.translator: Optional[MessageTranslator] = None
        self.notifier: Optional[DeliveryNotifier] = None
        self.controller: Optional[BridgeController] = None
        self.operator: Optional[BridgeOperator] = None
        self.modules = ModuleRegistry()

        self._tasks: List[asyncio.Task] = []
        self._polling_stop = asyncio.Event()
        self.started = False

    # =========================================================================
    # Startup
    # =========================================================================

    async def start(self) -> None:
        if self.started:
            return

        await self._init_store()
        await self._init_destination()
        await self._init_source()
        self._build_bridge()

        await self.mapping_store.load()
        await self.modules.init_all(self.operator)

        self._tasks.append(asyncio.create_task(self._consume_source(), name="source-consumer"))
        await self._start_destination_ingress()

        self.started = True
        log_metrics_table(log, "Bridge runtime", {
            "destination group": self.bridge_config.destination_group_id,
            "bridge enabled": self.controller.enabled,
            "modules": ", ".join(self.modules.names()) or "-",
            "ingress": "polling" if self.telegram_config.enable_polling else "webhook",
            **{f"{name} mappings": count for name, count in self.mapping_store.counts().items()},
        })

    async def _init_store(self) -> None:
        if self.document_store is None:
            self.document_store = RedisDocumentStore(build_redis_client(self.redis_config), self.redis_config.key_prefix)
            log.info("Redis document store created")
        self.mapping_store = MappingStore(self.document_store, timeout=self.bridge_config.store_timeout_seconds)

    async def _init_destination(self) -> None:
        if self.destination is None:
            self.telegram = TelegramAdapter(self.telegram_config)
            self.destination = self.telegram
        if self.telegram is not None and not await self.telegram.initialize():
            raise PermanentConfigError("Telegram adapter failed to initialize, check TELEGRAM_BOT_TOKEN")

    async def _init_source(self) -> None:
        if self.source is None:
            if not self.bridge_config.source_adapter:
                raise PermanentConfigError("BRIDGE_SOURCE_ADAPTER is not set")
            source = load_source_adapter(self.bridge_config.source_adapter, self.bridge_config)
            if inspect.isawaitable(source):
                source = await source
            self.source = source
        if not isinstance(self.source, SourcePlatformPort):
            raise PermanentConfigError(f"{type(self.source).__name__} does not implement SourcePlatformPort")
        log.info(f"Source adapter: {type(self.source).__name__}")

    def _build_bridge(self) -> None:
        config = self.bridge_config
        self.pipeline = MediaPipeline(config, self.source, self.destination)
        self.reply_index = ReplyIndex(config.reply_index_ttl_seconds, config.reply_index_max_size)
        self.topics = TopicManager(config, self.mapping_store, self.destination, self.source)
        self.translator = MessageTranslator(config, self.source, self.destination, self.pipeline, self.reply_index)
        self.notifier = DeliveryNotifier(config, self.destination)
        self.controller = BridgeController(
            config,
            self.mapping_store,
            self.topics,
            self.translator,
            self.notifier,
            self.reply_index,
            modules=self.modules,
            dedup=MessageDeduplicator(config.dedup_ttl_seconds, config.dedup_max_size),
        )
        self.operator = BridgeOperator(self.controller, self.topics, self.mapping_store)

        self.modules.register(operator_commands_module(self.operator))
        for module in self._extra_modules:
            self.modules.register(module)

    async def _start_destination_ingress(self) -> None:
        if self.telegram is None:
            return
        if self.telegram_config.enable_polling:
            self._tasks.append(asyncio.create_task(
                self.telegram.run_polling(self.controller.handle_destination_update, self._polling_stop),
                name="telegram-polling",
            ))
        elif self.telegram_config.webhook_url:
            if not await self.telegram.setup_webhook():
                log.warning("Telegram webhook registration failed, updates will not arrive")
        else:
            log.warning("Neither polling nor a webhook URL configured, destination messages will not arrive")

    async def _consume_source(self) -> None:
        try:
            await self.controller.consume_source(self.source)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.critical(f"Source event stream failed: {e}", exc_info=True)

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def stop(self) -> None:
        """Drain queues, stop ingress, then release adapters and the store."""
        if self.controller is not None:
            abandoned = await self.controller.stop()
            if abandoned:
                log.warning(f"{abandoned} queued items abandoned at shutdown")

        self._polling_stop.set()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await self.modules.destroy_all()
        if self.pipeline is not None:
            await self.pipeline.close()

        close_source = getattr(self.source, "close", None)
        if close_source is not None:
            try:
                await close_source()
            except Exception as e:
                log.error(f"Error closing source adapter: {e}")

        if self.telegram is not None:
            await self.telegram.close()
        if isinstance(self.document_store, RedisDocumentStore):
            await self.document_store.close()

        self.started = False
        log.info("Bridge runtime stopped")

    # =========================================================================
    # Introspection
    # =========================================================================

    @property
    def destination_ready(self) -> bool:
        if self.telegram is not None:
            return self.telegram.initialized
        return self.destination is not None

    async def ping_store(self) -> bool:
        ping = getattr(self.document_store, "ping", None)
        if ping is None:
            return self.document_store is not None
        return await ping()

    def stats(self) -> Dict[str, Any]:
        stats = self.controller.stats()
        stats["active_media_sessions"] = self.pipeline.active_sessions
        stats["modules"] = {
            "registered": self.modules.names(),
            "commands": self.modules.commands(),
            "disabled": self.modules.disabled(),
        }
        return stats
