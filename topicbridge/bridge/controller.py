# =============================================================================
# File: topicbridge/bridge/controller.py
# Description: Event intake, per-conversation queues, retry and outcome handling
# =============================================================================
# Flow of one queue item:
#
#   intake (dedup, enable flag) -> per-key queue -> module hooks/commands
#     -> topic / route resolution -> translator emit -> media pipeline
#     -> platform send -> reply index + delivery marker
#
# Every exception raised while handling an item is converted at the item
# boundary into one of: retry (transient), notice (permanent content),
# suspend (permanent config) or drop (retries exhausted).
# =============================================================================

from __future__ import annotations

import asyncio
import time
from collections import Counter
from dataclasses import dataclass
from typing import Optional, Dict, Any, Union

from topicbridge.bridge.artifacts import DeliveryResult
from topicbridge.bridge.dedup import MessageDeduplicator
from topicbridge.bridge.delivery_notifier import DeliveryNotifier
from topicbridge.bridge.enums import Direction, DeliveryOutcome, MessageKind
from topicbridge.bridge.envelope import MessageEnvelope, PendingDelivery, DestinationUpdate
from topicbridge.bridge.jid import STATUS_BROADCAST
from topicbridge.bridge.keyed_queue import KeyedQueueArena, ArenaClosedError
from topicbridge.bridge.mapping_store import MappingStore
from topicbridge.bridge.models import UserMapping
from topicbridge.bridge.modules import ModuleRegistry, parse_command
from topicbridge.bridge.ports.source_platform_port import SourcePlatformPort
from topicbridge.bridge.reply_index import ReplyIndex
from topicbridge.bridge.topic_manager import TopicManager, TopicHint
from topicbridge.bridge.translator import MessageTranslator
from topicbridge.common.exceptions.exceptions import (
    AmbiguousMappingError,
    BridgeException,
    ConversationSuspendedError,
    InvariantViolationError,
    MappingNotFoundError,
    MediaTooLargeError,
    PermanentConfigError,
    PermanentContentError,
    TopicUnavailableError,
    TransientError,
)
from topicbridge.config.bridge_config import BridgeConfig
from topicbridge.config.logging_config import get_logger
from topicbridge.infra.metrics.bridge_metrics import (
    record_duplicate,
    record_invariant_violation,
    record_item_outcome,
    record_retry,
)
from topicbridge.infra.reliability.retry import RetryPolicy, compute_backoff

log = get_logger("topicbridge.bridge.controller")


@dataclass
class ContactSync:
    """Queue item: a contact's display name changed on the source platform"""
    source_chat_id: str
    display_name: Optional[str]


QueueItem = Union[PendingDelivery, ContactSync]


class BridgeController:
    """
    Owns the per-conversation queues and turns every queue item into a
    single final outcome: delivered, notice, suspended, dropped or skipped.

    Ordering: items for one source chat (`src:<chat>`) or one topic
    (`dst:<topic>`) are handled one at a time in arrival order. Backoff
    sleeps happen inside the item's own lane, so a retrying conversation
    never delays another.
    """

    def __init__(
        self,
        config: BridgeConfig,
        store: MappingStore,
        topics: TopicManager,
        translator: MessageTranslator,
        notifier: DeliveryNotifier,
        reply_index: ReplyIndex,
        modules: Optional[ModuleRegistry] = None,
        dedup: Optional[MessageDeduplicator] = None,
    ):
        self.config = config
        self._store = store
        self._topics = topics
        self._translator = translator
        self._notifier = notifier
        self._reply_index = reply_index
        self._modules = modules if modules is not None else ModuleRegistry()
        self._dedup = dedup if dedup is not None else MessageDeduplicator(config.dedup_ttl_seconds, config.dedup_max_size)
        self._policy = RetryPolicy.from_bridge_config(config)

        self._queues: KeyedQueueArena[QueueItem] = KeyedQueueArena(
            handler=self._process,
            on_dropped=self._on_dropped,
            max_size=config.queue_max_size,
            idle_seconds=config.queue_idle_seconds,
        )
        self._enabled = config.enabled
        self._stopping = False
        self._outcomes: Counter = Counter()

    # =========================================================================
    # Enable Flag
    # =========================================================================

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        if not self._enabled:
            log.info("Bridge enabled")
        self._enabled = True

    def disable(self) -> None:
        if self._enabled:
            log.warning("Bridge disabled, inbound messages will be skipped")
        self._enabled = False

    # =========================================================================
    # Intake
    # =========================================================================

    async def consume_source(self, source: SourcePlatformPort) -> None:
        """Pump the source platform event stream until it ends or shutdown starts."""
        log.info("Source event consumer started")
        async for raw in source.events():
            if self._stopping:
                break
            try:
                await self.handle_source_event(raw)
            except Exception as e:
                log.error(f"Failed to accept source event: {e}", exc_info=True)
        log.info("Source event consumer stopped")

    async def handle_source_event(self, raw: Dict[str, Any]) -> bool:
        """Accept one raw source event. Returns True if it was queued."""
        if raw.get("type") == "contact_update":
            chat_id = raw.get("id")
            if not chat_id:
                return False
            return await self._enqueue(f"src:{chat_id}", ContactSync(chat_id, raw.get("name")))

        envelope = self._translator.normalize(raw)
        if envelope is None:
            return False
        return await self.submit(envelope)

    async def handle_destination_update(self, update: DestinationUpdate) -> bool:
        """Accept one message typed on the destination platform."""
        # The operator chat only takes module commands
        commands_only = False
        if not update.is_private_chat:
            if update.chat_id == self.config.operator_chat_id and update.chat_id != self.config.destination_group_id:
                commands_only = True
            elif update.chat_id != self.config.destination_group_id:
                log.debug(f"Ignoring update from unbridged chat {update.chat_id}")
                return False
            elif update.topic_id is None:
                log.debug("Ignoring message in the General topic")
                return False

        envelope = self._translator.normalize_destination(update)
        if envelope is None:
            return False
        if commands_only and not self._is_command(envelope):
            return False
        return await self.submit(envelope)

    async def submit(self, envelope: MessageEnvelope) -> bool:
        """Dedup and enqueue an envelope on its ordering key."""
        direction = envelope.direction.value
        if not self._enabled and not self._is_command(envelope):
            self._record(envelope, DeliveryOutcome.SKIPPED, time.time())
            return False

        if self._dedup.check_and_mark(envelope.dedup_key).is_duplicate:
            record_duplicate(direction)
            log.info(f"Duplicate event {envelope.dedup_key} ignored")
            return False

        pending = PendingDelivery(envelope=envelope, max_attempts=self.config.max_attempts)
        if not await self._enqueue(envelope.queue_key, pending):
            self._dedup.forget(envelope.dedup_key)
            return False
        return True

    async def _enqueue(self, key: str, item: QueueItem) -> bool:
        try:
            await self._queues.put(key, item)
            return True
        except ArenaClosedError:
            log.warning(f"Shutting down, rejecting item for {key}")
            return False

    # =========================================================================
    # Item Processing
    # =========================================================================

    async def _process(self, key: str, item: QueueItem) -> None:
        if isinstance(item, ContactSync):
            await self._sync_contact(item)
            return

        envelope = item.envelope
        if not await self._modules.run_hooks(envelope):
            self._record(envelope, DeliveryOutcome.SKIPPED, item.enqueued_at)
            return
        if await self._run_command(envelope):
            self._record(envelope, DeliveryOutcome.SKIPPED, item.enqueued_at)
            return

        outcome = await self._deliver_with_retry(item)
        self._record(envelope, outcome, item.enqueued_at)

    async def _deliver_with_retry(self, pending: PendingDelivery) -> DeliveryOutcome:
        envelope = pending.envelope
        while True:
            pending.attempts += 1
            try:
                await self._deliver(pending)
                return DeliveryOutcome.DELIVERED

            except ConversationSuspendedError as e:
                log.info(f"Skipping {envelope.dedup_key}: {e}")
                if envelope.direction == Direction.TO_SOURCE:
                    await self._mark_failure(envelope, "conversation suspended")
                return DeliveryOutcome.SKIPPED

            except MediaTooLargeError as e:
                log.warning(f"{envelope.dedup_key}: {e}")
                await self._notice(pending, self._translator.size_limit_notice(envelope, e))
                return DeliveryOutcome.NOTICE

            except PermanentContentError as e:
                log.warning(f"{envelope.dedup_key}: permanent content failure: {e}")
                await self._notice(pending, self._translator.content_failure_notice(envelope, e))
                return DeliveryOutcome.NOTICE

            except (PermanentConfigError, TopicUnavailableError) as e:
                log.error(f"{envelope.dedup_key}: configuration failure: {e}")
                await self._suspend(envelope, str(e))
                return DeliveryOutcome.SUSPENDED

            except (MappingNotFoundError, AmbiguousMappingError) as e:
                log.warning(f"{envelope.dedup_key}: no route: {e}")
                await self._mark_failure(envelope, str(e))
                return DeliveryOutcome.DROPPED

            except InvariantViolationError as e:
                record_invariant_violation("delivery")
                log.error(f"{envelope.dedup_key}: invariant violation: {e}")
                await self._mark_failure(envelope, "internal error")
                return DeliveryOutcome.DROPPED

            except asyncio.CancelledError:
                raise

            except Exception as e:
                if not isinstance(e, TransientError):
                    log.error(f"{envelope.dedup_key}: unexpected error: {e}", exc_info=True)
                pending.last_error = str(e)
                if pending.exhausted:
                    await self._exhausted(pending)
                    return DeliveryOutcome.DROPPED

                delay = compute_backoff(pending.attempts, self._policy, getattr(e, "retry_after", None))
                record_retry(envelope.direction.value)
                log.info(
                    f"{envelope.dedup_key}: attempt {pending.attempts}/{pending.max_attempts} failed ({e}), "
                    f"retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

    async def _deliver(self, pending: PendingDelivery) -> DeliveryResult:
        envelope = pending.envelope
        if envelope.direction == Direction.TO_DESTINATION:
            return await self._deliver_to_destination(pending)
        return await self._deliver_to_source(pending)

    async def _deliver_to_destination(self, pending: PendingDelivery) -> DeliveryResult:
        envelope = pending.envelope
        # Sender name names the topic only for private chats with someone else
        hint = TopicHint(
            display_name=None if envelope.from_self or envelope.is_group else envelope.sender_display_name,
            is_group=envelope.is_group,
        )

        await self._record_contact(envelope)
        topic_id = await self._topics.get_or_create_topic(envelope.source_chat_id, hint)
        result = await self._translator.emit(envelope, topic_id, pending)

        if envelope.kind != MessageKind.REACTION:
            participant = envelope.sender_id if envelope.is_status else None
            for message_id in result.message_ids:
                if message_id is not None:
                    self._reply_index.record(message_id, envelope.origin_id, envelope.source_chat_id, participant)
        await self._touch(envelope.source_chat_id)
        return result

    async def _deliver_to_source(self, pending: PendingDelivery) -> DeliveryResult:
        envelope = pending.envelope
        if not envelope.source_chat_id:
            envelope.source_chat_id = await self._resolve_route(envelope)
        if self._topics.is_suspended(envelope.source_chat_id):
            raise ConversationSuspendedError(envelope.source_chat_id)

        result = await self._translator.emit_to_source(envelope, pending)

        if result.primary_message_id is not None and envelope.destination_message_id is not None:
            self._reply_index.record(envelope.destination_message_id, str(result.primary_message_id), envelope.source_chat_id)
        await self._touch(envelope.source_chat_id)
        await self._notifier.mark_success(
            envelope.destination_chat_id, envelope.destination_message_id, envelope.destination_topic_id
        )
        return result

    async def _resolve_route(self, envelope: MessageEnvelope) -> str:
        """
        Find the source conversation for a destination message.

        Private chats with the bot route through the user mapping. Topic
        messages route through the quoted message if it is indexed, else
        through the single mapping that points at the topic. Replies in the
        status topic go privately to whoever posted the quoted status.
        """
        if envelope.destination_topic_id is None:
            user = await self._store.get_user(envelope.destination_user_id)
            if user is None:
                raise MappingNotFoundError(f"No conversation linked to user {envelope.destination_user_id}")
            return user.source_chat_id

        chat_id: Optional[str] = None
        target = None
        if envelope.destination_reply_to_message_id is not None:
            target = self._reply_index.source_for(envelope.destination_reply_to_message_id)
            if target is not None:
                chat_id = target.source_chat_id

        if chat_id is None:
            mappings = await self._store.chats_for_topic(envelope.destination_topic_id)
            if not mappings:
                raise MappingNotFoundError(f"Topic {envelope.destination_topic_id} is not bridged")
            if len(mappings) > 1:
                record_invariant_violation("ambiguous_topic")
                chats = ", ".join(m.source_chat_id for m in mappings)
                raise AmbiguousMappingError(f"Topic {envelope.destination_topic_id} maps to several chats: {chats}")
            chat_id = mappings[0].source_chat_id

        if chat_id == STATUS_BROADCAST:
            if target is None or not target.participant:
                raise MappingNotFoundError("Status replies must quote an indexed status to reach its author")
            chat_id = target.participant

        await self._link_user(envelope.destination_user_id, chat_id)
        return chat_id

    async def _link_user(self, user_id: Optional[int], chat_id: str) -> None:
        if user_id is None:
            return
        try:
            current = await self._store.get_user(user_id)
            if current is None or current.source_chat_id != chat_id:
                await self._store.put_user(UserMapping(destination_user_id=user_id, source_chat_id=chat_id))
        except BridgeException as e:
            log.warning(f"Could not link user {user_id} to {chat_id}: {e}")

    async def _record_contact(self, envelope: MessageEnvelope) -> None:
        if envelope.from_self or not envelope.sender_id:
            return
        try:
            await self._topics.record_contact(envelope.sender_id, envelope.sender_display_name)
        except BridgeException as e:
            log.warning(f"Could not record contact {envelope.sender_id}: {e}")

    async def _touch(self, source_chat_id: str) -> None:
        try:
            await self._store.touch_chat(source_chat_id)
        except BridgeException as e:
            log.warning(f"Could not update activity of {source_chat_id}: {e}")

    async def _sync_contact(self, item: ContactSync) -> None:
        try:
            await self._topics.sync_contact(item.source_chat_id, item.display_name)
        except BridgeException as e:
            log.warning(f"Contact sync for {item.source_chat_id} failed: {e}")

    def _is_command(self, envelope: MessageEnvelope) -> bool:
        if envelope.direction != Direction.TO_SOURCE or envelope.kind != MessageKind.TEXT:
            return False
        parsed = parse_command(envelope.text_or_caption)
        return parsed is not None and self._modules.command(parsed.name) is not None

    async def _run_command(self, envelope: MessageEnvelope) -> bool:
        """Dispatch a destination-side /command to its module. Returns True if handled."""
        if not self._is_command(envelope):
            return False
        parsed = parse_command(envelope.text_or_caption)
        handler = self._modules.command(parsed.name)

        # Refused commands are still consumed, never forwarded to the source
        if not self.config.is_admin(envelope.destination_user_id):
            log.warning(f"Refused /{parsed.name} from non-admin user {envelope.destination_user_id}")
            reply = f"⛔ /{parsed.name} is restricted to bridge admins"
        else:
            try:
                reply = await handler(envelope, parsed.args)
            except Exception as e:
                log.error(f"Command /{parsed.name} failed: {e}", exc_info=True)
                reply = f"⚠️ /{parsed.name} failed: {e}"
        if reply:
            await self._notifier.reply(
                envelope.destination_chat_id, envelope.destination_message_id, envelope.destination_topic_id, reply
            )
        return True

    # =========================================================================
    # Failure Outcomes
    # =========================================================================

    async def _notice(self, pending: PendingDelivery, text: str) -> None:
        """Surface a permanent failure where the sender can see it."""
        envelope = pending.envelope
        if envelope.direction == Direction.TO_SOURCE:
            await self._mark_failure(envelope, text)
            return

        mapping = self._store.cached_chat(envelope.source_chat_id)
        if mapping is None:
            log.warning(f"No topic for {envelope.source_chat_id}, notice not posted: {text}")
            return
        try:
            await self._translator.emit_notice(envelope, mapping.destination_topic_id, text, pending)
        except Exception as e:
            log.error(f"Could not post notice for {envelope.dedup_key}: {e}")

    async def _suspend(self, envelope: MessageEnvelope, reason: str) -> None:
        key = envelope.source_chat_id or envelope.queue_key
        if self._topics.suspend(key, reason):
            await self._notifier.report_suspension(key, reason)
        if envelope.direction == Direction.TO_SOURCE:
            await self._mark_failure(envelope, "conversation suspended")

    async def _exhausted(self, pending: PendingDelivery) -> None:
        envelope = pending.envelope
        log.error(
            f"Dropping {envelope.dedup_key} after {pending.attempts} attempts: {pending.last_error}",
            extra={"origin_id": envelope.origin_id, "queue_key": envelope.queue_key, "outcome": "dropped"},
        )
        await self._notice(pending, self._translator.exhausted_notice(envelope, pending.attempts))

    async def _mark_failure(self, envelope: MessageEnvelope, reason: str) -> None:
        if envelope.direction != Direction.TO_SOURCE or envelope.destination_message_id is None:
            return
        await self._notifier.mark_failure(
            envelope.destination_chat_id, envelope.destination_message_id, envelope.destination_topic_id, reason
        )

    def _on_dropped(self, key: str, item: QueueItem, reason: str) -> None:
        if isinstance(item, ContactSync):
            log.warning(f"Dropped contact sync for {item.source_chat_id} ({reason})")
            return
        envelope = item.envelope
        log.warning(
            f"Dropped {envelope.dedup_key} on {key} ({reason}), attempts={item.attempts}",
            extra={"origin_id": envelope.origin_id, "queue_key": key, "outcome": "dropped"},
        )
        self._record(envelope, DeliveryOutcome.DROPPED, item.enqueued_at)

    def _record(self, envelope: MessageEnvelope, outcome: DeliveryOutcome, enqueued_at: float) -> None:
        self._outcomes[outcome.value] += 1
        record_item_outcome(
            envelope.direction.value,
            envelope.kind.value,
            outcome.value,
            max(time.time() - enqueued_at, 0.0),
        )

    # =========================================================================
    # Shutdown & Stats
    # =========================================================================

    async def join(self) -> None:
        """Wait until every queued item reached its outcome."""
        await self._queues.join()

    async def stop(self) -> int:
        """Stop intake and drain. Returns the number of abandoned items."""
        self._stopping = True
        abandoned = await self._queues.stop(self.config.shutdown_grace_seconds)
        await self._notifier.close()
        return len(abandoned)

    def stats(self) -> Dict[str, Any]:
        return {
            "enabled": self._enabled,
            "active_queues": len(self._queues),
            "dedup_entries": len(self._dedup),
            "reply_index_entries": len(self._reply_index),
            "suspended": self._topics.suspended(),
            "mappings": self._store.counts(),
            "outcomes": dict(self._outcomes),
        }
