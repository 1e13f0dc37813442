# =============================================================================
# File: topicbridge/bridge/keyed_queue.py
# Description: Arena of per-key FIFO queues, one worker task per active key
# =============================================================================

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, Generic, TypeVar, Callable, Awaitable, Optional, List, Tuple

from topicbridge.config.logging_config import get_logger
from topicbridge.infra.metrics.bridge_metrics import bridge_active_queues

log = get_logger("topicbridge.bridge.keyed_queue")

T = TypeVar("T")

ItemHandler = Callable[[str, T], Awaitable[None]]
DropHandler = Callable[[str, T, str], None]


class ArenaClosedError(RuntimeError):
    """Raised when an item is offered after shutdown began"""


@dataclass
class _Lane(Generic[T]):
    queue: asyncio.Queue
    worker: Optional[asyncio.Task] = None
    current: Optional[T] = None


class KeyedQueueArena(Generic[T]):
    """
    Items sharing a key are handled strictly in arrival order by that key's
    worker; distinct keys never wait on each other.

    Workers start on the first item for a key and retire after
    `idle_seconds` without work. Each queue is bounded, so a flooding
    conversation applies backpressure to its producer only.

    stop() refuses new items, lets lanes drain for the grace period, then
    cancels the workers and reports every unfinished item to `on_dropped`.
    """

    def __init__(
        self,
        handler: ItemHandler,
        on_dropped: Optional[DropHandler] = None,
        max_size: int = 1000,
        idle_seconds: float = 60.0,
    ):
        self._handler = handler
        self._on_dropped = on_dropped
        self._max_size = max_size
        self._idle_seconds = idle_seconds
        self._lanes: Dict[str, _Lane[T]] = {}
        self._closed = False

    # =========================================================================
    # Intake
    # =========================================================================

    async def put(self, key: str, item: T) -> None:
        """Enqueue an item, waiting while the key's queue is full."""
        if self._closed:
            raise ArenaClosedError(f"Queue arena closed, rejecting item for {key}")
        lane = self._lane(key)
        await lane.queue.put(item)

    def _lane(self, key: str) -> _Lane[T]:
        lane = self._lanes.get(key)
        if lane is None:
            lane = _Lane(queue=asyncio.Queue(maxsize=self._max_size))
            lane.worker = asyncio.create_task(self._run(key, lane), name=f"bridge-queue-{key}")
            self._lanes[key] = lane
            bridge_active_queues.set(len(self._lanes))
        return lane

    # =========================================================================
    # Worker
    # =========================================================================

    async def _run(self, key: str, lane: _Lane[T]) -> None:
        while True:
            try:
                async with asyncio.timeout(self._idle_seconds):
                    item = await lane.queue.get()
            except TimeoutError:
                if lane.queue.empty():
                    self._retire(key, lane)
                    return
                continue

            lane.current = item
            try:
                await self._handler(key, item)
            except asyncio.CancelledError:
                self._drop(key, item, "cancelled")
                lane.current = None
                lane.queue.task_done()
                raise
            except Exception as e:
                log.exception(f"Unhandled error for queue item on {key}: {e}")
            lane.current = None
            lane.queue.task_done()

    def _retire(self, key: str, lane: _Lane[T]) -> None:
        if self._lanes.get(key) is lane:
            del self._lanes[key]
            bridge_active_queues.set(len(self._lanes))
            log.debug(f"Queue {key} retired after {self._idle_seconds:.0f}s idle")

    async def join(self) -> None:
        """Wait until every queued item has been handled."""
        while True:
            lanes = list(self._lanes.values())
            await asyncio.gather(*(lane.queue.join() for lane in lanes))
            if all(lane.queue.empty() and lane.current is None for lane in self._lanes.values()):
                return

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def stop(self, grace_seconds: float) -> List[Tuple[str, T]]:
        """
        Stop intake, drain for up to `grace_seconds`, abandon the rest.

        Returns the (key, item) pairs that were abandoned.
        """
        self._closed = True
        lanes = list(self._lanes.items())
        if not lanes:
            return []

        log.info(f"Draining {len(lanes)} queue(s), grace {grace_seconds:.1f}s")
        joins = [asyncio.create_task(lane.queue.join()) for _, lane in lanes]
        done, pending = await asyncio.wait(joins, timeout=grace_seconds)
        for task in pending:
            task.cancel()

        abandoned: List[Tuple[str, T]] = []
        for key, lane in lanes:
            if lane.current is not None and lane.worker is not None and not lane.worker.done():
                abandoned.append((key, lane.current))
            while not lane.queue.empty():
                item = lane.queue.get_nowait()
                lane.queue.task_done()
                abandoned.append((key, item))
                self._drop(key, item, "shutdown")

        workers = [lane.worker for _, lane in lanes if lane.worker is not None]
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        self._lanes.clear()
        bridge_active_queues.set(0)
        if abandoned:
            log.warning(f"Shutdown abandoned {len(abandoned)} queue item(s)")
        return abandoned

    def _drop(self, key: str, item: T, reason: str) -> None:
        if self._on_dropped is None:
            log.warning(f"Dropped queue item on {key} ({reason})")
            return
        try:
            self._on_dropped(key, item, reason)
        except Exception as e:
            log.error(f"Drop handler failed for {key}: {e}")

    # =========================================================================
    # Introspection
    # =========================================================================

    def active_keys(self) -> List[str]:
        return list(self._lanes)

    def __len__(self) -> int:
        return len(self._lanes)
