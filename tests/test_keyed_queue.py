"""Tests for KeyedQueueArena ordering, isolation and shutdown."""

import asyncio

import pytest

from topicbridge.bridge.keyed_queue import ArenaClosedError, KeyedQueueArena


class Recorder:
    """Queue handler that records items, sleeping per item when asked."""

    def __init__(self, delays=None):
        self.handled = []
        self.dropped = []
        self.delays = delays or {}

    async def handle(self, key, item):
        await asyncio.sleep(self.delays.get(item, 0))
        self.handled.append((key, item))

    def drop(self, key, item, reason):
        self.dropped.append((key, item, reason))


@pytest.fixture
def recorder():
    return Recorder()


class TestOrdering:

    @pytest.mark.asyncio
    async def test_items_for_one_key_in_order(self):
        recorder = Recorder(delays={"a1": 0.05})
        arena = KeyedQueueArena(recorder.handle, recorder.drop, idle_seconds=1)

        for item in ("a1", "a2", "a3"):
            await arena.put("a", item)
        await arena.join()

        assert recorder.handled == [("a", "a1"), ("a", "a2"), ("a", "a3")]
        await arena.stop(0.1)

    @pytest.mark.asyncio
    async def test_keys_do_not_block_each_other(self):
        recorder = Recorder(delays={"slow": 0.2})
        arena = KeyedQueueArena(recorder.handle, recorder.drop, idle_seconds=1)

        await arena.put("a", "slow")
        await arena.put("b", "fast")
        await arena.join()

        assert recorder.handled == [("b", "fast"), ("a", "slow")]
        await arena.stop(0.1)

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_lane(self):
        handled = []

        async def handler(key, item):
            if item == "bad":
                raise ValueError("boom")
            handled.append(item)

        arena = KeyedQueueArena(handler, idle_seconds=1)
        await arena.put("a", "bad")
        await arena.put("a", "good")
        await arena.join()

        assert handled == ["good"]
        await arena.stop(0.1)


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_idle_lane_retired(self, recorder):
        arena = KeyedQueueArena(recorder.handle, recorder.drop, idle_seconds=0.05)

        await arena.put("a", "a1")
        await arena.join()
        assert arena.active_keys() == ["a"]

        await asyncio.sleep(0.2)
        assert len(arena) == 0

        await arena.put("a", "a2")
        await arena.join()
        assert recorder.handled == [("a", "a1"), ("a", "a2")]
        await arena.stop(0.1)

    @pytest.mark.asyncio
    async def test_stop_abandons_unfinished_items(self):
        recorder = Recorder(delays={"a1": 5})
        arena = KeyedQueueArena(recorder.handle, recorder.drop, idle_seconds=1)

        await arena.put("a", "a1")
        await arena.put("a", "a2")
        await asyncio.sleep(0.05)

        abandoned = await arena.stop(0.1)

        assert abandoned == [("a", "a1"), ("a", "a2")]
        assert ("a", "a2", "shutdown") in recorder.dropped
        assert ("a", "a1", "cancelled") in recorder.dropped
        assert recorder.handled == []

    @pytest.mark.asyncio
    async def test_stop_drains_within_grace(self, recorder):
        arena = KeyedQueueArena(recorder.handle, recorder.drop, idle_seconds=1)
        await arena.put("a", "a1")

        assert await arena.stop(1.0) == []
        assert recorder.handled == [("a", "a1")]

    @pytest.mark.asyncio
    async def test_put_after_stop_rejected(self, recorder):
        arena = KeyedQueueArena(recorder.handle, recorder.drop)
        await arena.stop(0.1)

        with pytest.raises(ArenaClosedError):
            await arena.put("a", "late")
