"""Tests for event bus."""

import asyncio
import pytest

from roamdex.engine.bus import EventBus, Event


@pytest.mark.asyncio
async def test_event_emit_and_subscribe():
    """Test basic pub/sub functionality."""
    bus = EventBus()
    await bus.start()

    received_events = []

    async def handler(event: Event):
        received_events.append(event)

    bus.subscribe("index.*", handler)

    await bus.emit(Event(
        type="index.rebuilt",
        data={"records": 9}
    ))
    await bus.drain()

    assert len(received_events) == 1
    assert received_events[0].type == "index.rebuilt"
    assert received_events[0].data["records"] == 9

    await bus.stop()


@pytest.mark.asyncio
async def test_wildcard_subscription():
    """Test wildcard pattern matching."""
    bus = EventBus()
    await bus.start()

    all_events = []
    index_events = []

    async def all_handler(event: Event):
        all_events.append(event)

    async def index_handler(event: Event):
        index_events.append(event)

    bus.subscribe("*", all_handler)
    bus.subscribe("index.*", index_handler)

    await bus.emit(Event(type="index.rebuilt", data={}))
    await bus.emit(Event(type="search.completed", data={}))
    await bus.emit(Event(type="index.collection_failed", data={}))
    await bus.drain()

    assert len(all_events) == 3
    assert len(index_events) == 2

    await bus.stop()


@pytest.mark.asyncio
async def test_sync_handler_and_bound_method():
    bus = EventBus()
    await bus.start()

    class Listener:
        def __init__(self):
            self.seen = []

        async def on_event(self, event: Event):
            self.seen.append(event.type)

    listener = Listener()
    sync_seen = []

    def sync_handler(event: Event):
        sync_seen.append(event.type)

    bus.subscribe("search.completed", listener.on_event)
    bus.subscribe("search.completed", sync_handler)

    bus.emit_nowait(Event(type="search.completed", data={}))
    await bus.drain()

    assert listener.seen == ["search.completed"]
    assert sync_seen == ["search.completed"]

    await bus.stop()


@pytest.mark.asyncio
async def test_handler_error_is_counted():
    bus = EventBus()
    await bus.start()

    async def broken(event: Event):
        raise RuntimeError("handler failed")

    bus.subscribe("enrichment.failed", broken)
    await bus.emit(Event(type="enrichment.failed", data={}))
    await bus.drain()

    stats = bus.get_stats()
    assert stats["handler_errors"] == 1
    assert stats["processed"] == 1

    bus.reset_stats()
    assert bus.get_stats() == {}

    await bus.stop()


@pytest.mark.asyncio
async def test_unsubscribe():
    bus = EventBus()
    await bus.start()
    received = []

    async def handler(event: Event):
        received.append(event)

    bus.subscribe("index.rebuilt", handler)
    bus.unsubscribe("index.rebuilt", handler)

    await bus.emit(Event(type="index.rebuilt", data={}))
    await bus.drain()

    assert received == []
    await bus.stop()


@pytest.mark.asyncio
async def test_event_queue_full():
    """Test behavior when event queue is full."""
    bus = EventBus(maxsize=2)
    await bus.start()

    await bus.emit(Event(type="test.1", data={}))
    await bus.emit(Event(type="test.2", data={}))

    # This should be dropped
    await bus.emit(Event(type="test.3", data={}))
    assert not bus.emit_nowait(Event(type="test.4", data={}))

    stats = bus.get_stats()
    assert stats['dropped'] == 2

    await bus.stop()


def test_pattern_matching():
    """Test pattern matching logic."""
    bus = EventBus()

    # Exact match
    assert bus._matches_pattern("index.rebuilt", "index.rebuilt")
    assert not bus._matches_pattern("index.rebuilt", "index.collection_failed")

    # Wildcard
    assert bus._matches_pattern("index.rebuilt", "index.*")
    assert bus._matches_pattern("search.completed", "search.*")
    assert not bus._matches_pattern("index.rebuilt", "search.*")
    assert not bus._matches_pattern("indexer.rebuilt", "index.*")

    # Global wildcard
    assert bus._matches_pattern("anything", "*")
