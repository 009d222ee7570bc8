"""Persistence backends and event bus."""

import asyncio
import json

import pytest

from varflow import Event, EventBus, EventType, JsonFilePersistence, MemoryPersistence


class TestMemoryPersistence:
    @pytest.mark.asyncio
    async def test_round_trip_per_scope(self):
        store = MemoryPersistence()
        await store.persist("p1", "hp", 3)
        await store.persist("p2", "hp", 9)
        assert await store.load_all("p1") == {"hp": 3}
        assert await store.load_all("missing") == {}

    @pytest.mark.asyncio
    async def test_load_all_returns_copy(self):
        store = MemoryPersistence({"p1": {"hp": 3}})
        values = await store.load_all("p1")
        values["hp"] = 0
        assert await store.load_all("p1") == {"hp": 3}


class TestJsonFilePersistence:
    @pytest.mark.asyncio
    async def test_written_to_disk(self, tmp_path):
        path = tmp_path / "state.json"
        store = JsonFilePersistence(path)
        await store.persist("p1", "hp", 3)
        assert json.loads(path.read_text()) == {"p1": {"hp": 3}}
        assert await JsonFilePersistence(path).load_all("p1") == {"hp": 3}

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path):
        assert await JsonFilePersistence(tmp_path / "none.json").load_all("p1") == {}

    @pytest.mark.asyncio
    async def test_corrupt_file_is_empty(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        assert await JsonFilePersistence(path).load_all("p1") == {}

    @pytest.mark.asyncio
    async def test_clear(self, tmp_path):
        store = JsonFilePersistence(tmp_path / "state.json")
        await store.persist("p1", "a", 1)
        await store.persist("p2", "a", 2)
        await store.clear("p1")
        assert await store.load_all("p1") == {}
        assert await store.load_all("p2") == {"a": 2}

    @pytest.mark.asyncio
    async def test_concurrent_persists_all_land(self, tmp_path):
        path = tmp_path / "state.json"
        store = JsonFilePersistence(path)
        await asyncio.gather(*(store.persist("p1", f"v{i}", i) for i in range(20)))
        assert json.loads(path.read_text())["p1"] == {f"v{i}": i for i in range(20)}
        assert not path.with_suffix(".json.tmp").exists()


class TestEventBus:
    @pytest.mark.asyncio
    async def test_typed_and_wildcard(self):
        bus = EventBus()
        typed, everything = [], []
        bus.subscribe(EventType.VARIABLE_MODIFIED, typed.append)
        bus.subscribe_all(everything.append)
        await bus.resolved("p1", "a", 1)
        await bus.modified("p1", "a", 2)
        assert [e.value for e in typed] == [2]
        assert [e.event_type for e in everything] == [
            EventType.VARIABLE_RESOLVED,
            EventType.VARIABLE_MODIFIED,
        ]

    @pytest.mark.asyncio
    async def test_async_handler(self):
        bus = EventBus()
        seen = []

        async def handler(event):
            seen.append(event.name)

        bus.subscribe(EventType.VARIABLE_RESOLVED, handler)
        await bus.resolved("p1", "hp", 3)
        assert seen == ["hp"]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(EventType.VARIABLE_RESOLVED, broken)
        bus.subscribe(EventType.VARIABLE_RESOLVED, seen.append)
        await bus.resolved("p1", "hp", 3)
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_and_history(self):
        bus = EventBus(max_history=2)
        bus.subscribe(EventType.COMMAND_FAILED, print)
        assert bus.unsubscribe(EventType.COMMAND_FAILED, print)
        assert not bus.unsubscribe(EventType.COMMAND_FAILED, print)
        for i in range(3):
            await bus.emit(Event(EventType.VARIABLE_RESOLVED, "p1", "x", i))
        assert [e.value for e in bus.history()] == [1, 2]
        assert bus.handler_count == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_wildcard_and_clear_history(self):
        bus = EventBus()
        seen = []
        bus.subscribe_all(seen.append)
        await bus.modified("p1", "a", 1)
        assert bus.unsubscribe_all(seen.append)
        assert not bus.unsubscribe_all(seen.append)
        await bus.modified("p1", "a", 2)
        assert [e.value for e in seen] == [1]
        assert len(bus.history()) == 2
        bus.clear_history()
        assert bus.history() == []
