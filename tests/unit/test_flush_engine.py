"""Unit tests for window aggregation and the flush engine."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from oven_monitor.errors import PersistenceError
from oven_monitor.models import AggregationMode, LoggingSpec, OvenId
from oven_monitor.services import (
    FlushEngine,
    LiveStateCache,
    SessionRegistry,
    WindowAccumulator,
    aggregate_window
)


FIXED_NOW = datetime(2024, 3, 4, 10, 15, tzinfo=timezone.utc)


class TestAggregateWindow:
    """Test aggregate_window."""

    def test_average(self):
        assert aggregate_window(AggregationMode.AVERAGE, 66.0, 3, 24.0) == 22.0

    def test_average_empty_window_uses_cached_value(self):
        assert aggregate_window(AggregationMode.AVERAGE, 0.0, 0, 19.5) == 19.5

    def test_average_nothing_known(self):
        assert aggregate_window(AggregationMode.AVERAGE, 0.0, 0, None) is None

    def test_last_ignores_window(self):
        assert aggregate_window(AggregationMode.LAST, 66.0, 3, 25.0) == 25.0

    def test_last_nothing_known(self):
        assert aggregate_window(AggregationMode.LAST, 66.0, 3, None) is None


class TestFlushEngine:
    """Test FlushEngine against an in-memory document store."""

    @pytest.fixture
    def specs(self):
        return {oven_id: LoggingSpec() for oven_id in OvenId}

    @pytest.fixture
    def parts(self, document_store, state_store, specs):
        accumulator = WindowAccumulator()
        live_state = LiveStateCache()
        registry = SessionRegistry(document_store, state_store, accumulator)
        engine = FlushEngine(
            registry,
            accumulator,
            live_state,
            document_store,
            specs.__getitem__,
            clock=lambda: FIXED_NOW
        )
        return registry, accumulator, live_state, engine

    @pytest.mark.asyncio
    async def test_average_window_persisted(self, parts, document_store):
        registry, accumulator, live_state, engine = parts
        await registry.start(OvenId.OVEN1, "ORD-1", "Colle Blanche", 10)

        for value in (20.0, 22.0, 24.0):
            live_state.update(OvenId.OVEN1, value)
            accumulator.add(OvenId.OVEN1, value)

        record = await engine.flush(OvenId.OVEN1)

        assert record.temperature == 22.0
        assert record.timestamp == FIXED_NOW
        assert accumulator.peek(OvenId.OVEN1) == (0.0, 0)

        documents = await document_store.find("ORD-1")
        assert len(documents) == 1
        assert documents[0]["ovenId"] == "oven1"
        assert documents[0]["temperature"] == 22.0
        assert documents[0]["timestamp"] == FIXED_NOW

    @pytest.mark.asyncio
    async def test_empty_window_falls_back_and_rounds(self, parts, document_store):
        registry, accumulator, live_state, engine = parts
        await registry.start(OvenId.OVEN2, "ORD-2", "Vernis Dolphon", 1)
        live_state.update(OvenId.OVEN2, 180.456)

        record = await engine.flush(OvenId.OVEN2)

        assert record.temperature == 180.46
        assert (await document_store.find("ORD-2"))[0]["temperature"] == 180.46

    @pytest.mark.asyncio
    async def test_nothing_received_writes_nothing(self, parts, document_store):
        registry, accumulator, live_state, engine = parts
        await registry.start(OvenId.OVEN1, "ORD-3", "Colle Noir", 2)

        assert await engine.flush(OvenId.OVEN1) is None
        assert await document_store.find("ORD-3") == []

    @pytest.mark.asyncio
    async def test_last_mode(self, parts, specs):
        registry, accumulator, live_state, engine = parts
        specs[OvenId.OVEN1] = LoggingSpec(aggregation=AggregationMode.LAST)
        await registry.start(OvenId.OVEN1, "ORD-4", "Colle Noir", 2)

        for value in (10.0, 30.0):
            live_state.update(OvenId.OVEN1, value)
            accumulator.add(OvenId.OVEN1, value)

        record = await engine.flush(OvenId.OVEN1)

        assert record.temperature == 30.0
        assert accumulator.peek(OvenId.OVEN1) == (0.0, 0)

    @pytest.mark.asyncio
    async def test_no_session_resets_window(self, parts):
        registry, accumulator, live_state, engine = parts
        accumulator.add(OvenId.OVEN1, 50.0)

        assert await engine.flush(OvenId.OVEN1) is None
        assert accumulator.peek(OvenId.OVEN1) == (0.0, 0)
        assert engine.records_written == 0

    @pytest.mark.asyncio
    async def test_persistence_failure_loses_window_only(self, parts, document_store):
        registry, accumulator, live_state, engine = parts
        await registry.start(OvenId.OVEN1, "ORD-5", "Colle Blanche", 3)
        live_state.update(OvenId.OVEN1, 40.0)
        accumulator.add(OvenId.OVEN1, 40.0)

        engine.store = AsyncMock()
        engine.store.insert_one.side_effect = PersistenceError("disk I/O error")

        assert await engine.flush(OvenId.OVEN1) is None
        assert engine.failure_count == 1
        assert accumulator.peek(OvenId.OVEN1) == (0.0, 0)
        assert registry.is_running(OvenId.OVEN1)

        engine.store = document_store
        accumulator.add(OvenId.OVEN1, 42.0)
        record = await engine.flush(OvenId.OVEN1)

        assert record.temperature == 42.0
        assert engine.records_written == 1

    @pytest.mark.asyncio
    async def test_readings_during_write_go_to_next_window(self, parts, document_store):
        registry, accumulator, live_state, engine = parts
        await registry.start(OvenId.OVEN1, "ORD-6", "Colle Noir", 1)
        for value in (20.0, 22.0):
            live_state.update(OvenId.OVEN1, value)
            accumulator.add(OvenId.OVEN1, value)

        release = asyncio.Event()
        writing = asyncio.Event()
        real_insert = document_store.insert_one

        async def held_insert(collection, document):
            writing.set()
            await release.wait()
            return await real_insert(collection, document)

        engine.store = AsyncMock()
        engine.store.insert_one.side_effect = held_insert

        flush = asyncio.create_task(engine.flush(OvenId.OVEN1))
        await writing.wait()

        live_state.update(OvenId.OVEN1, 90.0)
        accumulator.add(OvenId.OVEN1, 90.0)
        release.set()
        record = await flush

        assert record.temperature == 21.0
        assert (await document_store.find("ORD-6"))[0]["temperature"] == 21.0
        assert accumulator.peek(OvenId.OVEN1) == (90.0, 1)
