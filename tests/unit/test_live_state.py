"""Unit tests for the live state cache and the window accumulator."""

from oven_monitor.models import OvenId
from oven_monitor.services import LiveStateCache, WindowAccumulator


class TestLiveStateCache:
    """Test LiveStateCache."""

    def test_initially_empty(self):
        cache = LiveStateCache()

        assert cache.get(OvenId.OVEN1) is None
        assert cache.snapshot() == {OvenId.OVEN1: None, OvenId.OVEN2: None}

    def test_update_overwrites_single_slot(self):
        cache = LiveStateCache()

        cache.update(OvenId.OVEN1, 20.0)
        cache.update(OvenId.OVEN1, 21.5)

        assert cache.get(OvenId.OVEN1) == 21.5
        assert cache.get(OvenId.OVEN2) is None

    def test_subscribers_notified_with_reading(self):
        cache = LiveStateCache()
        seen = []
        cache.subscribe(seen.append)

        reading = cache.update(OvenId.OVEN2, 150.0)

        assert seen == [reading]
        assert cache.get_reading(OvenId.OVEN2) is reading

    def test_failing_subscriber_does_not_block_others(self):
        cache = LiveStateCache()
        seen = []

        def broken(reading):
            raise RuntimeError("boom")

        cache.subscribe(broken)
        cache.subscribe(seen.append)

        cache.update(OvenId.OVEN1, 30.0)

        assert len(seen) == 1
        assert cache.get(OvenId.OVEN1) == 30.0

    def test_unsubscribe(self):
        cache = LiveStateCache()
        seen = []
        cache.subscribe(seen.append)
        cache.unsubscribe(seen.append)

        cache.update(OvenId.OVEN1, 30.0)

        assert seen == []


class TestWindowAccumulator:
    """Test WindowAccumulator."""

    def test_add_and_drain(self):
        accumulator = WindowAccumulator()
        for value in (20.0, 22.0, 24.0):
            accumulator.add(OvenId.OVEN1, value)

        assert accumulator.drain(OvenId.OVEN1) == (66.0, 3)
        assert accumulator.peek(OvenId.OVEN1) == (0.0, 0)

    def test_ovens_are_independent(self):
        accumulator = WindowAccumulator()
        accumulator.add(OvenId.OVEN1, 10.0)
        accumulator.add(OvenId.OVEN2, 99.0)

        accumulator.reset(OvenId.OVEN1)

        assert accumulator.peek(OvenId.OVEN1) == (0.0, 0)
        assert accumulator.peek(OvenId.OVEN2) == (99.0, 1)

    def test_drain_empty(self):
        accumulator = WindowAccumulator()

        assert accumulator.drain(OvenId.OVEN2) == (0.0, 0)

    def test_readings_after_drain_start_new_window(self):
        accumulator = WindowAccumulator()
        accumulator.add(OvenId.OVEN1, 1.0)
        accumulator.drain(OvenId.OVEN1)
        accumulator.add(OvenId.OVEN1, 5.0)

        assert accumulator.drain(OvenId.OVEN1) == (5.0, 1)
