"""Pytest configuration and fixtures."""

import asyncio
import heapq
import itertools
from typing import Callable, List

import pytest
import pytest_asyncio

from oven_monitor.services import (
    KeyValueStore,
    LoggingScheduler,
    OvenController,
    SettingsService,
    SQLiteDocumentStore,
    TimerBackend,
    TimerHandle
)


class VirtualHandle(TimerHandle):
    """Handle of a pending virtual timer."""

    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualTimers(TimerBackend):
    """Manually advanced clock for scheduler tests.

    ``advance`` fires every due callback at its exact due time, in order.
    ``jump`` moves the clock first and fires late, as a stalled loop would.
    """

    def __init__(self, start_ms: int = 0):
        self.now = start_ms
        self._queue = []
        self._sequence = itertools.count()

    def now_ms(self) -> int:
        return self.now

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        handle = VirtualHandle()
        heapq.heappush(self._queue, (self.now + max(0, delay_ms), next(self._sequence), handle, callback))
        return handle

    def advance(self, ms: int) -> None:
        target = self.now + ms
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback = heapq.heappop(self._queue)
            self.now = due
            if not handle.cancelled:
                callback()
        self.now = target

    def jump(self, ms: int) -> None:
        self.now += ms
        while self._queue and self._queue[0][0] <= self.now:
            _, _, handle, callback = heapq.heappop(self._queue)
            if not handle.cancelled:
                callback()

    @property
    def pending(self) -> List[int]:
        """Due times of the timers still armed."""
        return sorted(due for due, _, handle, _ in self._queue if not handle.cancelled)


@pytest.fixture
def settle(scheduler):
    """Await this to let dispatched flushes run to completion."""
    async def _settle() -> None:
        await asyncio.sleep(0)
        await scheduler.wait_idle()
    return _settle


@pytest.fixture
def timer_factory():
    """Builds independent virtual clocks."""
    return VirtualTimers


@pytest.fixture
def timers(timer_factory):
    return timer_factory()


@pytest.fixture
def scheduler(timers):
    return LoggingScheduler(timers, minimum_period_ms=5000)


@pytest.fixture
def state_store():
    """Memory-only key-value store."""
    return KeyValueStore()


@pytest_asyncio.fixture
async def document_store():
    store = SQLiteDocumentStore(in_memory=True)
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def controller(document_store, state_store, scheduler):
    controller = OvenController(
        document_store,
        state_store,
        settings=SettingsService(state_store),
        scheduler=scheduler
    )
    yield controller
    await controller.shutdown()

