"""
Per-oven logging timers.

Each oven has at most one outstanding timer. A program either arms a
recurring timer immediately, or first arms a one-shot alignment delay so
that every flush lands on a wall-clock multiple of the period:

    period = max(minimum_period_ms, interval_seconds * 1000)
    first delay (aligned) = period - (now_ms % period)

Recurring ticks are scheduled against the original grid rather than
relative to when the previous tick ran, so callback time never
accumulates as drift. Missed ticks are skipped, not queued.

Timers come from a TimerBackend so tests can drive a virtual clock:

    scheduler = LoggingScheduler(AsyncioTimerBackend(), minimum_period_ms=5000)
    scheduler.program(OvenId.OVEN1, spec, flush_engine.flush)
    ...
    scheduler.cancel_all(OvenId.OVEN1)
"""

import asyncio
import itertools
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import structlog

from ..models import LoggingSpec, OvenId


logger = structlog.get_logger(__name__)

FlushCallback = Callable[[OvenId], Awaitable[Any]]

DEFAULT_MINIMUM_PERIOD_MS = 5000


class TimerHandle(ABC):
    """Cancellable pending timer."""

    @abstractmethod
    def cancel(self) -> None:
        ...


class TimerBackend(ABC):
    """Clock and one-shot timer primitive."""

    @abstractmethod
    def now_ms(self) -> int:
        """Current epoch time in milliseconds."""

    @abstractmethod
    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once after ``delay_ms``."""


class AsyncioTimerBackend(TimerBackend):
    """Wall clock plus the running event loop's call_later."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0, delay_ms) / 1000.0, callback)


class SchedulerState(str, Enum):
    """Timer state of one oven."""

    UNARMED = "unarmed"
    ALIGNING = "aligning"
    ARMED = "armed"


@dataclass
class _OvenTimer:
    generation: int
    state: SchedulerState
    period_ms: int
    next_due_ms: int
    callback: FlushCallback
    handle: Optional[Any] = None
    fire_count: int = 0
    skipped_count: int = 0
    armed_at_ms: int = 0
    last_fired_ms: Optional[int] = None


class LoggingScheduler:
    """Arms, re-arms and cancels the per-oven flush timers."""

    def __init__(self,
                 timers: Optional[TimerBackend] = None,
                 minimum_period_ms: int = DEFAULT_MINIMUM_PERIOD_MS):
        self.timers = timers or AsyncioTimerBackend()
        self.minimum_period_ms = minimum_period_ms

        self._timers: Dict[OvenId, _OvenTimer] = {}
        self._generations = itertools.count(1)
        self._in_flight: Set[asyncio.Future] = set()
        self._last_dispatch: Dict[OvenId, asyncio.Future] = {}

        # Observability
        self.error_count = 0

    def effective_period_ms(self, spec: LoggingSpec) -> int:
        """Requested period clamped to the safety floor."""
        return max(self.minimum_period_ms, spec.interval_seconds * 1000)

    @staticmethod
    def alignment_delay_ms(period_ms: int, now_ms: int) -> int:
        """Delay until the next wall-clock multiple of ``period_ms``."""
        return period_ms - (now_ms % period_ms)

    def program(self, oven_id: OvenId, spec: LoggingSpec, callback: FlushCallback) -> SchedulerState:
        """Replace the oven's timers with the program described by ``spec``."""
        self.cancel_all(oven_id)
        period_ms = self.effective_period_ms(spec)

        if spec.align_to_minute:
            delay_ms = self.alignment_delay_ms(period_ms, self.timers.now_ms())
            return self.arm(oven_id, period_ms, callback, one_shot_delay_ms=delay_ms)

        return self.arm(oven_id, period_ms, callback)

    def arm(self,
            oven_id: OvenId,
            period_ms: int,
            callback: FlushCallback,
            one_shot_delay_ms: Optional[int] = None) -> SchedulerState:
        """Arm a recurring timer, optionally preceded by a one-shot delay."""
        self.cancel_all(oven_id)

        now_ms = self.timers.now_ms()
        generation = next(self._generations)
        aligning = one_shot_delay_ms is not None
        first_delay_ms = one_shot_delay_ms if aligning else period_ms

        timer = _OvenTimer(
            generation=generation,
            state=SchedulerState.ALIGNING if aligning else SchedulerState.ARMED,
            period_ms=period_ms,
            next_due_ms=now_ms + first_delay_ms,
            callback=callback,
            armed_at_ms=now_ms,
        )
        timer.handle = self.timers.call_later(first_delay_ms, lambda: self._fire(oven_id, generation))
        self._timers[oven_id] = timer

        logger.info("Logging timer armed",
                    oven_id=oven_id.value,
                    period_ms=period_ms,
                    first_delay_ms=first_delay_ms,
                    aligned=aligning)

        return timer.state

    def cancel_all(self, oven_id: OvenId) -> bool:
        """Cancel every pending timer of the oven. Returns True if one was armed."""
        timer = self._timers.pop(oven_id, None)
        if timer is None:
            return False

        if timer.handle is not None:
            timer.handle.cancel()

        logger.debug("Logging timer cancelled", oven_id=oven_id.value, fire_count=timer.fire_count)
        return True

    def cancel_everything(self) -> None:
        for oven_id in list(self._timers):
            self.cancel_all(oven_id)

    def state(self, oven_id: OvenId) -> SchedulerState:
        timer = self._timers.get(oven_id)
        return timer.state if timer else SchedulerState.UNARMED

    def period_ms(self, oven_id: OvenId) -> Optional[int]:
        timer = self._timers.get(oven_id)
        return timer.period_ms if timer else None

    def next_due_ms(self, oven_id: OvenId) -> Optional[int]:
        timer = self._timers.get(oven_id)
        return timer.next_due_ms if timer else None

    def _fire(self, oven_id: OvenId, generation: int) -> None:
        timer = self._timers.get(oven_id)
        if timer is None or timer.generation != generation:
            # Superseded by a reprogram or cancelled
            return

        now_ms = self.timers.now_ms()
        timer.state = SchedulerState.ARMED
        timer.fire_count += 1
        timer.last_fired_ms = now_ms

        # Next tick on the original grid, skipping any we are already past
        next_due_ms = timer.next_due_ms + timer.period_ms
        skipped = 0
        while next_due_ms <= now_ms:
            next_due_ms += timer.period_ms
            skipped += 1

        if skipped:
            timer.skipped_count += skipped
            logger.warning("Logging timer skipped intervals", oven_id=oven_id.value, skipped=skipped)

        timer.next_due_ms = next_due_ms
        timer.handle = self.timers.call_later(next_due_ms - now_ms, lambda: self._fire(oven_id, generation))

        self._dispatch(oven_id, timer.callback)

    async def flush_now(self, oven_id: OvenId, callback: FlushCallback) -> None:
        """Run one flush outside the timer, after any flush already in flight."""
        await self._dispatch(oven_id, callback)

    def _dispatch(self, oven_id: OvenId, callback: FlushCallback) -> asyncio.Future:
        previous = self._last_dispatch.get(oven_id)
        task = asyncio.ensure_future(self._run_callback(oven_id, callback, previous))
        self._last_dispatch[oven_id] = task
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _run_callback(self,
                            oven_id: OvenId,
                            callback: FlushCallback,
                            previous: Optional[asyncio.Future] = None) -> None:
        # Flushes of one oven never overlap: wait for the previous one first
        if previous is not None and not previous.done():
            await asyncio.wait([previous])

        try:
            await callback(oven_id)
        except Exception as e:
            self.error_count += 1
            logger.error("Scheduled flush failed", oven_id=oven_id.value, error=str(e))

    async def wait_idle(self) -> None:
        """Wait for every dispatched flush to finish."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        """Get scheduler statistics for observability."""
        return {
            "minimum_period_ms": self.minimum_period_ms,
            "in_flight": len(self._in_flight),
            "error_count": self.error_count,
            "ovens": {
                oven_id.value: {
                    "state": self.state(oven_id).value,
                    "period_ms": timer.period_ms,
                    "next_due_ms": timer.next_due_ms,
                    "fire_count": timer.fire_count,
                    "skipped_count": timer.skipped_count,
                }
                for oven_id, timer in self._timers.items()
            },
        }


__all__ = [
    "LoggingScheduler",
    "SchedulerState",
    "TimerBackend",
    "TimerHandle",
    "AsyncioTimerBackend",
    "FlushCallback",
    "DEFAULT_MINIMUM_PERIOD_MS",
]
