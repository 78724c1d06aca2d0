"""FlushEngine: turns one logging window into one persisted temperature record."""

from datetime import datetime
from typing import Callable, Optional

import structlog

from ..models import (
    AggregationMode,
    LoggingSpec,
    OvenId,
    TemperatureRecord,
    utc_now
)
from .accumulator import WindowAccumulator
from .document_store import DocumentStore
from .live_state import LiveStateCache
from .session_registry import SessionRegistry


logger = structlog.get_logger(__name__)

LoggingSpecProvider = Callable[[OvenId], LoggingSpec]


def aggregate_window(mode: AggregationMode,
                     total: float,
                     count: int,
                     latest: Optional[float]) -> Optional[float]:
    """Value to persist for a window, or None when nothing should be written.

    average: window mean, falling back to the last cached value when the
    window is empty. last: the last cached value.
    """
    if mode == AggregationMode.AVERAGE and count > 0:
        return total / count
    return latest


class FlushEngine:
    """Computes and persists the aggregate of each elapsed window."""

    def __init__(self,
                 registry: SessionRegistry,
                 accumulator: WindowAccumulator,
                 live_state: LiveStateCache,
                 store: DocumentStore,
                 logging_spec: LoggingSpecProvider,
                 clock: Callable[[], datetime] = utc_now):
        self.registry = registry
        self.accumulator = accumulator
        self.live_state = live_state
        self.store = store
        self.logging_spec = logging_spec
        self.clock = clock

        # Observability
        self.flush_count = 0
        self.records_written = 0
        self.failure_count = 0
        self.last_record: Optional[TemperatureRecord] = None

    async def flush(self, oven_id: OvenId) -> Optional[TemperatureRecord]:
        """Flush the oven's current window.

        Never raises for persistence problems: the window has already been
        drained, so a failed write loses that window only.
        """
        self.flush_count += 1
        session = self.registry.get_active(oven_id)
        if session is None:
            self.accumulator.reset(oven_id)
            return None

        # Everything up to the write is synchronous
        total, count = self.accumulator.drain(oven_id)
        spec = self.logging_spec(oven_id)
        value = aggregate_window(spec.aggregation, total, count, self.live_state.get(oven_id))

        if value is None:
            logger.debug("Nothing to log for window", oven_id=oven_id.value, product_id=session.product_id)
            return None

        record = TemperatureRecord(oven_id=oven_id, temperature=value, timestamp=self.clock())

        try:
            await self.store.insert_one(session.product_id, record.to_document())
        except Exception as e:
            self.failure_count += 1
            logger.error("Failed to persist temperature record",
                         oven_id=oven_id.value,
                         product_id=session.product_id,
                         samples=count,
                         error=str(e))
            return None

        self.records_written += 1
        self.last_record = record
        logger.debug("Temperature logged",
                     oven_id=oven_id.value,
                     product_id=session.product_id,
                     temperature=record.temperature,
                     samples=count)
        return record


__all__ = ["FlushEngine", "aggregate_window", "LoggingSpecProvider"]
