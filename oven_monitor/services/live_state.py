"""LiveStateCache: last observed temperature per oven, with live subscribers."""

from datetime import datetime
from typing import Callable, Dict, List, Optional

import structlog

from ..models import OvenId, Reading, utc_now


logger = structlog.get_logger(__name__)

ReadingCallback = Callable[[Reading], None]


class LiveStateCache:
    """Single overwritten slot per oven; no history, no aggregation."""

    def __init__(self):
        self._latest: Dict[OvenId, Optional[Reading]] = {oven_id: None for oven_id in OvenId}
        self._subscribers: List[ReadingCallback] = []

    def subscribe(self, callback: ReadingCallback) -> None:
        """Register a callback invoked synchronously on every update."""
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: ReadingCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def update(self, oven_id: OvenId, value: float, received_at: Optional[datetime] = None) -> Reading:
        """Overwrite the oven's last value and notify subscribers."""
        reading = Reading(oven_id=oven_id, value=value, received_at=received_at or utc_now())
        self._latest[oven_id] = reading

        for callback in list(self._subscribers):
            try:
                callback(reading)
            except Exception as e:
                logger.warning("Error in live state subscriber", oven_id=oven_id.value, error=str(e))

        return reading

    def get(self, oven_id: OvenId) -> Optional[float]:
        """Last known value, or None if nothing was received yet."""
        reading = self._latest[oven_id]
        return reading.value if reading else None

    def get_reading(self, oven_id: OvenId) -> Optional[Reading]:
        """Last known reading including its arrival time."""
        return self._latest[oven_id]

    def snapshot(self) -> Dict[OvenId, Optional[float]]:
        return {oven_id: self.get(oven_id) for oven_id in OvenId}


__all__ = ["LiveStateCache", "ReadingCallback"]
