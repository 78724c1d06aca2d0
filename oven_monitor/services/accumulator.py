"""WindowAccumulator: running sum/count of readings since the last flush."""

from dataclasses import dataclass
from typing import Dict, Tuple

from ..models import OvenId


@dataclass
class WindowTotals:
    """Sum and count for one oven's current window."""
    total: float = 0.0
    count: int = 0

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0


class WindowAccumulator:
    """Per-oven accumulator.

    Owned by the ingestion/flush path. All methods are synchronous so a drain
    always completes before the caller reaches its next suspension point.
    """

    def __init__(self):
        self._windows: Dict[OvenId, WindowTotals] = {oven_id: WindowTotals() for oven_id in OvenId}

    def add(self, oven_id: OvenId, value: float) -> None:
        window = self._windows[oven_id]
        window.total += value
        window.count += 1

    def drain(self, oven_id: OvenId) -> Tuple[float, int]:
        """Return the window totals and reset them in the same step."""
        window = self._windows[oven_id]
        self._windows[oven_id] = WindowTotals()
        return window.total, window.count

    def reset(self, oven_id: OvenId) -> None:
        """Discard the window without producing output."""
        self._windows[oven_id] = WindowTotals()

    def peek(self, oven_id: OvenId) -> Tuple[float, int]:
        window = self._windows[oven_id]
        return window.total, window.count


__all__ = ["WindowAccumulator", "WindowTotals"]
