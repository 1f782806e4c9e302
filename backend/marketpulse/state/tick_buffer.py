"""
Per-symbol bounded tick history
"""

from bisect import bisect_right
from typing import List, Optional, Tuple

from marketpulse.models.market_data import Tick


class TickBuffer:
    """
    Fixed-capacity ring of ticks ordered by timestamp.

    A tick older than the tail is inserted in order when it lags the tail by
    at most ``tolerance_ms``; anything later than that is dropped.
    """

    def __init__(self, capacity: int = 300, tolerance_ms: int = 2000):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.tolerance_ms = tolerance_ms
        self._ticks: List[Tick] = []
        self._timestamps: List[int] = []
        self.dropped = 0
        self.reordered = 0

    def insert(self, tick: Tick) -> bool:
        """Insert a tick; False when it was dropped"""
        if not self._ticks or tick.timestamp >= self._timestamps[-1]:
            index = len(self._ticks)
        elif self._timestamps[-1] - tick.timestamp <= self.tolerance_ms:
            index = bisect_right(self._timestamps, tick.timestamp)
            self.reordered += 1
        else:
            self.dropped += 1
            return False

        self._ticks.insert(index, tick)
        self._timestamps.insert(index, tick.timestamp)

        if len(self._ticks) > self.capacity:
            overflow = len(self._ticks) - self.capacity
            del self._ticks[:overflow]
            del self._timestamps[:overflow]
            if index < overflow:
                # The late tick was older than everything retained
                self.dropped += 1
                return False
        return True

    def snapshot(self) -> Tuple[Tick, ...]:
        return tuple(self._ticks)

    @property
    def last(self) -> Optional[Tick]:
        return self._ticks[-1] if self._ticks else None

    @property
    def first(self) -> Optional[Tick]:
        return self._ticks[0] if self._ticks else None

    def __len__(self) -> int:
        return len(self._ticks)

    def __iter__(self):
        return iter(tuple(self._ticks))

    def clear(self) -> None:
        self._ticks.clear()
        self._timestamps.clear()
