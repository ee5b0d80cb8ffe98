"""Per-destination byte totals for the current traffic window."""
from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional

from models.stats import WindowSnapshot


class TrafficAccumulator:
    """
    Destination address -> bytes seen in the current window.

    The capture thread calls record_bytes() for every matched packet while a
    flush may call snapshot_and_reset() from another thread. Both take the
    same lock, and a reset swaps the whole table rather than copying and
    clearing it, so every increment lands in exactly one window.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._totals: Dict[str, int] = {}
        self._window_start = clock()

    @property
    def window_start(self) -> float:
        with self._lock:
            return self._window_start

    def record_bytes(self, address: str, length: int) -> None:
        if length < 0:
            raise ValueError(f"Negative length for {address}: {length}")
        with self._lock:
            self._totals[address] = self._totals.get(address, 0) + length

    def snapshot_and_reset(self, now: Optional[float] = None) -> WindowSnapshot:
        """Close the current window and open an empty one starting at `now`."""
        if now is None:
            now = self._clock()
        with self._lock:
            totals, self._totals = self._totals, {}
            start, self._window_start = self._window_start, now
        return WindowSnapshot(window_start=start, window_end=now, totals=totals)

    def peek(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._totals)

    def total_bytes(self) -> int:
        with self._lock:
            return sum(self._totals.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._totals)
