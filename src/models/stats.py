"""Traffic window and capture driver models."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict


@dataclass(frozen=True)
class WindowSnapshot:
    """
    Contents of one traffic window at the moment it was swapped out.

    `totals` keeps the order in which addresses were first seen in the
    window; report rendering relies on it to break ties.
    """
    window_start: float
    """Epoch seconds when the window was opened."""

    window_end: float
    """Epoch seconds when the window was swapped out."""

    totals: Dict[str, int] = field(default_factory=dict)

    @property
    def total_bytes(self) -> int:
        return sum(self.totals.values())

    @property
    def duration(self) -> float:
        return max(0.0, self.window_end - self.window_start)

    def __len__(self) -> int:
        return len(self.totals)


@dataclass(frozen=True)
class CaptureDriverStats:
    """Counters kept by the capture mechanism itself."""
    received: int = 0
    dropped: int = 0
    """Dropped because the capture buffer was full."""
    dropped_by_interface: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "received": self.received,
            "dropped": self.dropped,
            "dropped_by_interface": self.dropped_by_interface,
        }
