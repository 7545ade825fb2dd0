"""
Bounded rolling history of per-frame measurement and coordinate samples.

The two buffers are kept in lock-step: entry i of the coordinate buffer was
captured in the same frame as entry i of the measurement buffer.
"""

import threading
from collections import deque
from dataclasses import dataclass
from typing import Dict, Tuple

MeasurementSample = Dict[str, float]
CoordinateSample = Dict[str, Dict[str, float]]

DEFAULT_CAPACITY = 100


@dataclass(frozen=True)
class HistorySnapshot:
    """Consistent copy of the history taken under the history lock."""
    measurements: Tuple[MeasurementSample, ...]
    coordinates: Tuple[CoordinateSample, ...]

    def __len__(self) -> int:
        return len(self.measurements)


class RollingHistory:
    """
    Thread-safe FIFO of the last ``capacity`` frames.

    Usage:
        history = RollingHistory(capacity=100)
        history.append({"4-7": 0.031}, {"4": {...}, "7": {...}})
        view = history.snapshot()
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = capacity
        self._measurements: deque = deque(maxlen=capacity)
        self._coordinates: deque = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, sample: MeasurementSample, coordinates: CoordinateSample) -> None:
        """Push one frame; the oldest frame is evicted from both buffers when full."""
        with self._lock:
            self._measurements.append(dict(sample))
            self._coordinates.append({k: dict(v) for k, v in coordinates.items()})

    def clear(self) -> None:
        with self._lock:
            self._measurements.clear()
            self._coordinates.clear()

    def snapshot(self) -> HistorySnapshot:
        with self._lock:
            return HistorySnapshot(
                measurements=tuple(dict(m) for m in self._measurements),
                coordinates=tuple(
                    {k: dict(v) for k, v in c.items()} for c in self._coordinates
                )
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._measurements)
