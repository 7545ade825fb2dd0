"""
Aggregation of rolling-history samples.

Provides functionality to:
- Average the most recent K distance samples (sparse: a key missing from a
  sample is excluded from that sample's contribution)
- Average landmark coordinates over the same window
- Compute min/max/avg/count per pair over the whole retained history
"""

import numpy as np
from dataclasses import dataclass
from typing import Dict, Any, List, Sequence

DEFAULT_WINDOW_SIZE = 10


@dataclass(frozen=True)
class MeasurementStats:
    """Full-history statistics for one pair key (meters)."""
    min: float
    max: float
    avg: float
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"min": self.min, "max": self.max, "avg": self.avg, "count": self.count}


def _recent(samples: Sequence, window_size: int) -> List:
    if window_size <= 0:
        return []
    return list(samples[-window_size:])


def _collect(samples: Sequence[Dict[str, float]]) -> Dict[str, List[float]]:
    values: Dict[str, List[float]] = {}
    for sample in samples:
        for key, value in sample.items():
            values.setdefault(key, []).append(value)
    return values


def average_measurements(
    samples: Sequence[Dict[str, float]],
    window_size: int = DEFAULT_WINDOW_SIZE
) -> Dict[str, float]:
    """
    Mean distance per pair key over the last ``window_size`` samples.

    Args:
        samples: Measurement samples, oldest first
        window_size: Number of most recent samples to use

    Returns:
        Mapping pair key -> mean distance; empty when there are no samples
    """
    values = _collect(_recent(samples, window_size))
    return {key: float(np.mean(v)) for key, v in values.items()}


def average_coordinates(
    samples: Sequence[Dict[str, Dict[str, float]]],
    window_size: int = DEFAULT_WINDOW_SIZE
) -> Dict[str, Dict[str, float]]:
    """Mean x/y/z per landmark index over the last ``window_size`` coordinate samples."""
    positions: Dict[str, List[List[float]]] = {}
    for sample in _recent(samples, window_size):
        for index, coords in sample.items():
            positions.setdefault(index, []).append([coords["x"], coords["y"], coords["z"]])

    averages = {}
    for index, rows in positions.items():
        mean = np.mean(np.asarray(rows, dtype=np.float64), axis=0)
        averages[index] = {"x": float(mean[0]), "y": float(mean[1]), "z": float(mean[2])}
    return averages


def measurement_statistics(samples: Sequence[Dict[str, float]]) -> Dict[str, MeasurementStats]:
    """Min/max/avg/count per pair key over every retained sample."""
    stats = {}
    for key, v in _collect(samples).items():
        arr = np.asarray(v, dtype=np.float64)
        stats[key] = MeasurementStats(
            min=float(arr.min()),
            max=float(arr.max()),
            avg=float(arr.mean()),
            count=len(v)
        )
    return stats
