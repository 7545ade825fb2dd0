"""
Landmark data model and distance computation.

Provides functionality to:
- Represent a per-frame capture of 3D facial landmarks
- Build snapshots from a raw (M, 3) vertex array
- Compute Euclidean distances for configured landmark pairs
- Extract the coordinates of the landmarks referenced by the pairs
"""

import numpy as np
from typing import Optional, Dict, Any, List, Iterable, Sequence
from dataclasses import dataclass, field


@dataclass(frozen=True)
class LandmarkPoint:
    """A single tracked point on the face surface (meters)."""
    index: int
    x: float
    y: float
    z: float

    def __post_init__(self):
        if self.index < 0:
            raise ValueError("Landmark index must be >= 0")

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float64)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z}


@dataclass(frozen=True)
class LandmarkSnapshot:
    """Landmarks resolved by the sensor for one frame."""
    timestamp: float
    points: Dict[int, LandmarkPoint] = field(default_factory=dict)

    def get(self, index: int) -> Optional[LandmarkPoint]:
        return self.points.get(index)

    def __contains__(self, index: int) -> bool:
        return index in self.points

    def __len__(self) -> int:
        return len(self.points)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "points": {str(i): p.to_dict() for i, p in self.points.items()}
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LandmarkSnapshot":
        points = {}
        for key, coords in data.get("points", {}).items():
            index = int(key)
            points[index] = LandmarkPoint(
                index=index,
                x=float(coords["x"]),
                y=float(coords["y"]),
                z=float(coords["z"])
            )
        return cls(timestamp=float(data.get("timestamp", 0.0)), points=points)


@dataclass(frozen=True)
class MeasurementPair:
    """Configured landmark pair with a human-readable description."""
    from_index: int
    to_index: int
    description: Optional[str] = None

    @property
    def key(self) -> str:
        return pair_key(self.from_index, self.to_index)


def pair_key(from_index: int, to_index: int) -> str:
    """Pair identifier used in samples and exports, e.g. ``"4-7"``."""
    return f"{from_index}-{to_index}"


def snapshot_from_vertices(
    vertices: Any,
    timestamp: float,
    indices: Optional[Iterable[int]] = None
) -> LandmarkSnapshot:
    """
    Build a snapshot from a face-geometry vertex buffer.

    Args:
        vertices: (M, 3) array-like; the row number is the landmark index
        timestamp: Capture time in seconds
        indices: Optional subset of rows to keep (rows out of range are skipped)

    Returns:
        LandmarkSnapshot
    """
    arr = np.asarray(vertices, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError("vertices must be shape (M, 3)")

    rows = range(arr.shape[0]) if indices is None else indices
    points: Dict[int, LandmarkPoint] = {}
    for i in rows:
        if 0 <= i < arr.shape[0]:
            x, y, z = arr[i]
            points[int(i)] = LandmarkPoint(index=int(i), x=float(x), y=float(y), z=float(z))
    return LandmarkSnapshot(timestamp=float(timestamp), points=points)


def euclidean_distance(a: LandmarkPoint, b: LandmarkPoint) -> float:
    return float(np.linalg.norm(a.position - b.position))


def compute_distances(
    snapshot: LandmarkSnapshot,
    pairs: Sequence[MeasurementPair]
) -> Dict[str, float]:
    """
    Compute the distance sample for one frame.

    Pairs whose landmarks are not both present are omitted.

    Args:
        snapshot: Frame to measure
        pairs: Configured landmark pairs

    Returns:
        Mapping pair key -> distance in meters
    """
    results: Dict[str, float] = {}
    for pair in pairs:
        a = snapshot.get(pair.from_index)
        b = snapshot.get(pair.to_index)
        if a is None or b is None:
            continue
        results[pair.key] = euclidean_distance(a, b)
    return results


def pair_indices(pairs: Sequence[MeasurementPair]) -> List[int]:
    """Distinct landmark indices referenced by the pairs, sorted."""
    indices = set()
    for pair in pairs:
        indices.add(pair.from_index)
        indices.add(pair.to_index)
    return sorted(indices)


def extract_coordinates(
    snapshot: LandmarkSnapshot,
    indices: Iterable[int]
) -> Dict[str, Dict[str, float]]:
    """Coordinates of the requested landmarks that are present, keyed by str(index)."""
    coordinates = {}
    for index in indices:
        point = snapshot.get(index)
        if point is not None:
            coordinates[str(index)] = point.to_dict()
    return coordinates
