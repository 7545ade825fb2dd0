"""Synthetic landmark source.

Produces deterministic face-mesh snapshots so the engine, the exporter and the
sync path can be exercised without a depth sensor.
"""

from typing import Optional, Iterable, Iterator, List

import numpy as np

from .landmarks import LandmarkSnapshot, snapshot_from_vertices

# Vertex count of the sensor face mesh
MESH_VERTEX_COUNT = 1220

# Half-extents of the head ellipsoid in meters (x: ear to ear, y: chin to brow, z: depth)
_HEAD_RADII = np.array([0.075, 0.095, 0.06], dtype=np.float64)

TRAJECTORIES = ("static", "nod", "turn")


def _rotation(axis: str, theta_rad: float) -> np.ndarray:
    c = float(np.cos(theta_rad))
    s = float(np.sin(theta_rad))
    if axis == "x":
        return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]], dtype=np.float64)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]], dtype=np.float64)


class SyntheticFace:
    """
    Deterministic face mesh with per-frame noise, motion and landmark dropout.

    Usage:
        face = SyntheticFace(seed=1, noise_m=0.0005, dropout=0.05)
        for snapshot in face.frames(100):
            engine.process_snapshot(snapshot)
    """

    def __init__(
        self,
        seed: int = 0,
        fps: float = 60.0,
        noise_m: float = 0.0,
        dropout: float = 0.0,
        trajectory: str = "static",
        indices: Optional[Iterable[int]] = None,
        vertex_count: int = MESH_VERTEX_COUNT
    ):
        """
        Args:
            seed: RNG seed; identical seeds produce identical streams
            fps: Frame rate used for timestamps and motion
            noise_m: Gaussian noise stddev per coordinate, meters
            dropout: Probability that a landmark is missing from a frame
            trajectory: Head motion: static, nod or turn
            indices: Landmarks to emit (default: every mesh vertex)
            vertex_count: Size of the mesh
        """
        if fps <= 0.0:
            raise ValueError("fps must be > 0")
        if noise_m < 0.0:
            raise ValueError("noise_m must be >= 0")
        if not (0.0 <= dropout <= 1.0):
            raise ValueError("dropout must be in [0, 1]")
        if trajectory not in TRAJECTORIES:
            raise ValueError(
                f"Unknown trajectory {trajectory!r}; expected one of: {', '.join(TRAJECTORIES)}"
            )
        if vertex_count <= 0:
            raise ValueError("vertex_count must be > 0")

        self.seed = int(seed)
        self.fps = float(fps)
        self.noise_m = float(noise_m)
        self.dropout = float(dropout)
        self.trajectory = trajectory
        self._rng = np.random.default_rng(self.seed)
        self._frame_index = 0

        self._template = self._build_template(vertex_count)
        if indices is None:
            self._indices: List[int] = list(range(vertex_count))
        else:
            self._indices = sorted({int(i) for i in indices if 0 <= int(i) < vertex_count})

    def _build_template(self, vertex_count: int) -> np.ndarray:
        # Points on the front half of an ellipsoid, fixed per seed
        theta = self._rng.uniform(-0.5 * np.pi, 0.5 * np.pi, size=vertex_count)
        phi = self._rng.uniform(-0.45 * np.pi, 0.45 * np.pi, size=vertex_count)
        unit = np.stack([
            np.sin(theta) * np.cos(phi),
            np.sin(phi),
            np.cos(theta) * np.cos(phi)
        ], axis=1)
        return unit * _HEAD_RADII

    @property
    def template(self) -> np.ndarray:
        """Noise-free neutral-pose vertices, (M, 3)."""
        return self._template.copy()

    def _pose(self, frame_index: int) -> np.ndarray:
        t_sec = frame_index / self.fps
        if self.trajectory == "nod":
            return _rotation("x", 0.15 * np.sin(2.0 * np.pi * 0.5 * t_sec))
        if self.trajectory == "turn":
            return _rotation("y", 0.3 * np.sin(2.0 * np.pi * 0.25 * t_sec))
        return np.eye(3)

    def next_snapshot(self) -> LandmarkSnapshot:
        frame_index = self._frame_index
        self._frame_index += 1

        vertices = self._template @ self._pose(frame_index).T
        if self.noise_m > 0.0:
            vertices = vertices + self._rng.normal(0.0, self.noise_m, size=vertices.shape)

        indices = self._indices
        if self.dropout > 0.0:
            keep = self._rng.random(len(indices)) >= self.dropout
            indices = [i for i, k in zip(indices, keep) if k]

        return snapshot_from_vertices(vertices, frame_index / self.fps, indices)

    def frames(self, count: int) -> Iterator[LandmarkSnapshot]:
        for _ in range(int(count)):
            yield self.next_snapshot()
