"""
Measurement engine: landmark snapshots in, rolling statistics and exports out.

Provides the ingestion chain:
- LandmarkSnapshot → distance sample + coordinate sample → RollingHistory
- On request: history snapshot → averages / statistics / export document
"""

import logging
import queue
import threading
from typing import Optional, Dict, Any, Protocol

from .export import build_export_document
from .history import DEFAULT_CAPACITY, RollingHistory, MeasurementSample
from .landmarks import LandmarkSnapshot, compute_distances, extract_coordinates
from .metrics import MetricsCollector
from .observers import ObserverRegistry
from .pairs import PairConfiguration
from .statistics import (
    DEFAULT_WINDOW_SIZE, MeasurementStats,
    average_measurements, average_coordinates, measurement_statistics
)

logger = logging.getLogger(__name__)


class EngineObserver(Protocol):
    def on_measurements_updated(self, sample: MeasurementSample) -> None:
        ...

    def on_engine_error(self, kind: str) -> None:
        ...


class MeasurementEngine:
    """
    Owns the rolling history for one capture session.

    Snapshots are ingested by a single writer: either the sensor callback
    calls ``process_snapshot`` directly, or ``start()`` runs a worker thread
    that drains snapshots handed over with ``submit``.

    Usage:
        engine = MeasurementEngine(PairConfiguration.default())
        engine.add_observer(view)
        engine.start()
        engine.submit(snapshot)        # from the sensor callback
        ...
        document = engine.export_measurements()
        engine.stop()
    """

    def __init__(
        self,
        pairs: Optional[PairConfiguration] = None,
        history_size: int = DEFAULT_CAPACITY,
        window_size: int = DEFAULT_WINDOW_SIZE,
        metrics: Optional[MetricsCollector] = None
    ):
        """
        Args:
            pairs: Pair configuration (default: built-in face-fit table)
            history_size: Frames retained in the rolling history
            window_size: Frames used for averaging
            metrics: Optional shared metrics collector
        """
        self._pairs = pairs or PairConfiguration.default()
        self.window_size = window_size
        self.history = RollingHistory(capacity=history_size)
        self.metrics = metrics or MetricsCollector(pair_keys=self._pairs.keys)

        self._observers = ObserverRegistry()

        self._ingest_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._inbox: queue.Queue = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._running = False
        self.frames_processed = 0

    @property
    def pairs(self) -> PairConfiguration:
        return self._pairs

    # Observers

    def add_observer(self, observer: EngineObserver) -> None:
        self._observers.add(observer)

    def remove_observer(self, observer: EngineObserver) -> None:
        self._observers.remove(observer)

    # Ingestion

    def process_snapshot(self, snapshot: LandmarkSnapshot) -> Optional[MeasurementSample]:
        """
        Measure one frame and append it to the history.

        Args:
            snapshot: Landmarks for the frame

        Returns:
            The distance sample, or None if processing failed (reported
            through ``on_engine_error``)
        """
        try:
            # a pair table swap waits for the frame in progress
            with self._ingest_lock:
                pairs = self._pairs
                sample = compute_distances(snapshot, pairs.pairs)
                coordinates = extract_coordinates(snapshot, pairs.indices)
                self.history.append(sample, coordinates)
                self.metrics.record_frame(sample)
        except Exception:
            logger.exception("Failed to process landmark snapshot")
            self._observers.notify("on_engine_error", "processing")
            return None

        self.frames_processed += 1
        self._observers.notify("on_measurements_updated", sample)
        return sample

    def start(self) -> None:
        """Start the ingestion worker."""
        with self._state_lock:
            if self._running:
                return
            self._running = True
            self._worker = threading.Thread(target=self._worker_loop, daemon=True)
            self._worker.start()

    def submit(self, snapshot: LandmarkSnapshot) -> None:
        """
        Hand a snapshot to the ingestion worker.

        Raises:
            RuntimeError: If the worker is not running
        """
        with self._state_lock:
            if not self._running:
                raise RuntimeError("Engine is not running")
            self._inbox.put(snapshot)

    def flush(self) -> None:
        """Block until every submitted snapshot has been processed."""
        self._inbox.join()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the worker after it has processed the snapshots already submitted."""
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            self._inbox.put(None)
            worker = self._worker
            self._worker = None
        if worker:
            worker.join(timeout=timeout)

    def _worker_loop(self) -> None:
        while True:
            snapshot = self._inbox.get()
            try:
                if snapshot is None:
                    break
                self.process_snapshot(snapshot)
            finally:
                self._inbox.task_done()

    @property
    def is_running(self) -> bool:
        return self._running

    # Configuration and session lifecycle

    def update_measurement_pairs(self, pairs: PairConfiguration) -> None:
        """Replace the pair table. History is cleared since old samples use other keys."""
        with self._ingest_lock:
            self._pairs = pairs
            self.history.clear()
            self.metrics.set_pair_keys(pairs.keys)

    def clear_history(self) -> None:
        self.history.clear()

    # Aggregation

    def _window(self, window_size: Optional[int]) -> int:
        return self.window_size if window_size is None else window_size

    def get_average_measurements(self, window_size: Optional[int] = None) -> Dict[str, float]:
        view = self.history.snapshot()
        return average_measurements(view.measurements, self._window(window_size))

    def get_average_coordinates(self, window_size: Optional[int] = None) -> Dict[str, Dict[str, float]]:
        view = self.history.snapshot()
        return average_coordinates(view.coordinates, self._window(window_size))

    def get_statistics(self) -> Dict[str, MeasurementStats]:
        return measurement_statistics(self.history.snapshot().measurements)

    def export_measurements(self, timestamp: Optional[float] = None) -> Dict[str, Any]:
        """Build the export document from a consistent view of the history."""
        return build_export_document(
            self.history.snapshot(),
            self._pairs,
            window_size=self.window_size,
            timestamp=timestamp
        )

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "frames_processed": self.frames_processed,
            "history_length": len(self.history),
            "history_capacity": self.history.capacity,
            "pair_count": len(self._pairs),
            "metrics": self.metrics.get_summary()
        }

    def close(self) -> None:
        """Stop ingestion and drop all observers."""
        self.stop()
        self._observers.clear()
