"""
Metrics module for monitoring capture and sync health.

Provides functionality to:
- Track capture FPS over a rolling window
- Track how often each configured pair resolves (landmark coverage)
- Count sync attempts, deliveries, failures and dropped items
- Export metrics as JSON or Prometheus text
"""

import json
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, Iterable


@dataclass
class SyncCounters:
    """Cumulative sync outcome counters."""
    drains: int = 0
    attempts: int = 0
    succeeded: int = 0
    failed: int = 0
    dropped: int = 0
    errors: Dict[str, int] = field(default_factory=dict)


class MetricsCollector:
    """
    Thread-safe metrics collector shared by the engine and the sync coordinator.

    Usage:
        metrics = MetricsCollector(pair_keys=config.keys)
        metrics.record_frame(sample)
        metrics.record_sync_outcome("succeeded")
        summary = metrics.get_summary()
    """

    def __init__(self, pair_keys: Iterable[str] = (), history_size: int = 60):
        """
        Args:
            pair_keys: Configured pair keys (coverage is reported for each)
            history_size: Number of frames kept for the FPS window
        """
        self.history_size = history_size
        self._lock = threading.Lock()
        self._start_time = time.time()
        self._frame_times: deque = deque(maxlen=history_size)
        self._frames = 0
        self._pair_hits: Dict[str, int] = {key: 0 for key in pair_keys}
        self._sync = SyncCounters()

    def record_frame(self, sample: Dict[str, float]) -> None:
        """Record one processed frame and the pairs it resolved."""
        with self._lock:
            self._frames += 1
            self._frame_times.append(time.time())
            for key in sample:
                self._pair_hits[key] = self._pair_hits.get(key, 0) + 1

    def set_pair_keys(self, pair_keys: Iterable[str]) -> None:
        with self._lock:
            self._pair_hits = {key: 0 for key in pair_keys}

    def record_drain(self, attempts: int) -> None:
        with self._lock:
            self._sync.drains += 1
            self._sync.attempts += attempts

    def record_sync_outcome(self, outcome: str, error_kind: Optional[str] = None) -> None:
        """
        Args:
            outcome: "succeeded", "failed" or "dropped"
            error_kind: Error kind for failed attempts
        """
        with self._lock:
            if outcome == "succeeded":
                self._sync.succeeded += 1
            elif outcome == "dropped":
                self._sync.dropped += 1
            else:
                self._sync.failed += 1
            if error_kind:
                self._sync.errors[error_kind] = self._sync.errors.get(error_kind, 0) + 1

    def _fps(self) -> float:
        if len(self._frame_times) < 2:
            return 0.0
        span = self._frame_times[-1] - self._frame_times[0]
        if span <= 0:
            return 0.0
        return (len(self._frame_times) - 1) / span

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            coverage = {
                key: round(hits / self._frames, 4) if self._frames else 0.0
                for key, hits in self._pair_hits.items()
            }
            return {
                "timestamp": datetime.now().isoformat(),
                "uptime_seconds": round(time.time() - self._start_time, 2),
                "capture": {
                    "frames": self._frames,
                    "fps": round(self._fps(), 2),
                    "pair_coverage": coverage
                },
                "sync": {
                    "drains": self._sync.drains,
                    "attempts": self._sync.attempts,
                    "succeeded": self._sync.succeeded,
                    "failed": self._sync.failed,
                    "dropped": self._sync.dropped,
                    "errors": dict(self._sync.errors)
                }
            }

    def export_prometheus(self) -> str:
        summary = self.get_summary()
        sync = summary["sync"]

        lines = [
            "# HELP facefit_frames_total Frames processed",
            "# TYPE facefit_frames_total counter",
            f"facefit_frames_total {summary['capture']['frames']}",
            "",
            "# HELP facefit_capture_fps Capture frames per second",
            "# TYPE facefit_capture_fps gauge",
            f"facefit_capture_fps {summary['capture']['fps']}",
            "",
            "# HELP facefit_pair_coverage Fraction of frames in which the pair resolved",
            "# TYPE facefit_pair_coverage gauge",
        ]
        for key, value in summary["capture"]["pair_coverage"].items():
            lines.append(f'facefit_pair_coverage{{pair="{key}"}} {value}')

        lines.extend([
            "",
            "# HELP facefit_sync_items_total Sync outcomes per item",
            "# TYPE facefit_sync_items_total counter",
            f'facefit_sync_items_total{{outcome="succeeded"}} {sync["succeeded"]}',
            f'facefit_sync_items_total{{outcome="failed"}} {sync["failed"]}',
            f'facefit_sync_items_total{{outcome="dropped"}} {sync["dropped"]}',
        ])
        return "\n".join(lines)

    def reset(self) -> None:
        with self._lock:
            self._frame_times.clear()
            self._frames = 0
            self._pair_hits = {key: 0 for key in self._pair_hits}
            self._sync = SyncCounters()
            self._start_time = time.time()


class MetricsExporter:
    """
    Export metrics to file.
    """

    @staticmethod
    def to_json(metrics: Dict[str, Any], filepath: str) -> None:
        with open(filepath, 'w') as f:
            json.dump(metrics, f, indent=2)

    @staticmethod
    def to_prometheus_file(metrics: MetricsCollector, filepath: str) -> None:
        with open(filepath, 'w') as f:
            f.write(metrics.export_prometheus())
