"""
Measurement session that integrates all components.

Provides the complete chain:
- Landmark snapshots → MeasurementEngine → export document
- Export document → ExportService → server or offline queue
- Trigger signals → SyncCoordinator → offline queue drained
"""

import logging
import time
from typing import Optional, Dict, Any

import httpx

from .api import SessionProvider, StaticSession, UploadClient
from .config import AppConfig
from .engine import MeasurementEngine
from .export import save_to_file
from .landmarks import LandmarkSnapshot
from .metrics import MetricsCollector
from .offline_queue import OfflineQueue
from .pairs import PairConfigLoader, PairConfiguration
from .recorder import CaptureRecorder
from .sync import ExportService, SubmitResult, SyncCoordinator, SyncReport, SyncSignal

logger = logging.getLogger(__name__)


class MeasurementSession:
    """
    One capture session from configuration to delivered export.

    Usage:
        session = MeasurementSession(load_config("facefit.json"), auth)
        session.attach_signal(connectivity_signal)
        session.start()
        session.on_snapshot(snapshot)          # from the sensor callback
        ...
        session.stop()
        result = session.submit()
        session.close()
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        auth: Optional[SessionProvider] = None,
        enable_recording: bool = False,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Args:
            config: Application configuration (default: AppConfig())
            auth: Session provider for the bearer token and target user
            enable_recording: Whether to record snapshots to ``config.log_dir``
            transport: Optional httpx transport (used by tests)
        """
        self.config = config or AppConfig()
        self.auth = auth or StaticSession()

        pairs = (
            PairConfigLoader.load(self.config.pairs_path)
            if self.config.pairs_path else PairConfiguration.default()
        )

        self.metrics = MetricsCollector(pair_keys=pairs.keys)
        self.engine = MeasurementEngine(
            pairs,
            history_size=self.config.history_size,
            window_size=self.config.window_size,
            metrics=self.metrics
        )
        self.queue = OfflineQueue(self.config.queue_dir, max_retries=self.config.max_retries)
        self.client = UploadClient(
            self.config.base_url,
            session=self.auth,
            request_timeout=self.config.request_timeout_seconds,
            transport=transport
        )
        self.coordinator = SyncCoordinator(
            self.queue,
            self.client,
            session=self.auth,
            resource_timeout=self.config.resource_timeout_seconds,
            metrics=self.metrics
        )
        self.export_service = ExportService(
            self.client,
            self.queue,
            consent_granted=self.config.consent_granted
        )

        self.recorder: Optional[CaptureRecorder] = None
        if enable_recording:
            self.recorder = CaptureRecorder(log_dir=self.config.log_dir)

        self._running = False
        self.start_time: Optional[float] = None

    # Observers and triggers

    def add_observer(self, observer: Any) -> None:
        """Register an observer with the engine and both sync components."""
        self.engine.add_observer(observer)
        self.coordinator.add_observer(observer)
        self.export_service.add_observer(observer)

    def remove_observer(self, observer: Any) -> None:
        self.engine.remove_observer(observer)
        self.coordinator.remove_observer(observer)
        self.export_service.remove_observer(observer)

    def attach_signal(self, signal: SyncSignal) -> None:
        self.coordinator.attach(signal)

    # Capture lifecycle

    def start(self, session_name: Optional[str] = None) -> None:
        """Start a new capture; the history of the previous capture is discarded."""
        if self._running:
            return
        self.engine.clear_history()
        self.engine.start()
        if self.recorder:
            self.recorder.start_recording(session_name=session_name, pairs=self.engine.pairs)
        self._running = True
        self.start_time = time.time()
        logger.info("Capture session started")

    def on_snapshot(self, snapshot: LandmarkSnapshot) -> bool:
        """
        Sensor callback. Frames arriving after ``stop()`` are dropped.

        Returns:
            True if the snapshot was accepted
        """
        if not self._running:
            return False
        try:
            self.engine.submit(snapshot)
        except RuntimeError:
            logger.debug("Capture stopped, dropping snapshot")
            return False
        if self.recorder:
            self.recorder.record_snapshot(snapshot)
        return True

    def stop(self) -> Dict[str, Any]:
        """Stop capturing. The history is kept for export."""
        if not self._running:
            return {"status": "not_running"}
        self._running = False
        self.engine.flush()
        self.engine.stop()

        log_metadata: Dict[str, Any] = {}
        if self.recorder:
            log_metadata = self.recorder.stop_recording()

        return {
            "frames_processed": self.engine.frames_processed,
            "history_length": len(self.engine.history),
            "duration_seconds": time.time() - self.start_time if self.start_time else 0,
            "log_metadata": log_metadata
        }

    def update_pairs(self, pairs: PairConfiguration) -> None:
        self.engine.update_measurement_pairs(pairs)
        if self.recorder:
            self.recorder.record_event("pairs_updated", {"pair_count": len(pairs)})

    # Export and delivery

    def export(self) -> Dict[str, Any]:
        return self.engine.export_measurements()

    def save_local(self, directory: str, fmt: str = "json") -> str:
        """Write the current export to ``directory`` as JSON or CSV."""
        return save_to_file(self.export(), directory, fmt=fmt)

    def submit(self, user_id: Optional[int] = None) -> SubmitResult:
        """
        Send the current export for ``user_id`` (default: the session's user).

        Raises:
            ValueError: If no user id is given and the session has none
        """
        target = user_id if user_id is not None else self.auth.user_id
        if target is None:
            raise ValueError("No target user id")
        result = self.export_service.submit(self.export(), target)
        if self.recorder:
            self.recorder.record_event("export_submitted", {"status": result.status})
        return result

    def sync(self) -> SyncReport:
        return self.coordinator.drain()

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "authenticated": self.auth.is_authenticated,
            "pending_exports": len(self.queue),
            "engine": self.engine.get_status()
        }

    def close(self) -> None:
        if self._running:
            self.stop()
        self.coordinator.close()
        self.engine.close()
        self.client.close()
