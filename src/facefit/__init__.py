"""
Facial landmark measurement and resilient export sync.

Modules:
- landmarks: Landmark snapshots and pair distances
- pairs: Measurement pair tables
- history: Rolling per-session history
- statistics: Windowed averages and per-pair statistics
- export: Export document, JSON/CSV output
- engine: Ingestion and aggregation
- offline_queue: Durable queue of unsent exports
- api: Upload client
- sync: Export service, sync coordinator, trigger signals
- recorder / replay: Capture recording and playback
- sim: Synthetic landmark source
- metrics: Capture and sync health
- session: Complete measurement session
"""

from .landmarks import (
    LandmarkPoint, LandmarkSnapshot, MeasurementPair,
    pair_key, snapshot_from_vertices, compute_distances, extract_coordinates
)
from .pairs import PairConfiguration, PairConfigLoader, COMMON_PAIRS
from .history import RollingHistory, HistorySnapshot
from .statistics import (
    MeasurementStats, average_measurements, average_coordinates, measurement_statistics
)
from .export import build_export_document, to_json, to_csv, save_to_file
from .engine import MeasurementEngine
from .exceptions import (
    FacefitError, StorageError, NetworkError, ValidationError, Unauthorized, ServerError
)
from .offline_queue import OfflineQueue, PendingExportItem
from .api import UploadClient, StaticSession, SessionProvider
from .sync import (
    SyncCoordinator, ExportService, SyncSignal, SyncReport, SubmitResult,
    CONNECTIVITY_RESTORED, APP_FOREGROUNDED, MANUAL_REQUEST
)
from .recorder import CaptureRecorder, list_capture_logs
from .replay import CaptureReplay, validate_capture_log
from .sim import SyntheticFace
from .metrics import MetricsCollector, MetricsExporter
from .config import AppConfig, load_config
from .logging_config import setup_logging
from .session import MeasurementSession

__version__ = "0.1.0"

__all__ = [
    # Landmarks
    "LandmarkPoint",
    "LandmarkSnapshot",
    "MeasurementPair",
    "pair_key",
    "snapshot_from_vertices",
    "compute_distances",
    "extract_coordinates",
    # Pairs
    "PairConfiguration",
    "PairConfigLoader",
    "COMMON_PAIRS",
    # Aggregation
    "RollingHistory",
    "HistorySnapshot",
    "MeasurementStats",
    "average_measurements",
    "average_coordinates",
    "measurement_statistics",
    "MeasurementEngine",
    # Export
    "build_export_document",
    "to_json",
    "to_csv",
    "save_to_file",
    # Errors
    "FacefitError",
    "StorageError",
    "NetworkError",
    "ValidationError",
    "Unauthorized",
    "ServerError",
    # Delivery
    "OfflineQueue",
    "PendingExportItem",
    "UploadClient",
    "StaticSession",
    "SessionProvider",
    "SyncCoordinator",
    "ExportService",
    "SyncSignal",
    "SyncReport",
    "SubmitResult",
    "CONNECTIVITY_RESTORED",
    "APP_FOREGROUNDED",
    "MANUAL_REQUEST",
    # Capture
    "CaptureRecorder",
    "list_capture_logs",
    "CaptureReplay",
    "validate_capture_log",
    "SyntheticFace",
    # Ambient
    "MetricsCollector",
    "MetricsExporter",
    "AppConfig",
    "load_config",
    "setup_logging",
    "MeasurementSession",
]
