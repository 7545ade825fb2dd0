"""
Capture files: landmark snapshots written as they arrive.

A capture file is JSONL:
- header line: schema version, start time and the pair table in effect
- one line per snapshot or session event, stamped with seconds since start
- footer line: snapshot and event counts

Every line is written and flushed under the recorder lock, so a snapshot is
either complete in the file and counted in the footer, or it was refused.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, List, TextIO

from .landmarks import LandmarkSnapshot
from .pairs import PairConfiguration

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"


def _pair_records(pairs: PairConfiguration) -> List[Dict[str, Any]]:
    return [
        {"from": p.from_index, "to": p.to_index, "description": p.description}
        for p in pairs.pairs
    ]


@dataclass
class _OpenCapture:
    path: Path
    handle: TextIO
    started_at: datetime
    origin: float
    snapshots: int = 0
    events: int = 0

    def write(self, entry: Dict[str, Any]) -> None:
        self.handle.write(json.dumps(entry) + '\n')
        self.handle.flush()

    def elapsed(self) -> float:
        return round(time.monotonic() - self.origin, 6)


class CaptureRecorder:
    """
    Writes one capture file at a time.

    Recording never interferes with measuring: once a capture is closed, or
    after a write failure, snapshots are refused instead of raising.

    Usage:
        recorder = CaptureRecorder(log_dir="./captures")
        recorder.start_recording(pairs=engine.pairs)
        recorder.record_snapshot(snapshot)      # from the sensor callback
        recorder.stop_recording()
    """

    SCHEMA_VERSION = SCHEMA_VERSION

    def __init__(self, log_dir: str = "./captures"):
        self.log_dir = Path(log_dir)
        self._lock = threading.Lock()
        self._capture: Optional[_OpenCapture] = None

    def _next_path(self, session_name: Optional[str]) -> Path:
        stem = session_name or datetime.now().strftime("%Y%m%d_%H%M%S")
        path = self.log_dir / f"{stem}.jsonl"
        n = 1
        while path.exists():
            path = self.log_dir / f"{stem}_{n}.jsonl"
            n += 1
        return path

    def start_recording(
        self,
        session_name: Optional[str] = None,
        pairs: Optional[PairConfiguration] = None
    ) -> str:
        """
        Open a new capture file and write its header.

        Args:
            session_name: File stem (default: current timestamp); a numeric
                suffix is added instead of overwriting an existing capture
            pairs: Pair table stored in the header so a replay measures
                with the same configuration

        Returns:
            Path to the capture file

        Raises:
            RuntimeError: If a capture is already open
            OSError: If the file cannot be created
        """
        with self._lock:
            if self._capture is not None:
                raise RuntimeError("Recording already in progress")

            self.log_dir.mkdir(parents=True, exist_ok=True)
            path = self._next_path(session_name)
            capture = _OpenCapture(
                path=path,
                handle=open(path, 'x', encoding='utf-8'),
                started_at=datetime.now(),
                origin=time.monotonic()
            )
            try:
                capture.write({
                    "_type": "header",
                    "schema_version": SCHEMA_VERSION,
                    "capture_start": capture.started_at.isoformat(),
                    "log_format": "jsonl",
                    "pairs": _pair_records(pairs) if pairs is not None else None
                })
            except OSError:
                capture.handle.close()
                raise
            self._capture = capture

        logger.info(f"Recording capture to {path}")
        return str(path)

    def _append(self, entry: Dict[str, Any]) -> Optional[_OpenCapture]:
        # caller holds the lock
        capture = self._capture
        if capture is None:
            return None
        entry["elapsed"] = capture.elapsed()
        try:
            capture.write(entry)
        except OSError as e:
            logger.error(f"Capture write failed, recording stopped: {e}")
            self._capture = None
            capture.handle.close()
            return None
        return capture

    def record_snapshot(self, snapshot: LandmarkSnapshot) -> bool:
        """
        Append a snapshot.

        Returns:
            False if no capture is open and the snapshot was not written
        """
        with self._lock:
            if self._capture is None:
                return False
            capture = self._append({"_type": "snapshot", "data": snapshot.to_dict()})
            if capture is None:
                return False
            capture.snapshots += 1
        return True

    def record_event(self, event_type: str, event_data: Optional[Dict[str, Any]] = None) -> bool:
        """Append a session event such as ``pairs_updated`` or ``export_submitted``."""
        with self._lock:
            capture = self._append({
                "_type": "event",
                "event_type": event_type,
                "timestamp": datetime.now().isoformat(),
                "data": event_data or {}
            })
            if capture is None:
                return False
            capture.events += 1
        return True

    def stop_recording(self) -> Dict[str, Any]:
        """
        Write the footer and close the capture file.

        Returns:
            Summary of the capture, or ``{"status": "not_recording"}``
        """
        with self._lock:
            capture = self._capture
            if capture is None:
                return {"status": "not_recording"}
            self._capture = None

            ended_at = datetime.now()
            try:
                capture.write({
                    "_type": "footer",
                    "capture_end": ended_at.isoformat(),
                    "total_snapshots": capture.snapshots,
                    "total_events": capture.events
                })
            except OSError as e:
                logger.error(f"Could not write capture footer: {e}")
            finally:
                capture.handle.close()

        logger.info(f"Capture saved: {capture.snapshots} snapshots in {capture.path.name}")
        return {
            "log_file": str(capture.path),
            "start_time": capture.started_at.isoformat(),
            "end_time": ended_at.isoformat(),
            "total_snapshots": capture.snapshots,
            "total_events": capture.events
        }

    @property
    def is_recording(self) -> bool:
        with self._lock:
            return self._capture is not None

    @property
    def current_log_file(self) -> Optional[str]:
        with self._lock:
            return str(self._capture.path) if self._capture else None


def _read_edge_lines(path: Path) -> List[Optional[Dict[str, Any]]]:
    """First and last parsed lines of a capture; None where unparseable."""
    with open(path, 'r', encoding='utf-8') as f:
        lines = [line for line in f if line.strip()]
    edges: List[Optional[Dict[str, Any]]] = []
    for line in (lines[:1] + lines[-1:]) if lines else []:
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            entry = None
        edges.append(entry if isinstance(entry, dict) else None)
    return edges + [None] * (2 - len(edges))


def list_capture_logs(log_dir: str = "./captures") -> List[Dict[str, Any]]:
    """
    Describe the capture files in ``log_dir``, newest name first.

    A capture without a footer was not stopped cleanly and is listed with
    ``complete`` False.
    """
    log_path = Path(log_dir)
    if not log_path.is_dir():
        return []

    captures = []
    for path in sorted(log_path.glob("*.jsonl"), reverse=True):
        header, last = _read_edge_lines(path)
        has_header = header is not None and header.get("_type") == "header"
        complete = last is not None and last.get("_type") == "footer"
        captures.append({
            "path": str(path),
            "name": path.stem,
            "size_bytes": path.stat().st_size,
            "schema_version": header.get("schema_version") if has_header else "unknown",
            "capture_start": header.get("capture_start") if has_header else None,
            "complete": complete,
            "total_snapshots": last.get("total_snapshots") if complete else None
        })
    return captures
