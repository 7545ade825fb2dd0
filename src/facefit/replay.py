"""
Reading back capture files written by ``CaptureRecorder``.

Provides functionality to:
- Load a capture into header, snapshots, events and footer
- Re-measure a capture with a MeasurementEngine, optionally at recorded pace
- Check a capture for a missing header or footer and count mismatches
"""

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, List, Iterator, TYPE_CHECKING

from .landmarks import LandmarkSnapshot
from .pairs import PairConfigLoader, PairConfiguration
from .recorder import SCHEMA_VERSION

if TYPE_CHECKING:
    from .engine import MeasurementEngine


@dataclass
class CaptureHeader:
    schema_version: str
    capture_start: str
    log_format: str = "jsonl"
    pairs: Optional[List[Dict[str, Any]]] = None


@dataclass
class CaptureFooter:
    capture_end: str
    total_snapshots: int
    total_events: int = 0


@dataclass
class SnapshotEntry:
    """One recorded snapshot and its offset from the capture start."""
    elapsed: float
    snapshot: LandmarkSnapshot


@dataclass
class EventEntry:
    event_type: str
    timestamp: str
    elapsed: float
    data: Dict[str, Any] = field(default_factory=dict)


def _parse_line(entry: Dict[str, Any]) -> Any:
    kind = entry.get("_type")
    if kind == "snapshot":
        return SnapshotEntry(
            elapsed=float(entry.get("elapsed", 0.0)),
            snapshot=LandmarkSnapshot.from_dict(entry.get("data", {}))
        )
    if kind == "event":
        return EventEntry(
            event_type=entry.get("event_type", ""),
            timestamp=entry.get("timestamp", ""),
            elapsed=float(entry.get("elapsed", 0.0)),
            data=entry.get("data") or {}
        )
    if kind == "header":
        return CaptureHeader(
            schema_version=entry.get("schema_version", "unknown"),
            capture_start=entry.get("capture_start", ""),
            log_format=entry.get("log_format", "jsonl"),
            pairs=entry.get("pairs")
        )
    if kind == "footer":
        return CaptureFooter(
            capture_end=entry.get("capture_end", ""),
            total_snapshots=int(entry.get("total_snapshots", 0)),
            total_events=int(entry.get("total_events", 0))
        )
    return None


class CaptureReplay:
    """
    A capture file loaded into memory.

    Usage:
        replay = CaptureReplay("captures/20260222_120000.jsonl")
        engine = MeasurementEngine(replay.pair_configuration())
        replay.replay_into(engine)
        document = engine.export_measurements()
    """

    def __init__(self, log_file: str):
        """
        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If a line is not valid JSON
        """
        self.log_file = Path(log_file)
        if not self.log_file.is_file():
            raise FileNotFoundError(f"Capture file not found: {log_file}")

        self.header: Optional[CaptureHeader] = None
        self.footer: Optional[CaptureFooter] = None
        self._snapshots: List[SnapshotEntry] = []
        self._events: List[EventEntry] = []

        with open(self.log_file, 'r', encoding='utf-8') as f:
            for line_no, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    parsed = _parse_line(json.loads(line))
                except json.JSONDecodeError as e:
                    raise ValueError(f"{self.log_file}:{line_no}: invalid JSON ({e})") from e

                if isinstance(parsed, SnapshotEntry):
                    self._snapshots.append(parsed)
                elif isinstance(parsed, EventEntry):
                    self._events.append(parsed)
                elif isinstance(parsed, CaptureHeader):
                    self.header = parsed
                elif isinstance(parsed, CaptureFooter):
                    self.footer = parsed

    @property
    def snapshot_count(self) -> int:
        return len(self._snapshots)

    @property
    def events(self) -> List[EventEntry]:
        return list(self._events)

    def pair_configuration(self) -> PairConfiguration:
        """Pair table from the header; the built-in table if none was stored."""
        if self.header is None or not self.header.pairs:
            return PairConfiguration.default()
        return PairConfiguration(
            [PairConfigLoader.parse_entry(entry) for entry in self.header.pairs]
        )

    def replay(
        self,
        realtime: bool = False,
        speed: float = 1.0,
        start: int = 0,
        end: Optional[int] = None
    ) -> Iterator[LandmarkSnapshot]:
        """
        Yield snapshots in recorded order.

        Args:
            realtime: Sleep between snapshots to keep the recorded pace
            speed: Pace multiplier for realtime replay
            start: First snapshot index
            end: Index to stop at (None = last snapshot)
        """
        if speed <= 0:
            raise ValueError("speed must be > 0")
        entries = self._snapshots[start:end]
        if not entries:
            return
        pace_origin = time.monotonic()
        first = entries[0].elapsed
        for entry in entries:
            if realtime:
                due = pace_origin + (entry.elapsed - first) / speed
                wait_s = due - time.monotonic()
                if wait_s > 0:
                    time.sleep(wait_s)
            yield entry.snapshot

    def replay_into(
        self,
        engine: "MeasurementEngine",
        realtime: bool = False,
        speed: float = 1.0
    ) -> int:
        """Measure every recorded snapshot with ``engine``; returns the count."""
        count = 0
        for snapshot in self.replay(realtime=realtime, speed=speed):
            engine.process_snapshot(snapshot)
            count += 1
        return count

    def get_snapshot_at(self, index: int) -> Optional[LandmarkSnapshot]:
        if 0 <= index < len(self._snapshots):
            return self._snapshots[index].snapshot
        return None

    def get_duration_seconds(self) -> float:
        if not self._snapshots:
            return 0.0
        return self._snapshots[-1].elapsed - self._snapshots[0].elapsed


def validate_capture_log(log_file: str) -> Dict[str, Any]:
    """
    Check a capture before replaying it.

    A missing header (or an unreadable file) makes the capture invalid.
    A missing footer or counts that disagree with the footer are warnings:
    the snapshots that were written are still usable.
    """
    errors: List[str] = []
    warnings: List[str] = []

    try:
        replay = CaptureReplay(log_file)
    except (OSError, ValueError, KeyError) as e:
        return {"valid": False, "errors": [str(e)], "warnings": [], "stats": {}}

    if replay.header is None:
        errors.append("Missing header")
    elif replay.header.schema_version != SCHEMA_VERSION:
        warnings.append(f"Unknown schema version: {replay.header.schema_version}")

    footer = replay.footer
    if footer is None:
        warnings.append("Missing footer (capture may be incomplete)")
    else:
        if footer.total_snapshots != replay.snapshot_count:
            warnings.append(
                f"Footer reports {footer.total_snapshots} snapshots, "
                f"found {replay.snapshot_count}"
            )
        if footer.total_events != len(replay.events):
            warnings.append(
                f"Footer reports {footer.total_events} events, found {len(replay.events)}"
            )

    return {
        "valid": not errors,
        "errors": errors,
        "warnings": warnings,
        "stats": {
            "total_snapshots": replay.snapshot_count,
            "duration_seconds": replay.get_duration_seconds(),
            "events_count": len(replay.events)
        }
    }
