"""
Export document assembly.

Provides functionality to:
- Build the export document from a history snapshot (averages and
  coordinates converted to millimeters, statistics kept in meters)
- Serialize it to JSON or CSV
- Save it to a local file
"""

import csv
import io
import json
import time
from pathlib import Path
from typing import Optional, Dict, Any

from .history import HistorySnapshot
from .pairs import PairConfiguration, describe_key
from .statistics import (
    DEFAULT_WINDOW_SIZE, average_measurements, average_coordinates, measurement_statistics
)

MM_PER_METER = 1000.0


def build_export_document(
    history: HistorySnapshot,
    pairs: PairConfiguration,
    window_size: int = DEFAULT_WINDOW_SIZE,
    timestamp: Optional[float] = None
) -> Dict[str, Any]:
    """
    Assemble the document sent to the server and stored in the offline queue.

    Args:
        history: Snapshot of the rolling history
        pairs: Pair configuration used for descriptions
        window_size: Averaging window for measurements and coordinates
        timestamp: Export time (default: now)

    Returns:
        JSON-compatible export document
    """
    averages = average_measurements(history.measurements, window_size)
    coordinates = average_coordinates(history.coordinates, window_size)
    statistics = measurement_statistics(history.measurements)

    return {
        "timestamp": time.time() if timestamp is None else timestamp,
        "average_measurements": {
            key: {
                "value": value * MM_PER_METER,
                "description": describe_key(pairs, key)
            }
            for key, value in averages.items()
        },
        "landmark_coordinates": {
            index: {axis: c * MM_PER_METER for axis, c in coords.items()}
            for index, coords in coordinates.items()
        },
        # statistics stay in meters, unlike the averages above
        "statistics": {key: s.to_dict() for key, s in statistics.items()},
        "total_samples": len(history),
        "measurement_pairs": pairs.to_list(),
        "units": {"primary": "millimeters"}
    }


def to_json(document: Dict[str, Any], pretty: bool = True) -> str:
    return json.dumps(document, indent=2 if pretty else None)


def to_csv(document: Dict[str, Any]) -> str:
    """Averaged measurements as ``Measurement,Value`` rows (millimeters)."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["Measurement", "Value"])
    averages = document.get("average_measurements", {})
    for key in sorted(averages):
        entry = averages[key]
        writer.writerow([entry.get("description", key), entry.get("value")])
    return buffer.getvalue()


def save_to_file(
    document: Dict[str, Any],
    directory: str,
    filename: str = "facial_measurements",
    fmt: str = "json"
) -> str:
    """
    Write the export document to ``directory/filename.<fmt>``.

    Args:
        document: Export document
        directory: Output directory (created if missing)
        filename: File name without extension
        fmt: "json" or "csv"

    Returns:
        Path of the written file
    """
    if fmt == "json":
        content = to_json(document)
    elif fmt == "csv":
        content = to_csv(document)
    else:
        raise ValueError(f"Unknown export format: {fmt}")

    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / f"{filename}.{fmt}"
    with open(path, 'w', encoding='utf-8', newline='') as f:
        f.write(content)
    return str(path)
