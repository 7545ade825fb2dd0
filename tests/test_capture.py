"""
Tests for capture recording, replay and the synthetic landmark source.
"""

import sys
import os
import json
import threading
import time

import numpy as np
import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from facefit.engine import MeasurementEngine
from facefit.metrics import MetricsCollector, MetricsExporter
from facefit.pairs import PairConfiguration
from facefit.recorder import CaptureRecorder, list_capture_logs
from facefit.replay import CaptureReplay, validate_capture_log
from facefit.sim import SyntheticFace


PAIRS = PairConfiguration([(4, 7), (294, 589), (15, 1049)], {"4-7": "nose protrusion"})


@pytest.fixture()
def recorded_capture(tmp_path):
    """Record 20 synthetic frames and return (log_file, live engine)."""
    face = SyntheticFace(seed=3, noise_m=0.0005, dropout=0.1, indices=PAIRS.indices)
    engine = MeasurementEngine(PAIRS)
    recorder = CaptureRecorder(log_dir=str(tmp_path))

    log_file = recorder.start_recording(session_name="test_session", pairs=PAIRS)
    for snapshot in face.frames(20):
        recorder.record_snapshot(snapshot)
        engine.process_snapshot(snapshot)
    recorder.record_event("export_submitted", {"status": "sent"})
    metadata = recorder.stop_recording()

    assert metadata["total_snapshots"] == 20
    assert os.path.exists(log_file)
    return log_file, engine


def test_recorder_state(tmp_path) -> None:
    recorder = CaptureRecorder(log_dir=str(tmp_path))
    assert recorder.record_snapshot(None) is False
    assert recorder.record_event("idle") is False
    assert recorder.stop_recording() == {"status": "not_recording"}

    recorder.start_recording(session_name="a")
    assert recorder.is_recording
    with pytest.raises(RuntimeError):
        recorder.start_recording(session_name="b")
    recorder.stop_recording()
    assert recorder.current_log_file is None


def test_snapshots_racing_stop_are_all_accounted_for(tmp_path) -> None:
    recorder = CaptureRecorder(log_dir=str(tmp_path))
    log_file = recorder.start_recording(session_name="race")
    snapshot = next(SyntheticFace(seed=0, indices=[4, 7]).frames(1))
    accepted = []

    def sensor():
        count = 0
        while recorder.record_snapshot(snapshot):
            count += 1
        accepted.append(count)

    thread = threading.Thread(target=sensor)
    thread.start()
    time.sleep(0.05)
    metadata = recorder.stop_recording()
    thread.join()

    with open(log_file, encoding="utf-8") as f:
        lines = [json.loads(line) for line in f]
    assert lines[0]["_type"] == "header"
    assert lines[-1]["_type"] == "footer"
    assert sum(1 for line in lines if line["_type"] == "snapshot") == accepted[0]
    assert metadata["total_snapshots"] == accepted[0]
    assert lines[-1]["total_snapshots"] == accepted[0]


def test_session_name_is_not_overwritten(tmp_path) -> None:
    recorder = CaptureRecorder(log_dir=str(tmp_path))
    first = recorder.start_recording(session_name="same")
    recorder.stop_recording()
    second = recorder.start_recording(session_name="same")
    recorder.stop_recording()
    assert first != second
    assert os.path.basename(second) == "same_1.jsonl"


def test_replay_reproduces_history(recorded_capture) -> None:
    log_file, live = recorded_capture

    replay = CaptureReplay(log_file)
    assert replay.header.schema_version == "1.0"
    assert replay.footer.total_snapshots == 20
    assert replay.snapshot_count == 20
    assert [e.event_type for e in replay.events] == ["export_submitted"]

    replayed = MeasurementEngine(replay.pair_configuration())
    assert replay.replay_into(replayed) == 20

    assert replayed.pairs.pairs == PAIRS.pairs
    assert replayed.history.snapshot() == live.history.snapshot()
    assert replayed.export_measurements(timestamp=1.0) == live.export_measurements(timestamp=1.0)


def test_realtime_replay_yields_everything(recorded_capture) -> None:
    replay = CaptureReplay(recorded_capture[0])
    assert sum(1 for _ in replay.replay(realtime=True, speed=100.0)) == 20


def test_validate_capture_log(recorded_capture, tmp_path) -> None:
    result = validate_capture_log(recorded_capture[0])
    assert result["valid"]
    assert result["stats"]["total_snapshots"] == 20

    truncated = tmp_path / "truncated.jsonl"
    with open(recorded_capture[0], encoding="utf-8") as f:
        lines = f.readlines()
    truncated.write_text("".join(lines[1:-1]))
    result = validate_capture_log(str(truncated))
    assert not result["valid"]
    assert "Missing header" in result["errors"]

    assert not validate_capture_log(str(tmp_path / "missing.jsonl"))["valid"]


def test_list_capture_logs(recorded_capture, tmp_path) -> None:
    (tmp_path / "junk.jsonl").write_text("not json\n")
    logs = {entry["name"]: entry for entry in list_capture_logs(str(tmp_path))}
    assert logs["test_session"]["schema_version"] == "1.0"
    assert logs["test_session"]["complete"]
    assert logs["test_session"]["total_snapshots"] == 20
    assert logs["junk"]["schema_version"] == "unknown"
    assert not logs["junk"]["complete"]


def test_synthetic_face_is_deterministic() -> None:
    a = [s.to_dict() for s in SyntheticFace(seed=7, noise_m=0.001).frames(3)]
    b = [s.to_dict() for s in SyntheticFace(seed=7, noise_m=0.001).frames(3)]
    c = [s.to_dict() for s in SyntheticFace(seed=8, noise_m=0.001).frames(3)]
    assert a == b
    assert a != c


def test_synthetic_face_without_noise_is_static() -> None:
    face = SyntheticFace(seed=1, indices=[4, 7])
    first, second = list(face.frames(2))
    assert first.points == second.points
    assert second.timestamp == pytest.approx(1.0 / 60.0)
    assert np.allclose(first.get(4).position, face.template[4])


def test_dropout_produces_sparse_samples() -> None:
    face = SyntheticFace(seed=2, dropout=0.3, indices=PAIRS.indices)
    engine = MeasurementEngine(PAIRS)
    sizes = [len(engine.process_snapshot(s)) for s in face.frames(50)]

    assert min(sizes) < len(PAIRS)
    stats = engine.get_statistics()
    assert all(s.count < 50 for s in stats.values())


def test_synthetic_face_validates_arguments() -> None:
    with pytest.raises(ValueError):
        SyntheticFace(dropout=1.5)
    with pytest.raises(ValueError):
        SyntheticFace(trajectory="spin")
    with pytest.raises(ValueError):
        SyntheticFace(noise_m=-1.0)


def test_metrics_export(tmp_path) -> None:
    metrics = MetricsCollector(pair_keys=PAIRS.keys)
    engine = MeasurementEngine(PAIRS, metrics=metrics)
    for snapshot in SyntheticFace(seed=0, indices=PAIRS.indices).frames(5):
        engine.process_snapshot(snapshot)
    metrics.record_drain(2)
    metrics.record_sync_outcome("succeeded")
    metrics.record_sync_outcome("failed", "network")

    summary = metrics.get_summary()
    assert summary["capture"]["frames"] == 5
    assert summary["capture"]["pair_coverage"]["4-7"] == 1.0
    assert summary["sync"]["attempts"] == 2
    assert summary["sync"]["errors"] == {"network": 1}

    prom = metrics.export_prometheus()
    assert "facefit_frames_total 5" in prom
    assert 'facefit_sync_items_total{outcome="failed"} 1' in prom

    MetricsExporter.to_json(summary, str(tmp_path / "metrics.json"))
    with open(tmp_path / "metrics.json", encoding="utf-8") as f:
        assert json.load(f)["sync"]["succeeded"] == 1

    metrics.reset()
    assert metrics.get_summary()["capture"]["frames"] == 0
