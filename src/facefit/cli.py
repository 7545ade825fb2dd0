"""Command line interface.

    facefit simulate --frames 120 --seed 1 --out-dir ./out
    facefit replay captures/20260222_120000.jsonl --format csv
    facefit queue list | clear | sync --token TOKEN
"""

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from .api import StaticSession, UploadClient
from .config import AppConfig, load_config
from .engine import MeasurementEngine
from .export import save_to_file, to_csv, to_json
from .logging_config import setup_logging
from .offline_queue import OfflineQueue
from .pairs import PairConfigLoader, PairConfiguration
from .recorder import CaptureRecorder
from .replay import CaptureReplay, validate_capture_log
from .sim import SyntheticFace, TRAJECTORIES
from .sync import SyncCoordinator

logger = logging.getLogger(__name__)


def _err(msg: str) -> int:
    print(f"error: {msg}", file=sys.stderr)
    return 2


def _pairs_for(config: AppConfig) -> PairConfiguration:
    if config.pairs_path:
        return PairConfigLoader.load(config.pairs_path)
    return PairConfiguration.default()


def _emit(document, fmt: str, out_dir: Optional[str]) -> None:
    if out_dir:
        path = save_to_file(document, out_dir, fmt=fmt)
        print(f"export: {path}")
    elif fmt == "csv":
        sys.stdout.write(to_csv(document))
    else:
        print(to_json(document))


def _cmd_simulate(args, config: AppConfig) -> int:
    if args.frames <= 0:
        return _err("--frames must be > 0")
    if args.noise < 0.0:
        return _err("--noise must be >= 0")
    if not (0.0 <= args.dropout <= 1.0):
        return _err("--dropout must be in [0, 1]")

    pairs = _pairs_for(config)
    engine = MeasurementEngine(
        pairs,
        history_size=config.history_size,
        window_size=config.window_size
    )
    face = SyntheticFace(
        seed=args.seed,
        noise_m=args.noise,
        dropout=args.dropout,
        trajectory=args.trajectory,
        indices=pairs.indices
    )

    recorder = None
    if args.record:
        recorder = CaptureRecorder(log_dir=config.log_dir)
        log_file = recorder.start_recording(pairs=pairs)
        print(f"capture: {log_file}")

    try:
        for snapshot in face.frames(args.frames):
            if recorder:
                recorder.record_snapshot(snapshot)
            engine.process_snapshot(snapshot)
    finally:
        if recorder:
            recorder.stop_recording()

    _emit(engine.export_measurements(), args.format, args.out_dir)
    return 0


def _cmd_replay(args, config: AppConfig) -> int:
    if args.validate:
        result = validate_capture_log(args.log)
        print(json.dumps(result, indent=2))
        return 0 if result["valid"] else 1

    try:
        replay = CaptureReplay(args.log)
    except (FileNotFoundError, ValueError) as e:
        return _err(str(e))

    pairs = PairConfigLoader.load(config.pairs_path) if config.pairs_path else replay.pair_configuration()
    engine = MeasurementEngine(
        pairs,
        history_size=config.history_size,
        window_size=config.window_size
    )
    count = replay.replay_into(engine, realtime=args.realtime, speed=args.speed)
    logger.info(f"Replayed {count} snapshots")

    _emit(engine.export_measurements(), args.format, args.out_dir)
    return 0


def _cmd_queue(args, config: AppConfig) -> int:
    queue = OfflineQueue(config.queue_dir, max_retries=config.max_retries)

    if args.action == "list":
        items = queue.list_pending()
        for item in items:
            print(
                f"{item.handle.name}  user={item.target_user_id}  "
                f"retries={item.retry_count}  enqueued_at={item.enqueued_at:.3f}"
            )
        print(f"pending: {len(items)}")
        return 0

    if args.action == "clear":
        print(f"removed: {queue.clear_all()}")
        return 0

    token = args.token or os.environ.get("FACEFIT_TOKEN")
    session = StaticSession(session_token=token)
    if not session.is_authenticated:
        return _err("sync requires --token or FACEFIT_TOKEN")

    with UploadClient(
        config.base_url,
        session=session,
        request_timeout=config.request_timeout_seconds
    ) as client:
        coordinator = SyncCoordinator(
            queue,
            client,
            session=session,
            resource_timeout=config.resource_timeout_seconds
        )
        report = coordinator.drain()
        coordinator.close()

    print(json.dumps(report.to_dict(), indent=2))
    return 0 if not report.errors else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="facefit")
    parser.add_argument("--config", type=str, default=None, help="JSON config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", type=str, default=None, help="Also write logs to this file")

    sub = parser.add_subparsers(dest="command", required=True)

    sim = sub.add_parser("simulate", help="Measure a synthetic face and print the export")
    sim.add_argument("--frames", type=int, default=120, help="Number of frames (>0)")
    sim.add_argument("--seed", type=int, default=0, help="RNG seed")
    sim.add_argument("--noise", type=float, default=0.0, help="Coordinate noise stddev in meters")
    sim.add_argument("--dropout", type=float, default=0.0, help="Landmark dropout probability [0,1]")
    sim.add_argument("--trajectory", type=str, default="static", choices=TRAJECTORIES, help="Head motion")
    sim.add_argument("--record", action="store_true", help="Record the snapshots to the capture directory")
    sim.add_argument("--format", type=str, default="json", choices=["json", "csv"], help="Export format")
    sim.add_argument("--out-dir", type=str, default=None, help="Write the export here instead of stdout")

    rep = sub.add_parser("replay", help="Measure a recorded capture and print the export")
    rep.add_argument("log", type=str, help="Capture file (.jsonl)")
    rep.add_argument("--validate", action="store_true", help="Only check the capture file")
    rep.add_argument("--realtime", action="store_true", help="Replay with recorded timing")
    rep.add_argument("--speed", type=float, default=1.0, help="Realtime speed multiplier")
    rep.add_argument("--format", type=str, default="json", choices=["json", "csv"], help="Export format")
    rep.add_argument("--out-dir", type=str, default=None, help="Write the export here instead of stdout")

    que = sub.add_parser("queue", help="Inspect or drain the offline export queue")
    que.add_argument("action", choices=["list", "clear", "sync"])
    que.add_argument("--token", type=str, default=None, help="Bearer token for sync")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return int(e.code) if isinstance(e.code, int) else 2

    # Logs go to stderr so exports on stdout stay machine readable
    setup_logging(
        logging.DEBUG if args.verbose else logging.WARNING,
        log_file=args.log_file,
        stream=sys.stderr
    )

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError, TypeError) as e:
        return _err(f"invalid config: {e}")

    handlers = {
        "simulate": _cmd_simulate,
        "replay": _cmd_replay,
        "queue": _cmd_queue,
    }
    try:
        return handlers[args.command](args, config)
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
