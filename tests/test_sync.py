"""
Tests for the sync coordinator, the export service and trigger signals.
"""

import sys
import os
import json
import threading
import time
from collections import Counter

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from facefit.api import StaticSession
from facefit.exceptions import NetworkError, ServerError, StorageError, Unauthorized, ValidationError
from facefit.metrics import MetricsCollector
from facefit.offline_queue import OfflineQueue
from facefit.sync import (
    CONNECTIVITY_RESTORED, ExportService, SyncCoordinator, SyncSignal
)


DOCUMENT = {"average_measurements": {}, "total_samples": 0}


class FakeUploader:
    """Per-user scripted outcomes; ``None`` means delivered."""

    def __init__(self, outcomes=None, delay: float = 0.0):
        self.outcomes = outcomes or {}
        self.delay = delay
        self.calls = Counter()
        self.release = threading.Event()
        self._lock = threading.Lock()

    def upload(self, document, user_id):
        with self._lock:
            self.calls[user_id] += 1
        if self.delay:
            time.sleep(self.delay)
        outcome = self.outcomes.get(user_id)
        if outcome == "hang":
            self.release.wait(timeout=10.0)
            return
        if outcome is not None:
            raise outcome


class GatedUploader:
    """Blocks every upload until released, then fails with ``error``."""

    def __init__(self, error):
        self.error = error
        self.calls = Counter()
        self.started = threading.Event()
        self.release = threading.Event()

    def upload(self, document, user_id):
        self.calls[user_id] += 1
        self.started.set()
        self.release.wait(timeout=10.0)
        raise self.error


class SyncEvents:
    def __init__(self):
        self.completed = []
        self.errors = []

    def on_sync_completed(self, synced_count):
        self.completed.append(synced_count)

    def on_sync_error(self, kind):
        self.errors.append(kind)


@pytest.fixture()
def queue(tmp_path) -> OfflineQueue:
    return OfflineQueue(str(tmp_path / "pending"), max_retries=3)


def _coordinator(queue, uploader, **kwargs):
    kwargs.setdefault("session", StaticSession(user_id=1, session_token="token"))
    return SyncCoordinator(queue, uploader, **kwargs)


def test_drain_delivers_everything(queue) -> None:
    for user_id in (1, 2, 3):
        queue.enqueue(DOCUMENT, target_user_id=user_id)
    events = SyncEvents()
    coordinator = _coordinator(queue, FakeUploader())
    coordinator.add_observer(events)

    report = coordinator.drain()

    assert report.synced_count == 3
    assert report.attempted == 3
    assert queue.list_pending() == []
    assert events.completed == [3]
    assert events.errors == []


def test_empty_queue_still_completes(queue) -> None:
    events = SyncEvents()
    coordinator = _coordinator(queue, FakeUploader())
    coordinator.add_observer(events)

    report = coordinator.drain()

    assert report.synced_count == 0
    assert events.completed == [0]


def test_one_succeeds_one_times_out(queue) -> None:
    handle_a = queue.enqueue(DOCUMENT, target_user_id=1)
    handle_b = queue.enqueue(DOCUMENT, target_user_id=2)
    uploader = FakeUploader({2: "hang"})
    coordinator = _coordinator(queue, uploader, resource_timeout=0.3)

    try:
        report = coordinator.drain()
    finally:
        uploader.release.set()

    assert report.synced_count == 1
    assert report.errors == {"network": 1}
    assert not queue.contains(handle_a)
    assert queue.get(handle_b).retry_count == 1


def test_retryable_failures_increment_and_drop(queue) -> None:
    handle = queue.enqueue(DOCUMENT, target_user_id=5)
    metrics = MetricsCollector()
    coordinator = _coordinator(queue, FakeUploader({5: ServerError(500)}), metrics=metrics)

    coordinator.drain()
    coordinator.drain()
    assert queue.get(handle).retry_count == 2

    report = coordinator.drain()
    assert report.dropped == 1
    assert not queue.contains(handle)

    sync = metrics.get_summary()["sync"]
    assert sync["drains"] == 3
    assert sync["failed"] == 2
    assert sync["dropped"] == 1
    assert sync["errors"] == {"server": 3}


def test_unauthorized_keeps_item_untouched(queue) -> None:
    handle = queue.enqueue(DOCUMENT, target_user_id=1)
    events = SyncEvents()
    coordinator = _coordinator(queue, FakeUploader({1: Unauthorized()}))
    coordinator.add_observer(events)

    report = coordinator.drain()

    assert report.kept == 1
    assert queue.get(handle).retry_count == 0
    assert events.errors == ["unauthorized"]
    assert events.completed == [0]


def test_validation_failure_removes_item(queue) -> None:
    handle = queue.enqueue(DOCUMENT, target_user_id=1)
    events = SyncEvents()
    coordinator = _coordinator(queue, FakeUploader({1: ValidationError(["bad"])}))
    coordinator.add_observer(events)

    report = coordinator.drain()

    assert report.rejected == 1
    assert not queue.contains(handle)
    assert events.errors == ["validation"]


def test_network_failure_is_counted_not_surfaced(queue) -> None:
    queue.enqueue(DOCUMENT, target_user_id=1)
    events = SyncEvents()
    coordinator = _coordinator(queue, FakeUploader({1: NetworkError("offline")}))
    coordinator.add_observer(events)

    report = coordinator.drain()

    assert report.retried == 1
    assert events.errors == []
    assert events.completed == [0]


def test_drain_skipped_when_not_authenticated(queue) -> None:
    queue.enqueue(DOCUMENT, target_user_id=1)
    uploader = FakeUploader()
    events = SyncEvents()
    coordinator = _coordinator(queue, uploader, session=StaticSession(user_id=1))
    coordinator.add_observer(events)

    report = coordinator.drain()

    assert report.skipped
    assert sum(uploader.calls.values()) == 0
    assert len(queue) == 1
    assert events.completed == []


def test_concurrent_drains_never_double_process(queue) -> None:
    for user_id in range(10):
        queue.enqueue(DOCUMENT, target_user_id=user_id)
    uploader = FakeUploader(delay=0.05)
    coordinator = _coordinator(queue, uploader)

    reports = []
    threads = [
        threading.Thread(target=lambda: reports.append(coordinator.drain()))
        for _ in range(4)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert all(count == 1 for count in uploader.calls.values())
    assert len(uploader.calls) == 10
    assert sum(r.synced_count for r in reports) == 10
    assert queue.list_pending() == []


def test_coordinators_sharing_a_queue_never_double_process(queue) -> None:
    handle = queue.enqueue(DOCUMENT, target_user_id=1)
    uploader = GatedUploader(NetworkError("offline"))
    first = _coordinator(queue, uploader)
    second = _coordinator(queue, uploader)

    reports = []
    worker = threading.Thread(target=lambda: reports.append(first.drain()))
    worker.start()
    try:
        assert uploader.started.wait(timeout=5.0)
        assert second.drain().attempted == 0
    finally:
        uploader.release.set()
        worker.join()

    assert reports[0].retried == 1
    assert uploader.calls == Counter({1: 1})
    assert queue.get(handle).retry_count == 1
    assert not queue.is_claimed(handle)


def test_enqueue_during_drains_keeps_items_intact(queue) -> None:
    coordinator = _coordinator(queue, FakeUploader({user_id: ServerError(503) for user_id in range(40)}))
    done = threading.Event()
    failures = []

    def capture():
        try:
            for user_id in range(40):
                queue.enqueue(DOCUMENT, target_user_id=user_id)
        except Exception as e:
            failures.append(e)
        finally:
            done.set()

    def drains():
        try:
            while not done.is_set():
                coordinator.drain()
        except Exception as e:
            failures.append(e)

    threads = [threading.Thread(target=capture), threading.Thread(target=drains)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert failures == []
    assert all(not p.name.startswith(".") for p in queue.queue_dir.iterdir())
    for path in queue.queue_dir.glob("*.json"):
        with open(path, encoding="utf-8") as f:
            record = json.load(f)
        assert record["measurements"] == DOCUMENT
        assert 0 <= record["retryCount"] < queue.max_retries


def test_unreadable_item_does_not_block_the_rest(queue) -> None:
    handle = queue.enqueue(DOCUMENT, target_user_id=1)
    (queue.queue_dir / "measurements_9_0.json").mkdir()
    events = SyncEvents()
    coordinator = _coordinator(queue, FakeUploader())
    coordinator.add_observer(events)

    report = coordinator.drain()

    assert report.synced_count == 1
    assert report.errors == {"storage": 1}
    assert not queue.contains(handle)
    assert events.errors == ["storage"]
    assert events.completed == [1]


def test_close_discards_late_results(queue) -> None:
    handle = queue.enqueue(DOCUMENT, target_user_id=1)
    uploader = FakeUploader({1: "hang"})
    events = SyncEvents()
    coordinator = _coordinator(queue, uploader, resource_timeout=5.0)
    coordinator.add_observer(events)

    reports = []
    worker = threading.Thread(target=lambda: reports.append(coordinator.drain()))
    worker.start()
    while uploader.calls[1] == 0:
        time.sleep(0.01)

    coordinator.close()
    uploader.release.set()
    worker.join()

    assert reports[0].discarded
    assert queue.get(handle).retry_count == 0
    assert events.completed == []
    assert coordinator.drain().skipped


def test_storage_error_on_listing_is_surfaced(queue, monkeypatch) -> None:
    events = SyncEvents()
    coordinator = _coordinator(queue, FakeUploader())
    coordinator.add_observer(events)

    def broken(failures=None):
        raise StorageError("disk gone")

    monkeypatch.setattr(queue, "list_pending", broken)
    report = coordinator.drain()

    assert report.errors == {"storage": 1}
    assert events.errors == ["storage"]


def test_signal_triggers_background_drain(queue) -> None:
    queue.enqueue(DOCUMENT, target_user_id=1)
    events = SyncEvents()
    coordinator = _coordinator(queue, FakeUploader())
    coordinator.add_observer(events)
    signal = SyncSignal(CONNECTIVITY_RESTORED)
    coordinator.attach(signal)

    assert signal.emit() == 1
    coordinator.wait_idle(timeout=5.0)

    assert events.completed == [1]
    assert len(queue) == 0

    coordinator.close()
    assert signal.subscriber_count == 0


# Export service

def test_submit_sends_when_online(queue) -> None:
    service = ExportService(FakeUploader(), queue)
    result = service.submit(DOCUMENT, user_id=1)
    assert result.status == "sent"
    assert len(queue) == 0


def test_submit_queues_on_network_error(queue) -> None:
    service = ExportService(FakeUploader({1: NetworkError("offline")}), queue)
    result = service.submit(DOCUMENT, user_id=1)

    assert result.status == "queued"
    assert result.error_kind == "network"
    item = queue.get(result.handle)
    assert item.payload == DOCUMENT
    assert item.target_user_id == 1


def test_submit_rejected_is_not_queued(queue) -> None:
    events = SyncEvents()
    service = ExportService(FakeUploader({1: Unauthorized(), 2: ValidationError()}), queue)
    service.add_observer(events)

    assert service.submit(DOCUMENT, user_id=1).status == "rejected"
    assert service.submit(DOCUMENT, user_id=2).status == "rejected"
    assert len(queue) == 0
    assert events.errors == ["unauthorized", "validation"]


def test_submit_without_consent(queue) -> None:
    uploader = FakeUploader()
    service = ExportService(uploader, queue, consent_granted=False)

    assert service.submit(DOCUMENT, user_id=1).status == "no_consent"
    assert service.save_offline(DOCUMENT, user_id=1).status == "no_consent"
    assert sum(uploader.calls.values()) == 0
    assert len(queue) == 0


def test_queued_export_delivered_by_later_drain(queue) -> None:
    uploader = FakeUploader({1: NetworkError("offline")})
    service = ExportService(uploader, queue)
    assert service.submit(DOCUMENT, user_id=1).status == "queued"

    uploader.outcomes.clear()
    report = _coordinator(queue, uploader).drain()

    assert report.synced_count == 1
    assert len(queue) == 0
