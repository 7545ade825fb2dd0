"""
Delivery of export documents with offline fallback.

Provides functionality to:
- Send an export now and queue it when delivery fails transiently
- Drain the offline queue concurrently with a join barrier
- Run drains when trigger signals fire (connectivity, foreground, manual)

Outcome policy per item:
- delivered: removed from the queue
- network/server failure: retry count incremented (dropped at the limit)
- unauthorized: kept untouched until the session is renewed
- validation failure: removed, the server will never accept it
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, List, Callable, Protocol, Tuple

from .api import SessionProvider
from .exceptions import (
    FacefitError, NetworkError, StorageError, Unauthorized, ValidationError
)
from .metrics import MetricsCollector
from .observers import ObserverRegistry
from .offline_queue import OfflineQueue, PendingExportItem

logger = logging.getLogger(__name__)

DEFAULT_RESOURCE_TIMEOUT = 60.0

CONNECTIVITY_RESTORED = "connectivity_restored"
APP_FOREGROUNDED = "app_foregrounded"
MANUAL_REQUEST = "manual"

# Error kinds reported to observers; network and server failures go through
# the retry path and only show up in the report.
_SURFACED_KINDS = ("unauthorized", "validation", "storage")


class Uploader(Protocol):
    def upload(self, document: Dict[str, Any], user_id: int) -> None:
        ...


class SyncObserver(Protocol):
    def on_sync_completed(self, synced_count: int) -> None:
        ...

    def on_sync_error(self, kind: str) -> None:
        ...


class SyncSignal:
    """
    In-process trigger emitter.

    The host application owns one per event source and calls ``emit`` when
    the event happens (network reachable again, app foregrounded, user tap).
    """

    def __init__(self, name: str):
        self.name = name
        self._subscribers: List[Callable[[str], Any]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[str], Any]) -> None:
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[str], Any]) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def emit(self) -> int:
        """Notify subscribers; returns how many were notified."""
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(self.name)
        return len(subscribers)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


@dataclass
class SyncReport:
    """Outcome of one drain."""
    synced_count: int = 0
    attempted: int = 0
    retried: int = 0
    dropped: int = 0
    rejected: int = 0
    kept: int = 0
    skipped: bool = False
    discarded: bool = False
    errors: Dict[str, int] = field(default_factory=dict)

    def add_error(self, kind: str) -> None:
        self.errors[kind] = self.errors.get(kind, 0) + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "synced_count": self.synced_count,
            "attempted": self.attempted,
            "retried": self.retried,
            "dropped": self.dropped,
            "rejected": self.rejected,
            "kept": self.kept,
            "skipped": self.skipped,
            "discarded": self.discarded,
            "errors": dict(self.errors)
        }


class SyncCoordinator:
    """
    Drains the offline queue.

    Usage:
        coordinator = SyncCoordinator(queue, client, session=session)
        coordinator.add_observer(view)
        coordinator.attach(connectivity_signal)
        coordinator.attach(foreground_signal)
        report = coordinator.drain()          # explicit, blocking
        coordinator.close()
    """

    def __init__(
        self,
        queue: OfflineQueue,
        uploader: Uploader,
        session: Optional[SessionProvider] = None,
        resource_timeout: Optional[float] = DEFAULT_RESOURCE_TIMEOUT,
        metrics: Optional[MetricsCollector] = None
    ):
        """
        Args:
            queue: Offline queue to drain
            uploader: Delivery client
            session: Optional session provider; drains are skipped while
                it reports not authenticated
            resource_timeout: Upper bound in seconds on a whole drain;
                attempts still running at the deadline count as network
                failures
            metrics: Optional shared metrics collector
        """
        self.queue = queue
        self.uploader = uploader
        self.session = session
        self.resource_timeout = resource_timeout
        self.metrics = metrics

        self._observers = ObserverRegistry()
        self._signals: List[SyncSignal] = []
        self._threads: List[threading.Thread] = []
        self._threads_lock = threading.Lock()
        self._closed = False

    def add_observer(self, observer: SyncObserver) -> None:
        self._observers.add(observer)

    def remove_observer(self, observer: SyncObserver) -> None:
        self._observers.remove(observer)

    # Triggers

    def attach(self, signal: SyncSignal) -> None:
        """Run a drain every time ``signal`` fires."""
        if self._closed:
            raise RuntimeError("Coordinator is closed")
        signal.subscribe(self._on_signal)
        self._signals.append(signal)

    def detach(self, signal: SyncSignal) -> None:
        signal.unsubscribe(self._on_signal)
        if signal in self._signals:
            self._signals.remove(signal)

    def _on_signal(self, reason: str) -> None:
        self.trigger(reason)

    def trigger(self, reason: str = MANUAL_REQUEST) -> Optional[threading.Thread]:
        """
        Start a drain in the background.

        Returns:
            The drain thread, or None if the coordinator is closed
        """
        if self._closed:
            return None
        logger.info(f"Sync triggered: {reason}")
        thread = threading.Thread(target=self._run_triggered, args=(reason,), daemon=True)
        with self._threads_lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()
        return thread

    def _run_triggered(self, reason: str) -> None:
        try:
            self.drain()
        except Exception:
            logger.exception(f"Drain triggered by {reason} failed")

    def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Join background drains started by triggers."""
        with self._threads_lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout=timeout)

    # Drain

    def drain(
        self,
        queue: Optional[OfflineQueue] = None,
        uploader: Optional[Uploader] = None
    ) -> SyncReport:
        """
        Attempt delivery of every pending item and wait for all attempts.

        Items already being processed by another drain (of any coordinator
        sharing the queue), or changed since the pending list was read, are
        skipped. An item that cannot be read is reported as a storage error
        and the rest of the queue is still delivered.

        Args:
            queue: Queue to drain (default: the coordinator's queue)
            uploader: Delivery client (default: the coordinator's client)

        Returns:
            SyncReport with the number of delivered items
        """
        queue = queue or self.queue
        uploader = uploader or self.uploader
        report = SyncReport()

        if self._closed:
            report.skipped = True
            return report

        if self.session is not None and not self.session.is_authenticated:
            logger.info("Not authenticated, skipping sync")
            report.skipped = True
            return report

        unreadable: List[str] = []
        try:
            pending = queue.list_pending(failures=unreadable)
        except StorageError as e:
            logger.error(f"Cannot read pending exports: {e}")
            report.add_error("storage")
            self._observers.notify("on_sync_error", "storage")
            return report

        for _ in unreadable:
            report.add_error("storage")

        claimed = queue.claim(pending)
        if not claimed:
            return self._finish(report)

        logger.info(f"Syncing {len(claimed)} pending exports")
        report.attempted = len(claimed)
        if self.metrics:
            self.metrics.record_drain(len(claimed))

        try:
            outcomes = self._upload_all(claimed, uploader)
            if self._closed:
                logger.info("Coordinator closed during drain, discarding results")
                report.discarded = True
                return report
            for item, error in outcomes:
                self._reconcile(queue, item, error, report)
        finally:
            queue.release(claimed)

        logger.info(
            f"Sync finished: {report.synced_count}/{report.attempted} delivered, "
            f"{report.retried} retried, {report.dropped} dropped"
        )
        return self._finish(report)

    def _finish(self, report: SyncReport) -> SyncReport:
        for kind in _SURFACED_KINDS:
            if kind in report.errors:
                self._observers.notify("on_sync_error", kind)
        self._observers.notify("on_sync_completed", report.synced_count)
        return report

    def _upload_all(
        self,
        items: List[PendingExportItem],
        uploader: Uploader
    ) -> List[Tuple[PendingExportItem, Optional[BaseException]]]:
        executor = ThreadPoolExecutor(
            max_workers=len(items),
            thread_name_prefix="facefit-upload"
        )
        try:
            futures = [
                (item, executor.submit(uploader.upload, item.payload, item.target_user_id))
                for item in items
            ]
            done, _ = wait([f for _, f in futures], timeout=self.resource_timeout)
        finally:
            # late uploads finish in the background; their results are ignored
            executor.shutdown(wait=False)

        outcomes = []
        for item, future in futures:
            if future in done:
                outcomes.append((item, future.exception()))
            else:
                outcomes.append((item, NetworkError("Resource timeout exceeded")))
        return outcomes

    def _reconcile(
        self,
        queue: OfflineQueue,
        item: PendingExportItem,
        error: Optional[BaseException],
        report: SyncReport
    ) -> None:
        name = item.handle.name
        try:
            if error is None:
                queue.mark_succeeded(item.handle)
                report.synced_count += 1
                self._record("succeeded")
                logger.info(f"Synced export for user {item.target_user_id}")
            elif isinstance(error, Unauthorized):
                report.kept += 1
                report.add_error(error.kind)
                self._record("failed", error.kind)
                logger.warning(f"Unauthorized while syncing {name}, keeping item")
            elif isinstance(error, ValidationError):
                queue.mark_succeeded(item.handle)
                report.rejected += 1
                report.add_error(error.kind)
                self._record("dropped", error.kind)
                logger.warning(f"Server rejected {name}: {error}")
            else:
                kind = error.kind if isinstance(error, FacefitError) else "network"
                report.add_error(kind)
                logger.warning(f"Failed to sync {name}: {error}")
                retry_count = queue.increment_retry(item.handle)
                if retry_count is None:
                    report.dropped += 1
                    self._record("dropped", kind)
                else:
                    report.retried += 1
                    self._record("failed", kind)
        except StorageError as e:
            logger.error(f"Storage error while reconciling {name}: {e}")
            report.add_error("storage")

    def _record(self, outcome: str, kind: Optional[str] = None) -> None:
        if self.metrics:
            self.metrics.record_sync_outcome(outcome, kind)

    def close(self) -> None:
        """
        Unsubscribe from all signals and stop accepting drains.

        In-flight uploads are allowed to finish; their results are discarded.
        """
        self._closed = True
        for signal in list(self._signals):
            signal.unsubscribe(self._on_signal)
        self._signals.clear()
        self._observers.clear()

    @property
    def is_closed(self) -> bool:
        return self._closed


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of ``ExportService.submit``."""
    status: str  # "sent", "queued", "rejected", "no_consent", "failed"
    error_kind: Optional[str] = None
    handle: Optional[Path] = None


class ExportService:
    """
    Send an export now; fall back to the offline queue on transient failure.

    Usage:
        service = ExportService(client, queue)
        result = service.submit(engine.export_measurements(), user_id=42)
        if result.status == "queued":
            ...
    """

    def __init__(
        self,
        uploader: Uploader,
        queue: OfflineQueue,
        consent_granted: bool = True
    ):
        self.uploader = uploader
        self.queue = queue
        self.consent_granted = consent_granted
        self._observers = ObserverRegistry()

    def add_observer(self, observer: SyncObserver) -> None:
        self._observers.add(observer)

    def remove_observer(self, observer: SyncObserver) -> None:
        self._observers.remove(observer)

    def submit(self, document: Dict[str, Any], user_id: int) -> SubmitResult:
        """
        Deliver a document, queueing it when the failure is retryable.

        Unauthorized and validation failures are reported through
        ``on_sync_error`` and not queued.
        """
        if not self.consent_granted:
            logger.info("Data sharing consent not granted, export not sent")
            return SubmitResult("no_consent")

        try:
            self.uploader.upload(document, user_id)
        except (Unauthorized, ValidationError) as e:
            logger.warning(f"Export rejected: {e}")
            self._observers.notify("on_sync_error", e.kind)
            return SubmitResult("rejected", e.kind)
        except FacefitError as e:
            if not e.retryable:
                raise
            logger.warning(f"Export failed ({e}), saving offline")
            return self._enqueue(document, user_id, e.kind)

        logger.info(f"Export sent for user {user_id}")
        return SubmitResult("sent")

    def save_offline(self, document: Dict[str, Any], user_id: int) -> SubmitResult:
        """Queue a document without trying to send it (e.g. known to be offline)."""
        if not self.consent_granted:
            return SubmitResult("no_consent")
        return self._enqueue(document, user_id, None)

    def _enqueue(
        self,
        document: Dict[str, Any],
        user_id: int,
        error_kind: Optional[str]
    ) -> SubmitResult:
        try:
            handle = self.queue.enqueue(document, user_id)
        except StorageError as e:
            logger.error(f"Failed to save export offline: {e}")
            self._observers.notify("on_sync_error", "storage")
            return SubmitResult("failed", "storage")
        return SubmitResult("queued", error_kind, handle)
