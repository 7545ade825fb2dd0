"""
Durable offline queue for export documents that could not be delivered.

Provides functionality to:
- Persist one JSON file per pending export (survives restarts)
- List pending items oldest first
- Track retry counts and drop items after the retry limit
- Purge the queue

Every mutation of an item file is written to a temporary file and moved into
place with ``os.replace``, under a per-item lock.
"""

import json
import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, Any, List, Set, Union

from .exceptions import StorageError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3

Handle = Union[str, Path]


@dataclass(frozen=True)
class PendingExportItem:
    """An export waiting for delivery."""
    payload: Dict[str, Any]
    target_user_id: int
    enqueued_at: float
    retry_count: int
    handle: Path

    def to_record(self) -> Dict[str, Any]:
        return {
            "measurements": self.payload,
            "userId": self.target_user_id,
            "timestamp": self.enqueued_at,
            "retryCount": self.retry_count
        }


class OfflineQueue:
    """
    File-per-item at-least-once queue.

    Usage:
        queue = OfflineQueue("./pending", max_retries=3)
        handle = queue.enqueue(document, target_user_id=42)
        for item in queue.list_pending():
            ...
            queue.mark_succeeded(item.handle)   # or queue.increment_retry(item.handle)
    """

    FILE_PREFIX = "measurements_"

    def __init__(self, queue_dir: str, max_retries: int = DEFAULT_MAX_RETRIES):
        """
        Args:
            queue_dir: Directory holding the item files (created if missing)
            max_retries: Failed attempts after which an item is dropped

        Raises:
            StorageError: If the directory cannot be created
        """
        if max_retries <= 0:
            raise ValueError("max_retries must be > 0")
        self.queue_dir = Path(queue_dir)
        self.max_retries = max_retries
        try:
            self.queue_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create queue directory {self.queue_dir}: {e}") from e

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._claimed: Set[str] = set()

    def _item_lock(self, handle: Handle) -> threading.Lock:
        name = Path(handle).name
        with self._locks_guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = threading.Lock()
                self._locks[name] = lock
            return lock

    def _forget_lock(self, handle: Handle) -> None:
        with self._locks_guard:
            self._locks.pop(Path(handle).name, None)

    def _write_atomic(self, path: Path, record: Dict[str, Any]) -> None:
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            with open(tmp, 'w', encoding='utf-8') as f:
                json.dump(record, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as e:
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                logger.warning(f"Could not remove temporary file {tmp}")
            raise StorageError(f"Failed to write queue item {path.name}: {e}") from e

    @staticmethod
    def _read(path: Path) -> PendingExportItem:
        """
        Raises:
            FileNotFoundError: If the item no longer exists
            OSError: On other read failures
            ValueError: If the file is not a valid queue item
        """
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        try:
            payload = data["measurements"]
            user_id = data["userId"]
            if not isinstance(payload, dict) or isinstance(user_id, bool):
                raise TypeError("unexpected field types")
            return PendingExportItem(
                payload=payload,
                target_user_id=int(user_id),
                enqueued_at=float(data["timestamp"]),
                retry_count=int(data["retryCount"]),
                handle=path
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed queue item {path.name}: {e}") from e

    def enqueue(self, payload: Dict[str, Any], target_user_id: int) -> Path:
        """
        Persist a new pending export.

        Args:
            payload: Export document
            target_user_id: User the document is uploaded for

        Returns:
            Handle (path) of the stored item

        Raises:
            StorageError: If the item could not be written
        """
        enqueued_at = time.time()
        name = f"{self.FILE_PREFIX}{target_user_id}_{enqueued_at:.6f}_{uuid.uuid4().hex[:8]}.json"
        path = self.queue_dir / name
        item = PendingExportItem(
            payload=payload,
            target_user_id=int(target_user_id),
            enqueued_at=enqueued_at,
            retry_count=0,
            handle=path
        )
        with self._item_lock(path):
            self._write_atomic(path, item.to_record())
        logger.info(f"Saved export offline: {name}")
        return path

    def list_pending(self, failures: Optional[List[str]] = None) -> List[PendingExportItem]:
        """
        Pending items sorted by enqueue time, oldest first.

        Malformed files and files that cannot be read are skipped with a
        warning; the rest of the queue is still listed.

        Args:
            failures: Optional list that receives the names of items that
                could not be read because of an I/O error

        Raises:
            StorageError: If the queue directory cannot be read
        """
        try:
            files = list(self.queue_dir.glob("*.json"))
        except OSError as e:
            raise StorageError(f"Failed to list queue directory: {e}") from e

        items = []
        for path in files:
            try:
                items.append(self._read(path))
            except FileNotFoundError:
                # removed by a concurrent drain
                continue
            except ValueError as e:
                logger.warning(f"Skipping malformed queue item {path.name}: {e}")
            except OSError as e:
                logger.error(f"Skipping unreadable queue item {path.name}: {e}")
                if failures is not None:
                    failures.append(path.name)

        items.sort(key=lambda item: item.enqueued_at)
        return items

    def claim(self, items: List[PendingExportItem]) -> List[PendingExportItem]:
        """
        Reserve items for one delivery attempt.

        An item is skipped when another caller holds it, when it no longer
        exists, or when its retry count changed since ``items`` was listed
        (another attempt already finished with it).

        Returns:
            The reserved items; pass them to ``release`` when done
        """
        claimed = []
        with self._locks_guard:
            for item in items:
                name = item.handle.name
                if name in self._claimed:
                    continue
                try:
                    current = self._read(item.handle)
                except FileNotFoundError:
                    continue
                except (OSError, ValueError) as e:
                    logger.warning(f"Not claiming {name}: {e}")
                    continue
                if current.retry_count != item.retry_count:
                    continue
                self._claimed.add(name)
                claimed.append(current)
        return claimed

    def release(self, items: List[PendingExportItem]) -> None:
        with self._locks_guard:
            for item in items:
                self._claimed.discard(item.handle.name)

    def is_claimed(self, handle: Handle) -> bool:
        with self._locks_guard:
            return Path(handle).name in self._claimed

    def get(self, handle: Handle) -> Optional[PendingExportItem]:
        path = Path(handle)
        try:
            return self._read(path)
        except FileNotFoundError:
            return None
        except ValueError as e:
            logger.warning(f"Unreadable queue item {path.name}: {e}")
            return None
        except OSError as e:
            raise StorageError(f"Failed to read queue item {path.name}: {e}") from e

    def contains(self, handle: Handle) -> bool:
        return Path(handle).exists()

    def mark_succeeded(self, handle: Handle) -> None:
        """Delete a delivered item. Deleting an already removed item is a no-op."""
        path = Path(handle)
        with self._item_lock(path):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise StorageError(f"Failed to remove queue item {path.name}: {e}") from e
        self._forget_lock(path)

    def increment_retry(self, handle: Handle) -> Optional[int]:
        """
        Record a failed delivery attempt.

        Args:
            handle: Item handle

        Returns:
            New retry count, or None if the item was dropped (limit reached)
            or no longer exists

        Raises:
            StorageError: If the item could not be rewritten or removed
        """
        path = Path(handle)
        dropped = False
        with self._item_lock(path):
            try:
                item = self._read(path)
            except FileNotFoundError:
                return None
            except (OSError, ValueError) as e:
                raise StorageError(f"Failed to read queue item {path.name}: {e}") from e

            retry_count = item.retry_count + 1
            if retry_count >= self.max_retries:
                try:
                    path.unlink(missing_ok=True)
                except OSError as e:
                    raise StorageError(f"Failed to remove queue item {path.name}: {e}") from e
                logger.warning(
                    f"Dropped {path.name} after {retry_count} failed attempts"
                )
                dropped = True
            else:
                record = item.to_record()
                record["retryCount"] = retry_count
                self._write_atomic(path, record)

        if dropped:
            self._forget_lock(path)
            return None
        return retry_count

    def clear_all(self) -> int:
        """
        Remove every pending item.

        Returns:
            Number of items removed
        """
        removed = 0
        try:
            for path in self.queue_dir.glob("*.json"):
                with self._item_lock(path):
                    path.unlink(missing_ok=True)
                removed += 1
        except OSError as e:
            raise StorageError(f"Failed to clear pending exports: {e}") from e
        with self._locks_guard:
            self._locks.clear()
        logger.info(f"Cleared {removed} pending exports")
        return removed

    def __len__(self) -> int:
        try:
            return sum(1 for _ in self.queue_dir.glob("*.json"))
        except OSError as e:
            raise StorageError(f"Failed to list queue directory: {e}") from e
