"""
Observer registration shared by the engine and the sync components.
"""

import logging
import threading
from typing import Any, List

logger = logging.getLogger(__name__)


class ObserverRegistry:
    """
    Explicitly registered observers, notified by method name.

    Observers may implement any subset of the callback methods. An observer
    that raises is logged and the remaining observers are still notified.
    """

    def __init__(self):
        self._observers: List[Any] = []
        self._lock = threading.Lock()

    def add(self, observer: Any) -> None:
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def remove(self, observer: Any) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def clear(self) -> None:
        with self._lock:
            self._observers.clear()

    def notify(self, method: str, *args) -> None:
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            callback = getattr(observer, method, None)
            if callback is None:
                continue
            try:
                callback(*args)
            except Exception:
                logger.exception(f"Observer {method} raised")

    def __len__(self) -> int:
        with self._lock:
            return len(self._observers)
