# =======================================================================================
# smartgrid/services/change_feed.py - Realtime Change Signals
# =======================================================================================
import logging
import threading
from typing import Callable, List

logger = logging.getLogger(__name__)

Subscriber = Callable[[str], None]


class ChangeFeed:
    """
    Opaque change signal for the kit/module tables. Subscribers only learn
    *that* something changed (and which table) and are expected to re-fetch.
    """

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that removes it again."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, table: str) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(table)
            except Exception as e:
                logger.warning("Change subscriber failed for %s: %s", table, e)
