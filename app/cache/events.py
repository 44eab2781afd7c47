"""
Publish/subscribe notifications for cache updates.

Published when a network fetch or a revalidation writes a value into the
cache, so views can refresh without polling. Never published on plain hits.
"""
import threading
import logging
from dataclasses import dataclass
from typing import Any, Callable, List

logger = logging.getLogger("cache.events")


@dataclass(frozen=True)
class CacheUpdateEvent:
    cache_key: str
    data: Any


CacheUpdateHandler = Callable[[CacheUpdateEvent], None]


class CacheEventBus:
    """
    Synchronous in-process event bus.

    Handlers run in subscription order on the publishing thread. A handler
    that raises is logged and skipped; the rest still run.
    """

    def __init__(self):
        self._handlers: List[CacheUpdateHandler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: CacheUpdateHandler) -> Callable[[], None]:
        """Register a handler. Returns a callable that unsubscribes it."""
        with self._lock:
            self._handlers.append(handler)
        return lambda: self.unsubscribe(handler)

    def unsubscribe(self, handler: CacheUpdateHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def publish(self, cache_key: str, data: Any) -> None:
        event = CacheUpdateEvent(cache_key=cache_key, data=data)
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(f"Cache update handler failed for {cache_key}")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._handlers)
