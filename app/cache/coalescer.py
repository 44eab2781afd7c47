"""
Singleflight coordination for cache fetches.

Concurrent callers asking for the same cache key share a single upstream
operation and all observe its outcome, value or exception.
"""
import threading
import time
import logging
from typing import Dict, List, Optional, Callable, Any
from dataclasses import dataclass, field

from .errors import CoalesceTimeoutError

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightOperation:
    """Bookkeeping for one running operation."""
    done: threading.Event = field(default_factory=threading.Event)
    result: Optional[Any] = None
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.time)
    joined: int = 0


class RequestCoalescer:
    """
    At most one operation per key runs at a time.

    The first caller for a key runs the operation; later callers block on
    the operation's Event. The in-flight record is removed before waiters
    are released, so a caller arriving afterwards starts a new operation.

    Usage:
        coalescer = RequestCoalescer()
        result = coalescer.run_exclusive("/api/trades?page=1", fetch)
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Max seconds a joined caller waits for the running
                operation. None waits for its outcome however long it takes.
        """
        self._in_flight: Dict[str, InFlightOperation] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self.coalesced = 0

    def run_exclusive(self, key: str, operation: Callable[[], Any]) -> Any:
        """
        Run operation for key, or join the one already running.

        Raises:
            CoalesceTimeoutError: A joined caller waited longer than the timeout
            Exception: Whatever the operation raised, re-raised to every caller
        """
        with self._lock:
            in_flight = self._in_flight.get(key)
            if in_flight is not None:
                in_flight.joined += 1
                self.coalesced += 1
                is_owner = False
                logger.debug(f"Joining in-flight fetch for {key} (joined: {in_flight.joined})")
            else:
                in_flight = InFlightOperation()
                self._in_flight[key] = in_flight
                is_owner = True

        if is_owner:
            try:
                in_flight.result = operation()
            except Exception as e:
                in_flight.error = e
            finally:
                with self._lock:
                    if self._in_flight.get(key) is in_flight:
                        del self._in_flight[key]
                in_flight.done.set()
        elif not in_flight.done.wait(timeout=self._timeout):
            logger.error(f"Timed out waiting for in-flight fetch: {key}")
            raise CoalesceTimeoutError(f"Fetch for {key} timed out after {self._timeout}s")

        if in_flight.error is not None:
            raise in_flight.error
        return in_flight.result

    def active_keys(self) -> List[str]:
        with self._lock:
            return list(self._in_flight)

    @property
    def active_requests(self) -> int:
        """Number of operations currently running."""
        with self._lock:
            return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "active_requests": len(self._in_flight),
                "active_keys": list(self._in_flight.keys()),
                "coalesced": self.coalesced,
            }
