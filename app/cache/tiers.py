"""
Cache tiers: a bounded in-process memory tier and a durable persistent tier.

Both implement CacheTier, so the store can swap either one without changes.
"""
import threading
import time
import logging
from typing import Callable, Dict, List, Optional, Protocol, TypeVar

from .core import CacheEntry, CacheSize
from .errors import StorageError
from .storage import CacheBackend

logger = logging.getLogger("cache.tiers")

# Operations whose failure may leave an invalidated entry behind. A failed
# key scan means an invalidation could not see which keys to delete.
INVALIDATING_OPERATIONS = ("delete", "clear", "keys")

T = TypeVar("T")


class CacheTier(Protocol):
    """Interface shared by every cache tier."""

    name: str

    def get(self, key: str) -> Optional[CacheEntry]: ...

    def set(self, key: str, entry: CacheEntry) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys_matching(self, prefix: str) -> List[str]: ...

    def approx_size(self) -> CacheSize: ...

    def entries(self) -> List[CacheEntry]: ...

    def clear(self) -> None: ...


class MemoryTier:
    """
    In-process key -> entry map bounded by entry count.

    When full, inserting a new key evicts the entry with the oldest stored_at.
    """

    name = "memory"

    def __init__(self, max_entries: int = 200):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self.evictions = 0

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            if key not in self._entries:
                while len(self._entries) >= self.max_entries:
                    oldest = min(self._entries.values(), key=lambda e: e.stored_at)
                    del self._entries[oldest.key]
                    self.evictions += 1
                    logger.debug(f"Evicted from memory tier: {oldest.key}")
            self._entries[key] = entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def keys_matching(self, prefix: str) -> List[str]:
        with self._lock:
            return [k for k in self._entries if k.startswith(prefix)]

    def approx_size(self) -> CacheSize:
        with self._lock:
            return CacheSize(
                count=len(self._entries),
                bytes=sum(e.size_estimate for e in self._entries.values()),
            )

    def entries(self) -> List[CacheEntry]:
        with self._lock:
            return list(self._entries.values())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class PersistentTier:
    """
    Durable tier over a CacheBackend, bounded by entry count and bytes.

    Backend failures never propagate. The tier logs them, marks itself
    degraded and behaves as an empty no-op tier; after retry_seconds it
    probes the backend and resumes on success. Deletes and key scans
    skipped while degraded are settled on recovery by clearing the backend, so an
    invalidated entry can never come back.
    """

    name = "persistent"

    def __init__(
        self,
        backend: CacheBackend,
        max_entries: int = 2000,
        max_bytes: Optional[int] = None,
        retry_seconds: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.backend = backend
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self.retry_seconds = retry_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._degraded_since: Optional[float] = None
        self._missed_deletes = False
        self.failures = 0
        self.evictions = 0

    @property
    def degraded(self) -> bool:
        return self._degraded_since is not None

    def _available(self) -> bool:
        if self._degraded_since is None:
            return True
        if self._clock() - self._degraded_since < self.retry_seconds:
            return False
        try:
            self.backend.ping()
            if self._missed_deletes:
                self.backend.clear()
        except StorageError as e:
            logger.warning(f"Persistent cache still unavailable: {e}")
            self._degraded_since = self._clock()
            return False
        if self._missed_deletes:
            logger.info("Persistent cache recovered; cleared entries that missed invalidation")
        else:
            logger.info("Persistent cache recovered")
        self._degraded_since = None
        self._missed_deletes = False
        return True

    def _run(self, operation: str, fn: Callable[[], T], default: T) -> T:
        with self._lock:
            if not self._available():
                if operation in INVALIDATING_OPERATIONS:
                    self._missed_deletes = True
                return default
            try:
                return fn()
            except StorageError as e:
                self.failures += 1
                if operation in INVALIDATING_OPERATIONS:
                    self._missed_deletes = True
                if self._degraded_since is None:
                    logger.warning(
                        f"Persistent cache {operation} failed, continuing memory-only: {e}"
                    )
                self._degraded_since = self._clock()
                return default

    def get(self, key: str) -> Optional[CacheEntry]:
        record = self._run("get", lambda: self.backend.get(key), None)
        return CacheEntry.from_record(record) if record else None

    def set(self, key: str, entry: CacheEntry) -> None:
        self._run("set", lambda: self._set(key, entry), None)

    def _set(self, key: str, entry: CacheEntry) -> None:
        record = entry.to_record()
        is_new = self.backend.get(key) is None
        size = self.backend.approx_size()
        while is_new and size.count >= self.max_entries:
            if not self._evict_oldest():
                break
            size = self.backend.approx_size()
        if self.max_bytes is not None:
            while size.count and size.bytes + entry.size_estimate > self.max_bytes:
                if not self._evict_oldest():
                    break
                size = self.backend.approx_size()
        self.backend.set(key, record)

    def _evict_oldest(self) -> bool:
        oldest = self.backend.oldest_key()
        if oldest is None:
            return False
        self.backend.delete(oldest)
        self.evictions += 1
        logger.debug(f"Evicted from persistent tier: {oldest}")
        return True

    def delete(self, key: str) -> None:
        self._run("delete", lambda: self.backend.delete(key), None)

    def keys_matching(self, prefix: str) -> List[str]:
        keys = self._run("keys", self.backend.keys, [])
        return [k for k in keys if k.startswith(prefix)]

    def approx_size(self) -> CacheSize:
        return self._run("approx_size", self.backend.approx_size, CacheSize())

    def entries(self) -> List[CacheEntry]:
        records = self._run("records", self.backend.records, [])
        return [CacheEntry.from_record(r) for r in records]

    def clear(self) -> None:
        self._run("clear", self.backend.clear, None)
