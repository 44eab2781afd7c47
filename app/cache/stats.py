"""
Cache statistics for introspection and the cache status endpoint.
"""
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .core import CacheEntry
from .store import CacheStore


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


class CacheCounters:
    """Thread-safe hit/miss/outcome counters."""

    def __init__(self):
        self._counts: Counter = Counter()
        self._lock = threading.Lock()

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counts[name] += amount

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()


@dataclass
class CacheStatsEntry:
    key: str
    timestamp: datetime
    has_etag: bool
    stale: bool

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "timestamp": _iso(self.timestamp),
            "hasETag": self.has_etag,
            "stale": self.stale,
        }


@dataclass
class CacheStats:
    """
    Read-only snapshot of both tiers. Never persisted.

    total_size counts tier entries, so a key held by both tiers counts twice.
    """
    memory_size: int
    db_size: int
    total_size: int
    oldest_entry: Optional[datetime]
    newest_entry: Optional[datetime]
    entries: List[CacheStatsEntry]
    bytes: int = 0
    health: str = "empty"
    persistent_degraded: bool = False
    in_flight: int = 0
    counters: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "memorySize": self.memory_size,
            "dbSize": self.db_size,
            "totalSize": self.total_size,
            "oldestEntry": _iso(self.oldest_entry),
            "newestEntry": _iso(self.newest_entry),
            "entries": [e.to_dict() for e in self.entries],
            "bytes": self.bytes,
            "health": self.health,
            "persistentDegraded": self.persistent_degraded,
            "inFlight": self.in_flight,
            "counters": self.counters,
        }


def health_status(memory_size: int, db_size: int, warning_threshold: int) -> str:
    """
    Summarize cache health:
    - empty: nothing cached
    - warning: more than warning_threshold tier entries
    - healthy: both tiers populated
    - ok: only one tier populated
    """
    total = memory_size + db_size
    if total == 0:
        return "empty"
    if total > warning_threshold:
        return "warning"
    if memory_size > 0 and db_size > 0:
        return "healthy"
    return "ok"


def build_stats(
    store: CacheStore,
    now: float,
    warning_threshold: int = 1000,
    in_flight: int = 0,
    counters: Optional[Dict[str, Any]] = None,
) -> CacheStats:
    """Scan both tiers and build a CacheStats snapshot."""
    tiers = store.tier_entries()
    memory_entries = tiers[store.memory.name]
    persistent_entries = tiers[store.persistent.name]

    # Persistent records win for keys present in both tiers
    by_key: Dict[str, CacheEntry] = {e.key: e for e in memory_entries}
    by_key.update({e.key: e for e in persistent_entries})

    entries = [
        CacheStatsEntry(
            key=entry.key,
            timestamp=_to_datetime(entry.stored_at),
            has_etag=entry.has_etag,
            stale=entry.is_stale(now),
        )
        for entry in sorted(by_key.values(), key=lambda e: e.stored_at)
    ]

    memory_size = len(memory_entries)
    db_size = len(persistent_entries)
    size = store.approx_size()
    return CacheStats(
        memory_size=memory_size,
        db_size=db_size,
        total_size=memory_size + db_size,
        oldest_entry=entries[0].timestamp if entries else None,
        newest_entry=entries[-1].timestamp if entries else None,
        entries=entries,
        bytes=size.bytes,
        health=health_status(memory_size, db_size, warning_threshold),
        persistent_degraded=bool(getattr(store.persistent, "degraded", False)),
        in_flight=in_flight,
        counters=dict(counters or {}),
    )
