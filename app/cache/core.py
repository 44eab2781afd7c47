"""
Core cache data structures.
"""
import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional
from enum import Enum

from config.settings import settings


class ResourceCategory(Enum):
    """Journal API resource families with different caching behaviour."""
    TRADES = "trades"            # Trade lists and detail, 10 minutes
    JOURNAL = "journal"          # Journal entries, 10 minutes
    ANALYTICS = "analytics"      # Aggregated stats, 5 minutes
    BACKTESTS = "backtests"      # Backtests, goals and templates, 10 minutes
    DEFAULT = "default"          # Everything else, settings.default_ttl_seconds


class CacheType(Enum):
    """Where the data returned by cached_fetch came from."""
    MEMORY = "memory"            # Memory tier hit
    PERSISTENT = "persistent"    # Persistent tier hit (promoted to memory)
    NETWORK = "network"          # Full response from the origin
    REVALIDATED = "revalidated"  # Origin answered 304, cached value reused


@dataclass(frozen=True)
class Validator:
    """Conditional request validator captured from response headers."""
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    def __bool__(self) -> bool:
        return bool(self.etag or self.last_modified)

    def conditional_headers(self) -> Dict[str, str]:
        """Headers asking the origin whether the resource changed."""
        headers = {}
        if self.etag:
            headers["If-None-Match"] = self.etag
        if self.last_modified:
            headers["If-Modified-Since"] = self.last_modified
        return headers

    @classmethod
    def from_headers(cls, headers) -> Optional["Validator"]:
        """Build a validator from response headers, or None if there is none."""
        validator = cls(
            etag=headers.get("ETag"),
            last_modified=headers.get("Last-Modified"),
        )
        return validator if validator else None


def estimate_size(value: Any) -> int:
    """Approximate size in bytes of a JSON-serializable value."""
    return len(json.dumps(value, default=str).encode("utf-8"))


@dataclass
class CacheEntry:
    """
    A cached response body with freshness and validator metadata.

    Entries are replaced whole on every write; tiers never mutate them in place.
    """
    key: str
    value: Any
    stored_at: float
    ttl_seconds: float
    generation: int = 0
    validator: Optional[Validator] = None
    size_estimate: int = 0
    marked_stale: bool = False

    @classmethod
    def create(
        cls,
        key: str,
        value: Any,
        stored_at: float,
        ttl_seconds: float,
        generation: int,
        validator: Optional[Validator] = None,
    ) -> "CacheEntry":
        return cls(
            key=key,
            value=value,
            stored_at=stored_at,
            ttl_seconds=ttl_seconds,
            generation=generation,
            validator=validator,
            size_estimate=estimate_size(value),
        )

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl_seconds

    def is_fresh(self, now: float) -> bool:
        """Fresh while now < stored_at + ttl and not explicitly marked stale."""
        return not self.marked_stale and now < self.expires_at

    def is_stale(self, now: float) -> bool:
        return not self.is_fresh(now)

    @property
    def has_etag(self) -> bool:
        return bool(self.validator and self.validator.etag)

    def refreshed(self, now: float, generation: int) -> "CacheEntry":
        """Copy with a new freshness window, keeping value and validator."""
        return replace(self, stored_at=now, generation=generation, marked_stale=False)

    def to_record(self) -> Dict[str, Any]:
        """Serialize for the persistent backend."""
        return {
            "key": self.key,
            "value": self.value,
            "stored_at": self.stored_at,
            "ttl_seconds": self.ttl_seconds,
            "generation": self.generation,
            "etag": self.validator.etag if self.validator else None,
            "last_modified": self.validator.last_modified if self.validator else None,
            "size_estimate": self.size_estimate,
            "marked_stale": self.marked_stale,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "CacheEntry":
        validator = Validator(
            etag=record.get("etag"),
            last_modified=record.get("last_modified"),
        )
        return cls(
            key=record["key"],
            value=record["value"],
            stored_at=record["stored_at"],
            ttl_seconds=record["ttl_seconds"],
            generation=record.get("generation", 0),
            validator=validator if validator else None,
            size_estimate=record.get("size_estimate", 0),
            marked_stale=bool(record.get("marked_stale", False)),
        )


@dataclass(frozen=True)
class CacheSize:
    """Entry count and approximate byte size of a tier."""
    count: int = 0
    bytes: int = 0

    def __add__(self, other: "CacheSize") -> "CacheSize":
        return CacheSize(self.count + other.count, self.bytes + other.bytes)


@dataclass
class FetchOptions:
    """Minimal request description the cache needs from callers."""
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Any] = None


@dataclass
class CacheOptions:
    """
    Per-call cache behaviour.

    ttl_seconds falls back to settings.default_ttl_seconds when None.
    """
    ttl_seconds: Optional[float] = None
    use_conditional: bool = True
    use_cache: bool = True
    cache_key_params: Optional[Dict[str, Any]] = None
    stale_while_revalidate: bool = False

    @property
    def effective_ttl(self) -> float:
        if self.ttl_seconds is None:
            return settings.default_ttl_seconds
        return self.ttl_seconds


@dataclass
class CacheResult:
    """
    Outcome of a cached_fetch call, included in API responses.
    """
    data: Any
    from_cache: bool
    cache_type: CacheType
    stale: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "data": self.data,
            "fromCache": self.from_cache,
            "cacheType": self.cache_type.value,
            "stale": self.stale,
        }
