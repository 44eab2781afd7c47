"""
Two-tier API response cache with conditional revalidation, request coalescing
and write-invalidation.
"""
from .core import (
    CacheEntry,
    CacheOptions,
    CacheResult,
    CacheSize,
    CacheType,
    FetchOptions,
    ResourceCategory,
    Validator,
)
from .errors import (
    CacheError,
    CoalesceTimeoutError,
    InvalidCacheKeyError,
    StorageError,
    TransportError,
)
from .keys import build_key
from .ttl_policies import (
    TTL_CONFIG,
    get_category_for_path,
    get_collection_prefix,
    get_ttl_for_path,
)
from .coalescer import RequestCoalescer
from .events import CacheEventBus, CacheUpdateEvent
from .invalidation import GenerationTable, Invalidator
from .stats import CacheStats, CacheStatsEntry
from .storage import SQLiteCacheBackend
from .store import CacheStore
from .tiers import MemoryTier, PersistentTier
from .transport import RequestsTransport, Transport, TransportResponse
from .manager import CacheManager, get_cache_manager

__all__ = [
    # Core types
    "CacheEntry",
    "CacheOptions",
    "CacheResult",
    "CacheSize",
    "CacheType",
    "FetchOptions",
    "ResourceCategory",
    "Validator",
    # Errors
    "CacheError",
    "CoalesceTimeoutError",
    "InvalidCacheKeyError",
    "StorageError",
    "TransportError",
    # Keys and TTL policies
    "build_key",
    "TTL_CONFIG",
    "get_category_for_path",
    "get_collection_prefix",
    "get_ttl_for_path",
    # Building blocks
    "RequestCoalescer",
    "CacheEventBus",
    "CacheUpdateEvent",
    "GenerationTable",
    "Invalidator",
    "CacheStats",
    "CacheStatsEntry",
    "SQLiteCacheBackend",
    "CacheStore",
    "MemoryTier",
    "PersistentTier",
    "RequestsTransport",
    "Transport",
    "TransportResponse",
    # Manager
    "CacheManager",
    "get_cache_manager",
]
