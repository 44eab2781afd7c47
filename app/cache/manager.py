"""
Main cache orchestration: two tiers, singleflight, revalidation, invalidation.
"""
import threading
import time
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from typing import Callable, Optional, Set

from config.settings import settings
from .coalescer import RequestCoalescer
from .core import CacheOptions, CacheResult, CacheType, FetchOptions
from .errors import CoalesceTimeoutError
from .events import CacheEventBus, CacheUpdateHandler
from .invalidation import GenerationTable, Invalidator
from .keys import build_key
from .revalidation import CacheRequest, RevalidationProtocol
from .stats import CacheCounters, CacheStats, build_stats
from .storage import CacheBackend, SQLiteCacheBackend
from .store import CacheStore
from .tiers import MemoryTier, PersistentTier
from .transport import RequestsTransport, Transport

logger = logging.getLogger("cache.manager")


class CacheManager:
    """
    An explicitly constructed API response cache.

    - Memory tier in front of a persistent SQLite tier (promote on read,
      write-through on write)
    - Request coalescing so concurrent misses for one key make one request
    - Conditional revalidation (ETag / Last-Modified) of stale entries
    - Write-invalidation guarded by per-key generations
    - Optional stale-while-revalidate in a background worker pool
    - Update events and a stats snapshot
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        backend: Optional[CacheBackend] = None,
        memory_max_entries: Optional[int] = None,
        persistent_max_entries: Optional[int] = None,
        persistent_max_bytes: Optional[int] = None,
        storage_retry_seconds: Optional[float] = None,
        coalesce_timeout: Optional[float] = None,
        max_revalidation_workers: Optional[int] = None,
        stats_warning_threshold: Optional[int] = None,
        enabled: Optional[bool] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache manager. Unset arguments come from settings.

        Args:
            transport: Origin transport (default: RequestsTransport)
            backend: Persistent key-value backend (default: SQLiteCacheBackend)
            memory_max_entries: Memory tier capacity
            persistent_max_entries: Persistent tier capacity
            persistent_max_bytes: Persistent tier byte budget
            storage_retry_seconds: Delay before a degraded persistent tier is probed again
            coalesce_timeout: Max seconds a joined caller waits on an in-flight
                fetch (None: wait for its outcome)
            max_revalidation_workers: Thread pool size for background revalidation
            stats_warning_threshold: Entry count above which stats report "warning"
            enabled: False sends every request straight to the origin
            clock: Returns the current time in epoch seconds

        Raises:
            ValueError: memory_max_entries exceeds persistent_max_entries, which
                would keep entries evicted from the persistent tier readable
        """
        memory_max_entries = memory_max_entries or settings.memory_max_entries
        persistent_max_entries = persistent_max_entries or settings.persistent_max_entries
        if memory_max_entries > persistent_max_entries:
            raise ValueError(
                f"memory_max_entries ({memory_max_entries}) must not exceed "
                f"persistent_max_entries ({persistent_max_entries})"
            )

        self._clock = clock
        self.enabled = enabled if enabled is not None else settings.cache_enabled
        self.transport = transport or RequestsTransport()
        self.stats_warning_threshold = (
            stats_warning_threshold
            if stats_warning_threshold is not None
            else settings.stats_warning_threshold
        )

        self.store = CacheStore(
            memory=MemoryTier(memory_max_entries),
            persistent=PersistentTier(
                backend if backend is not None else SQLiteCacheBackend(),
                max_entries=persistent_max_entries,
                max_bytes=(
                    persistent_max_bytes
                    if persistent_max_bytes is not None
                    else settings.persistent_max_bytes
                ),
                retry_seconds=(
                    storage_retry_seconds
                    if storage_retry_seconds is not None
                    else settings.storage_retry_seconds
                ),
                clock=clock,
            ),
        )
        self.coalescer = RequestCoalescer(
            timeout=(
                coalesce_timeout
                if coalesce_timeout is not None
                else settings.coalesce_timeout_seconds
            )
        )
        self.generations = GenerationTable()
        self.invalidator = Invalidator(
            self.store, self.generations, in_flight_keys=self.coalescer.active_keys
        )
        self.events = CacheEventBus()
        self.counters = CacheCounters()
        self.protocol = RevalidationProtocol(
            store=self.store,
            invalidator=self.invalidator,
            generations=self.generations,
            transport=self.transport,
            events=self.events,
            counters=self.counters,
            clock=clock,
        )

        # Background revalidation
        self._revalidation_pool = ThreadPoolExecutor(
            max_workers=max_revalidation_workers or settings.max_revalidation_workers,
            thread_name_prefix="cache-revalidate",
        )
        self._revalidating: Set[str] = set()
        self._revalidating_lock = threading.Lock()

    def cached_fetch(
        self,
        url: str,
        fetch_options: Optional[FetchOptions] = None,
        cache_options: Optional[CacheOptions] = None,
    ) -> CacheResult:
        """
        Get data from cache or fetch it from the origin.

        Args:
            url: Request path (keys start with it, so prefixes invalidate it)
            fetch_options: Method, headers and body sent to the origin
            cache_options: TTL, conditional revalidation, forced refresh, key params

        Returns:
            CacheResult with data, from_cache, cache_type and stale

        Raises:
            InvalidCacheKeyError: Malformed url/method/params
            TransportError: Fetch failed and nothing is cached for the key
                (or a joined caller timed out with nothing cached)
        """
        fetch_options = fetch_options or FetchOptions()
        cache_options = cache_options or CacheOptions()
        key = build_key(fetch_options.method, url, cache_options.cache_key_params)
        request = CacheRequest(
            key=key,
            url=url,
            method=fetch_options.method.upper(),
            headers=dict(fetch_options.headers),
            body=fetch_options.body,
        )

        if not self.enabled:
            response = self.transport.request(
                request.method, request.url, request.headers, request.body
            )
            return CacheResult(data=response.body, from_cache=False, cache_type=CacheType.NETWORK)

        if not cache_options.use_cache:
            logger.info(f"FORCE REFRESH: {key}")
        else:
            found = self.store.lookup(key)
            if found is not None:
                entry, tier = found
                if entry.is_fresh(self._clock()):
                    logger.debug(f"CACHE HIT ({tier.value}): {key}")
                    self.counters.increment(f"hits_{tier.value}")
                    return CacheResult(data=entry.value, from_cache=True, cache_type=tier)

                if cache_options.stale_while_revalidate:
                    logger.info(f"CACHE HIT (stale, revalidating): {key}")
                    self.counters.increment("hits_stale")
                    self.revalidate_in_background(request, cache_options)
                    return CacheResult(
                        data=entry.value, from_cache=True, cache_type=tier, stale=True
                    )

        self.counters.increment("misses")
        try:
            return self.coalescer.run_exclusive(
                key, lambda: self.protocol.resolve(request, cache_options)
            )
        except CoalesceTimeoutError as e:
            return self.protocol.serve_stale(key, None, e)

    def revalidate_in_background(
        self, request: CacheRequest, cache_options: CacheOptions
    ) -> Optional[Future]:
        """
        Refresh a key without blocking the caller.

        Returns the worker's Future, or None when the key is already being
        revalidated.
        """
        with self._revalidating_lock:
            if request.key in self._revalidating:
                logger.debug(f"Already revalidating: {request.key}")
                return None
            self._revalidating.add(request.key)

        options = replace(cache_options, stale_while_revalidate=False)

        def do_revalidate():
            try:
                result = self.coalescer.run_exclusive(
                    request.key, lambda: self.protocol.resolve(request, options)
                )
                logger.debug(
                    f"Background revalidation complete: {request.key} "
                    f"({result.cache_type.value})"
                )
                return result
            except Exception as e:
                logger.warning(f"Background revalidation failed: {request.key} - {e}")
                return None
            finally:
                with self._revalidating_lock:
                    self._revalidating.discard(request.key)

        return self._revalidation_pool.submit(do_revalidate)

    def invalidate_cache(self, key_or_prefix: str) -> int:
        """
        Invalidate a key and every key starting with it, in both tiers.

        Fetches already in flight for those keys will not write back.

        Returns:
            Number of cached keys removed
        """
        return self.invalidator.invalidate(key_or_prefix)

    def mark_as_stale(self, key_or_prefix: str) -> int:
        """
        Keep matching entries but force their next read to revalidate.

        Returns:
            Number of keys marked
        """
        return len(self.invalidator.mark_stale(key_or_prefix))

    def clear_cache(self) -> None:
        """Remove every entry from both tiers."""
        self.invalidator.clear_all()

    def purge_expired(self, max_age_seconds: float) -> int:
        """
        Delete entries stored more than max_age_seconds ago.

        Returns:
            Number of keys removed
        """
        cutoff = self._clock() - max_age_seconds
        expired = set()
        for entries in self.store.tier_entries().values():
            expired.update(e.key for e in entries if e.stored_at < cutoff)
        for key in expired:
            self.store.delete(key)
        if expired:
            logger.info(f"Purged {len(expired)} entries older than {max_age_seconds}s")
        return len(expired)

    def get_cache_stats(self) -> CacheStats:
        """Snapshot of both tiers plus hit/miss counters."""
        return build_stats(
            self.store,
            now=self._clock(),
            warning_threshold=self.stats_warning_threshold,
            in_flight=self.coalescer.active_requests,
            counters=self.counters.snapshot(),
        )

    def subscribe(self, handler: CacheUpdateHandler) -> Callable[[], None]:
        """
        Receive a CacheUpdateEvent whenever a network fetch or revalidation
        writes a new value. Returns an unsubscribe callable.
        """
        return self.events.subscribe(handler)

    def unsubscribe(self, handler: CacheUpdateHandler) -> None:
        self.events.unsubscribe(handler)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the background revalidation workers."""
        self._revalidation_pool.shutdown(wait=wait)


# Default cache manager instance for the web app
_cache_manager: Optional[CacheManager] = None
_cache_manager_lock = threading.Lock()


def get_cache_manager() -> CacheManager:
    """Get or create the default cache manager."""
    global _cache_manager
    with _cache_manager_lock:
        if _cache_manager is None:
            _cache_manager = CacheManager()
        return _cache_manager
