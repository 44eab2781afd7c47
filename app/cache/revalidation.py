"""
Revalidation protocol: decide between a cached value, a conditional request
and a full request, then reconcile the origin's answer with the cache.
"""
import time
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from .core import CacheEntry, CacheOptions, CacheResult, CacheType, Validator
from .errors import TransportError
from .events import CacheEventBus
from .invalidation import GenerationTable, Invalidator
from .stats import CacheCounters
from .store import CacheStore
from .transport import Transport, TransportResponse

logger = logging.getLogger("cache.revalidation")


@dataclass
class CacheRequest:
    """A request bound to its cache key."""
    key: str
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Any] = None


class RevalidationProtocol:
    """
    Resolves one request against the cache and the origin.

    1. Fresh entry -> served from its tier.
    2. Stale entry with a validator (and use_conditional) -> conditional
       request; 304 refreshes the entry, a full body replaces it.
    3. Otherwise -> full request.
    A failed request falls back to any cached entry, fresh or stale, and
    only raises when nothing is cached. Every write goes through the
    generation guard, so a key invalidated mid-fetch stays empty while the
    caller still receives the fetched data.
    """

    def __init__(
        self,
        store: CacheStore,
        invalidator: Invalidator,
        generations: GenerationTable,
        transport: Transport,
        events: CacheEventBus,
        counters: Optional[CacheCounters] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.invalidator = invalidator
        self.generations = generations
        self.transport = transport
        self.events = events
        self.counters = counters or CacheCounters()
        self._clock = clock

    def resolve(self, request: CacheRequest, options: CacheOptions) -> CacheResult:
        generation = self.generations.current(request.key)
        found = self.store.lookup(request.key) if options.use_cache else None

        if found is not None:
            entry, tier = found
            if entry.is_fresh(self._clock()):
                return CacheResult(data=entry.value, from_cache=True, cache_type=tier)
            if options.use_conditional and entry.validator:
                return self._conditional_fetch(request, options, found, generation)

        return self._full_fetch(request, options, found, generation)

    def _conditional_fetch(
        self,
        request: CacheRequest,
        options: CacheOptions,
        found: Tuple[CacheEntry, CacheType],
        generation: int,
    ) -> CacheResult:
        entry, _ = found
        headers = dict(request.headers)
        headers.update(entry.validator.conditional_headers())
        logger.debug(f"Conditional request for {request.key}")

        try:
            response = self.transport.request(request.method, request.url, headers, request.body)
        except TransportError as e:
            return self.serve_stale(request.key, found, e)

        if response.not_modified:
            logger.info(f"304 Not Modified, reusing cached data: {request.key}")
            self.counters.increment("revalidated")
            self._write(request.key, generation, entry.refreshed(self._clock(), generation))
            return CacheResult(data=entry.value, from_cache=True, cache_type=CacheType.REVALIDATED)

        return self._store_response(request, options, response, generation)

    def _full_fetch(
        self,
        request: CacheRequest,
        options: CacheOptions,
        found: Optional[Tuple[CacheEntry, CacheType]],
        generation: int,
    ) -> CacheResult:
        logger.info(f"CACHE MISS, fetching from network: {request.key}")
        try:
            response = self.transport.request(
                request.method, request.url, dict(request.headers), request.body
            )
            if response.not_modified:
                raise TransportError(
                    f"Unexpected 304 for unconditional request: {request.url}",
                    status=response.status,
                )
        except TransportError as e:
            return self.serve_stale(request.key, found, e)

        return self._store_response(request, options, response, generation)

    def _store_response(
        self,
        request: CacheRequest,
        options: CacheOptions,
        response: TransportResponse,
        generation: int,
    ) -> CacheResult:
        entry = CacheEntry.create(
            key=request.key,
            value=response.body,
            stored_at=self._clock(),
            ttl_seconds=options.effective_ttl,
            generation=generation,
            validator=Validator.from_headers(response.headers),
        )
        self.counters.increment("network")
        self._write(request.key, generation, entry)
        return CacheResult(data=response.body, from_cache=False, cache_type=CacheType.NETWORK)

    def _write(self, key: str, generation: int, entry: CacheEntry) -> None:
        if self.invalidator.write_if_current(key, generation, entry):
            self.events.publish(key, entry.value)
        else:
            self.counters.increment("discarded_writes")

    def serve_stale(
        self,
        key: str,
        found: Optional[Tuple[CacheEntry, CacheType]],
        error: TransportError,
    ) -> CacheResult:
        if found is None:
            # Forced refreshes skip the lookup up front
            found = self.store.lookup(key)
        if found is None:
            logger.warning(f"Fetch failed with nothing cached: {key} - {error}")
            raise error

        entry, tier = found
        logger.warning(f"Fetch failed, serving stale cache: {key} - {error}")
        self.counters.increment("stale_served")
        return CacheResult(data=entry.value, from_cache=True, cache_type=tier, stale=True)
