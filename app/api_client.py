"""
Client for the trade journal API.
Reads go through the two-tier cache; mutations invalidate what they change.
"""
import logging
from typing import Optional, List, Dict, Any, Iterable
from urllib.parse import urlencode

from dotenv import load_dotenv

from app.cache import (
    CacheManager,
    CacheOptions,
    CacheResult,
    CacheStats,
    FetchOptions,
    TransportResponse,
    get_cache_manager,
    get_collection_prefix,
    get_ttl_for_path,
)

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("api_client")

# Collections whose cached reads are derived from another collection
RELATED_PREFIXES: Dict[str, List[str]] = {
    "/api/trades": ["/api/analytics"],
    "/api/backtests": ["/api/backtest-goals"],
}


def _get_headers() -> dict:
    """Default request headers."""
    return {"Accept": "application/json"}


def _with_query(path: str, params: Optional[Dict[str, Any]]) -> str:
    """Append params to path, skipping None values."""
    if not params:
        return path
    query = urlencode(
        [(k, v) for k, v in params.items() if v is not None], doseq=True
    )
    if not query:
        return path
    separator = "&" if "?" in path else "?"
    return f"{path}{separator}{query}"


class JournalApiClient:
    """
    Cached reads and write-invalidating mutations against the journal API.

    Usage:
        client = JournalApiClient()
        result = client.get("/api/trades", {"userId": "u1", "page": 1})
        client.create("/api/trades", {...})   # invalidates /api/trades*
    """

    def __init__(self, cache: Optional[CacheManager] = None):
        self.cache = cache or get_cache_manager()

    def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        use_cache: bool = True,
        ttl_seconds: Optional[float] = None,
        stale_while_revalidate: bool = False,
    ) -> CacheResult:
        """
        Cached GET.

        Args:
            path: API path, e.g. "/api/trades"
            params: Query parameters (order does not matter for caching)
            use_cache: False forces a network fetch (still written to cache)
            ttl_seconds: Override the path's category TTL
            stale_while_revalidate: Serve stale data immediately and refresh in background

        Returns:
            CacheResult; check .stale to show a "cached data" indicator
        """
        url = _with_query(path, params)
        options = CacheOptions(
            ttl_seconds=ttl_seconds if ttl_seconds is not None else get_ttl_for_path(path),
            use_conditional=True,
            use_cache=use_cache,
            stale_while_revalidate=stale_while_revalidate,
        )
        result = self.cache.cached_fetch(url, FetchOptions(headers=_get_headers()), options)
        if result.stale:
            logger.warning(f"Serving stale data for {url}")
        return result

    def refresh(self, path: str, params: Optional[Dict[str, Any]] = None) -> CacheResult:
        """Fetch fresh data, bypassing cached entries."""
        return self.get(path, params, use_cache=False)

    def create(
        self, path: str, body: Any, invalidates: Optional[Iterable[str]] = None
    ) -> Any:
        return self._mutate("POST", path, body, invalidates)

    def update(
        self, path: str, body: Any, invalidates: Optional[Iterable[str]] = None
    ) -> Any:
        return self._mutate("PUT", path, body, invalidates)

    def delete(self, path: str, invalidates: Optional[Iterable[str]] = None) -> Any:
        return self._mutate("DELETE", path, None, invalidates)

    def _mutate(
        self,
        method: str,
        path: str,
        body: Any,
        invalidates: Optional[Iterable[str]],
    ) -> Any:
        """
        Send a mutation, then invalidate affected prefixes before returning.

        Nothing is invalidated when the mutation fails; TransportError propagates.
        """
        response: TransportResponse = self.cache.transport.request(
            method, path, _get_headers(), body
        )
        for prefix in self._prefixes_for(path, invalidates):
            self.cache.invalidate_cache(prefix)
        return response.body

    @staticmethod
    def _prefixes_for(path: str, invalidates: Optional[Iterable[str]]) -> List[str]:
        if invalidates is not None:
            return list(invalidates)
        collection = get_collection_prefix(path)
        return [collection] + RELATED_PREFIXES.get(collection, [])


def clear_cache() -> None:
    """Clear all cached data."""
    get_cache_manager().clear_cache()


def invalidate_cache(key_or_prefix: str) -> int:
    """Invalidate cached entries by key or prefix. Returns number removed."""
    return get_cache_manager().invalidate_cache(key_or_prefix)


def get_cache_stats() -> CacheStats:
    """Get comprehensive cache statistics."""
    return get_cache_manager().get_cache_stats()
