"""
Cache key generation.

Keys always start with the request path so that invalidating a resource
prefix (e.g. "/api/trades") reaches every cached variant of it:

    GET  /api/trades {"limit": 5, "page": 1}  ->  "/api/trades?limit=5&page=1"
    POST /api/trades/search {"q": "es"}       ->  "/api/trades/search?q=es#POST"
"""
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .errors import InvalidCacheKeyError


def _serialize_value(name: str, value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (Mapping, set)):
        raise InvalidCacheKeyError(
            f"Unsupported value for cache key param '{name}': {type(value).__name__}"
        )
    return str(value)


def _normalize_params(params: Mapping[str, Any]) -> List[Tuple[str, str]]:
    """Sort params by name, drop None values, expand sequences in order."""
    pairs: List[Tuple[str, str]] = []
    for name in sorted(params):
        value = params[name]
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            pairs.extend(
                (name, _serialize_value(name, item)) for item in value if item is not None
            )
        else:
            pairs.append((name, _serialize_value(name, value)))
    return pairs


def build_key(method: str, url: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """
    Build a deterministic cache key for a request.

    Args:
        method: HTTP method (case-insensitive)
        url: Request path, optionally with an embedded query string
        params: Query parameters; merged with any query string in url

    Returns:
        Cache key string

    Raises:
        InvalidCacheKeyError: On empty or non-string method/url, non-mapping
            params, non-string param names, or nested mapping values
    """
    if not isinstance(method, str) or not method.strip():
        raise InvalidCacheKeyError(f"Invalid HTTP method for cache key: {method!r}")
    if not isinstance(url, str) or not url.strip():
        raise InvalidCacheKeyError(f"Invalid URL for cache key: {url!r}")
    if params is None:
        params = {}
    if not isinstance(params, Mapping):
        raise InvalidCacheKeyError(
            f"Cache key params must be a mapping, got {type(params).__name__}"
        )

    merged: Dict[str, Any] = {}
    parts = urlsplit(url.strip())
    for name, value in parse_qsl(parts.query, keep_blank_values=True):
        merged.setdefault(name, []).append(value)
    for name, value in params.items():
        if not isinstance(name, str):
            raise InvalidCacheKeyError(f"Cache key param names must be strings: {name!r}")
        merged[name] = value

    base = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    query = urlencode(_normalize_params(merged))
    key = f"{base}?{query}" if query else base

    method = method.strip().upper()
    if method != "GET":
        key = f"{key}#{method}"
    return key
