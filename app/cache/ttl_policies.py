"""
TTL configuration and path-to-category mapping.
"""
from typing import Dict, List, Optional, Tuple

from config.settings import settings
from .core import ResourceCategory


# TTL Configuration by category (in seconds). None means settings.default_ttl_seconds.
TTL_CONFIG: Dict[ResourceCategory, Optional[int]] = {
    ResourceCategory.TRADES: 600,       # 10 minutes
    ResourceCategory.JOURNAL: 600,      # 10 minutes
    ResourceCategory.ANALYTICS: 300,    # 5 minutes, aggregates change with every trade
    ResourceCategory.BACKTESTS: 600,    # 10 minutes
    ResourceCategory.DEFAULT: None,
}


# Most specific prefix first
PATH_CATEGORIES: List[Tuple[str, ResourceCategory]] = [
    ("/api/trades/stats", ResourceCategory.ANALYTICS),
    ("/api/analytics", ResourceCategory.ANALYTICS),
    ("/api/trades", ResourceCategory.TRADES),
    ("/api/journal", ResourceCategory.JOURNAL),
    ("/api/backtest-goals", ResourceCategory.BACKTESTS),
    ("/api/backtest-templates", ResourceCategory.BACKTESTS),
    ("/api/backtests", ResourceCategory.BACKTESTS),
]


def get_category_for_path(path: str) -> ResourceCategory:
    """
    Determine the resource category for a request path.

    Args:
        path: API path (e.g., "/api/trades/42"); query strings are ignored

    Returns:
        ResourceCategory for caching behavior
    """
    path = path.split("?", 1)[0]
    for prefix, category in PATH_CATEGORIES:
        if path == prefix or path.startswith(prefix + "/"):
            return category
    return ResourceCategory.DEFAULT


def get_ttl_for_category(category: ResourceCategory) -> float:
    ttl = TTL_CONFIG.get(category)
    return float(ttl) if ttl is not None else settings.default_ttl_seconds


def get_ttl_for_path(path: str) -> float:
    """TTL in seconds for a request path."""
    return get_ttl_for_category(get_category_for_path(path))


def get_collection_prefix(path: str) -> str:
    """
    Collection path a resource path belongs to, used for write-invalidation.

    "/api/trades/42" -> "/api/trades", "/api/journal" -> "/api/journal"
    """
    path = path.split("?", 1)[0].rstrip("/")
    parts = path.split("/")
    # ["", "api", "<collection>", ...]
    if len(parts) >= 3 and parts[1] == "api":
        return "/".join(parts[:3])
    return path
