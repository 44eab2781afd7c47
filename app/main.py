"""
Journal API Cache - FastAPI application
Health, version and cache administration endpoints
"""
from fastapi import Depends, FastAPI
from pydantic import BaseModel, Field

from app.cache import CacheManager, get_cache_manager

# Version tracking
APP_VERSION = "v0.1.0"
APP_NAME = "Journal API Cache"

app = FastAPI(
    title=APP_NAME,
    description="Two-tier response cache in front of the trade journal API",
    version=APP_VERSION,
)


class PrefixRequest(BaseModel):
    """Cache key or key prefix, e.g. "/api/trades"."""
    prefix: str = Field(min_length=1)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "full": f"{APP_NAME} {APP_VERSION}",
    }


@app.get("/cache/stats")
def cache_stats(cache: CacheManager = Depends(get_cache_manager)):
    """Get cache statistics."""
    return cache.get_cache_stats().to_dict()


@app.post("/cache/invalidate")
def invalidate_cache(request: PrefixRequest, cache: CacheManager = Depends(get_cache_manager)):
    """Invalidate every cached entry whose key starts with the prefix."""
    return {"invalidated": cache.invalidate_cache(request.prefix)}


@app.post("/cache/mark-stale")
def mark_cache_stale(request: PrefixRequest, cache: CacheManager = Depends(get_cache_manager)):
    """Force entries matching the prefix to revalidate on their next read."""
    return {"marked": cache.mark_as_stale(request.prefix)}


@app.delete("/cache")
def clear_cache(cache: CacheManager = Depends(get_cache_manager)):
    """Remove all cached entries."""
    cache.clear_cache()
    return {"status": "cleared"}
