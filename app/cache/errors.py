"""
Cache error types.

A cache miss is not an error: the store returns None and the caller fetches.
"""
from typing import Optional


class CacheError(Exception):
    """Base class for cache errors."""


class TransportError(CacheError):
    """Network or origin failure while talking to the API."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class StorageError(CacheError):
    """Persistent tier I/O failure. Never surfaced to cache callers."""


class InvalidCacheKeyError(CacheError, ValueError):
    """Malformed method, URL or params passed to the key builder."""


class CoalesceTimeoutError(TransportError):
    """A joined caller gave up waiting on another caller's fetch."""
