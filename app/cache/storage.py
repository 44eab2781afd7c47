"""
SQLite storage backend for the persistent cache tier.

Stores one row per cache key with the serialized entry as JSON. Every
sqlite3/filesystem failure is re-raised as StorageError so the persistent
tier can degrade instead of failing the request.
"""
import sqlite3
import json
import logging
from pathlib import Path
from typing import Optional, List, Dict, Any, Protocol
from contextlib import contextmanager

from config.settings import settings
from .core import CacheSize
from .errors import StorageError

logger = logging.getLogger("cache.storage")


SCHEMA = """
CREATE TABLE IF NOT EXISTS api_cache (
    key TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    stored_at REAL NOT NULL,
    size INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_api_cache_stored_at ON api_cache(stored_at);
"""


class CacheBackend(Protocol):
    """Durable key-value store used by the persistent tier."""

    def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    def set(self, key: str, record: Dict[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> List[str]: ...

    def records(self) -> List[Dict[str, Any]]: ...

    def approx_size(self) -> CacheSize: ...

    def oldest_key(self) -> Optional[str]: ...

    def clear(self) -> None: ...

    def ping(self) -> None: ...


class SQLiteCacheBackend:
    """
    SQLite-based key-value store for cache entries.

    The record's "stored_at" is mirrored into an indexed column so eviction
    can find the oldest entry without decoding payloads.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or settings.cache_db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._init_db()
        except (sqlite3.Error, OSError) as e:
            # Tier will run degraded and retry later
            logger.warning(f"Could not initialize cache database at {self.db_path}: {e}")

    def _init_db(self):
        """Initialize database with schema."""
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    @contextmanager
    def _get_connection(self):
        """Get a database connection."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _storage_errors(self, operation: str):
        try:
            yield
        except (sqlite3.Error, OSError, ValueError) as e:
            raise StorageError(f"{operation} failed on {self.db_path}: {e}") from e

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._storage_errors("get"):
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT payload FROM api_cache WHERE key = ?", (key,)
                ).fetchone()
                if row is None:
                    return None
                return json.loads(row["payload"])

    def set(self, key: str, record: Dict[str, Any]) -> None:
        with self._storage_errors("set"):
            payload = json.dumps(record, default=str)
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO api_cache (key, payload, stored_at, size)
                    VALUES (?, ?, ?, ?)
                    """,
                    (key, payload, record["stored_at"], len(payload.encode("utf-8"))),
                )
                conn.commit()

    def delete(self, key: str) -> None:
        with self._storage_errors("delete"):
            with self._get_connection() as conn:
                conn.execute("DELETE FROM api_cache WHERE key = ?", (key,))
                conn.commit()

    def keys(self) -> List[str]:
        with self._storage_errors("keys"):
            with self._get_connection() as conn:
                rows = conn.execute("SELECT key FROM api_cache").fetchall()
        return [row["key"] for row in rows]

    def records(self) -> List[Dict[str, Any]]:
        with self._storage_errors("records"):
            with self._get_connection() as conn:
                rows = conn.execute(
                    "SELECT payload FROM api_cache ORDER BY stored_at"
                ).fetchall()
                return [json.loads(row["payload"]) for row in rows]

    def approx_size(self) -> CacheSize:
        with self._storage_errors("approx_size"):
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT COUNT(*) AS count, COALESCE(SUM(size), 0) AS bytes FROM api_cache"
                ).fetchone()
        return CacheSize(count=row["count"], bytes=row["bytes"])

    def oldest_key(self) -> Optional[str]:
        with self._storage_errors("oldest_key"):
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT key FROM api_cache ORDER BY stored_at ASC LIMIT 1"
                ).fetchone()
        return row["key"] if row else None

    def clear(self) -> None:
        with self._storage_errors("clear"):
            with self._get_connection() as conn:
                conn.execute("DELETE FROM api_cache")
                conn.commit()

    def ping(self) -> None:
        """Make sure the schema exists; raises StorageError if unavailable."""
        with self._storage_errors("ping"):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._init_db()
