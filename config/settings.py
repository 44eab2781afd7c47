"""Configuration management using pydantic-settings."""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Journal API (origin server)
    api_base_url: str = "http://localhost:5001"
    request_timeout_seconds: float = 10.0

    # Cache settings
    cache_enabled: bool = True
    cache_directory: Path = Path("./cache")
    cache_db_filename: str = "api_cache.db"
    default_ttl_seconds: float = 300.0  # 5 minutes

    # Tier capacity (memory must not exceed persistent)
    memory_max_entries: int = 200
    persistent_max_entries: int = 2000
    persistent_max_bytes: int = 50 * 1024 * 1024

    # Seconds a degraded persistent tier waits before probing the backend again
    storage_retry_seconds: float = 30.0

    # Coalescing / background revalidation
    # Joined callers wait for the running fetch; None leaves timeouts to the transport
    coalesce_timeout_seconds: Optional[float] = None
    max_revalidation_workers: int = 4

    # Stats health threshold (total entries)
    stats_warning_threshold: int = 1000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def cache_db_path(self) -> Path:
        """Full path of the persistent cache database."""
        return self.cache_directory / self.cache_db_filename


settings = Settings()
