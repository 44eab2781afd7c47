"""
Shared fixtures: a scripted transport, a controllable clock and temporary
SQLite cache databases.
"""
import tempfile
from pathlib import Path

import pytest

from app.cache import CacheManager, SQLiteCacheBackend
from tests.fakes import FakeClock, FakeTransport, FlakyBackend


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def db_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def backend(db_dir):
    return SQLiteCacheBackend(db_dir / "test_cache.db")


@pytest.fixture
def make_cache(transport, clock):
    """Factory building CacheManagers that are shut down after the test."""
    managers = []

    def factory(backend, **kwargs):
        kwargs.setdefault("transport", transport)
        kwargs.setdefault("clock", clock)
        manager = CacheManager(backend=backend, **kwargs)
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        manager.shutdown()


@pytest.fixture
def cache(make_cache, backend):
    return make_cache(backend)


@pytest.fixture
def flaky_backend(backend):
    return FlakyBackend(backend)
