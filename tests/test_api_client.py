"""
Tests for the journal API client: cached reads and invalidating mutations.
"""
import pytest

from app.api_client import JournalApiClient
from app.cache import CacheOptions, CacheType, TransportError
from tests.fakes import ok


@pytest.fixture
def client(cache):
    return JournalApiClient(cache=cache)


class TestReads:

    def test_get_uses_category_ttl(self, client, cache, transport):
        transport.queue(ok({"trades": []}))
        client.get("/api/trades", {"userId": "u1"})
        assert cache.store.get("/api/trades?userId=u1").ttl_seconds == 600

    def test_param_order_shares_entry(self, client, transport):
        transport.queue(ok({"trades": []}))
        first = client.get("/api/trades", {"page": 1, "userId": "u1"})
        second = client.get("/api/trades", {"userId": "u1", "page": 1, "symbol": None})

        assert first.cache_type == CacheType.NETWORK
        assert second.cache_type == CacheType.MEMORY
        assert len(transport.calls) == 1
        assert transport.calls[0]["url"] == "/api/trades?page=1&userId=u1"
        assert transport.calls[0]["headers"]["Accept"] == "application/json"

    def test_refresh_bypasses_cache(self, client, transport):
        transport.queue(ok({"v": 1}), ok({"v": 2}))
        client.get("/api/journal")
        result = client.refresh("/api/journal")
        assert result.data == {"v": 2}
        assert result.from_cache is False
        assert client.get("/api/journal").data == {"v": 2}


class TestMutations:

    def test_create_invalidates_collection_and_related(self, client, cache, transport):
        transport.default = ok({"ok": True})
        client.get("/api/trades", {"page": 1})
        client.get("/api/trades/42")
        client.get("/api/analytics", {"range": "30d"})
        client.get("/api/journal")

        transport.default = ok({"id": 43}, status=201)
        assert client.create("/api/trades", {"symbol": "NQ"}) == {"id": 43}

        assert cache.store.keys_matching("/api/trades") == []
        assert cache.store.keys_matching("/api/analytics") == []
        assert cache.store.get("/api/journal") is not None
        assert transport.calls[-1]["method"] == "POST"
        assert transport.calls[-1]["body"] == {"symbol": "NQ"}

    def test_update_of_item_invalidates_its_collection(self, client, cache, transport):
        transport.default = ok({"entries": []})
        client.get("/api/journal", {"page": 2})
        client.update("/api/journal/7", {"note": "revised"})
        assert cache.store.keys_matching("/api/journal") == []

    def test_explicit_invalidates(self, client, cache, transport):
        transport.default = ok({})
        client.get("/api/backtests")
        client.get("/api/journal")
        client.delete("/api/backtests/3", invalidates=["/api/journal"])

        assert cache.store.get("/api/backtests") is not None
        assert cache.store.get("/api/journal") is None
        assert transport.calls[-1]["method"] == "DELETE"

    def test_failed_mutation_invalidates_nothing(self, client, cache, transport):
        transport.queue(ok({"trades": []}), TransportError("rejected", status=422))
        client.get("/api/trades")

        with pytest.raises(TransportError):
            client.create("/api/trades", {"symbol": ""})
        assert cache.store.get("/api/trades") is not None

    def test_read_after_mutation_goes_to_network(self, client, transport):
        transport.queue(ok({"trades": []}), ok({"id": 1}), ok({"trades": [{"id": 1}]}))
        client.get("/api/trades")
        client.create("/api/trades", {"symbol": "ES"})

        result = client.get("/api/trades")
        assert result.cache_type == CacheType.NETWORK
        assert result.data == {"trades": [{"id": 1}]}


class TestStaleFlag:

    def test_stale_result_is_flagged(self, client, cache, transport, clock):
        transport.queue(ok({"entries": [1]}), TransportError("offline"))
        client.get("/api/journal", ttl_seconds=60)
        clock.advance(61)

        result = client.get("/api/journal", ttl_seconds=60)
        assert result.stale is True
        assert result.to_dict()["stale"] is True
        assert result.data == {"entries": [1]}

    def test_cache_options_ttl_override(self, client, cache, transport):
        transport.queue(ok({}))
        client.get("/api/trades", ttl_seconds=5)
        assert cache.store.get("/api/trades").ttl_seconds == 5
        assert CacheOptions(ttl_seconds=5).effective_ttl == 5
