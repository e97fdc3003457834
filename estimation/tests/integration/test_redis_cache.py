"""Integration tests for Redis and InMemory cache adapters.

Tests the CachePort implementations without requiring a real Redis instance.
"""

import fnmatch
import json
from unittest.mock import MagicMock, patch

import redis

from domain.ports import CachePort
from estimation.adapters.outbound.redis_cache import (
    InMemoryCacheAdapter,
    RedisCacheAdapter,
    cle_generation,
    cle_projet,
    creer_cache,
)


class MockRedis:
    def __init__(self):
        self._data = {}
        self.ttls = {}

    def get(self, key):
        return self._data.get(key)

    def setex(self, key, ttl, value):
        self._data[key] = value
        self.ttls[key] = ttl

    def scan_iter(self, match):
        return [k for k in list(self._data) if fnmatch.fnmatch(k, match)]

    def delete(self, *keys):
        for key in keys:
            self._data.pop(key, None)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestInMemoryCacheAdapter:
    def test_implements_cache_port(self):
        assert isinstance(InMemoryCacheAdapter(), CachePort)

    def test_set_and_get(self):
        cache = InMemoryCacheAdapter()
        cache.set("key1", {"data": 42})
        assert cache.get("key1") == {"data": 42}

    def test_get_missing_key(self):
        assert InMemoryCacheAdapter().get("nonexistent") is None

    def test_entries_expire(self):
        horloge = FakeClock()
        cache = InMemoryCacheAdapter(clock=horloge)
        cache.set("key", "value", ttl=10)
        horloge.now = 9.5
        assert cache.get("key") == "value"
        horloge.now = 10.0
        assert cache.get("key") is None

    def test_invalidate_project_prefix(self):
        cache = InMemoryCacheAdapter()
        cache.set(cle_projet(1, "structure"), 100)
        cache.set(cle_projet(1, "recap"), [1, 2])
        cache.set(cle_projet(11, "structure"), 50)
        cache.invalidate(cle_projet(1))
        assert cache.get("projet:1:structure") is None
        assert cache.get("projet:1:recap") is None
        assert cache.get("projet:11:structure") == 50

    def test_returned_values_are_copies(self):
        cache = InMemoryCacheAdapter()
        vue = {"lots": [{"total": 1.0}]}
        cache.set("key", vue)
        vue["lots"].clear()
        lue = cache.get("key")
        lue["lots"][0]["total"] = 99.0
        assert cache.get("key") == {"lots": [{"total": 1.0}]}

    def test_generation_survives_project_invalidation(self):
        cache = InMemoryCacheAdapter()
        cache.set(cle_generation(1), "abc")
        cache.set(cle_projet(1, "structure"), 100)
        cache.invalidate(cle_projet(1))
        assert cache.get(cle_generation(1)) == "abc"


class TestRedisCacheAdapter:
    def test_implements_cache_port(self):
        assert isinstance(RedisCacheAdapter(), CachePort)

    def test_no_redis_is_noop(self):
        cache = RedisCacheAdapter(redis_client=None)
        cache.set("key", "value")
        cache.invalidate("prefix")
        assert cache.get("key") is None

    def test_values_are_json_with_prefix_and_ttl(self):
        client = MockRedis()
        cache = RedisCacheAdapter(redis_client=client)

        cache.set("projet:1:structure", {"value": 123}, ttl=60)

        assert json.loads(client._data["estimation:projet:1:structure"]) == {"value": 123}
        assert client.ttls["estimation:projet:1:structure"] == 60
        assert cache.get("projet:1:structure") == {"value": 123}

    def test_invalidate_by_prefix(self):
        cache = RedisCacheAdapter(redis_client=MockRedis())
        cache.set("projet:1:a", 1)
        cache.set("projet:1:b", 2)
        cache.set("projet:2:a", 3)
        cache.invalidate("projet:1:")
        assert cache.get("projet:1:a") is None
        assert cache.get("projet:1:b") is None
        assert cache.get("projet:2:a") == 3

    def test_invalidate_without_match_deletes_nothing(self):
        client = MagicMock()
        client.scan_iter.return_value = iter([])
        RedisCacheAdapter(redis_client=client).invalidate("projet:9:")
        client.delete.assert_not_called()


class TestCreerCache:
    def test_without_url_is_disabled(self):
        assert creer_cache(None).get("x") is None

    def test_unreachable_redis_falls_back(self, caplog):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("refused")
        with patch("estimation.adapters.outbound.redis_cache.redis.from_url", return_value=client):
            cache = creer_cache("redis://localhost:1/0")
        cache.set("x", 1)
        client.setex.assert_not_called()
        assert "cache désactivé" in caplog.text
