"""
Tests for the cache stores.
"""

import json
from unittest.mock import MagicMock

import pytest
from redis import RedisError

from hazardwatch.cache import MemoryCacheStore, RedisCacheStore, create_store
from hazardwatch.errors import CacheStoreError, DataUnavailableError


class TestMemoryCacheStore:
    """Test cases for the in-process store."""

    def test_set_and_get(self, memory_store):
        """Test that a fresh value is returned whole."""
        memory_store.set("hazard:a", {"events": [1, 2]}, 60)

        assert memory_store.get("hazard:a") == {"events": [1, 2]}

    def test_absent_key(self, memory_store):
        """Test that an unknown key reads as None."""
        assert memory_store.get("hazard:missing") is None

    def test_expiry_is_absence(self, memory_store, clock):
        """Test that a read at or after the TTL finds nothing."""
        memory_store.set("hazard:a", [1], 10)

        clock.advance(9.9)
        assert memory_store.get("hazard:a") == [1]

        clock.advance(0.1)
        assert memory_store.get("hazard:a") is None
        assert memory_store.keys() == []

    def test_overwrite_resets_ttl(self, memory_store, clock):
        """Test that a new write replaces the value and its expiry."""
        memory_store.set("hazard:a", "old", 10)
        clock.advance(8)
        memory_store.set("hazard:a", "new", 10)
        clock.advance(8)

        assert memory_store.get("hazard:a") == "new"

    def test_values_are_copied(self, memory_store):
        """Test that callers cannot mutate stored values."""
        value = {"items": [1]}
        memory_store.set("hazard:a", value, 60)
        value["items"].append(2)
        memory_store.get("hazard:a")["items"].append(3)

        assert memory_store.get("hazard:a") == {"items": [1]}

    @pytest.mark.parametrize(
        "key,value,ttl", [("", 1, 10), ("k", None, 10), ("k", 1, 0)]
    )
    def test_invalid_entries_rejected(self, memory_store, key, value, ttl):
        """Test that empty keys, None values and non-positive TTLs raise."""
        with pytest.raises(ValueError):
            memory_store.set(key, value, ttl)

    def test_require_raises_data_unavailable(self, memory_store):
        """Test the read side helper for absent keys."""
        with pytest.raises(DataUnavailableError) as exc_info:
            memory_store.require("hazard:nothing")

        assert exc_info.value.key == "hazard:nothing"


class TestRedisCacheStore:
    """Test cases for the Redis store against a mocked client."""

    def test_set_uses_expiry(self):
        """Test that values are written as compact JSON with EX ttl."""
        client = MagicMock()
        store = RedisCacheStore(client)

        store.set("hazard:sst:global", {"a": 1}, 5400)

        client.set.assert_called_once_with("hazard:sst:global", '{"a":1}', ex=5400)

    def test_get_decodes_json(self):
        """Test that stored JSON is decoded."""
        client = MagicMock()
        client.get.return_value = json.dumps([1, 2])
        store = RedisCacheStore(client)

        assert store.get("k") == [1, 2]

    def test_get_absent(self):
        """Test that a missing key reads as None."""
        client = MagicMock()
        client.get.return_value = None

        assert RedisCacheStore(client).get("k") is None

    def test_backend_errors_are_cache_store_errors(self):
        """Test that Redis failures surface as CacheStoreError."""
        client = MagicMock()
        client.set.side_effect = RedisError("connection refused")
        client.get.side_effect = RedisError("connection refused")
        store = RedisCacheStore(client)

        with pytest.raises(CacheStoreError):
            store.set("k", 1, 10)
        with pytest.raises(CacheStoreError):
            store.get("k")

    def test_unserialisable_value_is_cache_store_error(self):
        """Test that NaN or non-JSON values fail before reaching Redis."""
        client = MagicMock()
        store = RedisCacheStore(client)

        with pytest.raises(CacheStoreError, match="not JSON-serialisable"):
            store.set("hazard:space:weather", {"solarFlux": float("nan")}, 60)
        with pytest.raises(CacheStoreError):
            store.set("hazard:space:weather", {"when": object()}, 60)
        client.set.assert_not_called()

    def test_corrupt_entry(self):
        """Test that an undecodable entry is a CacheStoreError."""
        client = MagicMock()
        client.get.return_value = "{not json"

        with pytest.raises(CacheStoreError):
            RedisCacheStore(client).get("k")

    def test_ping(self):
        """Test that ping reports reachability without raising."""
        client = MagicMock()
        client.ping.return_value = True
        assert RedisCacheStore(client).ping() is True

        client.ping.side_effect = RedisError("down")
        assert RedisCacheStore(client).ping() is False


class TestCreateStore:
    """Test cases for backend selection."""

    def test_memory_backend(self, test_settings):
        """Test that the memory backend is selected from settings."""
        assert isinstance(create_store(test_settings), MemoryCacheStore)

    def test_redis_backend(self, test_settings):
        """Test that the redis backend is built from the URL lazily."""
        settings = test_settings.model_copy(update={"cache_backend": "redis"})

        store = create_store(settings)

        assert isinstance(store, RedisCacheStore)
