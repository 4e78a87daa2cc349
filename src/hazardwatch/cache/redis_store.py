"""
Redis-backed cache store.
"""

import json
from typing import Any, Optional

from redis import Redis, RedisError

from ..errors import CacheStoreError
from .base import CacheStore


class RedisCacheStore(CacheStore):
    """
    Cache store writing JSON documents with ``SET key value EX ttl``.

    Expiry is enforced by Redis itself, so a read after the TTL always
    comes back empty. Every backend error is raised as CacheStoreError.
    """

    def __init__(self, client: Redis):
        super().__init__()
        self.client = client

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisCacheStore":
        kwargs.setdefault("decode_responses", True)
        kwargs.setdefault("socket_timeout", 10)
        kwargs.setdefault("socket_connect_timeout", 5)
        return cls(Redis.from_url(url, **kwargs))

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(key)
        except RedisError as e:
            raise CacheStoreError(f"Redis GET {key} failed: {e}") from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise CacheStoreError(f"Corrupt cache entry under {key}: {e}") from e

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self.validate_entry(key, value, ttl_seconds)
        try:
            payload = json.dumps(value, separators=(",", ":"), allow_nan=False)
        except (TypeError, ValueError) as e:
            raise CacheStoreError(
                f"Value under {key} is not JSON-serialisable: {e}"
            ) from e
        try:
            self.client.set(key, payload, ex=int(ttl_seconds))
        except RedisError as e:
            raise CacheStoreError(f"Redis SET {key} failed: {e}") from e

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError as e:
            self.logger.warning(f"Redis ping failed: {e}")
            return False

    def close(self) -> None:
        try:
            self.client.close()
        except RedisError as e:
            self.logger.debug(f"Error closing Redis client: {e}")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(client={self.client!r})"
