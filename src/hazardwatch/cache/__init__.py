"""
Cache stores shared by collectors (write side) and request handlers (read side).
"""

import logging

from ..settings import Settings
from .base import CacheStore
from .memory import MemoryCacheStore
from .redis_store import RedisCacheStore

logger = logging.getLogger(__name__)


def create_store(settings: Settings) -> CacheStore:
    """
    Build the cache store selected by ``settings.cache_backend``.
    """
    if settings.cache_backend == "memory":
        logger.info("Using in-process memory cache store")
        return MemoryCacheStore()
    logger.info("Using Redis cache store")
    return RedisCacheStore.from_url(settings.redis_url)


__all__ = ["CacheStore", "MemoryCacheStore", "RedisCacheStore", "create_store"]
