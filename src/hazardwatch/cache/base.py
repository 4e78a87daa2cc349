"""
Abstract cache store with per-entry time-to-live.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..errors import DataUnavailableError

logger = logging.getLogger(__name__)


class CacheStore(ABC):
    """
    Key/value store whose entries expire after their TTL.

    A read after expiry returns ``None`` (absent), never a stale value.
    Values must be JSON-serialisable and are always written whole.
    Implementations must be safe for concurrent use from many threads.
    """

    def __init__(self):
        self.logger = logging.getLogger(
            f"{self.__class__.__module__}.{self.__class__.__name__}"
        )

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """
        Return the fresh value stored under key, or None when absent.
        """
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """
        Store value under key, replacing any previous entry.
        """
        pass

    @abstractmethod
    def ping(self) -> bool:
        """
        Return True when the backend is reachable.
        """
        pass

    def close(self) -> None:
        """Release backend resources."""

    def require(self, key: str) -> Any:
        """
        Read side helper for request handlers.

        Raises:
            DataUnavailableError: If the key is absent or expired
        """
        value = self.get(key)
        if value is None:
            raise DataUnavailableError(key)
        return value

    @staticmethod
    def validate_entry(key: str, value: Any, ttl_seconds: int) -> None:
        if not key:
            raise ValueError("Cache key must be a non-empty string")
        if value is None:
            raise ValueError(f"Refusing to cache None under {key}")
        if ttl_seconds <= 0:
            raise ValueError(f"TTL must be positive, got {ttl_seconds} for {key}")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"
