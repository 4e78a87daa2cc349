"""
In-process cache store, used for single-process runs and tests.
"""

import copy
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from .base import CacheStore


class MemoryCacheStore(CacheStore):
    """
    Thread-safe dictionary store with lazy expiry.

    Entries are dropped on the first read at or after their expiry time.
    Values are deep-copied on the way in and out so callers never share
    mutable state through the store.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        super().__init__()
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self.validate_entry(key, value, ttl_seconds)
        expires_at = self._clock() + ttl_seconds
        with self._lock:
            self._entries[key] = (copy.deepcopy(value), expires_at)

    def ping(self) -> bool:
        return True

    def keys(self):
        """Return the keys of all fresh entries."""
        now = self._clock()
        with self._lock:
            return sorted(k for k, (_, exp) in self._entries.items() if now < exp)

    def close(self) -> None:
        with self._lock:
            self._entries.clear()
