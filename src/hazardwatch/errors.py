"""
Error taxonomy shared by the fetch layer, the cache stores and collectors.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification recorded on a failed collector run."""

    TRANSIENT_NETWORK = "transient_network"
    PERMANENT_UPSTREAM = "permanent_upstream"
    TRANSFORM = "transform"
    CACHE_STORE = "cache_store"
    INTERNAL = "internal"


class CollectorError(Exception):
    """Base class for classified collection failures."""

    kind: ErrorKind = ErrorKind.INTERNAL


class FetchError(CollectorError):
    """
    Aggregated failure of a bounded retry fetch.

    Carries the classification of the last failure, the number of
    attempts made and the last underlying error.
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        url: str,
        attempts: int = 1,
        status: Optional[int] = None,
        last_error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.url = url
        self.attempts = attempts
        self.status = status
        self.last_error = last_error

    @property
    def transient(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT_NETWORK


class TransformError(CollectorError):
    """Response body could not be shaped into the published value."""

    kind = ErrorKind.TRANSFORM


class CacheStoreError(CollectorError):
    """Cache backend connection or write failure."""

    kind = ErrorKind.CACHE_STORE


class DataUnavailableError(LookupError):
    """
    Raised to readers when a cache key is absent.

    Absent means the worker has not produced a fresh value yet; it is
    distinct from a present but empty dataset.
    """

    def __init__(self, key: str):
        super().__init__(f"Data unavailable for {key}, try again later")
        self.key = key
