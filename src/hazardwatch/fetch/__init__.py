"""
Transport plumbing shared by every collector.
"""

from .retry import (
    DEFAULT_HEADERS,
    FetchTarget,
    RetryPolicy,
    classify_exception,
    classify_status,
    fetch_json,
    fetch_with_retry,
)

__all__ = [
    "DEFAULT_HEADERS",
    "FetchTarget",
    "RetryPolicy",
    "classify_exception",
    "classify_status",
    "fetch_json",
    "fetch_with_retry",
]
