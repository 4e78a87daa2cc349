"""
Shared plumbing for collectors that pull from HTTP endpoints.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional

import requests

from ..cache.base import CacheStore
from ..fetch.retry import (
    DEFAULT_HEADERS,
    FetchTarget,
    RetryPolicy,
    fetch_json,
    fetch_with_retry,
)
from ..settings import Settings
from .base import BaseCollector, CollectorDescriptor


def policy_from_settings(settings: Settings, **overrides) -> RetryPolicy:
    """Default retry policy for bespoke collectors."""
    values = dict(
        timeout_seconds=settings.request_timeout,
        retries=settings.request_retries,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
        jitter=0.1,
    )
    values.update(overrides)
    return RetryPolicy(**values)


class HttpCollector(BaseCollector):
    """
    Collector holding a requests session and a retry policy.

    Each collector owns its session so connection pools are never shared
    between collectors running on different threads.
    """

    def __init__(
        self,
        descriptor: CollectorDescriptor,
        store: CacheStore,
        policy: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        user_agent: Optional[str] = None,
        meta_prefix: str = "hazard",
        session_factory: Callable[[], requests.Session] = requests.Session,
    ):
        super().__init__(descriptor, store, meta_prefix=meta_prefix)
        self.policy = policy or RetryPolicy()
        self.session_factory = session_factory
        self.session = session or session_factory()
        self.sleep = sleep
        self.user_agent = user_agent
        if user_agent:
            self.session.headers["User-Agent"] = user_agent

    def target(self, url: str, headers: Optional[Dict[str, str]] = None, **kwargs):
        merged = dict(DEFAULT_HEADERS)
        merged.update(headers or {})
        return FetchTarget(url=url, headers=merged, **kwargs)

    def get_json(self, url: str, **kwargs) -> Any:
        return fetch_json(
            self.target(url, **kwargs), self.policy, self.session, self.sleep
        )

    def get_json_isolated(self, url: str, **kwargs) -> Any:
        """
        Like ``get_json`` but on a session of its own, closed afterwards.

        For fan-out from worker threads, which must not share
        ``self.session``.
        """
        session = self.session_factory()
        if self.user_agent:
            session.headers["User-Agent"] = self.user_agent
        try:
            return fetch_json(
                self.target(url, **kwargs), self.policy, session, self.sleep
            )
        finally:
            session.close()

    def get_bytes(self, url: str, **kwargs) -> bytes:
        headers = {"Accept": "*/*"}
        headers.update(kwargs.pop("headers", None) or {})
        response = fetch_with_retry(
            self.target(url, headers=headers, **kwargs),
            self.policy,
            self.session,
            self.sleep,
        )
        return response.content

    def stop(self) -> None:
        super().stop()
        self.session.close()


class SourceCollector(HttpCollector):
    """
    Bespoke collector with its schedule declared as class attributes.

    Subclasses set ``collector_name``, ``interval_seconds``,
    ``ttl_seconds`` and ``key_suffix``; the cache key is the settings'
    key prefix joined with the suffix.
    """

    collector_name: str = ""
    interval_seconds: float = 600
    ttl_seconds: int = 1200
    key_suffix: str = ""
    timeout_seconds: Optional[float] = None

    @classmethod
    def build_descriptor(cls, settings: Settings) -> CollectorDescriptor:
        return CollectorDescriptor(
            name=cls.collector_name,
            interval_seconds=cls.interval_seconds,
            ttl_seconds=cls.ttl_seconds,
            cache_key=f"{settings.key_prefix}:{cls.key_suffix}",
        )

    @classmethod
    def build_policy(cls, settings: Settings) -> RetryPolicy:
        if cls.timeout_seconds:
            return policy_from_settings(settings, timeout_seconds=cls.timeout_seconds)
        return policy_from_settings(settings)

    @classmethod
    def instances(cls, store: CacheStore, settings: Settings) -> List[BaseCollector]:
        """Build the collector instance(s) this class contributes."""
        return [
            cls(
                cls.build_descriptor(settings),
                store,
                policy=cls.build_policy(settings),
                user_agent=settings.user_agent,
                meta_prefix=settings.key_prefix,
            )
        ]
