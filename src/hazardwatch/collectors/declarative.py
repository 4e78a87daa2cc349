"""
Collector built entirely from a source document.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Iterable, List, Mapping, Optional

import requests

from ..cache.base import CacheStore
from ..fetch.retry import RetryPolicy
from .base import CollectorDescriptor
from .http import HttpCollector
from .source_config import SourceConfig, resolve_auth
from .transform import apply_transform, compile_fields


def descriptor_for(config: SourceConfig) -> CollectorDescriptor:
    return CollectorDescriptor(
        name=config.name,
        interval_seconds=config.schedule.interval_ms / 1000.0,
        ttl_seconds=config.schedule.ttl_seconds,
        cache_key=config.cache.key,
    )


def policy_for(config: SourceConfig) -> RetryPolicy:
    fetch = config.fetch
    return RetryPolicy.from_millis(
        fetch.timeout_ms,
        retries=fetch.retries,
        backoff=fetch.backoff,
        base_delay=fetch.retry_delay_ms / 1000.0,
        max_delay=30.0,
    )


class GenericSourceCollector(HttpCollector):
    """
    Declarative collector: fetch, navigate, filter, rename.

    Auth and field specs are resolved once here, so a run only looks up
    the credential and applies precompiled paths.
    """

    def __init__(
        self,
        config: SourceConfig,
        store: CacheStore,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        environ: Optional[Mapping[str, str]] = None,
        user_agent: Optional[str] = None,
        meta_prefix: str = "hazard",
    ):
        super().__init__(
            descriptor_for(config),
            store,
            policy=policy_for(config),
            session=session,
            sleep=sleep,
            user_agent=user_agent,
            meta_prefix=meta_prefix,
        )
        self.config = config
        self._auth_headers = resolve_auth(config.name, config.auth, environ)
        transform = config.transform
        self._data_path = transform.data_path if transform else None
        self._filter = dict(transform.filter_by) if transform else {}
        self._fields = compile_fields(transform.field_map) if transform else []

    def collect(self) -> Any:
        fetch = self.config.fetch
        headers = dict(fetch.headers)
        headers.update(self._auth_headers())

        body = self.get_json(
            fetch.url,
            headers=headers,
            method=fetch.method,
            params=fetch.params,
            json_body=fetch.body,
        )
        value = apply_transform(body, self._data_path, self._filter, self._fields)
        if isinstance(value, list):
            self.logger.debug(f"Collected {len(value)} items from {self.name}")
        return value


def build_source_collectors(
    configs: Iterable[SourceConfig],
    store: CacheStore,
    user_agent: Optional[str] = None,
    meta_prefix: str = "hazard",
) -> List[GenericSourceCollector]:
    """One collector per enabled source document."""
    return [
        GenericSourceCollector(
            config, store, user_agent=user_agent, meta_prefix=meta_prefix
        )
        for config in configs
        if config.enabled
    ]
