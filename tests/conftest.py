"""
Fixtures and test configuration for the HazardWatch test suite.
"""

import json
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import requests
import yaml

from hazardwatch.cache.memory import MemoryCacheStore
from hazardwatch.settings import Settings


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(
        self,
        status_code: int = 200,
        payload: Any = None,
        content: Optional[bytes] = None,
        lines: Optional[List[bytes]] = None,
    ):
        self.status_code = status_code
        self.reason = "OK" if status_code < 400 else "Error"
        self._payload = payload
        if content is None and payload is not None:
            content = json.dumps(payload).encode()
        self.content = content or b""
        self._lines = lines or []
        self.closed = False

    def json(self) -> Any:
        if self._payload is None:
            return json.loads(self.content.decode())
        return self._payload

    def iter_lines(self):
        yield from self._lines

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class FakeSession:
    """
    Session replaying queued outcomes in order.

    Each queued outcome is a FakeResponse or an exception instance to
    raise. Every call is recorded in ``calls``.
    """

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.calls: List[Dict[str, Any]] = []
        self.headers: Dict[str, str] = {}
        self.closed = False

    def queue(self, *outcomes) -> "FakeSession":
        self.outcomes.extend(outcomes)
        return self

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.outcomes:
            raise AssertionError(f"Unexpected request: {method} {url}")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def close(self) -> None:
        self.closed = True


class RoutedSession(FakeSession):
    """Session answering by URL prefix, safe to share between threads."""

    def __init__(self, routes):
        super().__init__()
        self.routes = routes

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        for prefix, outcome in self.routes.items():
            if url.startswith(prefix):
                if isinstance(outcome, BaseException):
                    raise outcome
                return outcome
        raise AssertionError(f"Unexpected request: {method} {url}")


class RecordingSleep:
    """Sleep replacement that records the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def test_settings(temp_dir):
    """Create test settings with a temporary sources directory."""
    sources = temp_dir / "sources"
    sources.mkdir(exist_ok=True)
    return Settings(
        root_dir=temp_dir,
        sources_dir=sources,
        cache_backend="memory",
        stagger_seconds=0,
        request_retries=1,
        retry_base_delay=0,
        health_enabled=False,
        log_level="DEBUG",
    )


@pytest.fixture
def clock():
    """Fake clock shared by the store and tests."""
    return FakeClock()


@pytest.fixture
def memory_store(clock):
    """Memory store driven by the fake clock."""
    return MemoryCacheStore(clock=clock)


@pytest.fixture
def fake_session():
    """Empty fake session; queue outcomes on it."""
    return FakeSession()


@pytest.fixture
def no_sleep():
    """Sleep replacement recording requested delays."""
    return RecordingSleep()


@pytest.fixture
def sample_source_document():
    """A complete declarative source document."""
    return {
        "name": "test-alerts",
        "description": "Alerts used in tests",
        "fetch": {
            "url": "https://example.com/alerts",
            "timeoutMs": 5000,
            "retries": 1,
            "retryDelayMs": 0,
        },
        "schedule": {"intervalMs": 60000, "ttlSeconds": 180},
        "cache": {"key": "hazard:test:alerts"},
        "transform": {
            "dataPath": "features",
            "filter": {"properties.status": "Actual"},
            "fields": {
                "properties.event": "event",
                "properties.severity": {"to": "severity", "default": "Unknown"},
            },
        },
    }


@pytest.fixture
def write_source(temp_dir):
    """Write a source document to the sources directory as JSON or YAML."""
    sources = temp_dir / "sources"
    sources.mkdir(exist_ok=True)

    def _write(filename: str, document: Any) -> Path:
        path = sources / filename
        with open(path, "w") as f:
            if filename.endswith((".yaml", ".yml")):
                yaml.dump(document, f)
            elif isinstance(document, str):
                f.write(document)
            else:
                json.dump(document, f)
        return path

    return _write
