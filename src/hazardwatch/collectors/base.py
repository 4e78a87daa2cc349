"""
Collector contract: the schedulable unit of work.

A collector exposes only ``descriptor()`` and ``run_once()`` to the
scheduler. ``run_once`` wraps the source-specific ``collect()`` step with
timing, error containment and the cache write, so a failing collector
can never affect another collector or the process.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..cache.base import CacheStore
from ..errors import CacheStoreError, CollectorError, ErrorKind, TransformError

logger = logging.getLogger(__name__)

META_TTL_SECONDS = 7 * 24 * 3600
ERROR_THRESHOLD = 3


class CollectorState(str, Enum):
    """Lifecycle state of a collector instance."""

    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"  # last run failed, still schedulable
    STOPPED = "stopped"


@dataclass(frozen=True)
class CollectorDescriptor:
    """
    Runtime identity of a collector: everything the scheduler needs.
    """

    name: str
    interval_seconds: float
    ttl_seconds: int
    cache_key: str

    def __post_init__(self):
        if not self.name:
            raise ValueError("Collector name cannot be empty")
        if self.interval_seconds <= 0:
            raise ValueError(f"{self.name}: interval must be positive")
        if self.ttl_seconds <= 0:
            raise ValueError(f"{self.name}: ttl must be positive")
        if not self.cache_key:
            raise ValueError(f"{self.name}: cache key cannot be empty")


class CollectorRunResult(BaseModel):
    """
    Outcome of one collection cycle. Used for logging and health only.
    """

    collector: str = Field(..., description="Collector name")
    success: bool = Field(..., description="Whether the value was published")
    skipped: bool = Field(default=False, description="Run rejected due to overlap")
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Start time"
    )
    duration_ms: float = Field(default=0.0, description="Wall time of the run")
    records: Optional[int] = Field(None, description="Record count on success")
    size_bytes: Optional[int] = Field(None, description="Serialised size on success")
    error_kind: Optional[ErrorKind] = Field(None, description="Failure class")
    error_message: Optional[str] = Field(None, description="Failure detail")
    attempts: Optional[int] = Field(None, description="Fetch attempts on failure")


class BaseCollector(ABC):
    """
    Abstract base class for all collectors, declarative or bespoke.

    Subclasses implement ``collect()`` which fetches and transforms one
    dataset and returns the value to publish. Anything it raises is
    classified and recorded; the previous cache entry is left untouched.
    """

    def __init__(
        self,
        descriptor: CollectorDescriptor,
        store: CacheStore,
        meta_prefix: str = "hazard",
    ):
        self._descriptor = descriptor
        self.store = store
        self.meta_prefix = meta_prefix
        self.state = CollectorState.IDLE
        self.consecutive_errors = 0
        self.last_result: Optional[CollectorRunResult] = None
        self.last_success_at: Optional[datetime] = None
        self._run_lock = threading.Lock()
        self.logger = logging.getLogger(f"hazardwatch.collectors.{descriptor.name}")

    def descriptor(self) -> CollectorDescriptor:
        return self._descriptor

    @property
    def name(self) -> str:
        return self._descriptor.name

    @property
    def meta_key(self) -> str:
        return f"{self.meta_prefix}:meta:{self.name}"

    @abstractmethod
    def collect(self) -> Any:
        """
        Fetch and transform one dataset.

        Returns:
            JSON-serialisable value to publish under the descriptor's key
        """
        pass

    def start(self) -> None:
        """Hook called once by the scheduler before the first run."""

    def stop(self) -> None:
        """Remove the collector from the schedulable set."""
        self.state = CollectorState.STOPPED

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    def publish(self, value: Any) -> None:
        """Write the whole value with the descriptor's TTL."""
        d = self._descriptor
        self.store.set(d.cache_key, value, d.ttl_seconds)

    def count_records(self, value: Any) -> int:
        if isinstance(value, (list, dict)):
            return len(value)
        return 1

    def run_once(self) -> CollectorRunResult:
        """
        Execute one collection cycle.

        Never raises. A call made while another run of the same
        collector is in flight returns immediately with ``skipped=True``.
        """
        if self.state is CollectorState.STOPPED:
            return CollectorRunResult(
                collector=self.name,
                success=False,
                skipped=True,
                error_message="collector stopped",
            )
        if not self._run_lock.acquire(blocking=False):
            self.logger.info(f"run collector={self.name} outcome=skipped in_flight=1")
            return CollectorRunResult(
                collector=self.name,
                success=False,
                skipped=True,
                error_message="previous run still in flight",
            )
        try:
            return self._execute()
        finally:
            self._run_lock.release()

    def _execute(self) -> CollectorRunResult:
        self.state = CollectorState.RUNNING
        started_at = datetime.now(timezone.utc)
        start_time = time.monotonic()
        result = CollectorRunResult(
            collector=self.name, success=False, started_at=started_at
        )

        try:
            value = self.collect()
            if value is None:
                raise TransformError("collector produced no value")
            self.publish(value)
            result.success = True
            result.records = self.count_records(value)
            result.size_bytes = len(json.dumps(value, default=str))
        except CollectorError as e:
            result.error_kind = e.kind
            result.error_message = str(e)
            result.attempts = getattr(e, "attempts", None)
        except Exception as e:
            self.logger.exception(f"Unexpected error in collector {self.name}")
            result.error_kind = ErrorKind.INTERNAL
            result.error_message = f"{type(e).__name__}: {e}"

        result.duration_ms = round((time.monotonic() - start_time) * 1000, 1)

        if result.success:
            self.consecutive_errors = 0
            self.last_success_at = started_at
            self.logger.info(
                f"run collector={self.name} outcome=success "
                f"duration_ms={result.duration_ms:.0f} records={result.records} "
                f"bytes={result.size_bytes} key={self._descriptor.cache_key}"
            )
        else:
            self.consecutive_errors += 1
            self.logger.warning(
                f"run collector={self.name} outcome=failure "
                f"duration_ms={result.duration_ms:.0f} "
                f"error_kind={result.error_kind.value} attempts={result.attempts} "
                f"consecutive_errors={self.consecutive_errors} "
                f"error={result.error_message}"
            )

        self.last_result = result
        self._record_meta(result)
        if self.state is not CollectorState.STOPPED:
            self.state = (
                CollectorState.IDLE if result.success else CollectorState.FAILED
            )
        return result

    @property
    def health_status(self) -> str:
        if self.consecutive_errors == 0:
            return "ok"
        if self.consecutive_errors >= ERROR_THRESHOLD:
            return "error"
        return "degraded"

    def meta(self) -> Dict[str, Any]:
        last = self.last_result
        return {
            "status": self.health_status,
            "lastRun": last.started_at.isoformat() if last else None,
            "lastRunSucceeded": last.success if last else None,
            "lastSuccess": (
                self.last_success_at.isoformat() if self.last_success_at else None
            ),
            "errorCount": self.consecutive_errors,
            "lastError": last.error_message if last and not last.success else None,
            "durationMs": last.duration_ms if last else None,
        }

    def _record_meta(self, result: CollectorRunResult) -> None:
        try:
            self.store.set(self.meta_key, self.meta(), META_TTL_SECONDS)
        except CacheStoreError as e:
            self.logger.warning(f"Could not record meta for {self.name}: {e}")

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name})"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(descriptor={self._descriptor})"
