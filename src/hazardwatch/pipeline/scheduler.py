"""
Interval scheduler for collectors.

Each registered collector gets a ticker thread that wakes on a fixed
cadence and submits a run to a shared thread pool. The pool holds at
least one worker per collector, so a slow or hung run only ever delays
its own collector.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..collectors.base import BaseCollector, CollectorRunResult
from ..errors import ErrorKind

logger = logging.getLogger(__name__)


@dataclass
class ScheduledJob:
    """
    Scheduling state of one collector.
    """

    collector: BaseCollector
    interval: float
    offset: float = 0.0
    runs: int = 0
    skipped_ticks: int = 0
    missed_ticks: int = 0
    last_run_at: Optional[float] = None
    last_result: Optional[CollectorRunResult] = None
    future: Optional[Future] = None
    thread: Optional[threading.Thread] = None
    lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def name(self) -> str:
        return self.collector.name

    @property
    def in_flight(self) -> bool:
        return self.future is not None and not self.future.done()


class Scheduler:
    """
    Runs every collector on its own interval until stopped.

    Ticks are anchored to the first run (``first + k * interval``). A
    tick that finds the previous run still in flight is skipped and
    counted; ticks missed while the process was stalled are dropped
    rather than run back to back.
    """

    def __init__(
        self,
        collectors: Iterable[BaseCollector] = (),
        stagger_seconds: float = 10.0,
        max_workers: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.stagger_seconds = stagger_seconds
        self.max_workers = max_workers
        self.clock = clock
        self.rng = rng or random.Random()
        self.jobs: Dict[str, ScheduledJob] = {}
        self._executor: Optional[ThreadPoolExecutor] = None
        self._stop_event = threading.Event()
        self._running = False
        self._started_at: Optional[float] = None
        for collector in collectors:
            self.register(collector)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def collectors(self) -> List[BaseCollector]:
        return [job.collector for job in self.jobs.values()]

    def register(self, collector: BaseCollector) -> ScheduledJob:
        """
        Add a collector. Only allowed before ``start()``.
        """
        if self._running:
            raise RuntimeError("Cannot register collectors on a running scheduler")
        if collector.name in self.jobs:
            raise ValueError(f"Collector '{collector.name}' already registered")
        job = ScheduledJob(collector, collector.descriptor().interval_seconds)
        self.jobs[collector.name] = job
        logger.debug(f"Registered {collector.name} every {job.interval}s")
        return job

    def stagger_offset(self, interval: float) -> float:
        """Random first-run delay in ``[0, min(stagger, interval))``."""
        bound = min(self.stagger_seconds, interval)
        if bound <= 0:
            return 0.0
        return self.rng.uniform(0, bound) % bound

    def start(self) -> None:
        if self._running:
            return
        if not self.jobs:
            logger.warning("Scheduler started with no collectors")

        workers = max(self.max_workers or 0, len(self.jobs), 1)
        self._executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="collector"
        )
        self._stop_event.clear()
        self._running = True
        self._started_at = self.clock()

        for job in self.jobs.values():
            try:
                job.collector.start()
            except Exception:
                logger.exception(f"Failed to start collector {job.name}")
                continue
            job.offset = self.stagger_offset(job.interval)
            job.thread = threading.Thread(
                target=self._tick_loop,
                args=(job, self._started_at + job.offset),
                name=f"ticker-{job.name}",
                daemon=True,
            )
            job.thread.start()

        logger.info(
            f"Scheduler started with {len(self.jobs)} collectors, {workers} workers"
        )

    def trigger(self, name: str) -> bool:
        """
        Submit a run of the named collector now.

        Returns:
            False when the previous run is still in flight (tick skipped)
        """
        job = self.jobs[name]
        with job.lock:
            if job.in_flight:
                job.skipped_ticks += 1
                logger.info(
                    f"tick collector={name} outcome=skipped "
                    f"skipped_ticks={job.skipped_ticks}"
                )
                return False
            if self._executor is None:
                raise RuntimeError("Scheduler is not running")
            job.future = self._executor.submit(self._run, job)
            return True

    def _tick_loop(self, job: ScheduledJob, first_at: float) -> None:
        next_at = first_at
        while not self._stop_event.wait(max(0.0, next_at - self.clock())):
            try:
                self.trigger(job.name)
            except RuntimeError:
                # Executor shut down underneath us
                break

            next_at += job.interval
            now = self.clock()
            if next_at <= now:
                missed = int((now - next_at) // job.interval) + 1
                next_at += missed * job.interval
                job.missed_ticks += missed
                logger.debug(f"{job.name}: dropped {missed} missed tick(s)")

    def _run(self, job: ScheduledJob) -> CollectorRunResult:
        job.last_run_at = self.clock()
        try:
            result = job.collector.run_once()
        except Exception as e:
            # run_once never raises; this guards the pool thread regardless
            logger.exception(f"Collector {job.name} raised out of run_once")
            result = CollectorRunResult(
                collector=job.name,
                success=False,
                error_kind=ErrorKind.INTERNAL,
                error_message=f"{type(e).__name__}: {e}",
            )
        job.runs += 1
        job.last_result = result
        return result

    def stop(self, wait: bool = True) -> None:
        """
        Stop issuing runs, wait for in-flight ones, then stop collectors.
        """
        if not self._running:
            return
        logger.info("Stopping scheduler")
        self._running = False
        self._stop_event.set()

        for job in self.jobs.values():
            if job.thread is not None:
                job.thread.join()
                job.thread = None

        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

        for job in self.jobs.values():
            try:
                job.collector.stop()
            except Exception:
                logger.exception(f"Error stopping collector {job.name}")
        logger.info("Scheduler stopped")

    def run_all_once(self) -> List[CollectorRunResult]:
        """
        Run every registered collector once, concurrently, and wait.
        """
        if not self.jobs:
            return []
        results: List[CollectorRunResult] = []
        with ThreadPoolExecutor(max_workers=len(self.jobs)) as executor:
            futures = [executor.submit(self._run, job) for job in self.jobs.values()]
            for future in as_completed(futures):
                results.append(future.result())
        return sorted(results, key=lambda r: r.collector)

    def status(self) -> Dict[str, Any]:
        """Snapshot for the health endpoints."""
        jobs: Dict[str, Any] = {}
        for name, job in self.jobs.items():
            last = job.last_result
            jobs[name] = {
                "status": job.collector.health_status,
                "state": job.collector.state.value,
                "intervalSeconds": job.interval,
                "inFlight": job.in_flight,
                "runs": job.runs,
                "skippedTicks": job.skipped_ticks,
                "missedTicks": job.missed_ticks,
                "errorCount": job.collector.consecutive_errors,
                "lastResult": last.model_dump(mode="json") if last else None,
            }
        return {"running": self._running, "collectors": jobs}
