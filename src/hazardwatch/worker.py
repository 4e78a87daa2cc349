"""
Worker process: builds collectors, runs the scheduler and the health
server until SIGINT or SIGTERM.
"""

import logging
import signal
import threading
from typing import List, Optional

import uvicorn

from .api.server import create_app
from .cache import CacheStore, create_store
from .collectors import (
    BaseCollector,
    CollectorRegistry,
    build_source_collectors,
    load_source_configs,
)
from .pipeline.scheduler import Scheduler
from .settings import Settings

logger = logging.getLogger(__name__)


def build_collectors(settings: Settings, store: CacheStore) -> List[BaseCollector]:
    """
    Bespoke collectors from the registry plus declarative collectors from
    ``settings.sources_dir``.

    ``settings.disabled_collectors`` may name either a collector (e.g.
    ``gfs-cape``) or a registered type (``gfs`` disables every product).
    """
    disabled = set(settings.disabled_collectors)
    types = [t for t in CollectorRegistry.get_available_types() if t not in disabled]
    collectors = CollectorRegistry.create_collectors(store, settings, types)

    configs = load_source_configs(settings.sources_dir)
    collectors.extend(
        build_source_collectors(
            configs,
            store,
            user_agent=settings.user_agent,
            meta_prefix=settings.key_prefix,
        )
    )

    selected: List[BaseCollector] = []
    seen = set()
    for collector in collectors:
        if collector.name in disabled:
            logger.info(f"Collector {collector.name} disabled by settings")
            continue
        if collector.name in seen:
            logger.warning(f"Duplicate collector name {collector.name}, skipping")
            continue
        seen.add(collector.name)
        selected.append(collector)
    return selected


class _HealthServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the worker."""

    def install_signal_handlers(self) -> None:
        pass


class Worker:
    """
    Owns the store, scheduler and health server for one process.
    """

    def __init__(self, settings: Settings, store: Optional[CacheStore] = None):
        self.settings = settings
        self.store = store
        self.scheduler: Optional[Scheduler] = None
        self._server: Optional[_HealthServer] = None
        self._server_thread: Optional[threading.Thread] = None
        self._shutdown = threading.Event()

    def start(self) -> None:
        s = self.settings
        if self.store is None:
            self.store = create_store(s)
        if not self.store.ping():
            logger.warning("Cache store not reachable at startup, will keep trying")

        collectors = build_collectors(s, self.store)
        logger.info(
            f"Built {len(collectors)} collectors: "
            f"{', '.join(c.name for c in collectors)}"
        )
        self.scheduler = Scheduler(
            collectors, stagger_seconds=s.stagger_seconds, max_workers=s.max_workers
        )

        if s.health_enabled:
            self._start_health_server()
        self.scheduler.start()
        logger.info("Worker started")

    def _start_health_server(self) -> None:
        s = self.settings
        config = uvicorn.Config(
            create_app(self.scheduler, self.store),
            host=s.health_host,
            port=s.health_port,
            log_level=s.log_level.lower(),
            access_log=False,
            lifespan="off",
        )
        self._server = _HealthServer(config)
        self._server_thread = threading.Thread(
            target=self._server.run, name="health-server", daemon=True
        )
        self._server_thread.start()
        logger.info(f"Health server listening on {s.health_host}:{s.health_port}")

    def shutdown(self, signum=None, frame=None) -> None:
        if signum is not None:
            logger.info(f"Received {signal.Signals(signum).name}, shutting down")
        self._shutdown.set()

    def stop(self) -> None:
        if self.scheduler is not None:
            self.scheduler.stop(wait=True)
        if self._server is not None:
            self._server.should_exit = True
            if self._server_thread is not None:
                self._server_thread.join(timeout=5)
            self._server = None
            self._server_thread = None
        if self.store is not None:
            self.store.close()
        logger.info("Worker stopped")

    def run(self) -> None:
        """Start, block until a shutdown signal, then stop."""
        signal.signal(signal.SIGINT, self.shutdown)
        signal.signal(signal.SIGTERM, self.shutdown)
        self.start()
        try:
            while not self._shutdown.wait(1.0):
                pass
        finally:
            self.stop()
