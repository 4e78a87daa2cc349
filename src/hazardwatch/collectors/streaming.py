"""
Base class for collectors fed by a long-lived connection.

A streaming collector keeps a connection open on a daemon thread and
accumulates records in memory; each scheduled run publishes a snapshot
of what has been gathered. When the connection drops the thread waits
``reconnect_delay`` seconds and connects to the next server in the
rotation.
"""

from __future__ import annotations

import random
import threading
import time
from abc import abstractmethod
from typing import Any, Callable, Optional, Sequence, Tuple, Type

from ..cache.base import CacheStore
from .base import BaseCollector, CollectorDescriptor


class StreamingCollector(BaseCollector):
    """
    Collector reading a stream on a background thread.

    Subclasses implement ``_consume(server)``, which connects, reads until
    the stream ends or ``stopping`` is set and returns. Any exception in
    ``stream_errors`` raised from it counts as a lost connection.
    """

    stream_errors: Tuple[Type[BaseException], ...] = (OSError,)

    def __init__(
        self,
        descriptor: CollectorDescriptor,
        store: CacheStore,
        servers: Sequence[Any],
        clock: Callable[[], float] = time.time,
        reconnect_delay: float = 5.0,
        meta_prefix: str = "hazard",
    ):
        super().__init__(descriptor, store, meta_prefix=meta_prefix)
        if not servers:
            raise ValueError(f"{descriptor.name}: at least one server is required")
        self.servers = list(servers)
        self.clock = clock
        self.reconnect_delay = reconnect_delay
        self.connections = 0
        self._server_index = random.randrange(len(self.servers))
        self._stopping = threading.Event()
        self._connection: Optional[Any] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    def next_server(self) -> Any:
        """Server for the next connection, rotating through the pool."""
        server = self.servers[self._server_index % len(self.servers)]
        self._server_index += 1
        return server

    @abstractmethod
    def _consume(self, server: Any) -> None:
        """Connect to server and read until the stream ends."""

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._listen, name=f"{self.name}-stream", daemon=True
        )
        self._thread.start()
        self.logger.info(f"Stream started collector={self.name}")

    def stop(self) -> None:
        super().stop()
        self._stopping.set()
        self._close_connection()
        if self._thread is not None:
            self._thread.join(timeout=self.reconnect_delay + 1)
            self._thread = None
        self.logger.info(f"Stream stopped collector={self.name}")

    def _close_connection(self) -> None:
        connection = self._connection
        if connection is None:
            return
        try:
            connection.close()
        except self.stream_errors as e:
            self.logger.debug(f"Error closing {self.name} connection: {e}")

    def _listen(self) -> None:
        while not self._stopping.is_set():
            server = self.next_server()
            self.connections += 1
            try:
                self._consume(server)
            except self.stream_errors as e:
                if self._stopping.is_set():
                    break
                self.logger.warning(
                    f"Stream error collector={self.name} server={server}: {e}"
                )
            finally:
                self._connection = None
            if self._stopping.wait(self.reconnect_delay):
                break
            self.logger.debug(
                f"Reconnecting collector={self.name} after {self.reconnect_delay}s"
            )
