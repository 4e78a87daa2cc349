"""
Real-time lightning strikes from the Blitzortung websocket feed.

Strikes accumulate in memory on the stream thread; each scheduled run
publishes the current snapshot. Strikes older than 30 minutes are
dropped. Messages are parsed leniently: only the first numbers after the
``"lat`` and ``lon`` markers are read, so the compressed frames the
servers send are accepted as well as plain JSON.
"""

from __future__ import annotations

import re
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import websocket

from ..cache.base import CacheStore
from ..settings import Settings
from .base import BaseCollector, CollectorDescriptor
from .registry import register_collector
from .streaming import StreamingCollector

BLITZORTUNG_SERVERS = [
    "wss://ws1.blitzortung.org/",
    "wss://ws7.blitzortung.org/",
    "wss://ws8.blitzortung.org/",
]
SUBSCRIBE_FRAME = '{"a":111}'

MAX_AGE_SECONDS = 30 * 60
RECONNECT_DELAY = 5.0
RECV_TIMEOUT = 60.0

_NUMBER = re.compile(r"-?\d+\.?\d*")
_UNPRINTABLE = re.compile(r"[^\x20-\x7e]")


def parse_strike(message: Union[str, bytes], now_ms: int) -> Optional[Dict[str, Any]]:
    """
    Extract one strike from a feed message.

    Returns:
        ``{latitude, longitude, time}`` or None when the message holds no
        valid coordinates
    """
    if isinstance(message, bytes):
        message = message.decode("latin-1")
    text = _UNPRINTABLE.sub(" ", message)

    lat_idx = text.find('"lat')
    lon_idx = text.find("lon")
    if lat_idx == -1 or lon_idx == -1:
        return None

    lat_match = _NUMBER.search(text[lat_idx + 4 : lon_idx])
    lon_match = _NUMBER.search(text[lon_idx + 3 : lon_idx + 30])
    if not lat_match or not lon_match:
        return None

    lat = float(lat_match.group())
    lon = float(lon_match.group())
    if abs(lat) > 90 or abs(lon) > 180:
        return None
    return {"latitude": lat, "longitude": lon, "time": now_ms}


def strike_key(strike: Dict[str, Any]) -> str:
    """Strikes in the same 0.01 degree cell and second count once."""
    return (
        f"{strike['latitude']:.2f}_{strike['longitude']:.2f}_"
        f"{strike['time'] // 1000}"
    )


@register_collector("lightning")
class LightningCollector(StreamingCollector):
    """Streaming lightning strikes, published as a rolling 30 minute window."""

    interval_seconds = 10
    ttl_seconds = 60
    stream_errors = (websocket.WebSocketException, OSError)

    def __init__(
        self,
        descriptor: CollectorDescriptor,
        store: CacheStore,
        servers: Sequence[str] = BLITZORTUNG_SERVERS,
        connect: Callable[..., Any] = websocket.create_connection,
        clock: Callable[[], float] = time.time,
        reconnect_delay: float = RECONNECT_DELAY,
        user_agent: Optional[str] = None,
        meta_prefix: str = "hazard",
    ):
        super().__init__(
            descriptor,
            store,
            servers,
            clock=clock,
            reconnect_delay=reconnect_delay,
            meta_prefix=meta_prefix,
        )
        self.connect = connect
        self.user_agent = user_agent
        self.strikes: Dict[str, Dict[str, Any]] = {}
        self._strikes_lock = threading.Lock()

    @classmethod
    def instances(cls, store: CacheStore, settings: Settings) -> List[BaseCollector]:
        if not settings.lightning_enabled:
            return []
        descriptor = CollectorDescriptor(
            name="lightning",
            interval_seconds=cls.interval_seconds,
            ttl_seconds=cls.ttl_seconds,
            cache_key=f"{settings.key_prefix}:lightning:recent",
        )
        return [
            cls(
                descriptor,
                store,
                servers=settings.lightning_servers,
                user_agent=settings.user_agent,
                meta_prefix=settings.key_prefix,
            )
        ]

    def add_message(self, message: Union[str, bytes]) -> bool:
        strike = parse_strike(message, self.now_ms())
        if strike is None:
            return False
        with self._strikes_lock:
            self.strikes[strike_key(strike)] = strike
        return True

    def prune(self) -> int:
        cutoff = self.now_ms() - MAX_AGE_SECONDS * 1000
        with self._strikes_lock:
            old = [k for k, s in self.strikes.items() if s["time"] < cutoff]
            for key in old:
                del self.strikes[key]
        if old:
            self.logger.debug(f"Pruned {len(old)} old strikes")
        return len(old)

    def snapshot(self) -> List[Dict[str, Any]]:
        with self._strikes_lock:
            strikes = list(self.strikes.values())
        return sorted(strikes, key=lambda s: s["time"], reverse=True)

    def collect(self) -> List[Dict[str, Any]]:
        self.prune()
        return self.snapshot()

    def _consume(self, server: str) -> None:
        options: Dict[str, Any] = {"timeout": RECV_TIMEOUT}
        if self.user_agent:
            options["header"] = [f"User-Agent: {self.user_agent}"]
        ws = self.connect(server, **options)
        self._connection = ws
        try:
            ws.send(SUBSCRIBE_FRAME)
            self.logger.info(f"Connected to {server}")
            while not self.stopping:
                message = ws.recv()
                if not message:
                    break
                self.add_message(message)
        finally:
            ws.close()
        if not self.stopping:
            self.logger.warning(f"Lightning stream closed by {server}")
