"""
Amateur radio station positions from APRS-IS.

The collector holds a receive-only TCP login on an APRS-IS server with a
server-side range filter and keeps the latest position per callsign.
Uncompressed and base-91 compressed position reports are decoded;
Mic-E and other packet types are ignored. Stations not heard for an
hour are dropped and at most 5000 of the most recent are published.
"""

from __future__ import annotations

import re
import socket
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .. import __version__
from ..cache.base import CacheStore
from ..settings import Settings
from .base import BaseCollector, CollectorDescriptor
from .registry import register_collector
from .streaming import StreamingCollector

MAX_AGE_SECONDS = 60 * 60
MAX_STATIONS = 5000
RECONNECT_DELAY = 10.0
SOCKET_TIMEOUT = 5 * 60.0

KNOTS_TO_KMH = 1.852
FEET_TO_METERS = 0.3048

POSITION_TYPES = "!=/@"
MIC_E_TYPES = "`'"

_COURSE_SPEED = re.compile(r"^(\d{3})/(\d{3})")
_ALTITUDE = re.compile(r"/A=(-?\d+)")


def login_line(filter_spec: str) -> str:
    """Receive-only login; N0CALL with passcode -1 cannot transmit."""
    return (
        f"user N0CALL pass -1 vers hazardwatch {__version__} "
        f"filter {filter_spec}\r\n"
    )


def _uncompressed(data: str) -> Optional[Dict[str, Any]]:
    # DDMM.MMN/DDDMM.MME$ then comment and extensions
    if len(data) < 19:
        return None
    try:
        lat_deg, lat_min = int(data[0:2]), float(data[2:7])
        lon_deg, lon_min = int(data[9:12]), float(data[12:17])
    except ValueError:
        return None
    lat_dir, lon_dir = data[7], data[17]
    if lat_dir not in "NS" or lon_dir not in "EW":
        return None

    latitude = lat_deg + lat_min / 60
    if lat_dir == "S":
        latitude = -latitude
    longitude = lon_deg + lon_min / 60
    if lon_dir == "W":
        longitude = -longitude
    if abs(latitude) > 90 or abs(longitude) > 180:
        return None

    rest = data[19:]
    comment = rest.strip() or None
    speed = course = altitude = None
    match = _COURSE_SPEED.match(rest)
    if match:
        course = int(match.group(1))
        speed = int(match.group(2)) * KNOTS_TO_KMH
        comment = rest[7:].strip() or None
    match = _ALTITUDE.search(rest)
    if match:
        altitude = int(match.group(1)) * FEET_TO_METERS

    return {
        "latitude": latitude,
        "longitude": longitude,
        "symbolTable": data[8],
        "symbol": data[18],
        "comment": comment,
        "speed": speed,
        "course": course,
        "altitude": altitude,
    }


def _base91(chars: str) -> int:
    value = 0
    for char in chars:
        value = value * 91 + (ord(char) - 33)
    return value


def _compressed(data: str) -> Optional[Dict[str, Any]]:
    # /YYYYXXXX$csT: table, base-91 lat and lon, symbol, course/speed/type
    if len(data) < 13:
        return None
    latitude = 90 - _base91(data[1:5]) / 380926
    longitude = -180 + _base91(data[5:9]) / 190463
    if abs(latitude) > 90 or abs(longitude) > 180:
        return None

    c, s, t = (ord(char) - 33 for char in data[10:13])
    speed = course = altitude = None
    nmea_source = (t >> 3) & 0x03
    if nmea_source != 2 and 0 <= c < 90:
        course = c * 4
        speed = (1.08**s - 1) * KNOTS_TO_KMH
    elif nmea_source == 2:
        altitude = 1.002 ** (c * 91 + s) * FEET_TO_METERS

    return {
        "latitude": latitude,
        "longitude": longitude,
        "symbolTable": data[0],
        "symbol": data[9],
        "comment": data[13:].strip() or None,
        "speed": speed,
        "course": course,
        "altitude": altitude,
    }


def parse_position(data: str) -> Optional[Dict[str, Any]]:
    """Decode the position in an information field, None if it has none."""
    if len(data) < 10 or data[0] not in POSITION_TYPES:
        return None
    body = data[1:]
    if data[0] in "/@" and len(body) > 7:
        body = body[7:]
    # Uncompressed latitude starts with a digit, compressed with the symbol table
    if len(body) >= 13 and not body[0].isdigit():
        return _compressed(body)
    return _uncompressed(body)


def parse_packet(line: str, now_ms: int) -> Optional[Dict[str, Any]]:
    """
    Parse one ``CALL>DEST,PATH:DATA`` packet into a station record.

    Server comments (lines starting with ``#``) and packets without a
    decodable position return None.
    """
    if line.startswith("#"):
        return None
    header, sep, data = line.partition(":")
    if not sep:
        return None
    callsign, arrow, route = header.partition(">")
    callsign = callsign.strip()
    if not arrow or not callsign or len(callsign) > 9:
        return None
    if data[:1] in MIC_E_TYPES:
        return None

    position = parse_position(data)
    if position is None:
        return None
    path = ",".join(route.split(",")[1:]) or None
    return {"callsign": callsign, **position, "lastHeard": now_ms, "path": path}


def split_server(server: str) -> Tuple[str, int]:
    host, _, port = server.rpartition(":")
    return host, int(port)


@register_collector("aprs")
class AprsCollector(StreamingCollector):
    """APRS-IS position reports, latest per callsign."""

    interval_seconds = 180
    ttl_seconds = 300

    def __init__(
        self,
        descriptor: CollectorDescriptor,
        store: CacheStore,
        servers: Sequence[str],
        filter_spec: str,
        connect: Callable[..., Any] = socket.create_connection,
        clock: Callable[[], float] = time.time,
        reconnect_delay: float = RECONNECT_DELAY,
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
        self.filter_spec = filter_spec
        self.connect = connect
        self.stations: Dict[str, Dict[str, Any]] = {}
        self._stations_lock = threading.Lock()

    @classmethod
    def instances(cls, store: CacheStore, settings: Settings) -> List[BaseCollector]:
        if not settings.aprs_enabled:
            return []
        descriptor = CollectorDescriptor(
            name="aprs",
            interval_seconds=cls.interval_seconds,
            ttl_seconds=cls.ttl_seconds,
            cache_key=f"{settings.key_prefix}:aprs:global",
        )
        return [
            cls(
                descriptor,
                store,
                settings.aprs_servers,
                settings.aprs_filter,
                meta_prefix=settings.key_prefix,
            )
        ]

    def add_line(self, line: str) -> bool:
        if line.startswith("#"):
            if "logresp" in line:
                self.logger.debug(f"APRS-IS login response: {line}")
            return False
        station = parse_packet(line, self.now_ms())
        if station is None:
            return False
        with self._stations_lock:
            self.stations[station["callsign"]] = station
        return True

    def prune(self) -> int:
        cutoff = self.now_ms() - MAX_AGE_SECONDS * 1000
        with self._stations_lock:
            old = [c for c, s in self.stations.items() if s["lastHeard"] < cutoff]
            for callsign in old:
                del self.stations[callsign]
        if old:
            self.logger.debug(f"Pruned {len(old)} stations not heard for an hour")
        return len(old)

    def snapshot(self) -> List[Dict[str, Any]]:
        with self._stations_lock:
            stations = list(self.stations.values())
        stations.sort(key=lambda s: s["lastHeard"], reverse=True)
        return stations[:MAX_STATIONS]

    def collect(self) -> List[Dict[str, Any]]:
        self.prune()
        return self.snapshot()

    def _consume(self, server: str) -> None:
        sock = self.connect(split_server(server), timeout=SOCKET_TIMEOUT)
        self._connection = sock
        try:
            sock.sendall(login_line(self.filter_spec).encode("ascii"))
            self.logger.info(f"Connected to {server}")
            with sock.makefile("rb") as stream:
                for raw in stream:
                    if self.stopping:
                        return
                    line = raw.decode("latin-1").strip()
                    if line:
                        self.add_line(line)
        finally:
            sock.close()
        if not self.stopping:
            self.logger.warning(f"APRS-IS connection closed by {server}")
