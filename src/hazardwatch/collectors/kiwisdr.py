"""
Public KiwiSDR receiver stations.

The public station list is an HTML page with one ``cl-entry`` block per
receiver, its attributes embedded in ``<!-- key=value -->`` comments.
Stations are published in a compact form with short keys; optional
attributes are omitted when absent.
"""

import re
from typing import Any, Dict, List, Optional

from .http import SourceCollector
from .registry import register_collector

KIWISDR_URL = "http://kiwisdr.com/.public/"
MAX_NAME_LENGTH = 200

_ENTRY = re.compile(r"<div class='cl-entry[^']*'>(.*?)</div>\s*</div>", re.S)
_GPS = re.compile(r"\(([^,]+),\s*([^)]+)\)")
_HREF = re.compile(r"<a href='([^']+)' target='_blank'>")


def _comment(block: str, key: str) -> Optional[str]:
    match = re.search(rf"<!-- {re.escape(key)}=([^>]+) -->", block)
    return match.group(1).strip() if match else None


def _to_int(value: Optional[str], default: Optional[int]) -> Optional[int]:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def parse_station(block: str) -> Optional[Dict[str, Any]]:
    """
    Parse one ``cl-entry`` block.

    Returns:
        Compact station record, or None without coordinates or a link
    """
    gps = _GPS.search(_comment(block, "gps") or "")
    if not gps:
        return None
    try:
        latitude, longitude = float(gps.group(1)), float(gps.group(2))
    except ValueError:
        return None
    href = _HREF.search(block)
    if not href:
        return None
    url = href.group(1)

    name = _comment(block, "name") or url
    if len(name) > MAX_NAME_LENGTH:
        name = name[:MAX_NAME_LENGTH] + "..."
    snr = _comment(block, "snr")

    station: Dict[str, Any] = {
        "n": name,
        "u": url if url.startswith("http") else f"http://{url}",
        "la": round(latitude, 3),
        "lo": round(longitude, 3),
        "us": _to_int(_comment(block, "users"), 0),
        "mx": _to_int(_comment(block, "users_max"), 4),
        "of": _comment(block, "offline") == "yes",
    }
    optional = {
        "an": _comment(block, "antenna"),
        "lc": _comment(block, "loc"),
        # "all,hf" pair; the first figure covers the whole band
        "sn": _to_int(snr.split(",")[0], None) if snr else None,
    }
    station.update({k: v for k, v in optional.items() if v not in (None, "")})
    return station


def parse_stations(html: str) -> List[Dict[str, Any]]:
    stations = (parse_station(block) for block in _ENTRY.findall(html))
    return [s for s in stations if s is not None]


@register_collector("kiwisdr")
class KiwiSdrCollector(SourceCollector):
    """KiwiSDR receiver locations and occupancy."""

    collector_name = "kiwisdr"
    interval_seconds = 1800
    ttl_seconds = 5400
    key_suffix = "kiwisdr:stations"
    timeout_seconds = 60.0

    def collect(self) -> List[Dict[str, Any]]:
        body = self.get_bytes(KIWISDR_URL, headers={"Accept": "text/html"})
        stations = parse_stations(body.decode("utf-8", errors="replace"))
        self.logger.debug(f"Parsed {len(stations)} KiwiSDR stations")
        return stations
