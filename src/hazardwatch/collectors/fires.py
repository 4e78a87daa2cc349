"""
NASA FIRMS active fire hotspots (VIIRS S-NPP, last 24 hours).

FIRMS serves CSV and requires a MAP key, so the collector is only built
when ``HAZARDWATCH_FIRMS_MAP_KEY`` is set.
"""

import io
from typing import Any, Dict, List

import pandas as pd

from ..cache.base import CacheStore
from ..errors import TransformError
from ..settings import Settings
from .base import BaseCollector
from .http import SourceCollector
from .registry import register_collector

FIRMS_SOURCE = "VIIRS_SNPP_NRT"
FIRMS_DAYS = 1
FIRMS_URL = (
    "https://firms.modaps.eosdis.nasa.gov/api/area/csv/{key}/{source}/world/{days}"
)

HOTSPOT_DEFAULTS = {
    "confidence": "nominal",
    "satellite": "Unknown",
    "instrument": "Unknown",
    "acq_date": "",
    "acq_time": "",
    "daynight": "D",
}


def _numeric(frame: pd.DataFrame, column: str) -> pd.Series:
    if column not in frame:
        return pd.Series(float("nan"), index=frame.index)
    return pd.to_numeric(frame[column], errors="coerce")


def parse_hotspots(csv_bytes: bytes) -> List[Dict[str, Any]]:
    """Hotspot records from a FIRMS CSV, rows without coordinates dropped."""
    if not csv_bytes.strip():
        return []
    try:
        frame = pd.read_csv(io.BytesIO(csv_bytes), dtype=str)
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise TransformError(f"Unreadable FIRMS CSV: {e}") from e

    frame.columns = [c.strip() for c in frame.columns]
    if "latitude" not in frame or "longitude" not in frame:
        raise TransformError("FIRMS CSV lacks latitude/longitude columns")

    # MODIS reports "brightness", VIIRS "bright_ti4"
    brightness_column = "brightness" if "brightness" in frame else "bright_ti4"
    out = pd.DataFrame(
        {
            "latitude": _numeric(frame, "latitude"),
            "longitude": _numeric(frame, "longitude"),
            "brightness": _numeric(frame, brightness_column),
            "frp": _numeric(frame, "frp"),
        }
    )
    out[["brightness", "frp"]] = out[["brightness", "frp"]].fillna(0.0)
    for column, default in HOTSPOT_DEFAULTS.items():
        if column not in frame:
            out[column] = default
            continue
        out[column] = frame[column].fillna(default).astype(str).str.strip()

    out = out.dropna(subset=["latitude", "longitude"])
    return out.to_dict(orient="records")


@register_collector("fires")
class FiresCollector(SourceCollector):
    """NASA FIRMS VIIRS active fire hotspots."""

    collector_name = "fires"
    interval_seconds = 600
    ttl_seconds = 1200
    key_suffix = f"fires:{FIRMS_SOURCE}:{FIRMS_DAYS}"
    timeout_seconds = 60.0

    def __init__(self, *args, map_key: str = "", **kwargs):
        super().__init__(*args, **kwargs)
        self.map_key = map_key

    @classmethod
    def instances(cls, store: CacheStore, settings: Settings) -> List[BaseCollector]:
        if not settings.firms_map_key:
            return []
        return [
            cls(
                cls.build_descriptor(settings),
                store,
                policy=cls.build_policy(settings),
                user_agent=settings.user_agent,
                meta_prefix=settings.key_prefix,
                map_key=settings.firms_map_key,
            )
        ]

    def collect(self) -> List[Dict[str, Any]]:
        url = FIRMS_URL.format(key=self.map_key, source=FIRMS_SOURCE, days=FIRMS_DAYS)
        body = self.get_bytes(
            url, headers={"Accept": "text/csv"}, secrets=[self.map_key]
        )
        return parse_hotspots(body)
