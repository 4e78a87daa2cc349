"""
NOAA GloTEC total electron content collector.

TEC indicates ionospheric electron density, which affects GPS accuracy
and HF radio propagation. GloTEC publishes a listing of GeoJSON point
files; the newest one is gridded.
"""

from typing import Any, Dict, List, Optional

import pandas as pd

from ..errors import TransformError
from .grids import axis_step, bounds, pivot_grid, to_json_rows
from .http import SourceCollector
from .registry import register_collector

GLOTEC_LIST_URL = "https://services.swpc.noaa.gov/products/glotec/geojson_2d_urt.json"
GLOTEC_BASE_URL = "https://services.swpc.noaa.gov"


def latest_entry(listing: Any) -> Dict[str, Any]:
    if not isinstance(listing, list) or not listing:
        raise TransformError("No GloTEC files available")
    latest = listing[-1]
    if not isinstance(latest, dict) or not latest.get("url"):
        raise TransformError(f"Malformed GloTEC listing entry: {latest!r}")
    return latest


def points_frame(geojson: Any) -> pd.DataFrame:
    """(lat, lon, tec) rows from a GloTEC FeatureCollection."""
    features = geojson.get("features") if isinstance(geojson, dict) else None
    if not features:
        raise TransformError("GloTEC file has no features")

    rows: List[Dict[str, Optional[float]]] = []
    for feature in features:
        try:
            lon, lat = feature["geometry"]["coordinates"][:2]
            tec = feature["properties"]["tec"]
        except (KeyError, TypeError, ValueError):
            continue
        rows.append({"lat": lat, "lon": lon, "tec": tec})

    frame = pd.DataFrame(rows, columns=["lat", "lon", "tec"])
    frame = frame.apply(pd.to_numeric, errors="coerce").dropna()
    if frame.empty:
        raise TransformError("GloTEC file has no valid points")
    return frame


def grid_tec(frame: pd.DataFrame, timestamp: str) -> Dict[str, Any]:
    grid = pivot_grid(frame, "tec", lat="lat", lon="lon")
    lat_min, lat_max, lon_min, lon_max = bounds(grid)
    return {
        "grid": to_json_rows(grid, decimals=2),
        "latMin": lat_min,
        "latMax": lat_max,
        "lonMin": lon_min,
        "lonMax": lon_max,
        "latStep": axis_step(grid.index.to_numpy(dtype=float), 2.5),
        "lonStep": axis_step(grid.columns.to_numpy(dtype=float), 5.0),
        "timestamp": timestamp,
        "unit": "TECU",
    }


@register_collector("tec")
class TecCollector(SourceCollector):
    """NOAA SWPC GloTEC ionospheric total electron content grid."""

    collector_name = "tec"
    interval_seconds = 900
    ttl_seconds = 1200
    key_suffix = "tec:global"

    def collect(self) -> Dict[str, Any]:
        latest = latest_entry(self.get_json(GLOTEC_LIST_URL))
        url = latest["url"]
        if not url.startswith("http"):
            url = f"{GLOTEC_BASE_URL}{url}"
        self.logger.debug(f"Fetching GloTEC file for {latest.get('time_tag')}")

        frame = points_frame(self.get_json(url))
        return grid_tec(frame, latest.get("time_tag") or "")

    def count_records(self, value: Dict[str, Any]) -> int:
        return sum(len(row) for row in value["grid"])
