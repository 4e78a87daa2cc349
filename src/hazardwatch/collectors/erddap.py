"""
Ocean grids served by ERDDAP griddap endpoints.

ERDDAP's ``.json`` output is a flat table of (time, latitude, longitude,
variable...) rows. Each collector here pivots that table into a regular
grid for map overlays.
"""

from typing import Any, Dict, List

import pandas as pd

from ..errors import TransformError
from .grids import (
    frame_from_table,
    grid_header,
    pivot_grid,
    to_json_values,
    velocity_layer,
)
from .http import SourceCollector
from .registry import register_collector


class ErddapGridCollector(SourceCollector):
    """
    Base for collectors reading one ERDDAP griddap query.
    """

    erddap_url: str = ""
    variables: List[str] = []
    timeout_seconds = 120.0

    def fetch_frame(self) -> pd.DataFrame:
        body = self.get_json(self.erddap_url)
        table = body.get("table") if isinstance(body, dict) else None
        if not table or not table.get("rows"):
            raise TransformError("Empty ERDDAP response")
        frame = frame_from_table(table, ["latitude", "longitude"] + self.variables)
        self.logger.debug(f"Parsed {len(frame)} ERDDAP rows for {self.name}")
        return frame

    def count_records(self, value: Any) -> int:
        if isinstance(value, dict) and "header" in value:
            return value["header"]["nx"] * value["header"]["ny"]
        return super().count_records(value)


@register_collector("sst")
class SstCollector(ErddapGridCollector):
    """NOAA OISST v2.1 sea surface temperature, 0.25 degree daily."""

    collector_name = "sst"
    interval_seconds = 1800
    ttl_seconds = 5400
    key_suffix = "sst:global"
    erddap_url = (
        "https://coastwatch.pfeg.noaa.gov/erddap/griddap/ncdcOisst21Agg.json"
        "?sst[(last)][(0)][(-89.875):(89.875)][(0.125):(359.875)]"
    )
    variables = ["sst"]

    def collect(self) -> Dict[str, Any]:
        grid = pivot_grid(self.fetch_frame(), "sst")
        return {
            "header": grid_header(grid, 0.25),
            "data": to_json_values(grid, decimals=2),
            "unit": "°C",
            "name": "Sea Surface Temperature",
        }


@register_collector("waves")
class WavesCollector(ErddapGridCollector):
    """PacIOOS WAVEWATCH III significant wave height, 0.5 degree."""

    collector_name = "waves"
    interval_seconds = 1800
    ttl_seconds = 5400
    key_suffix = "waves:global"
    erddap_url = (
        "https://pae-paha.pacioos.hawaii.edu/erddap/griddap/ww3_global.json"
        "?Thgt[(last)][(0)][(-77.5):(77.5)][(0):(359.5)]"
    )
    variables = ["Thgt"]

    def collect(self) -> Dict[str, Any]:
        frame = self.fetch_frame()
        grid = pivot_grid(frame, "Thgt")
        times = frame["time"].dropna() if "time" in frame else pd.Series(dtype=object)
        return {
            "header": grid_header(grid, 0.5),
            "heightData": to_json_values(grid, decimals=2),
            "time": str(times.iloc[0]) if len(times) else "",
            "unit": "m",
            "name": "Significant Wave Height",
        }


@register_collector("ocean-currents")
class OceanCurrentsCollector(ErddapGridCollector):
    """NOAA CoastWatch geostrophic surface currents as a velocity field."""

    collector_name = "ocean-currents"
    interval_seconds = 1800
    ttl_seconds = 5400
    key_suffix = "ocean-currents:global"
    erddap_url = (
        "https://upwell.pfeg.noaa.gov/erddap/griddap/nesdisSSH1day.json"
        "?ugos[(last)][(-90):(90)][(-180):(180)],vgos[(last)][(-90):(90)][(-180):(180)]"
    )
    variables = ["ugos", "vgos"]

    def collect(self) -> List[Dict[str, Any]]:
        frame = self.fetch_frame()
        # Sampled cells with a null velocity publish as 0
        frame[self.variables] = frame[self.variables].fillna(0.0)
        u = pivot_grid(frame, "ugos")
        v = pivot_grid(frame, "vgos")
        if u.shape[0] < 2 or u.shape[1] < 2:
            raise TransformError("Insufficient grid points in ERDDAP data")
        header = grid_header(u, 0.25)
        return [
            velocity_layer(
                header,
                2,
                2,
                "Eastward_sea_water_velocity",
                "m.s-1",
                to_json_values(u, decimals=3),
            ),
            velocity_layer(
                header,
                2,
                3,
                "Northward_sea_water_velocity",
                "m.s-1",
                to_json_values(v, decimals=3),
            ),
        ]

    def count_records(self, value: Any) -> int:
        return value[0]["header"]["nx"] * value[0]["header"]["ny"]
