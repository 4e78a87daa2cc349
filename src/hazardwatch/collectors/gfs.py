"""
NOAA GFS 0.25 degree collectors.

Each product is its own collector with its own cache key, fetched as a
small GRIB2 subset from the NOMADS filter service and decoded locally.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import numpy as np

from ..cache.base import CacheStore
from ..errors import TransformError
from ..formats import grib2
from ..settings import Settings
from .base import BaseCollector, CollectorDescriptor
from .grids import to_json_values, velocity_layer
from .http import HttpCollector, policy_from_settings
from .registry import register_collector

NOMADS_FILTER_URL = "https://nomads.ncep.noaa.gov/cgi-bin/filter_gfs_0p25.pl"

# Runs at 00/06/12/18 UTC become available roughly five hours later
PUBLICATION_DELAY = timedelta(hours=5)


@dataclass(frozen=True)
class GfsVariable:
    param: str
    level: str
    category: int
    number: int


TMP = GfsVariable("TMP", "2_m_above_ground", 0, 0)
RH = GfsVariable("RH", "2_m_above_ground", 1, 1)
PRATE = GfsVariable("PRATE", "surface", 1, 7)
TCDC = GfsVariable("TCDC", "entire_atmosphere", 6, 1)
CAPE = GfsVariable("CAPE", "surface", 7, 6)
UGRD = GfsVariable("UGRD", "10_m_above_ground", 2, 2)
VGRD = GfsVariable("VGRD", "10_m_above_ground", 2, 3)
TOZNE = GfsVariable(
    "TOZNE", "entire_atmosphere_(considered_as_a_single_layer)", 14, 0
)


def latest_run(now: datetime) -> Tuple[str, int]:
    """(YYYYMMDD, run hour) of the newest GFS run expected to be published."""
    available = now.astimezone(timezone.utc) - PUBLICATION_DELAY
    return available.strftime("%Y%m%d"), available.hour // 6 * 6


def build_gfs_url(
    variables: List[GfsVariable], forecast_hour: int = 0, now: Optional[datetime] = None
) -> str:
    day, run = latest_run(now or datetime.now(timezone.utc))
    params: Dict[str, str] = {
        "dir": f"/gfs.{day}/{run:02d}/atmos",
        "file": f"gfs.t{run:02d}z.pgrb2.0p25.f{forecast_hour:03d}",
    }
    for level in dict.fromkeys(v.level for v in variables):
        params[f"lev_{level}"] = "on"
    for v in variables:
        params[f"var_{v.param}"] = "on"
    return f"{NOMADS_FILTER_URL}?{urlencode(params)}"


def solar_zenith(lats: np.ndarray, lons: np.ndarray, when: datetime) -> np.ndarray:
    """Solar zenith angle in degrees on a lat x lon mesh."""
    day_of_year = when.timetuple().tm_yday
    hour = when.hour + when.minute / 60.0
    declination = np.radians(23.45 * np.sin(2 * np.pi * (284 + day_of_year) / 365))
    lons = np.where(lons > 180, lons - 360, lons)
    hour_angle = np.radians((hour - 12 + lons / 15.0) * 15.0)
    lat = np.radians(lats)[:, None]
    cos_zenith = np.sin(lat) * np.sin(declination) + np.cos(lat) * np.cos(
        declination
    ) * np.cos(hour_angle)[None, :]
    return np.degrees(np.arccos(np.clip(cos_zenith, -1.0, 1.0)))


def uv_index(ozone: np.ndarray, zenith: np.ndarray) -> np.ndarray:
    """Clear-sky UV index from total ozone (DU) and solar zenith angle."""
    cos_zenith = np.clip(np.cos(np.radians(zenith)), 0.0, None)
    valid = np.isfinite(ozone) & (ozone > 0)
    safe_ozone = np.where(valid, ozone, 300.0)
    uv = 12.5 * cos_zenith**2.42 * (safe_ozone / 300.0) ** -1.23
    uv = np.where(zenith >= 90, 0.0, np.maximum(uv, 0.0))
    return np.where(valid, uv, np.nan)


@dataclass(frozen=True)
class GfsProduct:
    """One published GFS layer."""

    name: str
    title: str
    unit: str
    variables: Tuple[GfsVariable, ...]
    forecast_hour: int = 0
    convert: Optional[Callable[[np.ndarray], np.ndarray]] = field(
        default=None, compare=False
    )


PRODUCTS = (
    GfsProduct(
        "temperature", "Temperature", "°C", (TMP,), convert=lambda k: k - 273.15
    ),
    GfsProduct("humidity", "Relative Humidity", "%", (RH,)),
    # PRATE is kg/m2/s, i.e. mm/s; f001 carries it, the analysis does not
    GfsProduct(
        "precipitation", "Precipitation", "mm/h", (PRATE,), 1, lambda r: r * 3600.0
    ),
    GfsProduct("cloud-cover", "Cloud Cover", "%", (TCDC,)),
    GfsProduct("cape", "CAPE", "J/kg", (CAPE,)),
    GfsProduct("wind", "Wind", "m.s-1", (UGRD, VGRD)),
    GfsProduct("uv-index", "UV Index", "UV Index", (TOZNE,)),
)


@register_collector("gfs")
class GfsCollector(HttpCollector):
    """NOAA GFS 0.25 degree layers decoded from GRIB2, one collector each."""

    interval_seconds = 1800
    ttl_seconds = 5400
    timeout_seconds = 60.0

    def __init__(
        self,
        descriptor: CollectorDescriptor,
        store: CacheStore,
        product: GfsProduct,
        **kwargs,
    ):
        super().__init__(descriptor, store, **kwargs)
        self.product = product
        self.now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)

    @classmethod
    def instances(cls, store: CacheStore, settings: Settings) -> List[BaseCollector]:
        policy = policy_from_settings(settings, timeout_seconds=cls.timeout_seconds)
        return [
            cls(
                CollectorDescriptor(
                    name=f"gfs-{product.name}",
                    interval_seconds=cls.interval_seconds,
                    ttl_seconds=cls.ttl_seconds,
                    cache_key=f"{settings.key_prefix}:gfs:{product.name}",
                ),
                store,
                product,
                policy=policy,
                user_agent=settings.user_agent,
                meta_prefix=settings.key_prefix,
            )
            for product in PRODUCTS
        ]

    def collect(self) -> Any:
        product = self.product
        now = self.now()
        url = build_gfs_url(list(product.variables), product.forecast_hour, now)
        fields = grib2.decode(self.get_bytes(url))
        self.logger.debug(f"Decoded {len(fields)} GRIB2 field(s) for {self.name}")

        found = []
        for variable in product.variables:
            match = grib2.find_field(fields, variable.category, variable.number)
            if match is None or not match.has_data:
                raise TransformError(
                    f"{variable.param} field not found in GFS response"
                )
            found.append(match)

        if product.name == "wind":
            return self.wind_layers(found[0], found[1])
        if product.name == "uv-index":
            return self.uv_layer(found[0], now)
        values = found[0].values
        if product.convert is not None:
            values = product.convert(values)
        return self.scalar_layer(found[0], values)

    def scalar_layer(
        self, source: grib2.GribField, values: np.ndarray
    ) -> Dict[str, Any]:
        return {
            "header": source.header(),
            "data": to_json_values(values, decimals=2),
            "unit": self.product.unit,
            "name": self.product.title,
            "referenceTime": source.reference_time.isoformat(),
            "forecastHour": self.product.forecast_hour,
        }

    def wind_layers(
        self, u: grib2.GribField, v: grib2.GribField
    ) -> List[Dict[str, Any]]:
        header = u.header()
        return [
            velocity_layer(
                header,
                2,
                2,
                "U-component_of_wind",
                "m.s-1",
                to_json_values(u.values, decimals=2),
            ),
            velocity_layer(
                header,
                2,
                3,
                "V-component_of_wind",
                "m.s-1",
                to_json_values(v.values, decimals=2),
            ),
        ]

    def uv_layer(self, ozone: grib2.GribField, now: datetime) -> Dict[str, Any]:
        header = ozone.header()
        lats = header["la1"] - np.arange(header["ny"]) * header["dy"]
        lons = header["lo1"] + np.arange(header["nx"]) * header["dx"]
        uv = uv_index(ozone.values, solar_zenith(lats, lons, now))
        return self.scalar_layer(ozone, uv)

    def count_records(self, value: Any) -> int:
        layer = value[0] if isinstance(value, list) else value
        return layer["header"]["nx"] * layer["header"]["ny"]
