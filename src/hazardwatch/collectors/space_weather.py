"""
NOAA Space Weather Prediction Center collector.

Combines the latest planetary Kp index, F10.7 solar flux and GOES X-ray
class into one summary document.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..errors import CollectorError
from .http import SourceCollector
from .registry import register_collector

logger = logging.getLogger(__name__)

SWPC_BASE = "https://services.swpc.noaa.gov/json"

ENDPOINTS = {
    "kp": f"{SWPC_BASE}/planetary_k_index_1m.json",
    "flux": f"{SWPC_BASE}/f107_cm_flux.json",
    "xray": f"{SWPC_BASE}/goes/primary/xrays-6-hour.json",
}

KP_BANDS = [
    (4, "Quiet"),
    (5, "Unsettled"),
    (6, "Minor Storm (G1)"),
    (7, "Moderate Storm (G2)"),
    (8, "Strong Storm (G3)"),
    (9, "Severe Storm (G4)"),
]


def kp_description(kp: float) -> str:
    """NOAA G-scale description for a Kp value."""
    level = int(kp)
    for upper, label in KP_BANDS:
        if level < upper:
            return label
    return "Extreme Storm (G5)"


def _latest(entries: Any) -> Optional[Dict[str, Any]]:
    if isinstance(entries, list) and entries and isinstance(entries[-1], dict):
        return entries[-1]
    return None


def _to_float(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def summarize(
    payloads: Dict[str, Any], now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Build the summary from whichever endpoint payloads are available."""
    kp_index = 0.0
    latest_kp = _latest(payloads.get("kp"))
    if latest_kp:
        kp_index = _to_float(latest_kp.get("kp_index", latest_kp.get("kp"))) or 0.0

    latest_flux = _latest(payloads.get("flux"))
    solar_flux = _to_float(latest_flux.get("flux")) if latest_flux else None

    latest_xray = _latest(payloads.get("xray"))
    xray_class = latest_xray.get("current_class") or None if latest_xray else None

    return {
        "kpIndex": kp_index,
        "kpDescription": kp_description(kp_index),
        "solarFlux": solar_flux,
        "xrayFlux": xray_class,
        "timestamp": (now or datetime.now(timezone.utc)).isoformat(),
    }


@register_collector("space-weather")
class SpaceWeatherCollector(SourceCollector):
    """NOAA SWPC Kp index, solar flux and X-ray class summary."""

    collector_name = "space-weather"
    interval_seconds = 300
    ttl_seconds = 1200
    key_suffix = "space-weather:current"

    def collect(self) -> Dict[str, Any]:
        payloads: Dict[str, Any] = {}
        errors: List[CollectorError] = []

        with ThreadPoolExecutor(max_workers=len(ENDPOINTS)) as executor:
            futures = {
                name: executor.submit(self.get_json_isolated, url)
                for name, url in ENDPOINTS.items()
            }
            for name, future in futures.items():
                try:
                    payloads[name] = future.result()
                except CollectorError as e:
                    self.logger.warning(f"Space weather endpoint {name} failed: {e}")
                    errors.append(e)

        if not payloads:
            raise errors[0]
        return summarize(payloads)
