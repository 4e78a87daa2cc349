"""
GDACS (Global Disaster Alert and Coordination System) collector.

GDACS returns several features per event: a point centroid, affected
area polygons and, for tropical cyclones, one small polygon per track
position plus a forecast uncertainty cone. Current point features become
event markers; cyclone track positions and cones are attached to their
event's marker.
"""

from __future__ import annotations

import re
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..errors import TransformError
from .http import SourceCollector
from .registry import register_collector

GDACS_API_URL = "https://www.gdacs.org/gdacsapi/api/events/geteventlist/MAP"

TRACK_CLASS_PREFIX = "Point_Polygon_Point_"
CONE_CLASS = "Poly_Cones"

_LABEL = re.compile(r"(\d{2})/(\d{2})\s+(\d{2}):(\d{2})")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TrackPoint(_CamelModel):
    lng: float
    lat: float
    time: str
    is_forecast: bool
    index: int


class CycloneData(_CamelModel):
    track_points: List[TrackPoint] = []
    forecast_cone: Optional[List[List[float]]] = None
    wind_speed: float = 0.0


class GdacsEvent(_CamelModel):
    id: str
    event_type: str
    name: str
    description: str = ""
    alert_level: str = ""
    country: str = ""
    countries: List[str] = []
    lat: float
    lng: float
    from_date: str = ""
    to_date: str = ""
    severity: float = 0.0
    severity_text: str = ""
    icon_url: str = ""
    report_url: str = ""
    is_current: bool = True
    cyclone_data: Optional[CycloneData] = None


def centroid(geometry: Dict[str, Any]) -> Tuple[float, float]:
    """(lng, lat) of a point, or the vertex mean of a (multi)polygon."""
    coords = geometry.get("coordinates")
    if geometry.get("type") == "Point":
        return float(coords[0]), float(coords[1])

    def flatten(node: Any) -> Iterable[List[float]]:
        if isinstance(node, list) and node and isinstance(node[0], (int, float)):
            yield node
        elif isinstance(node, list):
            for child in node:
                yield from flatten(child)

    points = list(flatten(coords))
    if not points:
        return 0.0, 0.0
    return (
        sum(p[0] for p in points) / len(points),
        sum(p[1] for p in points) / len(points),
    )


def is_forecast_label(label: str, now: datetime) -> bool:
    """
    Whether a "DD/MM HH:MM UTC" track label lies after now.

    Labels carry no year. A month more than six months before the
    current one is taken to be in the next year (December to January),
    one more than six months after it in the previous year.
    """
    match = _LABEL.search(label or "")
    if not match:
        return False
    day, month, hour, minute = (int(g) for g in match.groups())
    year = now.year
    if month < now.month - 6:
        year += 1
    elif month > now.month + 6:
        year -= 1
    try:
        point_time = datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
    except ValueError:
        return False
    return point_time > now


def _is_current(props: Dict[str, Any]) -> bool:
    return str(props.get("iscurrent", "")).lower() == "true"


def extract_cyclones(
    features: List[Dict[str, Any]], now: datetime
) -> Dict[Any, CycloneData]:
    """Collect track points and forecast cones per cyclone event id."""
    cyclones: Dict[Any, CycloneData] = {}
    for feature in features:
        props = feature.get("properties") or {}
        if not _is_current(props) or props.get("eventtype") != "TC":
            continue

        event_id = props.get("eventid")
        cyclone = cyclones.setdefault(
            event_id,
            CycloneData(
                wind_speed=(props.get("severitydata") or {}).get("severity") or 0.0
            ),
        )
        geometry = feature.get("geometry") or {}
        cls = props.get("Class") or ""

        if cls.startswith(TRACK_CLASS_PREFIX) and geometry.get("type") == "Polygon":
            suffix = cls.rsplit("_", 1)[-1]
            ring = geometry["coordinates"][0]
            label = props.get("polygonlabel") or ""
            cyclone.track_points.append(
                TrackPoint(
                    lng=sum(p[0] for p in ring) / len(ring),
                    lat=sum(p[1] for p in ring) / len(ring),
                    time=label,
                    is_forecast=is_forecast_label(label, now),
                    index=int(suffix) if suffix.isdigit() else 0,
                )
            )
        elif cls == CONE_CLASS and geometry.get("type") == "Polygon":
            ring = geometry["coordinates"][0]
            cyclone.forecast_cone = [[p[0], p[1]] for p in ring]

    for cyclone in cyclones.values():
        cyclone.track_points.sort(key=lambda p: p.index)
    return cyclones


def build_events(
    features: List[Dict[str, Any]], now: datetime
) -> List[GdacsEvent]:
    """Turn current point features into deduplicated events."""
    cyclones = extract_cyclones(features, now)
    seen = set()
    events: List[GdacsEvent] = []

    for feature in features:
        props = feature.get("properties") or {}
        geometry = feature.get("geometry") or {}
        if not _is_current(props):
            continue

        geo_class = props.get("Class") or geometry.get("type")
        key = (
            props.get("eventtype"),
            props.get("eventid"),
            props.get("episodeid"),
            geo_class,
        )
        if key in seen:
            continue
        seen.add(key)
        if geometry.get("type") != "Point":
            continue

        lng, lat = centroid(geometry)
        severity = props.get("severitydata") or {}
        affected = props.get("affectedcountries") or []
        event_id = "-".join(
            str(props.get(k)) for k in ("eventtype", "eventid", "episodeid")
        )
        event = GdacsEvent(
            id=event_id,
            event_type=props.get("eventtype") or "",
            name=props.get("name")
            or props.get("eventname")
            or props.get("description")
            or "",
            description=props.get("description") or "",
            alert_level=props.get("alertlevel") or "",
            country=props.get("country") or "",
            countries=[c.get("countryname", "") for c in affected]
            or [props.get("country") or ""],
            lat=lat,
            lng=lng,
            from_date=props.get("fromdate") or "",
            to_date=props.get("todate") or "",
            severity=severity.get("severity") or 0.0,
            severity_text=severity.get("severitytext") or "",
            icon_url=props.get("icon") or "",
            report_url=(props.get("url") or {}).get("report") or "",
            is_current=True,
        )
        if event.event_type == "TC":
            cyclone = cyclones.get(props.get("eventid"))
            if cyclone and cyclone.track_points:
                event.cyclone_data = cyclone
        events.append(event)

    return events


@register_collector("gdacs")
class GdacsCollector(SourceCollector):
    """Current GDACS disaster events with cyclone tracks and cones."""

    collector_name = "gdacs"
    interval_seconds = 600
    ttl_seconds = 600
    key_suffix = "gdacs:events"

    now: Callable[[], datetime] = staticmethod(lambda: datetime.now(timezone.utc))

    def collect(self) -> Dict[str, Any]:
        body = self.get_json(GDACS_API_URL)
        features = body.get("features") if isinstance(body, dict) else None
        if not isinstance(features, list):
            raise TransformError("GDACS response has no feature list")

        now = self.now()
        events = build_events(features, now)
        by_type = Counter(e.event_type for e in events)
        self.logger.info(
            f"GDACS: {len(events)} current events "
            + " ".join(f"{t}={n}" for t, n in sorted(by_type.items()))
        )
        return {
            "events": [e.model_dump(by_alias=True, exclude_none=True) for e in events],
            "fetchedAt": now.isoformat(),
        }

    def count_records(self, value: Dict[str, Any]) -> int:
        return len(value["events"])
