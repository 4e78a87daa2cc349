"""
Portuguese civil protection incidents from Fogos.pt.

Active incidents and a search of the last 24 hours are fetched in
parallel and merged by incident id, active entries taking precedence.
Either endpoint may fail on its own; only losing both fails the run.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ..errors import CollectorError
from .http import SourceCollector
from .registry import register_collector

FOGOS_ACTIVE_URL = "https://api.fogos.pt/v2/incidents/active"
FOGOS_SEARCH_URL = "https://api.fogos.pt/v2/incidents/search"
SEARCH_LIMIT = 100
WINDOW = timedelta(hours=24)


def _incidents(payload: Any) -> List[Dict[str, Any]]:
    if not isinstance(payload, dict) or not payload.get("success"):
        return []
    data = payload.get("data")
    return [i for i in data if isinstance(i, dict)] if isinstance(data, list) else []


def _seconds(incident: Dict[str, Any]) -> Optional[float]:
    stamp = incident.get("dateTime")
    if not isinstance(stamp, dict):
        return None
    try:
        return float(stamp.get("sec"))
    except (TypeError, ValueError):
        return None


def merge_incidents(
    active: List[Dict[str, Any]], recent: List[Dict[str, Any]], now: datetime
) -> List[Dict[str, Any]]:
    """
    Merge active and recent incidents by id.

    Recent incidents older than 24 hours are dropped; an active incident
    replaces a recent one with the same id.
    """
    cutoff = (now - WINDOW).timestamp()
    by_id: Dict[Any, Dict[str, Any]] = {}
    for incident in recent:
        sec = _seconds(incident)
        if sec is not None and sec >= cutoff:
            by_id[incident.get("id")] = incident
    for incident in active:
        by_id[incident.get("id")] = incident
    return list(by_id.values())


@register_collector("prociv")
class ProcivCollector(SourceCollector):
    """Fogos.pt active and recent incidents."""

    collector_name = "prociv"
    interval_seconds = 120
    ttl_seconds = 600
    key_suffix = "prociv:incidents"
    timeout_seconds = 15.0

    def collect(self) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        after = (now - WINDOW).strftime("%Y-%m-%d")
        urls = {
            "active": FOGOS_ACTIVE_URL,
            "search": f"{FOGOS_SEARCH_URL}?after={after}&limit={SEARCH_LIMIT}",
        }
        payloads: Dict[str, Any] = {}
        errors: List[CollectorError] = []

        with ThreadPoolExecutor(max_workers=len(urls)) as executor:
            futures = {
                name: executor.submit(self.get_json_isolated, url)
                for name, url in urls.items()
            }
            for name, future in futures.items():
                try:
                    payloads[name] = future.result()
                except CollectorError as e:
                    self.logger.warning(f"Fogos.pt {name} endpoint failed: {e}")
                    errors.append(e)

        if not payloads:
            raise errors[0]
        active = _incidents(payloads.get("active"))
        recent = _incidents(payloads.get("search"))
        merged = merge_incidents(active, recent, now)
        self.logger.debug(
            f"Fogos.pt incidents active={len(active)} search={len(recent)} "
            f"merged={len(merged)}"
        )
        return {"success": True, "data": merged, "fetchedAt": now.isoformat()}
