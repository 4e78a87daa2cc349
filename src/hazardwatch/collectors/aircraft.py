"""
Global aircraft positions from the OpenSky Network ADS-B API.

With an OAuth client configured (``HAZARDWATCH_OPENSKY_CLIENT_ID`` and
``HAZARDWATCH_OPENSKY_CLIENT_SECRET``) requests carry a bearer token
obtained through the client-credentials grant, which raises the daily
rate limit; without one, or when the token cannot be obtained, access is
anonymous.
"""

import time
from typing import Any, Callable, Dict, List, Optional

from ..cache.base import CacheStore
from ..errors import CollectorError
from ..fetch.retry import fetch_json
from ..settings import Settings
from .base import BaseCollector
from .http import SourceCollector
from .registry import register_collector

STATES_URL = "https://opensky-network.org/api/states/all"
TOKEN_URL = (
    "https://auth.opensky-network.org/auth/realms/opensky-network"
    "/protocol/openid-connect/token"
)
# Tokens expire after 30 minutes
TOKEN_LIFETIME_SECONDS = 25 * 60

# Indices into an OpenSky state vector
ICAO24, CALLSIGN, ORIGIN_COUNTRY, LAST_CONTACT = 0, 1, 2, 4
LONGITUDE, LATITUDE, BARO_ALTITUDE, ON_GROUND = 5, 6, 7, 8
VELOCITY, TRUE_TRACK, VERTICAL_RATE = 9, 10, 11


def parse_state(state: List[Any]) -> Optional[Dict[str, Any]]:
    """Compact aircraft record from one state vector, None without a position."""
    if len(state) <= VERTICAL_RATE:
        return None
    if state[LATITUDE] is None or state[LONGITUDE] is None:
        return None
    aircraft: Dict[str, Any] = {
        "i": state[ICAO24],
        "la": round(state[LATITUDE], 3),
        "lo": round(state[LONGITUDE], 3),
        "g": bool(state[ON_GROUND]),
        "t": state[LAST_CONTACT],
        "o": state[ORIGIN_COUNTRY],
    }
    callsign = (state[CALLSIGN] or "").strip()
    if callsign:
        aircraft["c"] = callsign
    for key, index in (
        ("al", BARO_ALTITUDE),
        ("v", VELOCITY),
        ("h", TRUE_TRACK),
        ("vr", VERTICAL_RATE),
    ):
        if state[index] is not None:
            aircraft[key] = round(state[index])
    return aircraft


def parse_states(payload: Any) -> List[Dict[str, Any]]:
    states = payload.get("states") if isinstance(payload, dict) else None
    if not states:
        return []
    parsed = (parse_state(s) for s in states if isinstance(s, list))
    return [a for a in parsed if a is not None]


@register_collector("aircraft")
class AircraftCollector(SourceCollector):
    """OpenSky state vectors for every tracked aircraft."""

    collector_name = "aircraft"
    interval_seconds = 60
    ttl_seconds = 120
    key_suffix = "aircraft:global"
    timeout_seconds = 30.0

    def __init__(
        self,
        *args,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.clock = clock
        self._token: Optional[str] = None
        self._token_expires = 0.0

    @classmethod
    def instances(cls, store: CacheStore, settings: Settings) -> List[BaseCollector]:
        return [
            cls(
                cls.build_descriptor(settings),
                store,
                policy=cls.build_policy(settings),
                user_agent=settings.user_agent,
                meta_prefix=settings.key_prefix,
                client_id=settings.opensky_client_id,
                client_secret=settings.opensky_client_secret,
            )
        ]

    def access_token(self) -> Optional[str]:
        """Cached bearer token, None for anonymous access."""
        if not self.client_id or not self.client_secret:
            return None
        if self._token and self.clock() < self._token_expires:
            return self._token

        target = self.target(
            TOKEN_URL,
            method="POST",
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            secrets=[self.client_secret],
        )
        try:
            payload = fetch_json(target, self.policy, self.session, self.sleep)
        except CollectorError as e:
            self.logger.warning(f"OpenSky token request failed, using anonymous: {e}")
            return None
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            self.logger.warning("OpenSky token response had no access_token")
            return None
        self._token = token
        self._token_expires = self.clock() + TOKEN_LIFETIME_SECONDS
        self.logger.info("Obtained OpenSky OAuth token")
        return token

    def collect(self) -> List[Dict[str, Any]]:
        token = self.access_token()
        headers = {"Authorization": f"Bearer {token}"} if token else None
        payload = self.get_json(
            STATES_URL, headers=headers, secrets=[token] if token else []
        )
        aircraft = parse_states(payload)
        self.logger.debug(f"Collected {len(aircraft)} aircraft positions")
        return aircraft
