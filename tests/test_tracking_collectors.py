"""
Tests for the station, incident and aircraft collectors.
"""

from datetime import datetime, timedelta, timezone

import requests

from conftest import FakeClock, FakeResponse, FakeSession, RoutedSession
from hazardwatch.collectors.aircraft import (
    STATES_URL,
    TOKEN_LIFETIME_SECONDS,
    TOKEN_URL,
    AircraftCollector,
    parse_state,
    parse_states,
)
from hazardwatch.collectors.kiwisdr import KIWISDR_URL, KiwiSdrCollector, parse_stations
from hazardwatch.collectors.prociv import (
    FOGOS_ACTIVE_URL,
    FOGOS_SEARCH_URL,
    ProcivCollector,
    merge_incidents,
)
from hazardwatch.errors import ErrorKind


def build(collector_class, settings, store, session, sleep, **kwargs):
    return collector_class(
        collector_class.build_descriptor(settings),
        store,
        policy=collector_class.build_policy(settings),
        session=session,
        sleep=sleep,
        session_factory=lambda: session,
        **kwargs,
    )


KIWI_HTML = """
<html><body>
<div class='cl-entry cl-online'><div class='cl-info'>
  <a href='http://kiwi.example.org:8073' target='_blank'>Kiwi One</a>
  <!-- name=Kiwi One, Lisbon -->
  <!-- gps=(38.7223, -9.1393) -->
  <!-- users=2 -->
  <!-- users_max=8 -->
  <!-- antenna=Dipole -->
  <!-- loc=Lisbon, PT -->
  <!-- snr=45,40 -->
  <!-- offline=no -->
</div>
</div>
<div class='cl-entry'><div class='cl-info'>
  <!-- name=No link -->
  <!-- gps=(10.0, 20.0) -->
</div>
</div>
<div class='cl-entry cl-offline'><div class='cl-info'>
  <a href='kiwi3.example.org:8073' target='_blank'>kiwi3</a>
  <!-- gps=(-33.8688, 151.2093) -->
  <!-- users=n/a -->
  <!-- offline=yes -->
</div>
</div>
<div class='cl-entry'><div class='cl-info'>
  <a href='http://nogps.example.org' target='_blank'>x</a>
  <!-- gps=unknown -->
</div>
</div>
</body></html>
"""


class TestKiwiSdr:
    """Test cases for the KiwiSDR station list."""

    def test_parse_stations(self):
        """Test compact records and that entries without link or GPS drop."""
        stations = parse_stations(KIWI_HTML)

        assert stations == [
            {
                "n": "Kiwi One, Lisbon",
                "u": "http://kiwi.example.org:8073",
                "la": 38.722,
                "lo": -9.139,
                "us": 2,
                "mx": 8,
                "of": False,
                "an": "Dipole",
                "lc": "Lisbon, PT",
                "sn": 45,
            },
            {
                "n": "kiwi3.example.org:8073",
                "u": "http://kiwi3.example.org:8073",
                "la": -33.869,
                "lo": 151.209,
                "us": 0,
                "mx": 4,
                "of": True,
            },
        ]

    def test_long_names_truncated(self):
        """Test that names over 200 characters are cut with an ellipsis."""
        html = (
            "<div class='cl-entry'><div>"
            "<a href='http://k.example.org' target='_blank'>k</a>"
            f"<!-- name={'x' * 250} --><!-- gps=(1, 2) -->"
            "</div></div>"
        )

        (station,) = parse_stations(html)

        assert station["n"] == "x" * 200 + "..."

    def test_collect(self, test_settings, memory_store, no_sleep):
        """Test a run publishing the parsed stations."""
        session = FakeSession([FakeResponse(200, content=KIWI_HTML.encode())])
        collector = build(
            KiwiSdrCollector, test_settings, memory_store, session, no_sleep
        )

        result = collector.run_once()

        assert result.success
        assert result.records == 2
        assert session.calls[0]["url"] == KIWISDR_URL
        assert session.calls[0]["headers"]["Accept"] == "text/html"
        assert len(memory_store.get("hazard:kiwisdr:stations")) == 2


def incident(incident_id, when, **extra):
    return {"id": incident_id, "dateTime": {"sec": when.timestamp()}, **extra}


class TestProciv:
    """Test cases for the Fogos.pt incident merge."""

    now = datetime(2024, 8, 15, 12, 0, tzinfo=timezone.utc)

    def test_merge_prefers_active_and_drops_stale(self):
        """Test dedupe by id, active precedence and the 24 hour window."""
        active = [incident("1", self.now, status="active")]
        recent = [
            incident("1", self.now - timedelta(hours=1), status="search"),
            incident("2", self.now - timedelta(hours=3)),
            incident("3", self.now - timedelta(days=2)),
            {"id": "4"},
        ]

        merged = merge_incidents(active, recent, self.now)

        assert [i["id"] for i in merged] == ["1", "2"]
        assert merged[0]["status"] == "active"

    def test_collect_merges_both_endpoints(self, test_settings, memory_store, no_sleep):
        """Test that both endpoints are queried and merged."""
        now = datetime.now(timezone.utc)
        session = RoutedSession(
            {
                FOGOS_ACTIVE_URL: FakeResponse(
                    200, {"success": True, "data": [incident("a", now)]}
                ),
                FOGOS_SEARCH_URL: FakeResponse(
                    200,
                    {
                        "success": True,
                        "data": [incident("b", now - timedelta(hours=2))],
                    },
                ),
            }
        )
        collector = build(
            ProcivCollector, test_settings, memory_store, session, no_sleep
        )

        assert collector.run_once().success

        value = memory_store.get("hazard:prociv:incidents")
        assert value["success"] is True
        assert sorted(i["id"] for i in value["data"]) == ["a", "b"]
        search_url = next(c["url"] for c in session.calls if "search" in c["url"])
        expected_after = (now - timedelta(hours=24)).strftime("%Y-%m-%d")
        assert f"after={expected_after}" in search_url
        assert "limit=100" in search_url

    def test_one_endpoint_failing(self, test_settings, memory_store, no_sleep):
        """Test that a failed search still publishes the active incidents."""
        now = datetime.now(timezone.utc)
        session = RoutedSession(
            {
                FOGOS_ACTIVE_URL: FakeResponse(
                    200, {"success": True, "data": [incident("a", now)]}
                ),
                FOGOS_SEARCH_URL: FakeResponse(503),
            }
        )
        collector = build(
            ProcivCollector, test_settings, memory_store, session, no_sleep
        )

        assert collector.run_once().success
        value = memory_store.get("hazard:prociv:incidents")
        assert [i["id"] for i in value["data"]] == ["a"]

    def test_unsuccessful_payload_is_empty(self, test_settings, memory_store, no_sleep):
        """Test that a success=false body contributes no incidents."""
        now = datetime.now(timezone.utc)
        session = RoutedSession(
            {
                FOGOS_ACTIVE_URL: FakeResponse(200, {"success": False, "data": []}),
                FOGOS_SEARCH_URL: FakeResponse(
                    200, {"success": True, "data": [incident("b", now)]}
                ),
            }
        )
        collector = build(
            ProcivCollector, test_settings, memory_store, session, no_sleep
        )

        assert collector.run_once().success
        value = memory_store.get("hazard:prociv:incidents")
        assert [i["id"] for i in value["data"]] == ["b"]

    def test_both_endpoints_failing(self, test_settings, memory_store, no_sleep):
        """Test that the run fails only when both endpoints fail."""
        session = RoutedSession(
            {
                FOGOS_ACTIVE_URL: requests.ConnectionError("down"),
                FOGOS_SEARCH_URL: requests.ConnectionError("down"),
            }
        )
        collector = build(
            ProcivCollector, test_settings, memory_store, session, no_sleep
        )

        result = collector.run_once()

        assert not result.success
        assert result.error_kind is ErrorKind.TRANSIENT_NETWORK
        assert memory_store.get("hazard:prociv:incidents") is None


def state(icao, lon, lat, callsign="TAP123  ", on_ground=False):
    """OpenSky state vector in API field order."""
    return [
        icao,
        callsign,
        "Portugal",
        1700000000,
        1700000005,
        lon,
        lat,
        10972.8,
        on_ground,
        230.4,
        45.6,
        -1.3,
        None,
        11200.0,
        "1000",
        False,
        0,
    ]


class TestAircraft:
    """Test cases for the OpenSky collector."""

    def test_parse_state(self):
        """Test the compact record with rounding and trimmed callsign."""
        assert parse_state(state("4951c1", -9.13456, 38.77412)) == {
            "i": "4951c1",
            "c": "TAP123",
            "la": 38.774,
            "lo": -9.135,
            "al": 10973,
            "v": 230,
            "h": 46,
            "vr": -1,
            "g": False,
            "t": 1700000005,
            "o": "Portugal",
        }

    def test_parse_states_skips_missing_position(self):
        """Test that aircraft without a position and empty payloads drop."""
        no_position = state("abc123", None, None)
        blank = state("def456", 1.0, 2.0, callsign=None)
        blank[7] = blank[9] = blank[10] = blank[11] = None

        parsed = parse_states({"time": 1, "states": [no_position, blank]})

        assert parsed == [
            {
                "i": "def456",
                "la": 2.0,
                "lo": 1.0,
                "g": False,
                "t": 1700000005,
                "o": "Portugal",
            }
        ]
        assert parse_states({"time": 1, "states": None}) == []

    def test_anonymous_without_credentials(self, test_settings, memory_store, no_sleep):
        """Test that no token is requested without a client configured."""
        session = FakeSession([FakeResponse(200, {"states": [state("a", 1, 2)]})])
        collector = build(
            AircraftCollector, test_settings, memory_store, session, no_sleep
        )

        assert collector.run_once().success
        assert len(session.calls) == 1
        assert session.calls[0]["url"] == STATES_URL
        assert "Authorization" not in session.calls[0]["headers"]

    def test_token_requested_and_cached(self, test_settings, memory_store, no_sleep):
        """Test the client-credentials grant and token reuse until expiry."""
        clock = FakeClock()
        session = FakeSession(
            [
                FakeResponse(200, {"access_token": "tok-1"}),
                FakeResponse(200, {"states": []}),
                FakeResponse(200, {"states": []}),
                FakeResponse(200, {"access_token": "tok-2"}),
                FakeResponse(200, {"states": []}),
            ]
        )
        collector = build(
            AircraftCollector,
            test_settings,
            memory_store,
            session,
            no_sleep,
            client_id="client",
            client_secret="s3cr3t",
            clock=clock,
        )

        assert collector.run_once().success
        clock.advance(60)
        assert collector.run_once().success
        clock.advance(TOKEN_LIFETIME_SECONDS)
        assert collector.run_once().success

        token_call = session.calls[0]
        assert token_call["method"] == "POST"
        assert token_call["url"] == TOKEN_URL
        assert token_call["data"] == {
            "grant_type": "client_credentials",
            "client_id": "client",
            "client_secret": "s3cr3t",
        }
        assert session.calls[1]["headers"]["Authorization"] == "Bearer tok-1"
        assert session.calls[2]["headers"]["Authorization"] == "Bearer tok-1"
        assert session.calls[3]["url"] == TOKEN_URL
        assert session.calls[4]["headers"]["Authorization"] == "Bearer tok-2"

    def test_token_failure_falls_back_to_anonymous(
        self, test_settings, memory_store, no_sleep, caplog
    ):
        """Test that a rejected grant still fetches states without a token."""
        session = FakeSession(
            [FakeResponse(401), FakeResponse(200, {"states": [state("a", 1, 2)]})]
        )
        collector = build(
            AircraftCollector,
            test_settings,
            memory_store,
            session,
            no_sleep,
            client_id="client",
            client_secret="s3cr3t",
        )

        with caplog.at_level("DEBUG"):
            result = collector.run_once()

        assert result.success
        assert "Authorization" not in session.calls[1]["headers"]
        assert "OpenSky token request failed" in caplog.text
        assert "s3cr3t" not in caplog.text

    def test_rate_limit_is_transient(self, test_settings, memory_store, no_sleep):
        """Test that a 429 from the states endpoint is retried then fails."""
        session = FakeSession([FakeResponse(429), FakeResponse(429)])
        collector = build(
            AircraftCollector, test_settings, memory_store, session, no_sleep
        )

        result = collector.run_once()

        assert not result.success
        assert result.error_kind is ErrorKind.TRANSIENT_NETWORK
        assert len(session.calls) == 2

    def test_instances_read_credentials(self, test_settings, memory_store):
        """Test that the OAuth client comes from settings."""
        settings = test_settings.model_copy(
            update={"opensky_client_id": "id", "opensky_client_secret": "secret"}
        )

        (collector,) = AircraftCollector.instances(memory_store, settings)

        assert collector.client_id == "id"
        assert collector.client_secret == "secret"
        assert collector.descriptor().cache_key == "hazard:aircraft:global"
        collector.session.close()
