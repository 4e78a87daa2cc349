"""
Tests for the streaming lightning collector.
"""

import threading
import time

import pytest
import websocket

from conftest import FakeClock
from hazardwatch.collectors.base import CollectorDescriptor
from hazardwatch.collectors.lightning import (
    BLITZORTUNG_SERVERS,
    MAX_AGE_SECONDS,
    SUBSCRIBE_FRAME,
    LightningCollector,
    parse_strike,
    strike_key,
)


class FakeWebSocket:
    """Websocket replaying queued messages, then an orderly close."""

    def __init__(self, messages=(), block=False):
        self.messages = list(messages)
        self.sent = []
        self.closed = threading.Event()
        self.block = block

    def send(self, payload):
        self.sent.append(payload)

    def recv(self):
        if self.messages:
            message = self.messages.pop(0)
            if isinstance(message, BaseException):
                raise message
            return message
        if self.block:
            self.closed.wait(5)
            raise websocket.WebSocketConnectionClosedException("closed")
        return ""

    def close(self):
        self.closed.set()


class FakeConnector:
    """Stand-in for websocket.create_connection recording each call."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def __call__(self, url, **options):
        self.calls.append((url, options))
        outcome = self.outcomes.pop(0) if self.outcomes else ConnectionRefusedError()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def wait_for(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not condition() and time.monotonic() < deadline:
        time.sleep(0.01)
    return condition()


@pytest.fixture
def wall_clock():
    return FakeClock(start=1_700_000_000.0)


@pytest.fixture
def make_collector(memory_store, wall_clock):
    def _make(connect=None, reconnect_delay=0.01, servers=BLITZORTUNG_SERVERS):
        descriptor = CollectorDescriptor(
            name="lightning",
            interval_seconds=10,
            ttl_seconds=60,
            cache_key="hazard:lightning:recent",
        )
        return LightningCollector(
            descriptor,
            memory_store,
            servers=servers,
            connect=connect or FakeConnector([]),
            clock=wall_clock,
            reconnect_delay=reconnect_delay,
        )

    return _make


class TestParseStrike:
    """Test cases for lenient strike parsing."""

    def test_plain_json(self):
        """Test a well formed JSON message."""
        strike = parse_strike('{"lat": 38.72, "lon": -9.14, "pol": 0}', 5000)

        assert strike == {"latitude": 38.72, "longitude": -9.14, "time": 5000}

    def test_garbled_bytes(self):
        """Test that control bytes between markers and numbers are tolerated."""
        message = b'\x01{"lat\x02":\x0345.5\x00,"lon\x07":\x1e-3.25}'

        strike = parse_strike(message, 1)

        assert strike["latitude"] == 45.5
        assert strike["longitude"] == -3.25

    @pytest.mark.parametrize(
        "message",
        [
            '{"status": "connected"}',
            '{"lat": 95.0, "lon": 10.0}',
            '{"lat": 10.0, "lon": 181.0}',
            '{"lat": "north", "lon": "west"}',
        ],
    )
    def test_rejected(self, message):
        """Test that messages without valid coordinates are ignored."""
        assert parse_strike(message, 0) is None

    def test_strike_key_groups_cell_and_second(self):
        """Test that nearby strikes within the same second share a key."""
        a = {"latitude": 10.001, "longitude": 20.004, "time": 5100}
        b = {"latitude": 10.003, "longitude": 20.002, "time": 5900}

        assert strike_key(a) == strike_key(b) == "10.00_20.00_5"



class TestLightningCollector:
    """Test cases for the accumulating collector."""

    def test_deduplicates_strikes(self, make_collector):
        """Test that repeated reports of one strike are stored once."""
        collector = make_collector()

        assert collector.add_message('{"lat": 1.0, "lon": 2.0}')
        assert collector.add_message('{"lat": 1.0, "lon": 2.0}')
        assert not collector.add_message("keepalive")

        assert len(collector.strikes) == 1

    def test_snapshot_newest_first_and_prunes(self, make_collector, wall_clock):
        """Test the rolling window and ordering of published strikes."""
        collector = make_collector()
        collector.add_message('{"lat": 1.0, "lon": 1.0}')
        wall_clock.advance(60)
        collector.add_message('{"lat": 2.0, "lon": 2.0}')
        wall_clock.advance(60)
        collector.add_message('{"lat": 3.0, "lon": 3.0}')

        snapshot = collector.collect()
        assert [s["latitude"] for s in snapshot] == [3.0, 2.0, 1.0]

        wall_clock.advance(MAX_AGE_SECONDS - 90)
        snapshot = collector.collect()
        assert [s["latitude"] for s in snapshot] == [3.0, 2.0]

    def test_run_once_publishes_window(self, make_collector, memory_store):
        """Test that a scheduled run writes the snapshot with its TTL."""
        collector = make_collector()
        collector.add_message('{"lat": -33.9, "lon": 151.2}')

        result = collector.run_once()

        assert result.success
        assert result.records == 1
        assert memory_store.get("hazard:lightning:recent")[0]["latitude"] == -33.9

    def test_empty_window_is_published(self, make_collector, memory_store):
        """Test that no strikes publishes an empty list."""
        assert make_collector().run_once().success
        assert memory_store.get("hazard:lightning:recent") == []


class TestLightningStream:
    """Test cases for the websocket connection handling."""

    def test_consume_subscribes_and_reads(self, make_collector):
        """Test the subscribe frame and that received frames become strikes."""
        ws = FakeWebSocket(
            [
                '{"lat": 10.0, "lon": 20.0}',
                b'\x01{"lat\x02":11.0,"lon\x03":21.0}',
                '{"type": "ping"}',
            ]
        )
        connect = FakeConnector([ws])
        collector = make_collector(connect=connect)

        collector._consume("wss://ws7.blitzortung.org/")

        assert ws.sent == [SUBSCRIBE_FRAME] == ['{"a":111}']
        assert len(collector.strikes) == 2
        assert ws.closed.is_set()
        url, options = connect.calls[0]
        assert url == "wss://ws7.blitzortung.org/"
        assert options["timeout"] > 0

    def test_consume_raises_when_connection_drops(self, make_collector):
        """Test that a dropped socket surfaces and the socket is closed."""
        ws = FakeWebSocket(
            [
                '{"lat": 10.0, "lon": 20.0}',
                websocket.WebSocketConnectionClosedException("reset"),
            ]
        )
        collector = make_collector(connect=FakeConnector([ws]))

        with pytest.raises(websocket.WebSocketException):
            collector._consume(BLITZORTUNG_SERVERS[0])

        assert len(collector.strikes) == 1
        assert ws.closed.is_set()

    def test_next_server_rotates(self, make_collector):
        """Test that successive connections cycle through every server."""
        collector = make_collector()

        picked = [collector.next_server() for _ in range(6)]

        assert set(picked[:3]) == set(BLITZORTUNG_SERVERS)
        assert picked[3:] == picked[:3]

    def test_reconnects_to_next_server(self, make_collector):
        """Test that failures are retried on the next server until stopped."""
        connect = FakeConnector(
            [ConnectionRefusedError(), websocket.WebSocketTimeoutException("timed out")]
        )
        collector = make_collector(connect=connect)

        collector.start()
        assert wait_for(lambda: len(connect.calls) >= 4)
        collector.stop()

        servers = [url for url, _ in connect.calls]
        assert all(a != b for a, b in zip(servers, servers[1:]))
        assert set(servers[:3]) == set(BLITZORTUNG_SERVERS)
        assert collector._thread is None

    def test_stop_closes_open_connection(self, make_collector):
        """Test that stop unblocks a waiting receive by closing the socket."""
        ws = FakeWebSocket(['{"lat": 5.0, "lon": 6.0}'], block=True)
        collector = make_collector(connect=FakeConnector([ws]), reconnect_delay=5)

        collector.start()
        assert wait_for(lambda: len(collector.strikes) == 1)
        collector.stop()

        assert ws.closed.is_set()
        assert collector._thread is None

    def test_instances_follow_enable_flag(self, test_settings, memory_store):
        """Test that the collector is built unless disabled."""
        (collector,) = LightningCollector.instances(memory_store, test_settings)

        assert collector.servers == test_settings.lightning_servers
        assert collector.descriptor().cache_key == "hazard:lightning:recent"

        disabled = test_settings.model_copy(update={"lightning_enabled": False})
        assert LightningCollector.instances(memory_store, disabled) == []
