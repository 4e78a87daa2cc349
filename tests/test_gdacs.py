"""
Tests for the GDACS event collector.
"""

from datetime import datetime, timezone

import pytest

from conftest import FakeResponse, FakeSession
from hazardwatch.collectors.gdacs import (
    GdacsCollector,
    build_events,
    centroid,
    is_forecast_label,
)

NOW = datetime(2024, 9, 10, 12, 0, tzinfo=timezone.utc)


def feature(props, geometry):
    base = {"iscurrent": "true", "episodeid": 1}
    base.update(props)
    return {"type": "Feature", "properties": base, "geometry": geometry}


def square(lng, lat, size=0.2):
    return {
        "type": "Polygon",
        "coordinates": [
            [
                [lng - size, lat - size],
                [lng + size, lat - size],
                [lng + size, lat + size],
                [lng - size, lat + size],
            ]
        ],
    }


@pytest.fixture
def cyclone_features():
    props = {
        "eventtype": "TC",
        "eventid": 1000,
        "name": "Tropical Cyclone ALPHA",
        "alertlevel": "Orange",
        "severitydata": {"severity": 150.0, "severitytext": "Category 2"},
        "affectedcountries": [{"countryname": "Japan"}],
        "url": {"report": "https://gdacs.org/report"},
    }
    return [
        feature(dict(props), {"type": "Point", "coordinates": [140.0, 25.0]}),
        # Duplicate point feature for the same episode
        feature(dict(props), {"type": "Point", "coordinates": [140.0, 25.0]}),
        feature(
            dict(props, Class="Point_Polygon_Point_2", polygonlabel="11/09 00:00 UTC"),
            square(141.0, 26.0),
        ),
        feature(
            dict(props, Class="Point_Polygon_Point_1", polygonlabel="09/09 12:00 UTC"),
            square(139.0, 24.0),
        ),
        feature(
            dict(props, Class="Poly_Cones"),
            {"type": "Polygon", "coordinates": [[[1, 2], [3, 4], [5, 6]]]},
        ),
        feature(
            {"eventtype": "EQ", "eventid": 7, "iscurrent": "false"},
            {"type": "Point", "coordinates": [0, 0]},
        ),
    ]


class TestHelpers:
    """Test cases for geometry and label helpers."""

    def test_centroid(self):
        """Test point and polygon centroids."""
        assert centroid({"type": "Point", "coordinates": [10, 20]}) == (10.0, 20.0)
        assert centroid(square(10, 20)) == pytest.approx((10.0, 20.0))

    def test_forecast_label(self):
        """Test that labels after now are forecast positions."""
        assert is_forecast_label("11/09 00:00 UTC", NOW)
        assert not is_forecast_label("09/09 12:00 UTC", NOW)
        assert not is_forecast_label("garbage", NOW)

    def test_forecast_label_year_rollover(self):
        """Test that January labels seen in December are next year."""
        december = datetime(2024, 12, 30, tzinfo=timezone.utc)

        assert is_forecast_label("02/01 06:00 UTC", december)

    def test_forecast_label_backward_rollover(self):
        """Test that December labels seen in January are last year."""
        january = datetime(2025, 1, 2, tzinfo=timezone.utc)

        assert not is_forecast_label("28/12 18:00 UTC", january)
        assert is_forecast_label("03/01 00:00 UTC", january)


class TestBuildEvents:
    """Test cases for event derivation."""

    def test_cyclone_event(self, cyclone_features):
        """Test dedupe, track ordering, forecast flags and cone attachment."""
        events = build_events(cyclone_features, NOW)

        assert len(events) == 1
        event = events[0]
        assert event.id == "TC-1000-1"
        assert event.countries == ["Japan"]
        assert event.severity == 150.0
        assert event.report_url == "https://gdacs.org/report"

        track = event.cyclone_data.track_points
        assert [p.index for p in track] == [1, 2]
        assert [p.is_forecast for p in track] == [False, True]
        assert track[0].lng == pytest.approx(139.0)
        assert event.cyclone_data.forecast_cone == [[1, 2], [3, 4], [5, 6]]

    def test_non_current_features_ignored(self, cyclone_features):
        """Test that past events are dropped."""
        events = build_events(cyclone_features[-1:], NOW)

        assert events == []


class TestGdacsCollector:
    """Test cases for the collector run."""

    def test_collect(self, test_settings, memory_store, no_sleep, cyclone_features):
        """Test that events are published with camelCase keys."""
        body = {"type": "FeatureCollection", "features": cyclone_features}
        session = FakeSession([FakeResponse(200, body)])
        collector = GdacsCollector(
            GdacsCollector.build_descriptor(test_settings),
            memory_store,
            session=session,
            sleep=no_sleep,
        )
        collector.now = lambda: NOW

        result = collector.run_once()

        assert result.success
        assert result.records == 1
        value = memory_store.get("hazard:gdacs:events")
        event = value["events"][0]
        assert event["eventType"] == "TC"
        assert event["cycloneData"]["trackPoints"][1]["isForecast"] is True
        assert value["fetchedAt"] == NOW.isoformat()

    def test_missing_features_is_transform_failure(
        self, test_settings, memory_store, no_sleep
    ):
        """Test that a body without features fails the run."""
        collector = GdacsCollector(
            GdacsCollector.build_descriptor(test_settings),
            memory_store,
            session=FakeSession([FakeResponse(200, {"error": "x"})]),
            sleep=no_sleep,
        )

        result = collector.run_once()

        assert not result.success
        assert result.error_kind.value == "transform"
