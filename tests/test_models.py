"""Tests for data models and configuration."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from hail_intel.config import HailIntelConfig, ServiceArea
from hail_intel.models import (
    DateRange,
    StormEvent,
    parse_timestamp,
    storm_from_dict,
    storm_to_dict,
)

T0 = datetime(2024, 9, 24, 21, 0, tzinfo=timezone.utc)


class TestParseTimestamp:
    def test_iso_with_z(self):
        assert parse_timestamp("2024-09-24T21:00:00Z") == T0

    def test_offset_converted_to_utc(self):
        assert parse_timestamp("2024-09-24T16:00:00-05:00") == T0

    def test_naive_assumed_utc(self):
        assert parse_timestamp("2024-09-24T21:00:00") == T0

    def test_epoch_milliseconds(self):
        assert parse_timestamp(int(T0.timestamp() * 1000)) == T0

    def test_rejects_other_types(self):
        with pytest.raises(ValueError):
            parse_timestamp(True)


class TestDateRange:
    def test_for_day(self):
        r = DateRange.for_day(date(2024, 9, 24))
        assert r.contains(datetime(2024, 9, 24, 0, 0, tzinfo=timezone.utc))
        assert r.contains(datetime(2024, 9, 24, 23, 59, 59, tzinfo=timezone.utc))
        assert not r.contains(datetime(2024, 9, 25, 0, 0, tzinfo=timezone.utc))
        assert list(r.days()) == [date(2024, 9, 24)]

    def test_last_hours_spanning_midnight(self):
        r = DateRange.last_hours(6, datetime(2024, 9, 25, 2, 0, tzinfo=timezone.utc))
        assert list(r.days()) == [date(2024, 9, 24), date(2024, 9, 25)]

    def test_end_before_start_rejected(self):
        with pytest.raises(ValueError):
            DateRange(start=T0, end=T0 - timedelta(seconds=1))


class TestStormEvent:
    def test_derived_properties(self, make_scored):
        event = StormEvent(
            id="s",
            start_time=T0,
            reports=[
                make_scored(id="a", latitude=35.0, longitude=-97.0, size_inches=1.5, total=50),
                make_scored(id="b", latitude=35.2, longitude=-97.2, size_inches=2.0, total=70,
                            city="Moore", timestamp=T0 + timedelta(minutes=5)),
                make_scored(id="c", latitude=35.1, longitude=-97.1, size_inches=1.0, total=60,
                            city="Moore", timestamp=T0 + timedelta(minutes=3)),
            ],
        )
        assert event.peak_size_inches == 2.0
        assert event.mean_confidence == 60
        assert event.centroid == pytest.approx((35.1, -97.1))
        assert event.latest_timestamp == T0 + timedelta(minutes=5)
        assert event.last_report.id == "c"
        assert event.location == "Moore"
        assert event.bounds.north == 35.2

    def test_location_without_cities(self, make_scored):
        event = StormEvent(id="s", start_time=T0, reports=[
            make_scored(id="a", latitude=35.0, longitude=-97.0, city=None),
        ])
        assert event.location == "35.000, -97.000"

    def test_add_report_reopens(self, make_scored):
        event = StormEvent(
            id="s", start_time=T0, reports=[make_scored(id="a")], active=False, end_time=T0,
        )
        event.add_report(make_scored(id="b", size_inches=2.5))
        assert event.active
        assert event.end_time is None
        assert event.peak_size_inches == 2.5

    def test_document_round_trip(self, make_scored):
        event = StormEvent(id="s", start_time=T0, reports=[make_scored(id="a")], enabled=False)
        assert storm_from_dict(storm_to_dict(event)) == event

    def test_document_without_reports_rejected(self):
        with pytest.raises(ValueError):
            storm_from_dict({"id": "s", "start_time": T0.isoformat(), "reports": []})


class TestConfig:
    def test_defaults(self):
        config = HailIntelConfig()
        assert config.alert_threshold == 55.0
        assert config.size_tiers == (1.0, 1.5, 2.0, 2.5)
        assert config.cluster_radius_miles == 5.0
        assert config.cluster_window_minutes == 30.0
        assert config.quiet_window_minutes == 120.0

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("HAIL_INTEL_ALERT_THRESHOLD", "70")
        assert HailIntelConfig().alert_threshold == 70.0

    @pytest.mark.parametrize("tiers", [(), (1.5, 1.0), (1.0, 1.0), (0.0, 1.0)])
    def test_bad_size_tiers(self, tiers):
        with pytest.raises(ValidationError):
            HailIntelConfig(size_tiers=tiers)

    def test_threshold_range(self):
        with pytest.raises(ValidationError):
            HailIntelConfig(alert_threshold=120)

    def test_service_area(self):
        area = ServiceArea(north=37.0, south=33.6, east=-94.4, west=-103.0)
        assert area.contains(35.2, -97.4)
        assert not area.contains(40.0, -97.4)
        with pytest.raises(ValidationError):
            ServiceArea(north=33.0, south=37.0, east=-94.4, west=-103.0)
