"""Tests for report parsing and validation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from hail_intel.config import ServiceArea
from hail_intel.errors import InvalidReport
from hail_intel.models import SourceTier
from hail_intel.validation import (
    parse_report,
    parse_reports,
    timestamp_bounds,
    validate_report,
    validate_reports,
)

NOW = datetime(2024, 9, 24, 22, 0, tzinfo=timezone.utc)


class TestParseReport:
    def test_canonical_fields(self):
        report = parse_report(
            {
                "id": "x1",
                "latitude": 35.2,
                "longitude": -97.4,
                "size_inches": 1.75,
                "timestamp": "2024-09-24T20:30:00Z",
                "city": "Norman",
            },
            SourceTier.HISTORICAL,
            source="IEM MESH Archive",
        )
        assert report.id == "x1"
        assert report.size_inches == 1.75
        assert report.timestamp == datetime(2024, 9, 24, 20, 30, tzinfo=timezone.utc)
        assert report.source_tier is SourceTier.HISTORICAL
        assert report.source == "IEM MESH Archive"
        assert report.city == "Norman"

    def test_server_aliases_and_mesh_millimetres(self):
        report = parse_report(
            {"lat": 35.2, "lng": -97.4, "meshValue": 50.8, "time": "2024-09-24T20:30:00Z"},
            SourceTier.REALTIME,
        )
        assert report.size_inches == 2.0
        assert report.mesh_mm == 50.8
        assert report.id == "realtime_35.2000_-97.4000_20240924203000"

    def test_epoch_millisecond_timestamp(self):
        report = parse_report(
            {"id": "x", "lat": 35.2, "lon": -97.4, "size": 1.0, "timestamp": 1727209800000},
            SourceTier.REALTIME,
        )
        assert report.timestamp == datetime(2024, 9, 24, 20, 30, tzinfo=timezone.utc)

    def test_default_timestamp_when_missing(self):
        report = parse_report(
            {"id": "x", "lat": 35.2, "lon": -97.4, "size": 1.0},
            SourceTier.REALTIME,
            default_timestamp=NOW,
        )
        assert report.timestamp == NOW

    @pytest.mark.parametrize(
        "raw",
        [
            {"id": "x", "lon": -97.4, "size": 1.0, "timestamp": "2024-09-24T20:30:00Z"},
            {"id": "x", "lat": "north", "lon": -97.4, "size": 1.0, "timestamp": "2024-09-24T20:30:00Z"},
            {"id": "x", "lat": 35.2, "lon": -97.4, "timestamp": "2024-09-24T20:30:00Z"},
            {"id": "x", "lat": 35.2, "lon": -97.4, "size": 1.0},
            {"id": "x", "lat": 35.2, "lon": -97.4, "size": 1.0, "timestamp": "yesterday"},
            {"id": "x", "lat": float("nan"), "lon": -97.4, "size": 1.0, "timestamp": "2024-09-24"},
        ],
    )
    def test_unreadable_items_raise(self, raw):
        with pytest.raises(InvalidReport):
            parse_report(raw, SourceTier.REALTIME)

    def test_non_object_raises(self):
        with pytest.raises(InvalidReport):
            parse_report(["35.2", "-97.4"], SourceTier.REALTIME)  # type: ignore[arg-type]


class TestParseReports:
    def test_drops_bad_items(self, caplog):
        items = [
            {"id": "good", "lat": 35.2, "lon": -97.4, "size": 1.0, "timestamp": "2024-09-24T20:30:00Z"},
            {"id": "bad", "lat": 35.2},
        ]
        reports = parse_reports(items, SourceTier.HISTORICAL)
        assert [r.id for r in reports] == ["good"]
        assert "bad" in caplog.text


class TestTimestampBounds:
    def test_realtime_window(self):
        earliest, latest = timestamp_bounds(SourceTier.REALTIME, NOW, realtime_window_days=7)
        assert earliest == NOW - timedelta(days=7)
        assert latest > NOW

    def test_fallback_has_no_lower_bound(self):
        earliest, _ = timestamp_bounds(SourceTier.FALLBACK, NOW)
        assert earliest is None


class TestValidateReport:
    def test_valid_report_passes(self, make_report):
        report = make_report()
        assert validate_report(report, NOW) is report

    @pytest.mark.parametrize(
        "changes",
        [
            {"latitude": 91.0},
            {"longitude": -181.0},
            {"size_inches": 0.0},
            {"size_inches": -1.0},
            {"timestamp": NOW + timedelta(hours=1)},
            {"timestamp": datetime(2024, 9, 24, 20, 0)},
            {"timestamp": NOW - timedelta(days=8)},
        ],
    )
    def test_rejects(self, make_report, changes):
        with pytest.raises(InvalidReport):
            validate_report(make_report(**changes), NOW)

    def test_small_clock_skew_tolerated(self, make_report):
        report = make_report(timestamp=NOW + timedelta(minutes=5))
        assert validate_report(report, NOW) is report

    def test_archive_coverage(self, make_report):
        old = make_report(timestamp=datetime(2019, 5, 1, tzinfo=timezone.utc),
                          source_tier=SourceTier.HISTORICAL)
        with pytest.raises(InvalidReport):
            validate_report(old, NOW)
        month_old = make_report(timestamp=NOW - timedelta(days=30), source_tier=SourceTier.HISTORICAL)
        assert validate_report(month_old, NOW) is month_old

    def test_fallback_accepts_old_storms(self, make_report):
        old = make_report(timestamp=datetime(2015, 5, 1, tzinfo=timezone.utc),
                          source_tier=SourceTier.FALLBACK)
        assert validate_report(old, NOW) is old

    def test_service_area(self, make_report):
        area = ServiceArea(north=37.0, south=33.6, east=-94.4, west=-103.0)
        assert validate_report(make_report(), NOW, service_area=area)
        with pytest.raises(InvalidReport, match="service area"):
            validate_report(make_report(latitude=40.0), NOW, service_area=area)


class TestValidateReports:
    def test_keeps_only_valid(self, make_report):
        good = make_report("good")
        bad = make_report("bad", size_inches=0.0)
        assert validate_reports([good, bad], NOW) == [good]
