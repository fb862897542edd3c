"""Turning raw source payload items into trustworthy HailReports."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from hail_intel.config import ServiceArea
from hail_intel.errors import InvalidReport
from hail_intel.models import HailReport, SourceTier, parse_timestamp

logger = logging.getLogger(__name__)

MM_PER_INCH = 25.4
# Earliest day the MESH archive has data for.
ARCHIVE_START = datetime(2019, 10, 1, tzinfo=timezone.utc)
# Tolerated clock drift between a source server and this process.
CLOCK_SKEW = timedelta(minutes=10)


def _first(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _as_float(value: Any, what: str, report_id: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidReport(report_id, f"{what} is not a number: {value!r}") from None
    if math.isnan(number) or math.isinf(number):
        raise InvalidReport(report_id, f"{what} is not finite")
    return number


def parse_report(
    raw: dict[str, Any],
    tier: SourceTier,
    source: str = "",
    default_timestamp: datetime | None = None,
) -> HailReport:
    """Build a HailReport from one payload item.

    Accepts the field spellings the MESH servers use: ``lat``/``latitude``,
    ``lon``/``lng``/``longitude``, and either ``size``/``size_inches`` in
    inches or ``mesh_mm``/``meshValue`` in millimetres.  Items without an id
    get one derived from their position and time.
    """
    if not isinstance(raw, dict):
        raise InvalidReport("?", f"expected an object, got {type(raw).__name__}")

    label = str(raw.get("id") or "?")
    lat_raw = _first(raw, "latitude", "lat")
    lon_raw = _first(raw, "longitude", "lon", "lng")
    if lat_raw is None or lon_raw is None:
        raise InvalidReport(label, "missing coordinates")
    latitude = _as_float(lat_raw, "latitude", label)
    longitude = _as_float(lon_raw, "longitude", label)

    mesh_raw = _first(raw, "mesh_mm", "meshValue")
    mesh_mm = _as_float(mesh_raw, "MESH value", label) if mesh_raw is not None else None
    size_raw = _first(raw, "size_inches", "size")
    if size_raw is not None:
        size_inches = _as_float(size_raw, "size", label)
    elif mesh_mm is not None:
        size_inches = mesh_mm / MM_PER_INCH
    else:
        raise InvalidReport(label, "missing hail size")

    ts_raw = _first(raw, "timestamp", "time")
    if ts_raw is None:
        if default_timestamp is None:
            raise InvalidReport(label, "missing timestamp")
        timestamp = default_timestamp
    else:
        try:
            timestamp = parse_timestamp(ts_raw)
        except ValueError:
            raise InvalidReport(label, f"unreadable timestamp {ts_raw!r}") from None

    report_id = raw.get("id")
    if not report_id:
        report_id = f"{tier.value}_{latitude:.4f}_{longitude:.4f}_{timestamp:%Y%m%d%H%M%S}"

    return HailReport(
        id=str(report_id),
        latitude=latitude,
        longitude=longitude,
        size_inches=round(size_inches, 3),
        timestamp=timestamp,
        source_tier=tier,
        city=_first(raw, "city"),
        source=str(_first(raw, "source") or source),
        mesh_mm=mesh_mm,
    )


def parse_reports(
    items: Iterable[Any],
    tier: SourceTier,
    source: str = "",
    default_timestamp: datetime | None = None,
) -> list[HailReport]:
    """Parse every item, dropping (and logging) the ones that cannot be read."""
    reports: list[HailReport] = []
    for item in items:
        try:
            reports.append(parse_report(item, tier, source, default_timestamp))
        except InvalidReport as exc:
            logger.warning("Dropping unreadable %s report: %s", tier.value, exc)
    return reports


def timestamp_bounds(
    tier: SourceTier,
    now: datetime,
    realtime_window_days: int = 7,
) -> tuple[datetime | None, datetime]:
    """Earliest and latest timestamps a tier can plausibly report."""
    latest = now + CLOCK_SKEW
    if tier is SourceTier.REALTIME:
        return now - timedelta(days=realtime_window_days), latest
    if tier is SourceTier.HISTORICAL:
        return ARCHIVE_START, latest
    return None, latest


def validate_report(
    report: HailReport,
    now: datetime,
    realtime_window_days: int = 7,
    service_area: ServiceArea | None = None,
) -> HailReport:
    """Return *report* unchanged if it is usable, else raise InvalidReport."""
    if not -90.0 <= report.latitude <= 90.0:
        raise InvalidReport(report.id, f"latitude {report.latitude} out of range")
    if not -180.0 <= report.longitude <= 180.0:
        raise InvalidReport(report.id, f"longitude {report.longitude} out of range")
    if not report.size_inches > 0:
        raise InvalidReport(report.id, f"non-positive hail size {report.size_inches}")
    if report.timestamp.tzinfo is None:
        raise InvalidReport(report.id, "timestamp has no timezone")

    earliest, latest = timestamp_bounds(report.source_tier, now, realtime_window_days)
    if report.timestamp > latest:
        raise InvalidReport(report.id, f"timestamp {report.timestamp.isoformat()} is in the future")
    if earliest is not None and report.timestamp < earliest:
        raise InvalidReport(
            report.id,
            f"timestamp {report.timestamp.isoformat()} predates the "
            f"{report.source_tier.value} tier's coverage",
        )

    if service_area is not None and not service_area.contains(report.latitude, report.longitude):
        raise InvalidReport(report.id, "outside the service area")
    return report


def validate_reports(
    reports: Iterable[HailReport],
    now: datetime,
    realtime_window_days: int = 7,
    service_area: ServiceArea | None = None,
) -> list[HailReport]:
    """Keep the valid reports; invalid ones are logged and dropped."""
    valid: list[HailReport] = []
    for report in reports:
        try:
            valid.append(validate_report(report, now, realtime_window_days, service_area))
        except InvalidReport as exc:
            logger.warning("Dropping invalid report: %s", exc)
    return valid
