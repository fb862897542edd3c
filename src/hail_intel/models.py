"""Data models for the hail intelligence engine."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any


class SourceTier(str, Enum):
    """Data source tiers, in priority order."""

    REALTIME = "realtime"
    HISTORICAL = "historical"
    FALLBACK = "fallback"


class NotificationType(str, Enum):
    INITIAL = "initial"
    ESCALATION = "escalation"
    EXPANSION = "expansion"


@dataclass(frozen=True)
class HailReport:
    """One detected hail occurrence, as answered by a source tier."""

    id: str
    latitude: float
    longitude: float
    size_inches: float
    timestamp: datetime  # tz-aware UTC
    source_tier: SourceTier
    city: str | None = None
    source: str = ""
    mesh_mm: float | None = None


@dataclass(frozen=True)
class SocialSignal:
    """Aggregated social media activity about hail near a place and time."""

    platform: str
    mentions: int
    verified_accounts: int
    damage_reports: int
    timestamp: datetime


@dataclass(frozen=True)
class ConfidenceFactors:
    """Confidence breakdown for a report, frozen at scoring time."""

    mesh_score: int
    social_score: int
    recency_score: int
    density_score: int
    total_score: int


@dataclass(frozen=True)
class ScoredReport:
    """A hail report together with the confidence it was given on ingest."""

    report: HailReport
    confidence: ConfidenceFactors

    @property
    def id(self) -> str:
        return self.report.id

    @property
    def latitude(self) -> float:
        return self.report.latitude

    @property
    def longitude(self) -> float:
        return self.report.longitude

    @property
    def timestamp(self) -> datetime:
        return self.report.timestamp

    @property
    def size_inches(self) -> float:
        return self.report.size_inches


@dataclass(frozen=True)
class Bounds:
    north: float
    south: float
    east: float
    west: float


@dataclass
class StormEvent:
    """A spatio-temporal cluster of hail reports tracked as one storm.

    ``reports`` keeps arrival order and is never empty once the event exists.
    ``enabled`` is the user's map toggle; ``active`` tracks whether the storm
    is still receiving reports inside its quiet window.
    """

    id: str
    start_time: datetime
    reports: list[ScoredReport] = field(default_factory=list)
    peak_size_inches: float = 0.0
    enabled: bool = True
    active: bool = True
    end_time: datetime | None = None

    def __post_init__(self) -> None:
        if self.reports:
            self.peak_size_inches = max(r.size_inches for r in self.reports)

    def add_report(self, scored: ScoredReport) -> None:
        """Append a report and refresh the running statistics."""
        self.reports.append(scored)
        self.peak_size_inches = max(self.peak_size_inches, scored.size_inches)
        if scored.timestamp < self.start_time:
            self.start_time = scored.timestamp
        self.active = True
        self.end_time = None

    @property
    def report_count(self) -> int:
        return len(self.reports)

    @property
    def last_report(self) -> ScoredReport:
        """Most recently arrived report."""
        return self.reports[-1]

    @property
    def latest_timestamp(self) -> datetime:
        return max(r.timestamp for r in self.reports)

    @property
    def centroid(self) -> tuple[float, float]:
        n = len(self.reports)
        return (
            sum(r.latitude for r in self.reports) / n,
            sum(r.longitude for r in self.reports) / n,
        )

    @property
    def bounds(self) -> Bounds:
        lats = [r.latitude for r in self.reports]
        lons = [r.longitude for r in self.reports]
        return Bounds(north=max(lats), south=min(lats), east=max(lons), west=min(lons))

    @property
    def mean_confidence(self) -> float:
        return sum(r.confidence.total_score for r in self.reports) / len(self.reports)

    @property
    def location(self) -> str:
        """Label of the city seen most often among the storm's reports."""
        counts: dict[str, int] = {}
        for r in self.reports:
            if r.report.city:
                counts[r.report.city] = counts.get(r.report.city, 0) + 1
        if not counts:
            lat, lon = self.centroid
            return f"{lat:.3f}, {lon:.3f}"
        return max(counts, key=lambda c: (counts[c], c))


@dataclass
class NotificationLogEntry:
    """One escalation decision, kept in the notification log."""

    id: str
    storm_id: str
    type: NotificationType
    hail_size: float
    confidence: float
    location: str
    timestamp: datetime
    actioned: bool = False
    message: str = ""


@dataclass(frozen=True)
class DateRange:
    """Inclusive UTC time range a resolver pass asks the sources about."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError("DateRange end precedes its start")

    @classmethod
    def for_day(cls, day: date) -> DateRange:
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        return cls(start=start, end=start + timedelta(days=1) - timedelta(microseconds=1))

    @classmethod
    def last_hours(cls, hours: float, now: datetime | None = None) -> DateRange:
        if now is None:
            now = datetime.now(tz=timezone.utc)
        return cls(start=now - timedelta(hours=hours), end=now)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    def days(self) -> Iterator[date]:
        """Calendar days (UTC) touched by the range, oldest first."""
        day = self.start.astimezone(timezone.utc).date()
        last = self.end.astimezone(timezone.utc).date()
        while day <= last:
            yield day
            day += timedelta(days=1)


# ---------------------------------------------------------------------------
# JSON document conversion
# ---------------------------------------------------------------------------


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string or epoch milliseconds into a UTC datetime."""
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        moment = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        moment = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"unsupported timestamp {value!r}")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def report_to_dict(report: HailReport) -> dict[str, Any]:
    return {
        "id": report.id,
        "latitude": report.latitude,
        "longitude": report.longitude,
        "size_inches": report.size_inches,
        "timestamp": report.timestamp.isoformat(),
        "source_tier": report.source_tier.value,
        "city": report.city,
        "source": report.source,
        "mesh_mm": report.mesh_mm,
    }


def report_from_dict(data: dict[str, Any]) -> HailReport:
    return HailReport(
        id=data["id"],
        latitude=float(data["latitude"]),
        longitude=float(data["longitude"]),
        size_inches=float(data["size_inches"]),
        timestamp=parse_timestamp(data["timestamp"]),
        source_tier=SourceTier(data["source_tier"]),
        city=data.get("city"),
        source=data.get("source", ""),
        mesh_mm=data.get("mesh_mm"),
    )


def storm_to_dict(event: StormEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "start_time": event.start_time.isoformat(),
        "end_time": event.end_time.isoformat() if event.end_time else None,
        "peak_size_inches": event.peak_size_inches,
        "enabled": event.enabled,
        "active": event.active,
        "reports": [
            {
                "report": report_to_dict(r.report),
                "confidence": {
                    "mesh_score": r.confidence.mesh_score,
                    "social_score": r.confidence.social_score,
                    "recency_score": r.confidence.recency_score,
                    "density_score": r.confidence.density_score,
                    "total_score": r.confidence.total_score,
                },
            }
            for r in event.reports
        ],
    }


def storm_from_dict(data: dict[str, Any]) -> StormEvent:
    reports = [
        ScoredReport(
            report=report_from_dict(r["report"]),
            confidence=ConfidenceFactors(**r["confidence"]),
        )
        for r in data["reports"]
    ]
    if not reports:
        raise ValueError(f"storm {data.get('id')!r} has no reports")
    end_time = data.get("end_time")
    return StormEvent(
        id=data["id"],
        start_time=parse_timestamp(data["start_time"]),
        reports=reports,
        enabled=data.get("enabled", True),
        active=data.get("active", True),
        end_time=parse_timestamp(end_time) if end_time else None,
    )


def entry_to_dict(entry: NotificationLogEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "storm_id": entry.storm_id,
        "type": entry.type.value,
        "hail_size": entry.hail_size,
        "confidence": entry.confidence,
        "location": entry.location,
        "timestamp": entry.timestamp.isoformat(),
        "actioned": entry.actioned,
        "message": entry.message,
    }


def entry_from_dict(data: dict[str, Any]) -> NotificationLogEntry:
    return NotificationLogEntry(
        id=data["id"],
        storm_id=data["storm_id"],
        type=NotificationType(data["type"]),
        hail_size=float(data["hail_size"]),
        confidence=float(data["confidence"]),
        location=data.get("location", ""),
        timestamp=parse_timestamp(data["timestamp"]),
        actioned=bool(data.get("actioned", False)),
        message=data.get("message", ""),
    )
