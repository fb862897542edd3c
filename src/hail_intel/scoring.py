"""Confidence scoring: how likely a hail report means real roof damage."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from hail_intel.geo import reports_within
from hail_intel.models import ConfidenceFactors, HailReport, ScoredReport, SocialSignal

MAX_TOTAL_SCORE = 100

SOCIAL_WINDOW = timedelta(hours=2)
DENSITY_RADIUS_MILES = 5.0
DENSITY_WINDOW = timedelta(minutes=30)

# (minimum hail size in inches, score), largest first.  Based on NOAA's
# correlation between MESH size and observed damage probability.
_MESH_STEPS: tuple[tuple[float, int], ...] = (
    (2.5, 70),
    (2.0, 65),
    (1.5, 55),
    (1.0, 35),
    (0.75, 20),
)
_MESH_FLOOR = 10

# (maximum age in days, score)
_RECENCY_STEPS: tuple[tuple[float, int], ...] = (
    (1, 10),
    (3, 8),
    (7, 6),
    (14, 4),
    (30, 2),
)

# (minimum neighbour count, score)
_DENSITY_STEPS: tuple[tuple[int, int], ...] = (
    (10, 10),
    (7, 8),
    (5, 6),
    (3, 4),
    (1, 2),
)


def mesh_score(size_inches: float) -> int:
    """MESH base score (0-70).

    A step function of hail size with no interpolation between steps, so it
    is monotonic non-decreasing in size.
    """
    for threshold, points in _MESH_STEPS:
        if size_inches >= threshold:
            return points
    return _MESH_FLOOR


def social_score(report: HailReport, signals: Sequence[SocialSignal]) -> int:
    """Social media corroboration score (0-20).

    Only signals within two hours of the report count.  Mention volume
    (0-10), verified-account mentions (0-5) and damage-report mentions (0-5)
    are capped independently.
    """
    if not signals:
        return 0

    relevant = [s for s in signals if abs(s.timestamp - report.timestamp) < SOCIAL_WINDOW]
    mentions = sum(s.mentions for s in relevant)
    verified = sum(s.verified_accounts for s in relevant)
    damage = sum(s.damage_reports for s in relevant)

    score = 0
    if mentions >= 100:
        score += 10
    elif mentions >= 50:
        score += 7
    elif mentions >= 20:
        score += 5
    elif mentions >= 10:
        score += 3
    elif mentions > 0:
        score += 1

    if verified >= 5:
        score += 5
    elif verified >= 3:
        score += 4
    elif verified >= 1:
        score += 2

    if damage >= 10:
        score += 5
    elif damage >= 5:
        score += 4
    elif damage >= 2:
        score += 3
    elif damage >= 1:
        score += 2

    return min(score, 20)


def recency_score(timestamp: datetime, now: datetime | None = None) -> int:
    """Freshness score (0-10) from the report's age in days."""
    if now is None:
        now = datetime.now(tz=timezone.utc)
    age_days = (now - timestamp).total_seconds() / 86400
    for max_age, points in _RECENCY_STEPS:
        if age_days <= max_age:
            return points
    return 0


def density_score(report: HailReport, neighbors: Sequence[HailReport]) -> int:
    """Corroboration score (0-10) from neighbours within 5 miles and 30 minutes.

    The report itself is never counted as its own neighbour, and a report
    delivered more than once counts once.
    """
    others = list({n.id: n for n in neighbors if n.id != report.id}.values())
    nearby = reports_within(
        (report.latitude, report.longitude),
        DENSITY_RADIUS_MILES,
        DENSITY_WINDOW,
        others,
        report.timestamp,
    )
    count = len(nearby)
    for minimum, points in _DENSITY_STEPS:
        if count >= minimum:
            return points
    return 0


def score(
    report: HailReport,
    neighbor_reports: Sequence[HailReport],
    social_signals: Sequence[SocialSignal] | None = None,
    now: datetime | None = None,
) -> ConfidenceFactors:
    """Score one report against its neighbourhood.

    The sub-scores can nominally add up past 100; the total is clamped.
    Callers must have rejected non-positive sizes already.
    """
    mesh = mesh_score(report.size_inches)
    social = social_score(report, social_signals or [])
    recency = recency_score(report.timestamp, now)
    density = density_score(report, neighbor_reports)
    return ConfidenceFactors(
        mesh_score=mesh,
        social_score=social,
        recency_score=recency,
        density_score=density,
        total_score=min(mesh + social + recency + density, MAX_TOTAL_SCORE),
    )


def score_batch(
    reports: Sequence[HailReport],
    context_reports: Sequence[HailReport] = (),
    social_signals: Sequence[SocialSignal] | None = None,
    now: datetime | None = None,
) -> list[ScoredReport]:
    """Score a batch against itself plus reports already being tracked.

    Scores are a snapshot: reports arriving in later batches never rescore
    the ones scored here.
    """
    if now is None:
        now = datetime.now(tz=timezone.utc)
    # tiers may re-send reports already tracked; keep one copy per id
    neighborhood = list({r.id: r for r in [*context_reports, *reports]}.values())
    return [
        ScoredReport(report=r, confidence=score(r, neighborhood, social_signals, now))
        for r in reports
    ]


@dataclass(frozen=True)
class ConfidenceLevel:
    level: str
    color: str
    recommendation: str


_LEVELS: tuple[tuple[float, ConfidenceLevel], ...] = (
    (85, ConfidenceLevel(
        "Very High", "#dc2626",
        "Immediate canvassing recommended - high damage probability",
    )),
    (70, ConfidenceLevel("High", "#f97316", "Priority area - likely significant damage")),
    (55, ConfidenceLevel("Moderate", "#f59e0b", "Good potential - worth canvassing")),
    (40, ConfidenceLevel("Low", "#84cc16", "Possible damage - check if time permits")),
)
_LOWEST_LEVEL = ConfidenceLevel(
    "Very Low", "#22c55e", "Unlikely damage - focus on higher confidence areas"
)


def confidence_level(total_score: float) -> ConfidenceLevel:
    """Map a total score to its display band."""
    for minimum, level in _LEVELS:
        if total_score >= minimum:
            return level
    return _LOWEST_LEVEL


def damage_statement(factors: ConfidenceFactors, size_inches: float) -> str:
    """Plain-language damage probability statement for homeowners."""
    level = confidence_level(factors.total_score)
    parts = [
        f'Based on {size_inches:.1f}" hail detected in your area, there is a '
        f"{level.level.lower()} probability ({factors.total_score}%) of roof "
        "damage to your property."
    ]
    if factors.social_score > 10:
        parts.append("Multiple residents in your neighborhood have reported damage.")
    if factors.recency_score >= 8:
        parts.append("This is a recent storm event with fresh damage.")
    if factors.density_score >= 6:
        parts.append(
            "High concentration of hail reports confirm significant impact in your area."
        )
    return " ".join(parts)
