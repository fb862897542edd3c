"""Look-back analysis over tracked storms: address hail history and ground-truth checks."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from hail_intel.geo import distance_miles
from hail_intel.models import HailReport, StormEvent

MATCH_RADIUS_MILES = 10.0
MATCH_WINDOW = timedelta(hours=1)
ADDRESS_RADIUS_MILES = 1.0


@dataclass(frozen=True)
class AddressHit:
    """One storm that dropped hail near an address."""

    storm_id: str
    location: str
    start_time: datetime
    max_size_inches: float
    closest_miles: float
    report_count: int


def address_history(
    events: Sequence[StormEvent],
    latitude: float,
    longitude: float,
    radius_miles: float = ADDRESS_RADIUS_MILES,
    since: datetime | None = None,
) -> list[AddressHit]:
    """Storms with at least one report within *radius_miles* of a point, newest first.

    Size and count only cover the nearby reports, not the whole storm.
    """
    if radius_miles <= 0:
        raise ValueError("radius_miles must be positive")

    hits: list[AddressHit] = []
    for event in events:
        if since is not None and event.latest_timestamp < since:
            continue
        nearby: list[tuple[float, HailReport]] = []
        for scored in event.reports:
            r = scored.report
            d = distance_miles((latitude, longitude), (r.latitude, r.longitude))
            if d <= radius_miles:
                nearby.append((d, r))
        if not nearby:
            continue
        hits.append(AddressHit(
            storm_id=event.id,
            location=event.location,
            start_time=event.start_time,
            max_size_inches=max(r.size_inches for _, r in nearby),
            closest_miles=min(d for d, _ in nearby),
            report_count=len(nearby),
        ))
    hits.sort(key=lambda h: (h.start_time, h.storm_id), reverse=True)
    return hits


@dataclass(frozen=True)
class ValidationMetrics:
    """How well predicted reports line up with observed ground truth."""

    true_positives: int
    false_positives: int
    false_negatives: int
    precision: float
    recall: float
    f1_score: float
    # matched predictions per 1x1 degree cell, keyed "floor(lat),floor(lon)"
    matches_by_area: dict[str, int] = field(default_factory=dict)


def _matches(
    a: HailReport, b: HailReport, radius_miles: float, window: timedelta,
) -> bool:
    return (
        abs(a.timestamp - b.timestamp) < window
        and distance_miles((a.latitude, a.longitude), (b.latitude, b.longitude)) < radius_miles
    )


def area_key(latitude: float, longitude: float) -> str:
    return f"{math.floor(latitude)},{math.floor(longitude)}"


def validation_metrics(
    predictions: Sequence[HailReport],
    ground_truth: Sequence[HailReport],
    radius_miles: float = MATCH_RADIUS_MILES,
    window: timedelta = MATCH_WINDOW,
) -> ValidationMetrics:
    """Match predictions to observed reports and compute precision, recall and F1.

    A prediction is a true positive when any observed report lies strictly
    inside *radius_miles* and *window* of it; otherwise it is a false
    positive.  Observed reports no prediction matches are false negatives.
    Ratios with a zero denominator are 0.0.
    """
    true_positives = 0
    false_positives = 0
    by_area: dict[str, int] = {}
    for pred in predictions:
        if any(_matches(pred, truth, radius_miles, window) for truth in ground_truth):
            true_positives += 1
            key = area_key(pred.latitude, pred.longitude)
            by_area[key] = by_area.get(key, 0) + 1
        else:
            false_positives += 1

    false_negatives = sum(
        1
        for truth in ground_truth
        if not any(_matches(pred, truth, radius_miles, window) for pred in predictions)
    )

    precision = true_positives / (true_positives + false_positives) if predictions else 0.0
    recall = (
        true_positives / (true_positives + false_negatives)
        if true_positives + false_negatives
        else 0.0
    )
    f1 = 2 * precision * recall / (precision + recall) if precision + recall else 0.0
    return ValidationMetrics(
        true_positives=true_positives,
        false_positives=false_positives,
        false_negatives=false_negatives,
        precision=precision,
        recall=recall,
        f1_score=f1,
        matches_by_area=by_area,
    )
