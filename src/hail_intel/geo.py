"""Geographic utilities: Haversine distance, neighbourhood filters and city labels."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Protocol, TypeVar

import reverse_geocoder as rg

from hail_intel.models import Bounds, HailReport

EARTH_RADIUS_MILES = 3959.0

LatLon = tuple[float, float]


class Located(Protocol):
    @property
    def latitude(self) -> float: ...

    @property
    def longitude(self) -> float: ...

    @property
    def timestamp(self) -> datetime: ...


T = TypeVar("T", bound=Located)


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate the great-circle distance in miles between two points on Earth."""
    lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Float rounding can push a past 1.0 for antipodal points
    return EARTH_RADIUS_MILES * 2 * math.asin(math.sqrt(min(a, 1.0)))


def distance_miles(a: LatLon, b: LatLon) -> float:
    """Distance in miles between two (lat, lon) pairs given in degrees."""
    return haversine_miles(a[0], a[1], b[0], b[1])


def reports_within(
    center: LatLon,
    radius_miles: float,
    time_window: timedelta,
    candidates: Iterable[T],
    reference_time: datetime,
) -> list[T]:
    """Keep the candidates inside both the radius and the time window.

    The window is symmetric: a candidate qualifies when its timestamp lies
    within *time_window* before or after *reference_time*.  Both bounds are
    inclusive.
    """
    return [
        c
        for c in candidates
        if abs(c.timestamp - reference_time) <= time_window
        and distance_miles(center, (c.latitude, c.longitude)) <= radius_miles
    ]


def centroid(points: Sequence[LatLon]) -> LatLon:
    """Arithmetic mean of a non-empty set of points."""
    if not points:
        raise ValueError("Cannot compute the centroid of no points")
    n = len(points)
    return sum(p[0] for p in points) / n, sum(p[1] for p in points) / n


def bounding_box(points: Sequence[LatLon]) -> Bounds:
    if not points:
        raise ValueError("Cannot compute the bounds of no points")
    lats = [p[0] for p in points]
    lons = [p[1] for p in points]
    return Bounds(north=max(lats), south=min(lats), east=max(lons), west=min(lons))


def label_cities(reports: list[HailReport]) -> list[HailReport]:
    """Fill in ``city`` with the nearest named place for every unlabelled report.

    Reports that already carry a label are returned untouched.  The lookup is
    a single offline reverse-geocoding batch.
    """
    pending = [i for i, r in enumerate(reports) if not r.city]
    if not pending:
        return list(reports)

    coords = [(reports[i].latitude, reports[i].longitude) for i in pending]
    places = rg.search(coords)

    labelled = list(reports)
    for i, place in zip(pending, places, strict=True):
        name = place.get("name") or place.get("admin2") or place.get("admin1")
        if name:
            labelled[i] = replace(reports[i], city=name)
    return labelled
