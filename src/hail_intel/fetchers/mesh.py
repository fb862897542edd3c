"""MESH server fetchers: the real-time feed and the historical archive."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any

import requests
from requests import Session

from hail_intel.cache import (
    ARCHIVE_TTL,
    RECENT_ARCHIVE_TTL,
    cache_get_json,
    cache_put_json,
)
from hail_intel.errors import SourceUnavailable
from hail_intel.http import create_session
from hail_intel.models import DateRange, HailReport, SourceTier
from hail_intel.validation import parse_reports

logger = logging.getLogger(__name__)


def _get_json(session: Session, url: str, timeout: float, tier: SourceTier) -> Any:
    """GET *url* and decode its JSON body, mapping failures to SourceUnavailable."""
    try:
        resp = session.get(url, timeout=timeout)
    except requests.Timeout as exc:
        raise SourceUnavailable(tier.value, "timeout", str(exc)) from exc
    except requests.RequestException as exc:
        raise SourceUnavailable(tier.value, "unreachable", str(exc)) from exc

    if resp.status_code != 200:
        raise SourceUnavailable(tier.value, "unreachable", f"{url} returned {resp.status_code}")
    try:
        return resp.json()
    except ValueError as exc:
        raise SourceUnavailable(tier.value, "malformed", f"{url} did not return JSON") from exc


def _list_field(payload: Any, key: str, tier: SourceTier) -> list[Any]:
    if not isinstance(payload, dict) or not isinstance(payload.get(key), list):
        raise SourceUnavailable(tier.value, "malformed", f"payload has no '{key}' list")
    return payload[key]


class RealtimeMeshSource:
    """NCEP MRMS real-time MESH detections, as served by the real-time server.

    The server only knows about storms happening now, so the date range is
    applied after the fact.  Detections repeated at the same location (to
    three decimal places) collapse to the first one.
    """

    tier = SourceTier.REALTIME
    name = "NCEP MRMS Real-Time"

    def __init__(
        self,
        base_url: str,
        session: Session | None = None,
        timeout: float = 20.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else create_session()
        self.timeout = timeout

    def fetch(self, date_range: DateRange) -> list[HailReport]:
        payload = _get_json(
            self.session, f"{self.base_url}/api/storms/current", self.timeout, self.tier,
        )
        items = _list_field(payload, "storms", self.tier)
        now = datetime.now(tz=timezone.utc)
        reports = parse_reports(items, self.tier, self.name, default_timestamp=now)

        seen: set[str] = set()
        unique: list[HailReport] = []
        for r in reports:
            key = f"{r.latitude:.3f},{r.longitude:.3f}"
            if key in seen:
                continue
            seen.add(key)
            unique.append(r)

        in_range = [r for r in unique if date_range.contains(r.timestamp)]
        logger.info(
            "Real-time feed: %d detections, %d in range", len(unique), len(in_range)
        )
        return in_range


class ArchiveMeshSource:
    """IEM-backed MESH archive, one request per calendar day.

    Past days are cached on disk; a day the archive has no file for (HTTP 404)
    simply contributes nothing.  The tier only fails when every requested day
    fails.
    """

    tier = SourceTier.HISTORICAL
    name = "IEM MESH Archive"

    def __init__(
        self,
        base_url: str,
        session: Session | None = None,
        timeout: float = 20.0,
        use_cache: bool = True,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else create_session()
        self.timeout = timeout
        self.use_cache = use_cache

    def _fetch_day(self, day: date, today: date) -> list[Any]:
        cache_key = f"mesh_{day.isoformat()}"
        cacheable = self.use_cache and day < today
        ttl = ARCHIVE_TTL if day < today - timedelta(days=2) else RECENT_ARCHIVE_TTL

        if cacheable:
            cached = cache_get_json(cache_key, ttl)
            if cached is not None:
                logger.debug("Using cached archive data for %s", day)
                return cached

        url = f"{self.base_url}/api/mesh/{day.isoformat()}"
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as exc:
            raise SourceUnavailable(self.tier.value, "timeout", str(exc)) from exc
        except requests.RequestException as exc:
            raise SourceUnavailable(self.tier.value, "unreachable", str(exc)) from exc

        if resp.status_code == 404:
            logger.debug("Archive has no data for %s", day)
            return []
        if resp.status_code != 200:
            raise SourceUnavailable(
                self.tier.value, "unreachable", f"{url} returned {resp.status_code}"
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise SourceUnavailable(self.tier.value, "malformed", f"{url} did not return JSON") from exc

        items = _list_field(payload, "reports", self.tier)
        if cacheable:
            cache_put_json(cache_key, items)
        return items

    def fetch(self, date_range: DateRange) -> list[HailReport]:
        today = datetime.now(tz=timezone.utc).date()
        items: list[Any] = []
        failures: list[SourceUnavailable] = []
        days = list(date_range.days())

        for day in days:
            try:
                items.extend(self._fetch_day(day, today))
            except SourceUnavailable as exc:
                logger.warning("Archive day %s unavailable: %s", day, exc)
                failures.append(exc)

        if days and len(failures) == len(days):
            raise failures[-1]

        reports = parse_reports(items, self.tier, self.name)
        in_range = [r for r in reports if date_range.contains(r.timestamp)]
        logger.info(
            "Archive: %d reports over %d day(s), %d in range",
            len(reports), len(days), len(in_range),
        )
        return in_range
