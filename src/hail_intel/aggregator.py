"""Clustering scored hail reports into tracked storm events."""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone

from hail_intel.geo import distance_miles
from hail_intel.models import ScoredReport, StormEvent

logger = logging.getLogger(__name__)


def _new_storm_id() -> str:
    return f"storm_{uuid.uuid4().hex[:12]}"


class StormAggregator:
    """Owns every StormEvent the engine tracks.

    A report merges into an active event when it lies within
    ``cluster_radius_miles`` and ``cluster_window`` of that event's most
    recent report; otherwise it opens a new event.  When several events
    qualify, the one whose centroid is nearest wins (event id breaks exact
    ties).  Each report is owned by exactly one event.

    Events go inactive lazily: every ingest sweeps events whose latest report
    is older than ``quiet_window`` relative to ``now``.  Inactive events are
    never deleted here; that is the storage layer's call.
    """

    def __init__(
        self,
        cluster_radius_miles: float = 5.0,
        cluster_window: timedelta = timedelta(minutes=30),
        quiet_window: timedelta = timedelta(hours=2),
        id_factory: Callable[[], str] = _new_storm_id,
    ) -> None:
        self.cluster_radius_miles = cluster_radius_miles
        self.cluster_window = cluster_window
        self.quiet_window = quiet_window
        self._id_factory = id_factory
        self._events: dict[str, StormEvent] = {}
        self._owner: dict[str, str] = {}  # report id -> storm id
        self._registry_lock = threading.Lock()
        self._event_locks: dict[str, threading.Lock] = {}

    # -- queries -----------------------------------------------------------

    @property
    def events(self) -> list[StormEvent]:
        """All tracked events, oldest first."""
        return sorted(self._events.values(), key=lambda e: (e.start_time, e.id))

    @property
    def active_events(self) -> list[StormEvent]:
        return [e for e in self.events if e.active]

    def get(self, storm_id: str) -> StormEvent | None:
        return self._events.get(storm_id)

    def owner_of(self, report_id: str) -> StormEvent | None:
        storm_id = self._owner.get(report_id)
        return self._events.get(storm_id) if storm_id else None

    def tracked_reports(self) -> list[ScoredReport]:
        return [r for e in self._events.values() for r in e.reports]

    # -- mutation ----------------------------------------------------------

    def _lock_for(self, storm_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._event_locks.setdefault(storm_id, threading.Lock())

    def load(self, events: Iterable[StormEvent]) -> None:
        """Adopt previously persisted events, e.g. after a restart."""
        with self._registry_lock:
            for event in events:
                self._events[event.id] = event
                for r in event.reports:
                    self._owner.setdefault(r.id, event.id)
        logger.info("Loaded %d storm event(s)", len(self._events))

    def sweep(self, now: datetime) -> list[StormEvent]:
        """Deactivate events that have been quiet too long; return the ones flipped."""
        flipped: list[StormEvent] = []
        for event in list(self._events.values()):
            if not event.active:
                continue
            with self._lock_for(event.id):
                latest = event.latest_timestamp
                if now - latest > self.quiet_window:
                    event.active = False
                    event.end_time = latest
                    flipped.append(event)
        for event in flipped:
            logger.info("Storm %s went quiet after %d report(s)", event.id, event.report_count)
        return flipped

    def _candidates(self, scored: ScoredReport) -> list[StormEvent]:
        point = (scored.latitude, scored.longitude)
        matches: list[StormEvent] = []
        for event in self._events.values():
            if not event.active:
                continue
            last = event.last_report
            if abs(scored.timestamp - last.timestamp) > self.cluster_window:
                continue
            if distance_miles(point, (last.latitude, last.longitude)) > self.cluster_radius_miles:
                continue
            matches.append(event)
        return matches

    def ingest(self, scored: ScoredReport, now: datetime | None = None) -> StormEvent:
        """Merge a scored report into the matching event, or open a new one.

        Returns the event that now owns the report.  Re-ingesting a report
        that already has an owner returns that owner unchanged.
        """
        if now is None:
            now = datetime.now(tz=timezone.utc)

        owner = self.owner_of(scored.id)
        if owner is not None:
            logger.debug("Report %s already belongs to %s", scored.id, owner.id)
            return owner

        self.sweep(now)

        candidates = self._candidates(scored)
        if not candidates:
            event = StormEvent(
                id=self._id_factory(),
                start_time=scored.timestamp,
                reports=[scored],
            )
            with self._registry_lock:
                self._events[event.id] = event
                self._owner[scored.id] = event.id
            logger.debug("Report %s opened storm %s", scored.id, event.id)
            return event

        point = (scored.latitude, scored.longitude)
        ranked = sorted(candidates, key=lambda e: (distance_miles(point, e.centroid), e.id))
        event = ranked[0]
        if len(ranked) > 1:
            logger.debug(
                "Report %s fits %d storms, joining nearest centroid %s",
                scored.id, len(ranked), event.id,
            )

        with self._lock_for(event.id):
            event.add_report(scored)
        with self._registry_lock:
            self._owner[scored.id] = event.id
        return event

    def ingest_batch(
        self,
        batch: Iterable[ScoredReport],
        now: datetime | None = None,
        replay: bool = False,
    ) -> list[StormEvent]:
        """Ingest reports in timestamp order; return the distinct events touched.

        With ``replay`` the quiet-window sweep runs on the batch's own clock
        (each report's timestamp) so archived storm days cluster the way they
        did live; a final sweep at ``now`` then closes whatever has ended.
        """
        if now is None:
            now = datetime.now(tz=timezone.utc)
        touched: dict[str, StormEvent] = {}
        for scored in sorted(batch, key=lambda s: (s.timestamp, s.id)):
            event = self.ingest(scored, scored.timestamp if replay else now)
            touched[event.id] = event
        if replay:
            self.sweep(now)
        return list(touched.values())

    def set_enabled(self, storm_id: str, enabled: bool) -> StormEvent:
        """Flip a storm's map toggle.  Raises KeyError for unknown ids."""
        event = self._events[storm_id]
        with self._lock_for(storm_id):
            event.enabled = enabled
        return event

    def focus_on(self, storm_id: str) -> StormEvent:
        """Enable one storm and disable every other."""
        if storm_id not in self._events:
            raise KeyError(storm_id)
        for event in self._events.values():
            with self._lock_for(event.id):
                event.enabled = event.id == storm_id
        return self._events[storm_id]
