"""Alert escalation: deciding when a storm deserves another notification."""

from __future__ import annotations

import bisect
import logging
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from hail_intel.config import DEFAULT_SIZE_TIERS
from hail_intel.models import NotificationLogEntry, NotificationType, StormEvent

logger = logging.getLogger(__name__)


class AlertPhase(str, Enum):
    UNSEEN = "unseen"
    INITIAL_SENT = "initial_sent"
    ESCALATED = "escalated"
    EXPANDED = "expanded"


@dataclass
class StormAlertState:
    """Hysteresis memory for one storm.

    ``size_tier`` and ``report_baseline`` are the values recorded when the
    last escalation (or the initial alert) and the last expansion (or the
    initial alert) fired.  Thresholds are only re-crossed by net increases
    over these, never by wobbling around them.
    """

    phase: AlertPhase = AlertPhase.UNSEEN
    size_tier: int = 0
    report_baseline: int = 0


def _new_entry_id() -> str:
    return f"alert_{uuid.uuid4().hex[:12]}"


def size_tier_index(size_inches: float, tiers: Sequence[float]) -> int:
    """Number of tiers at or below *size_inches* (0 = below the first tier)."""
    return bisect.bisect_right(list(tiers), size_inches)


def alert_message(kind: NotificationType, event: StormEvent) -> str:
    """Notification text for an alert about *event*."""
    size = event.peak_size_inches
    place = event.location
    if kind is NotificationType.INITIAL:
        prefix = "SEVERE" if size >= 2.0 else "ALERT"
        return f'{prefix}: Hail detected in {place} - {size:.1f}" hail'
    if kind is NotificationType.ESCALATION:
        return f'ALERT: Hail increasing to {size:.1f}" in {place}'
    return f'ALERT: Hail spreading near {place} - {event.report_count} reports, {size:.1f}" peak'


class EscalationStateMachine:
    """Derives typed notifications from storm mutations.

    - ``initial`` fires once per storm, the first time its mean report
      confidence reaches ``alert_threshold`` (and its peak size reaches
      ``min_alert_size_inches``).
    - ``escalation`` fires for an alerted storm whose peak size has moved
      into a higher size tier than the one recorded at its last
      initial/escalation alert.
    - ``expansion`` fires for an alerted storm whose report count has grown
      to ``expansion_factor`` times the count recorded at its last
      initial/expansion alert.

    The machine only reads storms.  Actioning a log entry happens elsewhere
    and never feeds back into it.
    """

    def __init__(
        self,
        alert_threshold: float = 55.0,
        size_tiers: Sequence[float] = DEFAULT_SIZE_TIERS,
        expansion_factor: float = 2.0,
        min_alert_size_inches: float = 0.0,
        id_factory: Callable[[], str] = _new_entry_id,
    ) -> None:
        self.alert_threshold = alert_threshold
        self.size_tiers = tuple(size_tiers)
        self.expansion_factor = expansion_factor
        self.min_alert_size_inches = min_alert_size_inches
        self._id_factory = id_factory
        self._states: dict[str, StormAlertState] = {}

    def state_of(self, storm_id: str) -> StormAlertState:
        return self._states.get(storm_id, StormAlertState())

    def restore(
        self,
        entries: Iterable[NotificationLogEntry],
        events: Iterable[StormEvent] = (),
    ) -> None:
        """Rebuild per-storm state from a persisted notification log.

        Baselines come from the logged hail sizes.  Report-count baselines
        are not logged, so they fall back to the storm's current count when
        the storm is known, which means a restart never re-fires an
        expansion on its own.
        """
        counts = {e.id: e.report_count for e in events}
        for entry in sorted(entries, key=lambda e: e.timestamp):
            state = self._states.setdefault(entry.storm_id, StormAlertState())
            if entry.type is NotificationType.INITIAL:
                state.phase = AlertPhase.INITIAL_SENT
                state.size_tier = size_tier_index(entry.hail_size, self.size_tiers)
            elif entry.type is NotificationType.ESCALATION:
                state.phase = AlertPhase.ESCALATED
                state.size_tier = max(
                    state.size_tier, size_tier_index(entry.hail_size, self.size_tiers)
                )
            else:
                state.phase = AlertPhase.EXPANDED
        for storm_id, state in self._states.items():
            if state.phase is not AlertPhase.UNSEEN:
                state.report_baseline = max(state.report_baseline, counts.get(storm_id, 1))
        logger.debug("Restored alert state for %d storm(s)", len(self._states))

    def _entry(
        self, kind: NotificationType, event: StormEvent, now: datetime,
    ) -> NotificationLogEntry:
        return NotificationLogEntry(
            id=self._id_factory(),
            storm_id=event.id,
            type=kind,
            hail_size=event.peak_size_inches,
            confidence=round(event.mean_confidence, 1),
            location=event.location,
            timestamp=now,
            message=alert_message(kind, event),
        )

    def evaluate(self, event: StormEvent, now: datetime | None = None) -> list[NotificationLogEntry]:
        """Return the notifications *event* earns right now (possibly none)."""
        if now is None:
            now = datetime.now(tz=timezone.utc)
        state = self._states.setdefault(event.id, StormAlertState())
        tier = size_tier_index(event.peak_size_inches, self.size_tiers)

        if state.phase is AlertPhase.UNSEEN:
            if event.mean_confidence < self.alert_threshold:
                return []
            if event.peak_size_inches < self.min_alert_size_inches:
                return []
            state.phase = AlertPhase.INITIAL_SENT
            state.size_tier = tier
            state.report_baseline = event.report_count
            logger.info(
                "Storm %s crossed the alert threshold (%.1f)", event.id, event.mean_confidence
            )
            return [self._entry(NotificationType.INITIAL, event, now)]

        entries: list[NotificationLogEntry] = []
        if tier > state.size_tier:
            state.size_tier = tier
            state.phase = AlertPhase.ESCALATED
            logger.info(
                'Storm %s escalated to %.2f" (tier %d)', event.id, event.peak_size_inches, tier
            )
            entries.append(self._entry(NotificationType.ESCALATION, event, now))

        if event.report_count >= state.report_baseline * self.expansion_factor:
            state.report_baseline = event.report_count
            state.phase = AlertPhase.EXPANDED
            logger.info("Storm %s expanded to %d reports", event.id, event.report_count)
            entries.append(self._entry(NotificationType.EXPANSION, event, now))

        return entries

    def evaluate_all(
        self, events: Iterable[StormEvent], now: datetime | None = None,
    ) -> list[NotificationLogEntry]:
        if now is None:
            now = datetime.now(tz=timezone.utc)
        entries: list[NotificationLogEntry] = []
        for event in events:
            entries.extend(self.evaluate(event, now))
        return entries
