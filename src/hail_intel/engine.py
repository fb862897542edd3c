"""Engine orchestrator: resolve -> label -> score -> cluster -> escalate -> persist -> notify."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from requests import Session

from hail_intel.aggregator import StormAggregator
from hail_intel.analysis import AddressHit, ValidationMetrics, address_history, validation_metrics
from hail_intel.config import HailIntelConfig
from hail_intel.escalation import EscalationStateMachine
from hail_intel.fetchers import ArchiveMeshSource, RealtimeMeshSource, StaticFallbackSource
from hail_intel.geo import label_cities
from hail_intel.http import create_session
from hail_intel.models import (
    DateRange,
    HailReport,
    NotificationLogEntry,
    SocialSignal,
    SourceTier,
    StormEvent,
)
from hail_intel.notify import LogNotifier, Notifier, WebhookNotifier, in_quiet_hours
from hail_intel.resolver import TierAttempt, TieredSourceResolver
from hail_intel.scoring import score_batch
from hail_intel.store import JsonFileStore, StormStore

logger = logging.getLogger(__name__)


@dataclass
class PassResult:
    """Outcome of one batch pass."""

    tier_used: SourceTier | None
    report_count: int
    storms: list[StormEvent] = field(default_factory=list)
    notifications: list[NotificationLogEntry] = field(default_factory=list)
    delivered: int = 0
    attempts: list[TierAttempt] = field(default_factory=list)


class HailIntelEngine:
    """Runs batch passes over one aggregator and one escalation state machine.

    Passes never overlap: ``process_batch`` holds an engine-wide lock, so
    each batch is scored, clustered and evaluated to completion before the
    next begins.  Persistence failures propagate to the caller after the
    in-memory state has been updated; nothing is rolled back.  Alerts and
    storms the store rejected stay queued in memory and are written, then
    delivered, by the next pass, so a retry never loses an alert.
    """

    def __init__(
        self,
        config: HailIntelConfig,
        resolver: TieredSourceResolver,
        store: StormStore,
        notifier: Notifier | None = None,
        geocode: bool = True,
    ) -> None:
        self.config = config
        self.resolver = resolver
        self.store = store
        self.notifier = notifier if notifier is not None else LogNotifier()
        self.geocode = geocode
        self.aggregator = StormAggregator(
            cluster_radius_miles=config.cluster_radius_miles,
            cluster_window=timedelta(minutes=config.cluster_window_minutes),
            quiet_window=timedelta(minutes=config.quiet_window_minutes),
        )
        self.escalation = EscalationStateMachine(
            alert_threshold=config.alert_threshold,
            size_tiers=config.size_tiers,
            expansion_factor=config.expansion_factor,
            min_alert_size_inches=config.min_alert_size_inches,
        )
        self._pass_lock = threading.Lock()
        self._started = False
        # work a failed write left behind; the next pass writes it first
        self._unlogged: list[NotificationLogEntry] = []
        self._unsaved: dict[str, StormEvent] = {}
        self._undelivered: list[NotificationLogEntry] = []

    @classmethod
    def from_config(
        cls,
        config: HailIntelConfig,
        session: Session | None = None,
        store: StormStore | None = None,
        notifier: Notifier | None = None,
    ) -> HailIntelEngine:
        """Wire up the HTTP tiers, JSON store and notifier the config describes."""
        if session is None:
            session = create_session()

        fallback = (
            StaticFallbackSource(config.fallback_dataset)
            if config.fallback_dataset is not None
            else None
        )
        resolver = TieredSourceResolver(
            realtime=RealtimeMeshSource(
                config.realtime_url, session=session, timeout=config.tier_timeout_seconds,
            ),
            historical=ArchiveMeshSource(
                config.historical_url,
                session=session,
                timeout=config.tier_timeout_seconds,
                use_cache=config.cache_enabled,
            ),
            fallback=fallback,
            timeout_seconds=config.tier_timeout_seconds,
            realtime_window_days=config.realtime_window_days,
            service_area=config.service_area,
        )
        if store is None:
            store = JsonFileStore(config.store_dir)
        if notifier is None:
            notifier = WebhookNotifier(config.webhook_url) if config.webhook_url else LogNotifier()
        return cls(config, resolver, store, notifier)

    def start(self) -> None:
        """Load persisted storms and replay the notification log (once)."""
        if self._started:
            return
        events = self.store.load_storm_events()
        self.aggregator.load(events)
        self.escalation.restore(self.store.load_notification_log(), events)
        self._started = True

    def _deliver(self, entries: Sequence[NotificationLogEntry], now: datetime) -> int:
        if in_quiet_hours(self.config.quiet_hours_start, self.config.quiet_hours_end, now):
            if entries:
                logger.info("Quiet hours: holding %d alert(s) back from delivery", len(entries))
            return 0
        for entry in entries:
            try:
                self.notifier.send(entry)
            except Exception:
                logger.warning("Notifier failed on alert %s", entry.id, exc_info=True)
        return len(entries)

    def process_batch(
        self,
        reports: Sequence[HailReport],
        tier: SourceTier | None = None,
        social_signals: Sequence[SocialSignal] | None = None,
        now: datetime | None = None,
    ) -> PassResult:
        """Score, cluster, escalate, persist and notify one batch of reports."""
        if now is None:
            now = datetime.now(tz=timezone.utc)

        with self._pass_lock:
            self.start()
            batch = label_cities(list(reports)) if self.geocode and reports else list(reports)

            context = [r.report for r in self.aggregator.tracked_reports()]
            scored = score_batch(batch, context, social_signals, now)

            was_active = {e.id for e in self.aggregator.active_events}
            replay = tier is not None and tier is not SourceTier.REALTIME
            touched = self.aggregator.ingest_batch(scored, now, replay=replay)
            if not replay:
                self.aggregator.sweep(now)
            touched_ids = {e.id for e in touched}
            closed = [
                e for e in self.aggregator.events
                if e.id in was_active and not e.active and e.id not in touched_ids
            ]

            entries = self.escalation.evaluate_all(touched, now)
            logger.info(
                "Batch of %d report(s): %d storm(s) updated, %d closed, %d alert(s)",
                len(scored), len(touched), len(closed), len(entries),
            )

            self._unlogged.extend(entries)
            for event in touched + closed:
                self._unsaved[event.id] = event
            notifications = self._persist()

            delivered = self._deliver(notifications, now)
            self._undelivered.clear()
            return PassResult(
                tier_used=tier,
                report_count=len(scored),
                storms=touched,
                notifications=notifications,
                delivered=delivered,
            )

    def _persist(self) -> list[NotificationLogEntry]:
        """Write queued log entries, then queued storms.

        Each item leaves its queue only once the store accepted it, so a
        PersistenceFailure leaves the rest for the next pass to retry.
        Returns every logged entry still waiting for delivery.
        """
        if self._unlogged or self._unsaved:
            logger.debug(
                "Persisting %d alert(s) and %d storm(s)", len(self._unlogged), len(self._unsaved),
            )
        while self._unlogged:
            self.store.append_notification_log_entry(self._unlogged[0])
            self._undelivered.append(self._unlogged.pop(0))
        for storm_id in list(self._unsaved):
            self.store.save_storm_event(self._unsaved[storm_id])
            del self._unsaved[storm_id]
        return list(self._undelivered)

    def run_pass(
        self,
        date_range: DateRange,
        social_signals: Sequence[SocialSignal] | None = None,
        now: datetime | None = None,
    ) -> PassResult:
        """Resolve a date range from the tiers and process the result as one batch.

        Raises SourcesExhausted when no tier could answer.
        """
        if now is None:
            now = datetime.now(tz=timezone.utc)
        logger.info("Resolving hail reports for %s .. %s", date_range.start, date_range.end)
        resolved = self.resolver.resolve(date_range, now)
        result = self.process_batch(resolved.reports, resolved.tier_used, social_signals, now)
        result.attempts = resolved.attempts
        return result

    # -- user actions ----------------------------------------------------

    def set_enabled(self, storm_id: str, enabled: bool) -> StormEvent:
        self.start()
        event = self.aggregator.set_enabled(storm_id, enabled)
        self.store.save_storm_event(event)
        return event

    def focus_on(self, storm_id: str) -> StormEvent:
        """Show one storm on the map and hide the rest."""
        self.start()
        focused = self.aggregator.focus_on(storm_id)
        for event in self.aggregator.events:
            self.store.save_storm_event(event)
        return focused

    def mark_actioned(self, entry_id: str) -> NotificationLogEntry:
        """Record that the user acted on an alert; the state machine is untouched."""
        return self.store.mark_notification_actioned(entry_id)

    # -- look-back queries -----------------------------------------------

    def address_history(
        self,
        latitude: float,
        longitude: float,
        radius_miles: float,
        since: datetime | None = None,
    ) -> list[AddressHit]:
        """Tracked storms that dropped hail near an address, newest first."""
        self.start()
        return address_history(self.aggregator.events, latitude, longitude, radius_miles, since)

    def validate_against(
        self, ground_truth: Sequence[HailReport], date_range: DateRange,
    ) -> ValidationMetrics:
        """Compare the reports tracked inside *date_range* with observed ones."""
        self.start()
        predictions = [
            s.report for s in self.aggregator.tracked_reports()
            if date_range.contains(s.report.timestamp)
        ]
        observed = [r for r in ground_truth if date_range.contains(r.timestamp)]
        metrics = validation_metrics(predictions, observed)
        logger.info(
            "Validation over %d prediction(s) and %d observed report(s): "
            "precision %.2f, recall %.2f, F1 %.2f",
            len(predictions), len(observed), metrics.precision, metrics.recall, metrics.f1_score,
        )
        return metrics
