"""Tiered source resolution: freshest trustworthy data first, fall back in order."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Literal, Protocol

from hail_intel.config import ServiceArea
from hail_intel.errors import SourcesExhausted, SourceUnavailable
from hail_intel.models import DateRange, HailReport, SourceTier
from hail_intel.validation import validate_reports

logger = logging.getLogger(__name__)

AttemptStatus = Literal["ok", "empty", "failed", "skipped"]


class HailSource(Protocol):
    """A source tier: answers a date range with hail reports or raises."""

    tier: SourceTier

    def fetch(self, date_range: DateRange) -> list[HailReport]: ...


@dataclass(frozen=True)
class TierAttempt:
    """What happened when one tier was consulted."""

    tier: SourceTier
    status: AttemptStatus
    report_count: int = 0
    error: str | None = None


@dataclass
class ResolveResult:
    reports: list[HailReport]
    tier_used: SourceTier | None
    attempts: list[TierAttempt] = field(default_factory=list)


class TieredSourceResolver:
    """Query the real-time, historical and fallback tiers in strict priority order.

    Each tier gets its own timeout.  A tier that times out, cannot be
    reached, answers garbage or raises is treated as empty and the next tier
    is tried; it is not retried within the same call.  Tiers are never raced:
    the next one starts only after the current one has answered or timed out.
    """

    def __init__(
        self,
        realtime: HailSource | None = None,
        historical: HailSource | None = None,
        fallback: HailSource | None = None,
        timeout_seconds: float = 20.0,
        realtime_window_days: int = 7,
        service_area: ServiceArea | None = None,
    ) -> None:
        self.realtime = realtime
        self.historical = historical
        self.fallback = fallback
        self.timeout_seconds = timeout_seconds
        self.realtime_window_days = realtime_window_days
        self.service_area = service_area

    def realtime_eligible(self, date_range: DateRange, now: datetime) -> bool:
        """True when the whole range lies inside the real-time window."""
        window_start = now - timedelta(days=self.realtime_window_days)
        return date_range.start >= window_start

    def _call(
        self,
        executor: ThreadPoolExecutor,
        source: HailSource,
        date_range: DateRange,
    ) -> list[HailReport]:
        future = executor.submit(source.fetch, date_range)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeout:
            future.cancel()
            raise SourceUnavailable(
                source.tier.value, "timeout", f"no answer within {self.timeout_seconds:g}s"
            ) from None

    def _consult(
        self,
        executor: ThreadPoolExecutor,
        source: HailSource,
        date_range: DateRange,
        now: datetime,
    ) -> tuple[list[HailReport], TierAttempt]:
        tier = source.tier
        try:
            raw = self._call(executor, source, date_range)
        except SourceUnavailable as exc:
            logger.warning("%s tier unavailable (%s), trying next tier", tier.value, exc.reason)
            return [], TierAttempt(tier, "failed", error=str(exc))
        except Exception as exc:
            logger.warning("%s tier raised, trying next tier", tier.value, exc_info=True)
            return [], TierAttempt(tier, "failed", error=f"{type(exc).__name__}: {exc}")

        reports = validate_reports(raw, now, self.realtime_window_days, self.service_area)
        dropped = len(raw) - len(reports)
        if dropped:
            logger.info("%s tier: dropped %d invalid report(s)", tier.value, dropped)
        status: AttemptStatus = "ok" if reports else "empty"
        return reports, TierAttempt(tier, status, report_count=len(reports))

    def resolve(self, date_range: DateRange, now: datetime | None = None) -> ResolveResult:
        """Return the first non-empty validated result set and the tier that produced it.

        If every tier answers empty the result is empty, attributed to the
        last tier that answered.  Raises SourcesExhausted only when no tier
        answered at all and no fallback dataset is configured to answer.
        """
        if now is None:
            now = datetime.now(tz=timezone.utc)

        chain: list[tuple[SourceTier, HailSource | None]] = [
            (SourceTier.REALTIME, self.realtime),
            (SourceTier.HISTORICAL, self.historical),
            (SourceTier.FALLBACK, self.fallback),
        ]
        attempts: list[TierAttempt] = []
        last_answered: SourceTier | None = None

        executor = ThreadPoolExecutor(max_workers=len(chain), thread_name_prefix="hail-tier")
        try:
            for tier, source in chain:
                if source is None:
                    attempts.append(TierAttempt(tier, "skipped", error="not configured"))
                    continue
                if tier is SourceTier.REALTIME and not self.realtime_eligible(date_range, now):
                    logger.debug("Range starts before the real-time window, skipping live tier")
                    attempts.append(TierAttempt(tier, "skipped", error="outside real-time window"))
                    continue

                reports, attempt = self._consult(executor, source, date_range, now)
                attempts.append(attempt)
                if attempt.status == "failed":
                    continue
                last_answered = tier
                if reports:
                    logger.info("Resolved %d report(s) from the %s tier", len(reports), tier.value)
                    return ResolveResult(reports, tier, attempts)
        finally:
            # Timed-out calls may still be running; do not wait for them.
            executor.shutdown(wait=False, cancel_futures=True)

        if last_answered is None:
            failed = [a.tier.value for a in attempts if a.status == "failed"]
            raise SourcesExhausted(failed)

        logger.info("No hail reports in any tier for %s .. %s", date_range.start, date_range.end)
        return ResolveResult([], last_answered, attempts)
