"""Shared fixtures for hail_intel tests."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import pytest

from hail_intel.config import HailIntelConfig
from hail_intel.engine import HailIntelEngine
from hail_intel.models import (
    ConfidenceFactors,
    DateRange,
    HailReport,
    NotificationLogEntry,
    ScoredReport,
    SourceTier,
)
from hail_intel.resolver import TieredSourceResolver
from hail_intel.store import MemoryStore


class StubSource:
    """In-process source tier that answers canned reports or raises."""

    def __init__(
        self,
        tier: SourceTier,
        reports: list[HailReport] | None = None,
        error: Exception | None = None,
        block: threading.Event | None = None,
    ) -> None:
        self.tier = tier
        self.reports = reports or []
        self.error = error
        self.block = block
        self.calls: list[DateRange] = []

    def fetch(self, date_range: DateRange) -> list[HailReport]:
        self.calls.append(date_range)
        if self.block is not None:
            self.block.wait(5)
        if self.error is not None:
            raise self.error
        return list(self.reports)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[NotificationLogEntry] = []

    def send(self, entry: NotificationLogEntry) -> None:
        self.sent.append(entry)


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 9, 24, 22, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_report() -> Callable[..., HailReport]:
    """Factory for HailReports; defaults to a fresh realtime report in Norman."""

    def _make(
        id: str = "r1",
        latitude: float = 35.2226,
        longitude: float = -97.4395,
        size_inches: float = 1.75,
        timestamp: datetime | None = None,
        source_tier: SourceTier = SourceTier.REALTIME,
        city: str | None = "Norman",
    ) -> HailReport:
        if timestamp is None:
            timestamp = datetime(2024, 9, 24, 21, 0, tzinfo=timezone.utc)
        return HailReport(
            id=id,
            latitude=latitude,
            longitude=longitude,
            size_inches=size_inches,
            timestamp=timestamp,
            source_tier=source_tier,
            city=city,
        )

    return _make


@pytest.fixture
def make_scored(make_report: Callable[..., HailReport]) -> Callable[..., ScoredReport]:
    """Factory for ScoredReports with a fixed total confidence."""

    def _make(total: int = 60, **report_kwargs: Any) -> ScoredReport:
        return ScoredReport(
            report=make_report(**report_kwargs),
            confidence=ConfidenceFactors(
                mesh_score=min(total, 70),
                social_score=0,
                recency_score=0,
                density_score=0,
                total_score=total,
            ),
        )

    return _make


@pytest.fixture
def stub_source() -> Callable[..., StubSource]:
    return StubSource


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def make_engine(
    tmp_path, memory_store: MemoryStore, notifier: RecordingNotifier,
) -> Callable[..., HailIntelEngine]:
    """Engine over stub tiers, an in-memory store and a recording notifier."""

    def _make(
        realtime: StubSource | None = None,
        historical: StubSource | None = None,
        fallback: Any = None,
        store: Any = None,
        **config_overrides: Any,
    ) -> HailIntelEngine:
        config = HailIntelConfig(store_dir=tmp_path, cache_enabled=False, **config_overrides)
        resolver = TieredSourceResolver(
            realtime=realtime,
            historical=historical,
            fallback=fallback,
            timeout_seconds=config.tier_timeout_seconds,
            realtime_window_days=config.realtime_window_days,
        )
        return HailIntelEngine(
            config,
            resolver,
            store if store is not None else memory_store,
            notifier,
            geocode=False,
        )

    return _make
