"""Tests for the alert escalation state machine."""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from hail_intel.escalation import (
    AlertPhase,
    EscalationStateMachine,
    alert_message,
    size_tier_index,
)
from hail_intel.models import NotificationLogEntry, NotificationType, StormEvent

T0 = datetime(2024, 9, 24, 21, 0, tzinfo=timezone.utc)
TIERS = (1.0, 1.5, 2.0, 2.5)


@pytest.fixture
def machine() -> EscalationStateMachine:
    counter = itertools.count(1)
    return EscalationStateMachine(id_factory=lambda: f"alert_{next(counter)}")


@pytest.fixture
def make_storm(make_scored):
    def _make(sizes: list[float], total: int = 60, storm_id: str = "s1") -> StormEvent:
        reports = [
            make_scored(id=f"{storm_id}_r{i}", size_inches=s, total=total,
                        timestamp=T0 + timedelta(minutes=i))
            for i, s in enumerate(sizes)
        ]
        return StormEvent(id=storm_id, start_time=T0, reports=reports)

    return _make


@pytest.fixture
def grow(make_scored):
    def _grow(event: StormEvent, size: float, total: int = 60) -> None:
        n = event.report_count
        event.add_report(make_scored(
            id=f"{event.id}_r{n}", size_inches=size, total=total,
            timestamp=T0 + timedelta(minutes=n),
        ))

    return _grow


def _types(entries: list[NotificationLogEntry]) -> list[NotificationType]:
    return [e.type for e in entries]


class TestSizeTierIndex:
    @pytest.mark.parametrize(
        ("size", "tier"), [(0.9, 0), (1.0, 1), (1.3, 1), (1.5, 2), (2.1, 3), (2.5, 4), (3.5, 4)],
    )
    def test_index(self, size, tier):
        assert size_tier_index(size, TIERS) == tier


class TestInitial:
    def test_below_threshold_stays_silent(self, machine, make_storm):
        storm = make_storm([1.75], total=40)
        assert machine.evaluate(storm, T0) == []
        assert machine.state_of("s1").phase is AlertPhase.UNSEEN

    def test_fires_once_at_threshold(self, machine, make_storm):
        storm = make_storm([1.75], total=55)
        entries = machine.evaluate(storm, T0)
        assert _types(entries) == [NotificationType.INITIAL]
        assert entries[0].storm_id == "s1"
        assert entries[0].hail_size == 1.75
        assert entries[0].confidence == 55.0
        assert machine.evaluate(storm, T0) == []

    def test_once_across_batches(self, machine, make_storm, grow):
        storm = make_storm([1.2, 1.2, 1.2], total=30)
        assert machine.evaluate(storm, T0) == []
        for _ in range(6):
            grow(storm, 1.2, total=90)
        # mean confidence now (3*30 + 6*90) / 9 = 70
        assert _types(machine.evaluate(storm, T0)) == [NotificationType.INITIAL]
        grow(storm, 1.2, total=90)
        assert NotificationType.INITIAL not in _types(machine.evaluate(storm, T0))

    def test_minimum_alert_size(self, make_storm):
        machine = EscalationStateMachine(min_alert_size_inches=1.0)
        storm = make_storm([0.9], total=80)
        assert machine.evaluate(storm, T0) == []


class TestEscalation:
    def test_same_tier_does_not_escalate(self, machine, make_storm, grow):
        storm = make_storm([1.2, 1.2, 1.2])
        machine.evaluate(storm, T0)
        grow(storm, 1.3)
        assert machine.evaluate(storm, T0) == []

    def test_tier_crossing_escalates_exactly_once(self, machine, make_storm, grow):
        storm = make_storm([1.8, 1.8, 1.8])
        machine.evaluate(storm, T0)

        grow(storm, 2.1)
        entries = machine.evaluate(storm, T0)
        assert _types(entries) == [NotificationType.ESCALATION]
        assert entries[0].hail_size == 2.1
        assert machine.state_of("s1").phase is AlertPhase.ESCALATED

        grow(storm, 2.2)
        assert machine.evaluate(storm, T0) == []

    def test_skipping_tiers_still_one_alert(self, machine, make_storm, grow):
        storm = make_storm([1.2, 1.2, 1.2])
        machine.evaluate(storm, T0)
        grow(storm, 2.75)
        assert _types(machine.evaluate(storm, T0)) == [NotificationType.ESCALATION]
        assert machine.state_of("s1").size_tier == 4

    def test_no_escalation_before_initial(self, machine, make_storm, grow):
        storm = make_storm([1.2], total=20)
        machine.evaluate(storm, T0)
        grow(storm, 2.5, total=20)
        assert machine.evaluate(storm, T0) == []


class TestExpansion:
    def test_doubling_report_count_expands(self, machine, make_storm, grow):
        storm = make_storm([1.2, 1.2, 1.2])
        machine.evaluate(storm, T0)
        for _ in range(2):
            grow(storm, 1.2)
        assert machine.evaluate(storm, T0) == []

        grow(storm, 1.2)
        entries = machine.evaluate(storm, T0)
        assert _types(entries) == [NotificationType.EXPANSION]
        assert machine.state_of("s1").report_baseline == 6

        grow(storm, 1.2)
        assert machine.evaluate(storm, T0) == []

    def test_escalation_and_expansion_together(self, machine, make_storm, grow):
        storm = make_storm([1.2])
        machine.evaluate(storm, T0)
        grow(storm, 1.6)
        assert _types(machine.evaluate(storm, T0)) == [
            NotificationType.ESCALATION, NotificationType.EXPANSION,
        ]

    def test_configurable_factor(self, make_storm, grow):
        machine = EscalationStateMachine(expansion_factor=3.0)
        storm = make_storm([1.2, 1.2])
        machine.evaluate(storm, T0)
        for _ in range(3):
            grow(storm, 1.2)
        assert machine.evaluate(storm, T0) == []
        grow(storm, 1.2)
        assert _types(machine.evaluate(storm, T0)) == [NotificationType.EXPANSION]


class TestRestore:
    def test_restart_does_not_refire(self, make_storm):
        storm = make_storm([1.6, 1.6, 1.6])
        first = EscalationStateMachine()
        log = first.evaluate(storm, T0)
        assert _types(log) == [NotificationType.INITIAL]

        restarted = EscalationStateMachine()
        restarted.restore(log, [storm])
        assert restarted.state_of("s1").phase is AlertPhase.INITIAL_SENT
        assert restarted.state_of("s1").size_tier == 2
        assert restarted.evaluate(storm, T0) == []

    def test_restored_escalation_keeps_highest_tier(self, make_storm, grow):
        storm = make_storm([1.2, 1.2, 1.2])
        first = EscalationStateMachine()
        log = first.evaluate(storm, T0)
        grow(storm, 2.1)
        log += first.evaluate(storm, T0 + timedelta(minutes=5))

        restarted = EscalationStateMachine()
        restarted.restore(log, [storm])
        assert restarted.state_of("s1").phase is AlertPhase.ESCALATED
        assert restarted.state_of("s1").size_tier == 3
        grow(storm, 2.2)
        assert restarted.evaluate(storm, T0) == []


class TestEvaluateAll:
    def test_collects_entries_for_every_storm(self, machine, make_storm):
        storms = [make_storm([1.75], storm_id="a"), make_storm([1.0], total=10, storm_id="b")]
        entries = machine.evaluate_all(storms, T0)
        assert [e.storm_id for e in entries] == ["a"]
        assert [e.id for e in entries] == ["alert_1"]


class TestAlertMessage:
    def test_initial_severe(self, make_storm):
        text = alert_message(NotificationType.INITIAL, make_storm([2.25]))
        assert text == 'SEVERE: Hail detected in Norman - 2.2" hail'

    def test_initial_regular(self, make_storm):
        text = alert_message(NotificationType.INITIAL, make_storm([1.5]))
        assert text.startswith("ALERT: Hail detected in Norman")

    def test_escalation_and_expansion(self, make_storm):
        storm = make_storm([2.0, 2.0])
        assert "increasing to 2.0" in alert_message(NotificationType.ESCALATION, storm)
        assert "2 reports" in alert_message(NotificationType.EXPANSION, storm)
