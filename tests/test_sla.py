"""Tests for the SLA Evaluator and breach monitor."""

from datetime import datetime, timedelta, timezone

import pytest

from workstream_kernel.models.config import WorkstreamConfig
from workstream_kernel.models.sla import SlaBadge, SlaRule
from workstream_kernel.models.workstream import (
    Candidate,
    CandidateStatus,
    EntityType,
    Pursuit,
    PursuitStage,
    Signal,
    SignalStatus,
)
from workstream_kernel.sla.evaluator import (
    SlaEvaluator,
    SlaMonitor,
    default_rules,
    describe,
    evaluate,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _make_signal(
    hours_old: float, status: SignalStatus = SignalStatus.NEW, signal_id: int = 1,
) -> Signal:
    return Signal(
        signal_id=signal_id, snippet="Inbound RFP", status=status,
        created_utc=NOW - timedelta(hours=hours_old),
    )


class TestBadge:
    def test_overdue_is_red(self):
        assert evaluate(NOW - timedelta(hours=1), NOW) == SlaBadge.RED

    def test_due_soon_is_amber(self):
        assert evaluate(NOW + timedelta(hours=3), NOW) == SlaBadge.AMBER

    def test_far_out_is_green(self):
        assert evaluate(NOW + timedelta(hours=10), NOW) == SlaBadge.GREEN

    def test_exactly_six_hours_is_amber(self):
        assert evaluate(NOW + timedelta(hours=6), NOW) == SlaBadge.AMBER

    def test_exactly_due_is_red(self):
        assert evaluate(NOW, NOW) == SlaBadge.RED

    def test_configurable_window(self):
        assert evaluate(NOW + timedelta(hours=10), NOW, amber_window_hours=12) == SlaBadge.AMBER

    def test_naive_due_is_read_as_utc(self):
        naive_due = (NOW + timedelta(hours=2)).replace(tzinfo=None)
        assert evaluate(naive_due, NOW) == SlaBadge.AMBER


class TestDescribe:
    def test_overdue_metric(self):
        assert describe(SlaBadge.RED, NOW - timedelta(hours=5), NOW) == "Overdue by 5h"

    def test_hours_metric(self):
        assert describe(SlaBadge.AMBER, NOW + timedelta(hours=3), NOW) == "Due in 3h"

    def test_days_metric(self):
        assert describe(SlaBadge.GREEN, NOW + timedelta(days=3), NOW) == "Due in 3d"

    def test_no_badge(self):
        assert describe(None, None, NOW) is None


class TestSlaEvaluator:
    def setup_method(self):
        self.evaluator = SlaEvaluator()

    def test_default_rules(self):
        rules = {r.rule_name: r for r in default_rules()}
        assert rules["triage_sla"].entity_type == EntityType.SIGNAL
        assert rules["triage_sla"].threshold_hours == 24.0
        assert rules["response_sla"].entity_type == EntityType.CANDIDATE
        assert rules["proposal_sla"].entity_type == EntityType.PURSUIT

    def test_new_signal_uses_triage_sla(self):
        status = self.evaluator.status_for("signal", _make_signal(hours_old=20), NOW)
        assert status.rule_name == "triage_sla"
        assert status.expected_by == NOW + timedelta(hours=4)
        assert status.badge == SlaBadge.AMBER

    def test_triaged_signal_has_no_sla(self):
        status = self.evaluator.status_for(
            "signal", _make_signal(hours_old=50, status=SignalStatus.TRIAGED), NOW,
        )
        assert status.badge is None
        assert status.expected_by is None

    def test_candidate_clock_runs_from_last_touch(self):
        candidate = Candidate(
            candidate_id=2, title="Acme", status=CandidateStatus.NURTURE,
            created_utc=NOW - timedelta(days=30),
            last_touch_at=NOW - timedelta(hours=10),
        )
        status = self.evaluator.status_for("candidate", candidate, NOW)
        assert status.rule_name == "response_sla"
        assert status.expected_by == NOW + timedelta(hours=86)
        assert status.badge == SlaBadge.GREEN

    def test_pursuit_due_date_caps_proposal_sla(self):
        pursuit = Pursuit(
            pursuit_id=3, candidate_id=2, title="Acme", stage=PursuitStage.PINK,
            stage_entered_at=NOW - timedelta(hours=1),
            due_date=NOW + timedelta(hours=2),
            created_utc=NOW - timedelta(days=2),
        )
        status = self.evaluator.status_for("pursuit", pursuit, NOW)
        assert status.expected_by == NOW + timedelta(hours=2)
        assert status.badge == SlaBadge.AMBER
        assert status.rule_name is None

        rule, due = self.evaluator.rule_deadline("pursuit", pursuit)
        assert rule.rule_name == "proposal_sla"
        assert due == NOW + timedelta(hours=71)

    def test_proposal_sla_when_earlier_than_due_date(self):
        pursuit = Pursuit(
            pursuit_id=3, candidate_id=2, title="Acme", stage=PursuitStage.QUAL,
            stage_entered_at=NOW - timedelta(hours=80),
            due_date=NOW + timedelta(days=10),
            created_utc=NOW - timedelta(hours=80),
        )
        status = self.evaluator.status_for("pursuit", pursuit, NOW)
        assert status.expected_by == NOW - timedelta(hours=8)
        assert status.badge == SlaBadge.RED

    def test_submitted_pursuit_tracks_due_date_only(self):
        pursuit = Pursuit(
            pursuit_id=3, candidate_id=2, title="Acme", stage=PursuitStage.SUBMIT,
            due_date=NOW + timedelta(days=2), created_utc=NOW - timedelta(days=20),
        )
        rule, due = self.evaluator.expectation("pursuit", pursuit)
        assert rule is None
        assert due == NOW + timedelta(days=2)

    def test_closed_pursuit_has_no_sla(self):
        pursuit = Pursuit(
            pursuit_id=3, candidate_id=2, title="Acme", stage=PursuitStage.WON,
            due_date=NOW - timedelta(days=2), created_utc=NOW - timedelta(days=20),
        )
        assert self.evaluator.status_for("pursuit", pursuit, NOW).badge is None

    def test_rule_override(self):
        evaluator = SlaEvaluator(rules=[SlaRule(
            rule_id=9, rule_name="triage_sla", entity_type=EntityType.SIGNAL, threshold_hours=12,
        )])
        status = evaluator.status_for("signal", _make_signal(hours_old=13), NOW)
        assert status.badge == SlaBadge.RED

    def test_inactive_rule_ignored(self):
        evaluator = SlaEvaluator(rules=[SlaRule(
            rule_id=9, rule_name="triage_sla", entity_type=EntityType.SIGNAL,
            threshold_hours=12, is_active=False,
        )])
        assert evaluator.status_for("signal", _make_signal(hours_old=13), NOW).badge is None

    def test_thresholds_from_config(self):
        config = WorkstreamConfig(sla_thresholds={"triage_sla": 2.0})
        evaluator = SlaEvaluator(config)
        assert [r.rule_name for r in evaluator.rules] == ["triage_sla"]
        assert evaluator.status_for("signal", _make_signal(hours_old=3), NOW).badge == SlaBadge.RED


class TestSlaMonitor:
    def setup_method(self):
        self.monitor = SlaMonitor()

    def test_breach_recorded_once_per_window(self):
        signal = _make_signal(hours_old=30)
        status, breach = self.monitor.observe("signal", signal, NOW)
        assert status.badge == SlaBadge.RED
        assert breach is not None
        assert breach.rule_name == "triage_sla"
        assert breach.hours_over == pytest.approx(6.0)
        assert breach.expected_by == NOW - timedelta(hours=6)

        _, again = self.monitor.observe("signal", signal, NOW + timedelta(hours=1))
        assert again is None
        assert len(self.monitor.list_breaches()) == 1

    def test_no_breach_when_on_track(self):
        _, breach = self.monitor.observe("signal", _make_signal(hours_old=1), NOW)
        assert breach is None
        assert self.monitor.list_breaches() == []

    def test_breach_resolved_when_condition_clears(self):
        signal = _make_signal(hours_old=30)
        _, breach = self.monitor.observe("signal", signal, NOW)

        triaged = signal.model_copy(update={"status": SignalStatus.TRIAGED})
        self.monitor.observe("signal", triaged, NOW + timedelta(hours=1))

        stored = self.monitor.get_breach(breach.breach_id)
        assert stored.resolved_at == NOW + timedelta(hours=1)
        assert stored.hours_over == breach.hours_over
        assert self.monitor.list_breaches(open_only=True) == []

    def test_missed_due_date_is_not_a_rule_breach(self):
        pursuit = Pursuit(
            pursuit_id=3, candidate_id=2, title="Acme", stage=PursuitStage.PINK,
            stage_entered_at=NOW - timedelta(hours=10),
            due_date=NOW - timedelta(hours=1),
            created_utc=NOW - timedelta(days=2),
        )
        status, breach = self.monitor.observe("pursuit", pursuit, NOW)
        assert status.badge == SlaBadge.RED
        assert breach is None

    def test_breach_carries_rule_deadline_under_due_date(self):
        pursuit = Pursuit(
            pursuit_id=3, candidate_id=2, title="Acme", stage=PursuitStage.RED,
            stage_entered_at=NOW - timedelta(hours=80),
            due_date=NOW - timedelta(hours=20),
            created_utc=NOW - timedelta(days=5),
        )
        status, breach = self.monitor.observe("pursuit", pursuit, NOW)
        assert status.expected_by == NOW - timedelta(hours=20)
        assert breach.rule_name == "proposal_sla"
        assert breach.expected_by == NOW - timedelta(hours=8)
        assert breach.hours_over == pytest.approx(8.0)

    def test_sweep_and_filter(self):
        pursuit = Pursuit(
            pursuit_id=3, candidate_id=2, title="Acme", stage=PursuitStage.QUAL,
            stage_entered_at=NOW - timedelta(hours=100), created_utc=NOW - timedelta(hours=100),
        )
        created = self.monitor.sweep(
            signals=[_make_signal(hours_old=30), _make_signal(hours_old=2, signal_id=2)],
            pursuits=[pursuit],
            now=NOW,
        )
        assert len(created) == 2
        assert [b.entity_type for b in self.monitor.list_breaches(entity_type="pursuit")] == [
            EntityType.PURSUIT,
        ]
        # Most recent first
        assert self.monitor.list_breaches()[0].entity_type == EntityType.PURSUIT
