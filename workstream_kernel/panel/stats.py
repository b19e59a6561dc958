"""Workstream stats and conversion funnel, computed from current entity state."""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from workstream_kernel.clock import as_utc, hours_between, utcnow
from workstream_kernel.models.panel import ConversionRates, WorkstreamFunnel, WorkstreamStats
from workstream_kernel.models.workstream import (
    Candidate,
    CandidateStatus,
    Pursuit,
    PursuitStage,
    Signal,
    SignalStatus,
)
from workstream_kernel.sla.evaluator import SlaEvaluator


def _ratio(numerator: int, denominator: int) -> float:
    return round(numerator / denominator, 4) if denominator else 0.0


def compute_stats(
    signals: Iterable[Signal],
    candidates: Iterable[Candidate],
    pursuits: Iterable[Pursuit],
    evaluator: Optional[SlaEvaluator] = None,
    now: Optional[datetime] = None,
) -> WorkstreamStats:
    """
    Workload counters for the dashboard header.

    ``today_due`` and ``this_week`` count open items whose SLA deadline falls
    before the end of the current UTC day / within seven days; ``overdue``
    counts those already past it. Cycle time runs from pursuit creation to
    decision over closed pursuits.
    """
    evaluator = evaluator or SlaEvaluator()
    now = as_utc(now or utcnow())
    end_of_day = now.replace(hour=23, minute=59, second=59, microsecond=999999)
    week_out = now + timedelta(days=7)

    pursuits = list(pursuits)
    deadlines: List[datetime] = []
    for entity_type, entities in (
        ("signal", signals),
        ("candidate", candidates),
        ("pursuit", pursuits),
    ):
        for entity in entities:
            _, due = evaluator.expectation(entity_type, entity)
            if due is not None:
                deadlines.append(due)

    overdue = sum(1 for d in deadlines if d <= now)
    today_due = sum(1 for d in deadlines if now < d <= end_of_day)
    this_week = sum(1 for d in deadlines if now < d <= week_out)

    closed = [p for p in pursuits if p.stage in (PursuitStage.WON, PursuitStage.LOST)]
    won = [p for p in closed if p.stage == PursuitStage.WON]
    cycle_days = [
        hours_between(p.created_utc, p.decision_at) / 24.0
        for p in closed if p.decision_at is not None
    ]

    return WorkstreamStats(
        today_due=today_due,
        overdue=overdue,
        this_week=this_week,
        avg_cycle_time_days=round(sum(cycle_days) / len(cycle_days), 2) if cycle_days else None,
        win_rate=_ratio(len(won), len(closed)) if closed else None,
    )


def compute_funnel(
    signals: Iterable[Signal],
    candidates: Iterable[Candidate],
    pursuits: Iterable[Pursuit],
) -> WorkstreamFunnel:
    """Stage counts and step-to-step conversion rates."""
    signals, candidates, pursuits = list(signals), list(candidates), list(pursuits)
    converted_signals = sum(1 for s in signals if s.status == SignalStatus.CANDIDATE_CREATED)
    promoted = sum(1 for c in candidates if c.status == CandidateStatus.PROMOTED)
    won = sum(1 for p in pursuits if p.stage == PursuitStage.WON)

    return WorkstreamFunnel(
        signals=len(signals),
        candidates=len(candidates),
        pursuits=len(pursuits),
        won=won,
        conversion_rates=ConversionRates(
            signal_to_candidate=_ratio(converted_signals, len(signals)),
            candidate_to_pursuit=_ratio(promoted, len(candidates)),
            pursuit_to_won=_ratio(won, len(pursuits)),
        ),
    )
