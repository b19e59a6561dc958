"""
SLA Evaluator — traffic-light badges and breach records.

Badge policy against a due timestamp:
  red    due - now <= 0            (overdue)
  amber  0 < due - now <= window   (due soon, 6h by default)
  green  otherwise                 (on track)

Default expectations per entity:
  triage_sla    signal in 'new'                 created_utc + 24h
  response_sla  candidate not yet terminal      last_touch_at (or created_utc) + 96h
  proposal_sla  pursuit in qual/pink/red        stage_entered_at (or created_utc) + 72h,
                                                capped by an explicit due_date

The evaluator is a pure projection. The monitor records one breach per
expectation window and stamps ``resolved_at`` once the condition clears.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from workstream_kernel.clock import as_utc, hours_between, utcnow
from workstream_kernel.models.config import WorkstreamConfig
from workstream_kernel.models.sla import SlaBadge, SlaBreach, SlaRule, SlaStatus
from workstream_kernel.models.workstream import (
    Candidate,
    CandidateStatus,
    EntityType,
    Pursuit,
    PursuitStage,
    Signal,
    SignalStatus,
)

logger = logging.getLogger(__name__)

RULE_ENTITY_TYPES = {
    "triage_sla": EntityType.SIGNAL,
    "response_sla": EntityType.CANDIDATE,
    "proposal_sla": EntityType.PURSUIT,
}

_PROPOSAL_STAGES = frozenset({PursuitStage.QUAL, PursuitStage.PINK, PursuitStage.RED})
_OPEN_CANDIDATE = frozenset({
    CandidateStatus.NEW, CandidateStatus.TRIAGED,
    CandidateStatus.NURTURE, CandidateStatus.ON_HOLD,
})

BADGE_LABELS = {
    SlaBadge.GREEN: "On Track",
    SlaBadge.AMBER: "Due Soon",
    SlaBadge.RED: "Overdue",
}


def evaluate(due: datetime, now: Optional[datetime] = None, amber_window_hours: float = 6.0) -> SlaBadge:
    """Badge for a due timestamp."""
    if now is None:
        now = utcnow()
    remaining = hours_between(now, due)
    if remaining <= 0:
        return SlaBadge.RED
    if remaining <= amber_window_hours:
        return SlaBadge.AMBER
    return SlaBadge.GREEN


def default_rules(config: Optional[WorkstreamConfig] = None) -> List[SlaRule]:
    """Build the stock rules from configured thresholds."""
    config = config or WorkstreamConfig()
    rules = []
    for rule_id, (name, entity_type) in enumerate(RULE_ENTITY_TYPES.items(), start=1):
        hours = config.sla_thresholds.get(name)
        if hours:
            rules.append(SlaRule(
                rule_id=rule_id,
                rule_name=name,
                entity_type=entity_type,
                threshold_hours=hours,
            ))
    return rules


def describe(badge: Optional[SlaBadge], due: Optional[datetime], now: datetime) -> Optional[str]:
    """Human-readable SLA metric for panel rows."""
    if badge is None or due is None:
        return None
    hours = hours_between(now, due)
    if badge == SlaBadge.RED:
        return f"Overdue by {abs(hours):.0f}h"
    if hours < 24:
        return f"Due in {hours:.0f}h"
    return f"Due in {hours / 24:.0f}d"


def _entity_id(entity_type: EntityType, entity) -> int:
    return {
        EntityType.SIGNAL: lambda e: e.signal_id,
        EntityType.CANDIDATE: lambda e: e.candidate_id,
        EntityType.PURSUIT: lambda e: e.pursuit_id,
    }[entity_type](entity)


class SlaEvaluator:
    """Resolves which rule applies to an entity and when it is expected by."""

    def __init__(
        self,
        config: Optional[WorkstreamConfig] = None,
        rules: Optional[List[SlaRule]] = None,
    ):
        self.config = config or WorkstreamConfig()
        self.rules = rules if rules is not None else default_rules(self.config)

    def badge(self, due: datetime, now: Optional[datetime] = None) -> SlaBadge:
        return evaluate(due, now, self.config.amber_window_hours)

    def _active_rules(self, entity_type: EntityType) -> List[SlaRule]:
        return [r for r in self.rules if r.is_active and r.entity_type == entity_type]

    def _anchor(self, entity_type: EntityType, entity) -> Optional[datetime]:
        """The timestamp the SLA clock runs from, or None if no rule applies now."""
        if entity_type == EntityType.SIGNAL:
            if entity.status != SignalStatus.NEW:
                return None
            return entity.created_utc
        if entity_type == EntityType.CANDIDATE:
            if entity.status not in _OPEN_CANDIDATE:
                return None
            return entity.last_touch_at or entity.created_utc
        if entity_type == EntityType.PURSUIT:
            if entity.stage not in _PROPOSAL_STAGES:
                return None
            return entity.stage_entered_at or entity.created_utc
        return None

    def rule_deadline(self, entity_type, entity) -> Tuple[Optional[SlaRule], Optional[datetime]]:
        """The earliest active rule deadline, ignoring any explicit due date."""
        entity_type = EntityType(entity_type)
        anchor = self._anchor(entity_type, entity)

        best_rule, best_due = None, None
        if anchor is not None:
            for rule in self._active_rules(entity_type):
                due = as_utc(anchor) + timedelta(hours=rule.threshold_hours)
                if best_due is None or due < best_due:
                    best_rule, best_due = rule, due
        return best_rule, best_due

    def expectation(self, entity_type, entity) -> Tuple[Optional[SlaRule], Optional[datetime]]:
        """
        The governing rule and its expected-by time.

        With several active rules for one entity type the earliest deadline
        governs. A pursuit's explicit due_date caps the rule's deadline and
        stands alone once the pursuit has left the proposal stages. When the
        due date governs, no rule is returned.
        """
        entity_type = EntityType(entity_type)
        best_rule, best_due = self.rule_deadline(entity_type, entity)

        if entity_type == EntityType.PURSUIT and entity.due_date is not None:
            if entity.stage not in (PursuitStage.WON, PursuitStage.LOST):
                explicit = as_utc(entity.due_date)
                if best_due is None or explicit < best_due:
                    best_rule, best_due = None, explicit

        return best_rule, best_due

    def status_for(self, entity_type, entity, now: Optional[datetime] = None) -> SlaStatus:
        if now is None:
            now = utcnow()
        entity_type = EntityType(entity_type)
        rule, due = self.expectation(entity_type, entity)
        return SlaStatus(
            entity_type=entity_type,
            entity_id=_entity_id(entity_type, entity),
            rule_name=rule.rule_name if rule else None,
            expected_by=due,
            badge=self.badge(due, now) if due is not None else None,
        )


class SlaMonitor:
    """
    Records SLA breaches.

    One breach per (rule, entity, expected_by) window. Breaches are never
    rewritten; the only later change is the ``resolved_at`` stamp.
    """

    def __init__(self, evaluator: Optional[SlaEvaluator] = None):
        self.evaluator = evaluator or SlaEvaluator()
        self._breaches: Dict[int, SlaBreach] = {}
        self._next_id = 1

    def observe(
        self,
        entity_type,
        entity,
        now: Optional[datetime] = None,
    ) -> Tuple[SlaStatus, Optional[SlaBreach]]:
        """Evaluate one entity; returns its status and any breach created by this call."""
        if now is None:
            now = utcnow()
        entity_type = EntityType(entity_type)
        status = self.evaluator.status_for(entity_type, entity, now)
        # Breaches track the rule's own deadline; a pursuit due date only drives the badge
        rule, expected_by = self.evaluator.rule_deadline(entity_type, entity)

        overdue = rule is not None and self.evaluator.badge(expected_by, now) == SlaBadge.RED
        self._resolve_cleared(entity_type, status.entity_id, rule, expected_by, overdue, now)

        if not overdue:
            return status, None

        if self._open_breach(rule.rule_id, entity_type, status.entity_id, expected_by):
            return status, None

        breach = SlaBreach(
            breach_id=self._next_id,
            org_id=entity.org_id,
            rule_id=rule.rule_id,
            rule_name=rule.rule_name,
            entity_type=entity_type,
            entity_id=status.entity_id,
            expected_by=expected_by,
            actual_time=now,
            hours_over=round(hours_between(expected_by, now), 2),
            created_utc=now,
        )
        self._breaches[breach.breach_id] = breach
        self._next_id += 1
        logger.warning(
            "SLA breach %s: %s %s missed %s by %.1fh",
            breach.breach_id, entity_type.value, status.entity_id,
            rule.rule_name, breach.hours_over,
        )
        return status, breach

    def sweep(
        self,
        signals: Iterable[Signal] = (),
        candidates: Iterable[Candidate] = (),
        pursuits: Iterable[Pursuit] = (),
        now: Optional[datetime] = None,
    ) -> List[SlaBreach]:
        """Observe a batch; returns the breaches created during the sweep."""
        if now is None:
            now = utcnow()
        created = []
        batches = (
            (EntityType.SIGNAL, signals),
            (EntityType.CANDIDATE, candidates),
            (EntityType.PURSUIT, pursuits),
        )
        for entity_type, entities in batches:
            for entity in entities:
                _, breach = self.observe(entity_type, entity, now)
                if breach:
                    created.append(breach)
        return created

    def _open_breach(self, rule_id, entity_type, entity_id, expected_by) -> Optional[SlaBreach]:
        for b in self._breaches.values():
            if (
                b.resolved_at is None
                and b.rule_id == rule_id
                and b.entity_type == entity_type
                and b.entity_id == entity_id
                and b.expected_by == expected_by
            ):
                return b
        return None

    def _resolve_cleared(self, entity_type, entity_id, rule, expected_by, overdue, now) -> None:
        """Stamp open breaches whose window is no longer the live, overdue one."""
        for breach_id, b in list(self._breaches.items()):
            if b.resolved_at is not None or b.entity_type != entity_type or b.entity_id != entity_id:
                continue
            still_live = (
                overdue
                and rule is not None
                and b.rule_id == rule.rule_id
                and b.expected_by == expected_by
            )
            if not still_live:
                self._breaches[breach_id] = b.model_copy(update={"resolved_at": now})
                logger.info("SLA breach %s resolved", breach_id)

    def list_breaches(
        self,
        entity_type=None,
        open_only: bool = False,
        limit: int = 50,
    ) -> List[SlaBreach]:
        """Most recent breaches first."""
        breaches = sorted(self._breaches.values(), key=lambda b: b.breach_id, reverse=True)
        if entity_type is not None:
            entity_type = EntityType(entity_type)
            breaches = [b for b in breaches if b.entity_type == entity_type]
        if open_only:
            breaches = [b for b in breaches if b.resolved_at is None]
        return breaches[:limit]

    def get_breach(self, breach_id: int) -> Optional[SlaBreach]:
        return self._breaches.get(breach_id)
