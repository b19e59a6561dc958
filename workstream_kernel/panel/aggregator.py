"""
Today Panel Aggregator — merges signals, candidates and pursuits into one ranked list.

Inputs are projections (PanelItem or raw dicts). A malformed row never fails
the aggregation: unreadable ranking fields degrade to None and the row is
ranked last within its group, never dropped.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from workstream_kernel.clock import utcnow
from workstream_kernel.models.config import WorkstreamConfig
from workstream_kernel.models.panel import (
    ItemTypeFilter,
    PanelFilter,
    PanelItem,
    TodayPanelView,
)
from workstream_kernel.models.workstream import (
    Candidate,
    CandidateStatus,
    PriorityTier,
    Pursuit,
    PursuitStage,
    Signal,
    SignalStatus,
)
from workstream_kernel.scoring.priority import PriorityScorer
from workstream_kernel.sla.evaluator import SlaEvaluator, describe

logger = logging.getLogger(__name__)

TIER_ORDER = [t.value for t in PriorityTier]   # critical, high, medium, low

_SIGNAL_SNIPPET_LENGTH = 50


def coerce_item(raw: Union[PanelItem, Dict[str, Any], Any]) -> PanelItem:
    """Best-effort conversion of one raw row."""
    if isinstance(raw, PanelItem):
        return raw
    if isinstance(raw, dict):
        try:
            return PanelItem.model_validate(raw)
        except ValidationError:
            logger.warning("Panel row failed validation, keeping label only: %r", raw)
            return PanelItem(
                item_type=raw.get("item_type"),
                label=str(raw.get("label") or ""),
            )
    logger.warning("Unrecognised panel row of type %s", type(raw).__name__)
    return PanelItem(label=str(raw))


class TodayPanelAggregator:
    """Filters, ranks and groups panel rows. Holds no state between calls."""

    def __init__(
        self,
        config: Optional[WorkstreamConfig] = None,
        scorer: Optional[PriorityScorer] = None,
    ):
        self.config = config or WorkstreamConfig()
        self.scorer = scorer or PriorityScorer(self.config)

    def aggregate(
        self,
        rows: Iterable[Union[PanelItem, Dict[str, Any]]],
        panel_filter: Optional[PanelFilter] = None,
        current_time: Optional[datetime] = None,
    ) -> TodayPanelView:
        """
        Filter, rank, group by tier and pick promotion-ready rows.

        Tier and owner scope the whole panel. Type and SLA badge only narrow
        the listed rows; ready-to-promote is drawn from the scoped rows.
        """
        if current_time is None:
            current_time = utcnow()
        panel_filter = panel_filter or PanelFilter()

        scoped = [coerce_item(r) for r in rows]
        scoped = [i for i in scoped if self._in_scope(i, panel_filter)]
        ready = [i for i in self.scorer.rank(scoped) if self.scorer.is_ready_to_promote(i)]

        ranked = self.scorer.rank(i for i in scoped if self._matches(i, panel_filter))

        by_tier: Dict[str, List[PanelItem]] = {tier: [] for tier in TIER_ORDER}
        for item in ranked:
            tier = item.priority_tier.value if item.priority_tier else PriorityTier.LOW.value
            by_tier[tier].append(item)

        return TodayPanelView(
            items=ranked,
            by_tier=by_tier,
            tier_counts={tier: len(rows) for tier, rows in by_tier.items()},
            ready_to_promote=ready[: self.config.ready_to_promote_limit],
            ready_to_promote_count=len(ready),
            total=len(ranked),
            generated_at=current_time,
        )

    @staticmethod
    def _in_scope(item: PanelItem, panel_filter: PanelFilter) -> bool:
        if panel_filter.tier is not None and item.priority_tier != panel_filter.tier:
            return False
        if panel_filter.owner_user_id is not None and item.owner_user_id != panel_filter.owner_user_id:
            return False
        return True

    @staticmethod
    def _matches(item: PanelItem, panel_filter: PanelFilter) -> bool:
        if panel_filter.item_type != ItemTypeFilter.ALL:
            if item.item_type != panel_filter.item_type.value:
                return False
        if panel_filter.badge is not None and item.badge != panel_filter.badge:
            return False
        return True


# --- Projections from entities ---

def _snippet_label(snippet: str) -> str:
    if not snippet:
        return "Unnamed Signal"
    if len(snippet) <= _SIGNAL_SNIPPET_LENGTH:
        return snippet
    return snippet[:_SIGNAL_SNIPPET_LENGTH] + "..."


class PanelProjector:
    """Builds panel rows from entities, with the SLA badge filled in."""

    def __init__(self, evaluator: Optional[SlaEvaluator] = None):
        self.evaluator = evaluator or SlaEvaluator()

    def _sla(self, entity_type: str, entity, now: datetime):
        status = self.evaluator.status_for(entity_type, entity, now)
        return status.badge, status.expected_by, describe(status.badge, status.expected_by, now)

    def project_signal(self, signal: Signal, now: Optional[datetime] = None) -> PanelItem:
        now = now or utcnow()
        badge, due, metric = self._sla("signal", signal, now)
        return PanelItem(
            item_type="signal",
            item_id=signal.signal_id,
            label=_snippet_label(signal.snippet),
            state=signal.status.value,
            owner_user_id=signal.owner_user_id,
            due_date=due,
            badge=badge,
            sla_metric=metric,
            urgency_score=signal.urgency_score,
            priority_score=signal.priority_score,
            priority_tier=signal.priority_tier,
            icp_band=signal.icp_band,
        )

    def project_candidate(self, candidate: Candidate, now: Optional[datetime] = None) -> PanelItem:
        now = now or utcnow()
        badge, due, metric = self._sla("candidate", candidate, now)
        return PanelItem(
            item_type="candidate",
            item_id=candidate.candidate_id,
            label=candidate.title or "Unnamed Candidate",
            state=candidate.status.value,
            owner_user_id=candidate.owner_user_id,
            last_touch_at=candidate.last_touch_at,
            due_date=due,
            badge=badge,
            sla_metric=metric,
            value_band=candidate.value_band.value,
            priority_score=candidate.priority_score,
            priority_tier=candidate.priority_tier,
            icp_band=candidate.icp_band,
        )

    def project_pursuit(self, pursuit: Pursuit, now: Optional[datetime] = None) -> PanelItem:
        now = now or utcnow()
        badge, due, metric = self._sla("pursuit", pursuit, now)
        return PanelItem(
            item_type="pursuit",
            item_id=pursuit.pursuit_id,
            label=pursuit.title or "Unnamed Pursuit",
            state=pursuit.stage.value,
            owner_user_id=pursuit.owner_user_id,
            due_date=due,
            badge=badge,
            sla_metric=metric,
            forecast_value_usd=pursuit.forecast_value_usd,
            priority_score=pursuit.priority_score,
            priority_tier=pursuit.priority_tier,
            icp_band=pursuit.icp_band,
        )

    def project_open_work(
        self,
        signals: Iterable[Signal] = (),
        candidates: Iterable[Candidate] = (),
        pursuits: Iterable[Pursuit] = (),
        now: Optional[datetime] = None,
    ) -> List[PanelItem]:
        """Rows for every entity that still needs attention today."""
        now = now or utcnow()
        rows = [
            self.project_signal(s, now) for s in signals
            if s.status in (SignalStatus.NEW, SignalStatus.TRIAGED)
        ]
        rows += [
            self.project_candidate(c, now) for c in candidates
            if c.status not in (CandidateStatus.PROMOTED, CandidateStatus.ARCHIVED)
        ]
        rows += [
            self.project_pursuit(p, now) for p in pursuits
            if p.stage not in (PursuitStage.WON, PursuitStage.LOST)
        ]
        logger.debug("Projected %d open work rows", len(rows))
        return rows
