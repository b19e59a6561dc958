"""
State Transition Validator — the single gate every status/stage mutation passes.

Behavioral Contract:
- Transition tables are closed: a pair missing from the table is illegal
- Returns a TransitionDecision; never mutates the entity it inspects
- Entering pink, red or submit additionally requires the Checklist Gate
- Promotion is legal only from triaged, nurture or on_hold
- ``ensure`` turns a rejected decision into the matching exception
"""

import logging
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional

from workstream_kernel.clock import utcnow
from workstream_kernel.errors import (
    ChecklistIncompleteError,
    ErrorCode,
    InvalidTransitionError,
)
from workstream_kernel.models.transition import TransitionDecision, TransitionVerdict
from workstream_kernel.models.workstream import (
    Candidate,
    CandidateStatus,
    ChecklistItem,
    EntityType,
    Proposal,
    ProposalStatus,
    Pursuit,
    PursuitStage,
    Signal,
    SignalStatus,
)
from workstream_kernel.transitions.checklist import GATED_STAGES, ChecklistGate

logger = logging.getLogger(__name__)


SIGNAL_TRANSITIONS: Dict[SignalStatus, FrozenSet[SignalStatus]] = {
    SignalStatus.NEW: frozenset({
        SignalStatus.TRIAGED, SignalStatus.CANDIDATE_CREATED, SignalStatus.IGNORED,
    }),
    SignalStatus.TRIAGED: frozenset({SignalStatus.CANDIDATE_CREATED, SignalStatus.IGNORED}),
    SignalStatus.CANDIDATE_CREATED: frozenset(),   # Terminal
    SignalStatus.IGNORED: frozenset(),             # Terminal
}

CANDIDATE_TRANSITIONS: Dict[CandidateStatus, FrozenSet[CandidateStatus]] = {
    CandidateStatus.NEW: frozenset({CandidateStatus.TRIAGED, CandidateStatus.ARCHIVED}),
    CandidateStatus.TRIAGED: frozenset({
        CandidateStatus.NURTURE, CandidateStatus.ON_HOLD,
        CandidateStatus.PROMOTED, CandidateStatus.ARCHIVED,
    }),
    CandidateStatus.NURTURE: frozenset({
        CandidateStatus.ON_HOLD, CandidateStatus.PROMOTED, CandidateStatus.ARCHIVED,
    }),
    CandidateStatus.ON_HOLD: frozenset({
        CandidateStatus.NURTURE, CandidateStatus.PROMOTED, CandidateStatus.ARCHIVED,
    }),
    CandidateStatus.PROMOTED: frozenset(),   # Terminal
    CandidateStatus.ARCHIVED: frozenset(),   # Terminal
}

PURSUIT_TRANSITIONS: Dict[PursuitStage, FrozenSet[PursuitStage]] = {
    PursuitStage.QUAL: frozenset({PursuitStage.PINK, PursuitStage.LOST}),
    PursuitStage.PINK: frozenset({PursuitStage.RED, PursuitStage.LOST}),
    PursuitStage.RED: frozenset({PursuitStage.SUBMIT, PursuitStage.LOST}),
    PursuitStage.SUBMIT: frozenset({PursuitStage.WON, PursuitStage.LOST}),
    PursuitStage.WON: frozenset(),    # Terminal
    PursuitStage.LOST: frozenset(),   # Terminal
}

PROPOSAL_TRANSITIONS: Dict[ProposalStatus, FrozenSet[ProposalStatus]] = {
    ProposalStatus.DRAFT: frozenset({ProposalStatus.REVIEW}),
    ProposalStatus.REVIEW: frozenset({ProposalStatus.SENT}),
    ProposalStatus.SENT: frozenset({ProposalStatus.ACCEPTED, ProposalStatus.REJECTED}),
    ProposalStatus.ACCEPTED: frozenset(),
    ProposalStatus.REJECTED: frozenset(),
}

_TABLES = {
    EntityType.SIGNAL: (SignalStatus, SIGNAL_TRANSITIONS),
    EntityType.CANDIDATE: (CandidateStatus, CANDIDATE_TRANSITIONS),
    EntityType.PURSUIT: (PursuitStage, PURSUIT_TRANSITIONS),
    EntityType.PROPOSAL: (ProposalStatus, PROPOSAL_TRANSITIONS),
}

PROMOTABLE_STATUSES = frozenset({
    CandidateStatus.TRIAGED, CandidateStatus.NURTURE, CandidateStatus.ON_HOLD,
})


def transitions(entity_type, status) -> FrozenSet:
    """Legal targets from ``status``. Unknown statuses raise ValueError."""
    enum_cls, table = _TABLES[EntityType(entity_type)]
    return table[enum_cls(status)]


def is_terminal(entity_type, status) -> bool:
    return not transitions(entity_type, status)


def _value(code) -> str:
    return code.value if hasattr(code, "value") else str(code)


def _sorted_values(codes: Iterable) -> List[str]:
    return sorted(_value(c) for c in codes)


class TransitionValidator:
    """
    Validates requested transitions against the closed tables.

    Holds no entity state; every call is evaluated against the entity passed in.
    """

    def __init__(self, gate: Optional[ChecklistGate] = None):
        self.gate = gate or ChecklistGate()

    def evaluate(
        self,
        entity_type,
        current,
        target,
        entity_id: Optional[int] = None,
        current_time: Optional[datetime] = None,
    ) -> TransitionDecision:
        """Check one (current, target) pair against the entity type's table."""
        if current_time is None:
            current_time = utcnow()

        entity_type = EntityType(entity_type)
        enum_cls, table = _TABLES[entity_type]
        current_value, target_value = _value(current), _value(target)
        allowed = table.get(enum_cls(current_value), frozenset())

        try:
            target_code = enum_cls(target_value)
        except ValueError:
            target_code = None

        if target_code is None or target_code not in allowed:
            logger.info(
                "Rejected %s %s transition %s -> %s",
                entity_type.value, entity_id, current_value, target_value,
            )
            return TransitionDecision(
                entity_type=entity_type,
                entity_id=entity_id,
                current=current_value,
                target=target_value,
                verdict=TransitionVerdict.REJECTED,
                rejection_reason=ErrorCode.INVALID_TRANSITION.value,
                rejection_detail=(
                    f"{entity_type.value} cannot move from '{current_value}' "
                    f"to '{target_value}'."
                ),
                allowed_targets=_sorted_values(allowed),
                evaluated_at=current_time,
            )

        return TransitionDecision(
            entity_type=entity_type,
            entity_id=entity_id,
            current=current_value,
            target=target_value,
            verdict=TransitionVerdict.APPROVED,
            allowed_targets=_sorted_values(allowed),
            evaluated_at=current_time,
        )

    def evaluate_signal(self, signal: Signal, target, current_time=None) -> TransitionDecision:
        return self.evaluate(EntityType.SIGNAL, signal.status, target, signal.signal_id, current_time)

    def evaluate_candidate(self, candidate: Candidate, target, current_time=None) -> TransitionDecision:
        return self.evaluate(
            EntityType.CANDIDATE, candidate.status, target, candidate.candidate_id, current_time,
        )

    def evaluate_proposal(self, proposal: Proposal, target, current_time=None) -> TransitionDecision:
        return self.evaluate(
            EntityType.PROPOSAL, proposal.status, target, proposal.proposal_id, current_time,
        )

    def evaluate_pursuit(
        self,
        pursuit: Pursuit,
        target,
        checklist: Iterable[ChecklistItem] = (),
        current_time: Optional[datetime] = None,
    ) -> TransitionDecision:
        """
        Check a stage change, then the checklist gate for gated targets.

        The table check runs first so an illegal pair is reported as such even
        when the checklist is also incomplete.
        """
        decision = self.evaluate(
            EntityType.PURSUIT, pursuit.stage, target, pursuit.pursuit_id, current_time,
        )
        if not decision.approved or decision.target not in GATED_STAGES:
            return decision

        gate = self.gate.evaluate(checklist, decision.target)
        if gate.satisfied:
            return decision

        logger.info(
            "Pursuit %s blocked entering %s: missing %s",
            pursuit.pursuit_id, decision.target, gate.missing_items,
        )
        return decision.model_copy(update={
            "verdict": TransitionVerdict.REJECTED,
            "rejection_reason": ErrorCode.CHECKLIST_INCOMPLETE.value,
            "rejection_detail": (
                f"Complete before entering '{decision.target}': "
                f"{', '.join(gate.missing_items)}."
            ),
            "missing_items": gate.missing_items,
        })

    def evaluate_promotion(self, candidate: Candidate, current_time=None) -> TransitionDecision:
        """Promotion needs a triaged-or-later, non-terminal candidate."""
        decision = self.evaluate_candidate(candidate, CandidateStatus.PROMOTED, current_time)
        if decision.approved and candidate.status not in PROMOTABLE_STATUSES:
            return decision.model_copy(update={
                "verdict": TransitionVerdict.REJECTED,
                "rejection_reason": ErrorCode.INVALID_TRANSITION.value,
                "rejection_detail": f"Candidate in '{candidate.status.value}' is not promotable.",
            })
        return decision

    @staticmethod
    def ensure(decision: TransitionDecision) -> TransitionDecision:
        """Raise the exception matching a rejected decision; pass approved ones through."""
        if decision.approved:
            return decision
        if decision.rejection_reason == ErrorCode.CHECKLIST_INCOMPLETE.value:
            raise ChecklistIncompleteError(
                decision.entity_id, decision.target, decision.missing_items,
            )
        raise InvalidTransitionError(
            decision.entity_type.value,
            decision.current,
            decision.target,
            allowed=decision.allowed_targets,
            entity_id=decision.entity_id,
        )
