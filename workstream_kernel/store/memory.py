"""
In-memory Workstream Store — the prototype stand-in for the external persistence layer.

Reads hand out copies, so nothing outside the store can patch its state in
place. Writes check the expected prior status and raise StaleReadError on a
mismatch. Production would sit behind the remote workstream API.
"""

import logging
from typing import Dict, List, Optional, Tuple

from workstream_kernel.clock import as_utc, utcnow
from workstream_kernel.errors import InvalidTransitionError, NotFoundError, StaleReadError
from workstream_kernel.models.drip import DripSchedule
from workstream_kernel.models.workstream import (
    Candidate,
    CandidateFilters,
    CandidateStatus,
    ChecklistItem,
    Page,
    Proposal,
    ProposalStatus,
    Pursuit,
    PursuitFilters,
    PursuitStage,
    Signal,
    SignalFilters,
    SignalStatus,
)

logger = logging.getLogger(__name__)


def _paginate(items: list, page: int, limit: int) -> Page:
    page = max(page, 1)
    limit = max(limit, 1)
    start = (page - 1) * limit
    return Page(items=items[start:start + limit], total=len(items), page=page, limit=limit)


class InMemoryWorkstreamStore:
    """Dict-backed implementation of WorkstreamBackend."""

    def __init__(self):
        self._signals: Dict[int, Signal] = {}
        self._candidates: Dict[int, Candidate] = {}
        self._pursuits: Dict[int, Pursuit] = {}
        self._proposals: Dict[int, Proposal] = {}
        self._checklist: Dict[int, ChecklistItem] = {}
        self._drips: Dict[int, DripSchedule] = {}
        self._sequences: Dict[str, int] = {}

    def _next_id(self, kind: str) -> int:
        self._sequences[kind] = self._sequences.get(kind, 0) + 1
        return self._sequences[kind]

    # --- Reads ---

    async def get_signal(self, signal_id: int) -> Optional[Signal]:
        signal = self._signals.get(signal_id)
        return signal.model_copy(deep=True) if signal else None

    async def get_candidate(self, candidate_id: int) -> Optional[Candidate]:
        candidate = self._candidates.get(candidate_id)
        return candidate.model_copy(deep=True) if candidate else None

    async def get_pursuit(self, pursuit_id: int) -> Optional[Pursuit]:
        pursuit = self._pursuits.get(pursuit_id)
        return pursuit.model_copy(deep=True) if pursuit else None

    async def get_proposal(self, proposal_id: int) -> Optional[Proposal]:
        proposal = self._proposals.get(proposal_id)
        return proposal.model_copy(deep=True) if proposal else None

    async def list_signals(
        self, filters: Optional[SignalFilters] = None, page: int = 1, limit: int = 50,
    ) -> Page[Signal]:
        f = filters or SignalFilters()
        rows = [
            s for s in self._signals.values()
            if (f.status is None or s.status == f.status)
            and (f.source is None or s.source_type == f.source)
            and (f.urgency_min is None or s.urgency_score >= f.urgency_min)
            and (f.owner is None or s.owner_user_id == f.owner)
            and (f.clustered is None or (s.cluster_id is not None) == f.clustered)
        ]
        rows.sort(key=lambda s: s.created_utc, reverse=True)
        return _paginate([s.model_copy(deep=True) for s in rows], page, limit)

    async def list_candidates(
        self, filters: Optional[CandidateFilters] = None, page: int = 1, limit: int = 50,
    ) -> Page[Candidate]:
        f = filters or CandidateFilters()
        rows = [
            c for c in self._candidates.values()
            if (f.status is None or c.status == f.status)
            and (f.owner is None or c.owner_user_id == f.owner)
            and (f.client is None or c.client_id == f.client)
            and (f.value_band is None or c.value_band == f.value_band)
        ]
        rows.sort(key=lambda c: c.created_utc, reverse=True)
        return _paginate([c.model_copy(deep=True) for c in rows], page, limit)

    async def list_pursuits(
        self, filters: Optional[PursuitFilters] = None, page: int = 1, limit: int = 50,
    ) -> Page[Pursuit]:
        f = filters or PursuitFilters()
        rows = [
            p for p in self._pursuits.values()
            if (f.stage is None or p.stage == f.stage)
            and (f.owner is None or p.owner_user_id == f.owner)
            and (f.client is None or p.client_id == f.client)
            and (
                f.due_before is None
                or (p.due_date is not None and as_utc(p.due_date) < as_utc(f.due_before))
            )
        ]
        rows.sort(key=lambda p: p.created_utc, reverse=True)
        return _paginate([p.model_copy(deep=True) for p in rows], page, limit)

    async def snapshot(self) -> Tuple[List[Signal], List[Candidate], List[Pursuit]]:
        return (
            [s.model_copy(deep=True) for s in self._signals.values()],
            [c.model_copy(deep=True) for c in self._candidates.values()],
            [p.model_copy(deep=True) for p in self._pursuits.values()],
        )

    async def get_checklist(self, pursuit_id: int) -> List[ChecklistItem]:
        return [
            i.model_copy(deep=True) for i in sorted(self._checklist.values(), key=lambda i: i.checklist_id)
            if i.pursuit_id == pursuit_id
        ]

    async def list_proposals(self, pursuit_id: int) -> List[Proposal]:
        return sorted(
            (p.model_copy(deep=True) for p in self._proposals.values() if p.pursuit_id == pursuit_id),
            key=lambda p: p.version,
        )

    async def list_drips(self, candidate_id: int) -> List[DripSchedule]:
        return sorted(
            (d.model_copy(deep=True) for d in self._drips.values() if d.candidate_id == candidate_id),
            key=lambda d: d.sequence_day,
        )

    # --- Writes ---

    async def insert_signal(self, signal: Signal) -> Signal:
        stored = signal.model_copy(update={"signal_id": self._next_id("signal")}, deep=True)
        self._signals[stored.signal_id] = stored
        return stored.model_copy(deep=True)

    async def save_signal(self, signal: Signal, expected_status: SignalStatus) -> Signal:
        current = self._require(self._signals, "signal", signal.signal_id)
        self._check_expected("signal", signal.signal_id, expected_status, current.status, current)
        stored = signal.model_copy(update={"updated_utc": utcnow()}, deep=True)
        self._signals[stored.signal_id] = stored
        return stored.model_copy(deep=True)

    async def insert_candidate(
        self, candidate: Candidate, origin_expected_status: Optional[SignalStatus] = None,
    ) -> Candidate:
        """Insert a candidate; with an origin signal, flip it to candidate_created in the same step."""
        origin = None
        if candidate.signal_id is not None:
            origin = self._require(self._signals, "signal", candidate.signal_id)
            if origin_expected_status is not None:
                self._check_expected(
                    "signal", origin.signal_id, origin_expected_status, origin.status, origin,
                )
            if any(c.signal_id == origin.signal_id for c in self._candidates.values()):
                raise InvalidTransitionError(
                    "signal", origin.status.value, SignalStatus.CANDIDATE_CREATED.value,
                    entity_id=origin.signal_id,
                )

        stored = candidate.model_copy(update={"candidate_id": self._next_id("candidate")}, deep=True)
        self._candidates[stored.candidate_id] = stored
        if origin is not None:
            self._signals[origin.signal_id] = origin.model_copy(update={
                "status": SignalStatus.CANDIDATE_CREATED,
                "updated_utc": utcnow(),
            })
        return stored.model_copy(deep=True)

    async def save_candidate(self, candidate: Candidate, expected_status: CandidateStatus) -> Candidate:
        current = self._require(self._candidates, "candidate", candidate.candidate_id)
        self._check_expected("candidate", candidate.candidate_id, expected_status, current.status, current)
        stored = candidate.model_copy(update={"updated_utc": utcnow()}, deep=True)
        self._candidates[stored.candidate_id] = stored
        return stored.model_copy(deep=True)

    async def promote(
        self, candidate: Candidate, expected_status: CandidateStatus, pursuit: Pursuit,
    ) -> Pursuit:
        """Update the candidate and insert its pursuit as one step."""
        current = self._require(self._candidates, "candidate", candidate.candidate_id)
        self._check_expected("candidate", candidate.candidate_id, expected_status, current.status, current)
        self._candidates[candidate.candidate_id] = candidate.model_copy(
            update={"updated_utc": utcnow()}, deep=True,
        )
        stored = pursuit.model_copy(update={"pursuit_id": self._next_id("pursuit")}, deep=True)
        self._pursuits[stored.pursuit_id] = stored
        return stored.model_copy(deep=True)

    async def save_pursuit(self, pursuit: Pursuit, expected_stage: PursuitStage) -> Pursuit:
        current = self._require(self._pursuits, "pursuit", pursuit.pursuit_id)
        self._check_expected("pursuit", pursuit.pursuit_id, expected_stage, current.stage, current)
        stored = pursuit.model_copy(update={"updated_utc": utcnow()}, deep=True)
        self._pursuits[stored.pursuit_id] = stored
        return stored.model_copy(deep=True)

    async def insert_checklist_item(self, item: ChecklistItem) -> ChecklistItem:
        self._require(self._pursuits, "pursuit", item.pursuit_id)
        stored = item.model_copy(update={"checklist_id": self._next_id("checklist")}, deep=True)
        self._checklist[stored.checklist_id] = stored
        return stored.model_copy(deep=True)

    async def save_checklist_item(self, item: ChecklistItem) -> ChecklistItem:
        self._require(self._checklist, "checklist_item", item.checklist_id)
        stored = item.model_copy(update={"updated_utc": utcnow()}, deep=True)
        self._checklist[stored.checklist_id] = stored
        return stored.model_copy(deep=True)

    async def insert_proposal(self, proposal: Proposal) -> Proposal:
        """Assigns the next version for the pursuit."""
        self._require(self._pursuits, "pursuit", proposal.pursuit_id)
        versions = [p.version for p in self._proposals.values() if p.pursuit_id == proposal.pursuit_id]
        stored = proposal.model_copy(update={
            "proposal_id": self._next_id("proposal"),
            "version": max(versions, default=0) + 1,
        }, deep=True)
        self._proposals[stored.proposal_id] = stored
        return stored.model_copy(deep=True)

    async def save_proposal(self, proposal: Proposal, expected_status: ProposalStatus) -> Proposal:
        current = self._require(self._proposals, "proposal", proposal.proposal_id)
        self._check_expected("proposal", proposal.proposal_id, expected_status, current.status, current)
        stored = proposal.model_copy(update={"updated_utc": utcnow()}, deep=True)
        self._proposals[stored.proposal_id] = stored
        return stored.model_copy(deep=True)

    async def insert_drips(self, drips: List[DripSchedule]) -> List[DripSchedule]:
        stored = []
        for drip in drips:
            row = drip.model_copy(update={"drip_id": self._next_id("drip")}, deep=True)
            self._drips[row.drip_id] = row
            stored.append(row.model_copy(deep=True))
        return stored

    # --- Helpers ---

    @staticmethod
    def _require(table: dict, entity_type: str, entity_id: int):
        row = table.get(entity_id)
        if row is None:
            raise NotFoundError(entity_type, entity_id)
        return row

    @staticmethod
    def _check_expected(entity_type: str, entity_id: int, expected, actual, current) -> None:
        if expected != actual:
            logger.warning(
                "Stale write on %s %s: expected %s, found %s",
                entity_type, entity_id, expected.value, actual.value,
            )
            raise StaleReadError(
                entity_type, entity_id, expected.value, actual.value,
                current=current.model_copy(deep=True),
            )
