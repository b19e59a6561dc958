"""
Workstream Backend — the contract of the external persistence collaborator.

Every write names the status/stage it expects to overwrite. A store that finds
something else must raise StaleReadError instead of applying the write.
"""

from typing import List, Optional, Protocol, Tuple

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


class WorkstreamBackend(Protocol):
    """Async store for workstream entities."""

    # --- Reads ---

    async def get_signal(self, signal_id: int) -> Optional[Signal]: ...

    async def get_candidate(self, candidate_id: int) -> Optional[Candidate]: ...

    async def get_pursuit(self, pursuit_id: int) -> Optional[Pursuit]: ...

    async def get_proposal(self, proposal_id: int) -> Optional[Proposal]: ...

    async def list_signals(
        self, filters: Optional[SignalFilters] = None, page: int = 1, limit: int = 50,
    ) -> Page[Signal]: ...

    async def list_candidates(
        self, filters: Optional[CandidateFilters] = None, page: int = 1, limit: int = 50,
    ) -> Page[Candidate]: ...

    async def list_pursuits(
        self, filters: Optional[PursuitFilters] = None, page: int = 1, limit: int = 50,
    ) -> Page[Pursuit]: ...

    async def snapshot(self) -> Tuple[List[Signal], List[Candidate], List[Pursuit]]: ...

    async def get_checklist(self, pursuit_id: int) -> List[ChecklistItem]: ...

    async def list_proposals(self, pursuit_id: int) -> List[Proposal]: ...

    async def list_drips(self, candidate_id: int) -> List[DripSchedule]: ...

    # --- Writes ---

    async def insert_signal(self, signal: Signal) -> Signal: ...

    async def save_signal(self, signal: Signal, expected_status: SignalStatus) -> Signal: ...

    async def insert_candidate(
        self, candidate: Candidate, origin_expected_status: Optional[SignalStatus] = None,
    ) -> Candidate: ...

    async def save_candidate(
        self, candidate: Candidate, expected_status: CandidateStatus,
    ) -> Candidate: ...

    async def promote(
        self, candidate: Candidate, expected_status: CandidateStatus, pursuit: Pursuit,
    ) -> Pursuit: ...

    async def save_pursuit(self, pursuit: Pursuit, expected_stage: PursuitStage) -> Pursuit: ...

    async def insert_checklist_item(self, item: ChecklistItem) -> ChecklistItem: ...

    async def save_checklist_item(self, item: ChecklistItem) -> ChecklistItem: ...

    async def insert_proposal(self, proposal: Proposal) -> Proposal: ...

    async def save_proposal(self, proposal: Proposal, expected_status: ProposalStatus) -> Proposal: ...

    async def insert_drips(self, drips: List[DripSchedule]) -> List[DripSchedule]: ...
