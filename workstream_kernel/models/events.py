"""Work Events — append-only audit records that double as an outbox."""

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from workstream_kernel.models.workstream import EntityType


class EventName(str, Enum):
    SIGNAL_CREATED = "signal.created"
    SIGNAL_STATUS_CHANGED = "signal.status_changed"
    SIGNAL_IGNORED = "signal.ignored"
    CANDIDATE_CREATED = "candidate.created"
    CANDIDATE_STATUS_CHANGED = "candidate.status_changed"
    CANDIDATE_PROMOTED = "candidate.promoted"
    CANDIDATE_UPDATED = "candidate.updated"
    CANDIDATE_DRIP_REQUESTED = "candidate.drip_requested"
    PURSUIT_UPDATED = "pursuit.updated"
    PURSUIT_STAGE_CHANGED = "pursuit.stage_changed"
    PURSUIT_SUBMITTED = "pursuit.submit"
    PURSUIT_WON = "pursuit.won"
    PURSUIT_LOST = "pursuit.lost"
    CHECKLIST_UPDATED = "pursuit.checklist_updated"
    PROPOSAL_CREATED = "proposal.created"
    PROPOSAL_STATUS_CHANGED = "proposal.status_changed"
    ITEM_RESCORED = "workstream.rescored"
    SLA_BREACHED = "sla.breached"


# --- Payload variants, discriminated on ``kind`` ---

class SignalCreatedPayload(BaseModel):
    kind: Literal["signal_created"] = "signal_created"
    source_type: str
    urgency_score: float = 0.0


class CandidateCreatedPayload(BaseModel):
    kind: Literal["candidate_created"] = "candidate_created"
    signal_id: Optional[int] = None
    title: str


class SignalIgnoredPayload(BaseModel):
    kind: Literal["signal_ignored"] = "signal_ignored"
    reason: Optional[str] = None


class StatusChangedPayload(BaseModel):
    kind: Literal["status_changed"] = "status_changed"
    from_status: str
    to_status: str
    note: Optional[str] = None


class CandidatePromotedPayload(BaseModel):
    kind: Literal["candidate_promoted"] = "candidate_promoted"
    pursuit_id: int
    from_status: str


class StageChangedPayload(BaseModel):
    kind: Literal["stage_changed"] = "stage_changed"
    from_stage: str
    to_stage: str
    notes: Optional[str] = None


class PursuitDecidedPayload(BaseModel):
    kind: Literal["pursuit_decided"] = "pursuit_decided"
    outcome: Literal["won", "lost"]
    value_usd: Optional[float] = None
    reason: Optional[str] = None
    notes: Optional[str] = None


class ChecklistUpdatedPayload(BaseModel):
    kind: Literal["checklist_updated"] = "checklist_updated"
    checklist_id: int
    item_name: str
    completed: bool


class ProposalCreatedPayload(BaseModel):
    kind: Literal["proposal_created"] = "proposal_created"
    proposal_id: int
    version: int


class ProposalStatusPayload(BaseModel):
    kind: Literal["proposal_status"] = "proposal_status"
    proposal_id: int
    version: int
    from_status: str
    to_status: str


class FieldsUpdatedPayload(BaseModel):
    kind: Literal["fields_updated"] = "fields_updated"
    fields: List[str]


class RescoredPayload(BaseModel):
    kind: Literal["rescored"] = "rescored"
    priority_score: Optional[float] = None
    priority_tier: Optional[str] = None
    icp_band: Optional[str] = None


class DripRequestedPayload(BaseModel):
    kind: Literal["drip_requested"] = "drip_requested"
    candidate_id: int


class SlaBreachedPayload(BaseModel):
    kind: Literal["sla_breached"] = "sla_breached"
    breach_id: int
    rule_name: str
    hours_over: float


EventPayload = Annotated[
    Union[
        SignalCreatedPayload,
        CandidateCreatedPayload,
        SignalIgnoredPayload,
        StatusChangedPayload,
        CandidatePromotedPayload,
        StageChangedPayload,
        PursuitDecidedPayload,
        ChecklistUpdatedPayload,
        ProposalCreatedPayload,
        ProposalStatusPayload,
        FieldsUpdatedPayload,
        RescoredPayload,
        DripRequestedPayload,
        SlaBreachedPayload,
    ],
    Field(discriminator="kind"),
]


class WorkEvent(BaseModel):
    """
    One recorded state change.

    Never mutated after append except to mark it processed or to bump the
    retry bookkeeping after a failed side effect.
    """

    event_id: int = 0                           # Assigned by the outbox store
    org_id: int = 1
    entity_type: EntityType
    entity_id: int
    event_name: EventName
    payload: EventPayload
    created_utc: datetime
    processed_at: Optional[datetime] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None
    error_message: Optional[str] = None


class DispatchOutcome(BaseModel):
    """Result of handing one event to its handler."""

    event_id: int
    event_name: EventName
    success: bool
    handled: bool = True                        # False when no handler is registered
    error: Optional[str] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None
    exhausted: bool = False
    duration: float = 0.0
