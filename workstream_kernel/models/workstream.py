"""Workstream entities — Signal → Candidate → Pursuit, plus proposals and checklists."""

from datetime import datetime
from enum import Enum
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field


class EntityType(str, Enum):
    SIGNAL = "signal"
    CANDIDATE = "candidate"
    PURSUIT = "pursuit"
    PROPOSAL = "proposal"


class SourceType(str, Enum):
    EMAIL = "email"
    PHONE = "phone"
    WEB = "web"
    REFERRAL = "referral"
    LINKEDIN = "linkedin"
    OTHER = "other"


class SignalStatus(str, Enum):
    NEW = "new"
    TRIAGED = "triaged"
    CANDIDATE_CREATED = "candidate_created"   # Terminal
    IGNORED = "ignored"                       # Terminal


class CandidateStatus(str, Enum):
    NEW = "new"
    TRIAGED = "triaged"
    NURTURE = "nurture"
    ON_HOLD = "on_hold"
    PROMOTED = "promoted"   # Terminal
    ARCHIVED = "archived"   # Terminal


class PursuitStage(str, Enum):
    QUAL = "qual"
    PINK = "pink"
    RED = "red"
    SUBMIT = "submit"
    WON = "won"     # Terminal
    LOST = "lost"   # Terminal


class GatedStage(str, Enum):
    """Stages that carry checklist items."""
    PINK = "pink"
    RED = "red"
    SUBMIT = "submit"


class ProposalStatus(str, Enum):
    DRAFT = "draft"
    REVIEW = "review"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ValueBand(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    ENTERPRISE = "enterprise"


class IcpBand(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PriorityTier(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class BaseEntity(BaseModel):
    """Every record is scoped to an organization."""

    org_id: int = 1
    created_utc: datetime
    updated_utc: Optional[datetime] = None


class Signal(BaseEntity):
    """A raw inbound lead indicator."""

    signal_id: int = 0                          # Assigned by the store
    snippet: str
    source_type: SourceType = SourceType.OTHER
    urgency_score: float = Field(ge=0.0, le=1.0, default=0.0)
    cluster_id: Optional[str] = None            # Signals describing the same event
    cluster_count: Optional[int] = None
    owner_user_id: Optional[int] = None
    status: SignalStatus = SignalStatus.NEW
    contact_id: Optional[int] = None            # Resolved identity
    client_id: Optional[int] = None
    ignored_reason: Optional[str] = None

    # Ranking inputs, populated by analysis
    priority_score: Optional[float] = None
    priority_tier: Optional[PriorityTier] = None
    icp_band: Optional[IcpBand] = None


class Candidate(BaseEntity):
    """A qualified opportunity derived from zero-or-one Signal."""

    candidate_id: int = 0
    signal_id: Optional[int] = None             # Origin signal, lookup only
    title: str
    client_id: Optional[int] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    value_band: ValueBand = ValueBand.SMALL
    confidence: int = Field(ge=0, le=100, default=50)
    status: CandidateStatus = CandidateStatus.NEW
    owner_user_id: Optional[int] = None
    last_touch_at: Optional[datetime] = None
    promoted_at: Optional[datetime] = None
    notes: Optional[str] = None

    # ICP score summary and ranking inputs, populated by enrichment
    icp_score: Optional[float] = None
    icp_band: Optional[IcpBand] = None
    priority_score: Optional[float] = None
    priority_tier: Optional[PriorityTier] = None


class Pursuit(BaseEntity):
    """An active deal created by promoting exactly one Candidate."""

    pursuit_id: int = 0
    candidate_id: int                           # Source candidate, lookup only
    title: str
    client_id: Optional[int] = None
    stage: PursuitStage = PursuitStage.QUAL
    stage_entered_at: Optional[datetime] = None
    due_date: Optional[datetime] = None
    owner_user_id: Optional[int] = None
    forecast_value_usd: Optional[float] = None
    probability: int = Field(ge=0, le=100, default=10)
    description: Optional[str] = None
    checklist_required: bool = False
    checklist_complete: bool = False
    submitted_at: Optional[datetime] = None
    decision_at: Optional[datetime] = None
    lost_reason: Optional[str] = None

    priority_score: Optional[float] = None
    priority_tier: Optional[PriorityTier] = None
    icp_band: Optional[IcpBand] = None


class Proposal(BaseEntity):
    """Versioned document attached to a Pursuit."""

    proposal_id: int = 0
    pursuit_id: int
    version: int = Field(ge=1, default=1)
    status: ProposalStatus = ProposalStatus.DRAFT
    title: Optional[str] = None
    content: Optional[str] = None
    sent_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class ChecklistItem(BaseEntity):
    """Named gating item tied to one Pursuit and one target stage."""

    checklist_id: int = 0
    pursuit_id: int
    item_name: str
    required_for_stage: GatedStage
    completed: bool = False
    completed_by: Optional[int] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None


# --- Query shapes ---

class SignalFilters(BaseModel):
    status: Optional[SignalStatus] = None
    source: Optional[SourceType] = None
    urgency_min: Optional[float] = None
    owner: Optional[int] = None
    clustered: Optional[bool] = None


class CandidateFilters(BaseModel):
    status: Optional[CandidateStatus] = None
    owner: Optional[int] = None
    client: Optional[int] = None
    value_band: Optional[ValueBand] = None


class PursuitFilters(BaseModel):
    stage: Optional[PursuitStage] = None
    owner: Optional[int] = None
    client: Optional[int] = None
    due_before: Optional[datetime] = None


# --- Update shapes ---
# Partial updates: only fields the caller sets are applied. Status and stage
# only move through the transition commands.

class ScoreUpdate(BaseModel):
    """Ranking inputs set by a rescore."""

    priority_score: Optional[float] = Field(ge=0.0, default=None)  # 0-1, or the 0-200 domain
    priority_tier: Optional[PriorityTier] = None
    icp_band: Optional[IcpBand] = None


class CandidateUpdate(ScoreUpdate):
    title: Optional[str] = None
    client_id: Optional[int] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    value_band: Optional[ValueBand] = None
    confidence: Optional[int] = Field(ge=0, le=100, default=None)
    owner_user_id: Optional[int] = None
    notes: Optional[str] = None
    icp_score: Optional[float] = None


class PursuitUpdate(ScoreUpdate):
    title: Optional[str] = None
    client_id: Optional[int] = None
    due_date: Optional[datetime] = None
    owner_user_id: Optional[int] = None
    forecast_value_usd: Optional[float] = None
    probability: Optional[int] = Field(ge=0, le=100, default=None)
    description: Optional[str] = None


T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """One page of a list query plus the unpaged total."""

    items: List[T]
    total: int
    page: int = 1
    limit: int = 50
