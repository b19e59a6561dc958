"""Workstream kernel data models."""

from workstream_kernel.models.config import (
    ConfigType,
    ConfigurationItem,
    RetryPolicy,
    WorkstreamConfig,
    apply_configuration,
)
from workstream_kernel.models.drip import (
    DripAcknowledgement,
    DripAction,
    DripSchedule,
    DripStatus,
)
from workstream_kernel.models.events import DispatchOutcome, EventName, WorkEvent
from workstream_kernel.models.panel import (
    ItemTypeFilter,
    PanelFilter,
    PanelItem,
    PanelSnapshot,
    TodayPanelView,
    WorkstreamFunnel,
    WorkstreamStats,
)
from workstream_kernel.models.sla import SlaBadge, SlaBreach, SlaRule, SlaStatus
from workstream_kernel.models.transition import TransitionDecision, TransitionVerdict
from workstream_kernel.models.workstream import (
    Candidate,
    CandidateFilters,
    CandidateStatus,
    CandidateUpdate,
    ChecklistItem,
    EntityType,
    GatedStage,
    IcpBand,
    Page,
    PriorityTier,
    Proposal,
    ProposalStatus,
    Pursuit,
    PursuitFilters,
    PursuitStage,
    PursuitUpdate,
    ScoreUpdate,
    Signal,
    SignalFilters,
    SignalStatus,
    SourceType,
    ValueBand,
)

__all__ = [
    "Candidate",
    "CandidateFilters",
    "CandidateStatus",
    "CandidateUpdate",
    "ChecklistItem",
    "ConfigType",
    "ConfigurationItem",
    "DispatchOutcome",
    "DripAcknowledgement",
    "DripAction",
    "DripSchedule",
    "DripStatus",
    "EntityType",
    "EventName",
    "GatedStage",
    "IcpBand",
    "ItemTypeFilter",
    "Page",
    "PanelFilter",
    "PanelItem",
    "PanelSnapshot",
    "PriorityTier",
    "Proposal",
    "ProposalStatus",
    "Pursuit",
    "PursuitFilters",
    "PursuitStage",
    "PursuitUpdate",
    "RetryPolicy",
    "ScoreUpdate",
    "Signal",
    "SignalFilters",
    "SignalStatus",
    "SlaBadge",
    "SlaBreach",
    "SlaRule",
    "SlaStatus",
    "SourceType",
    "TodayPanelView",
    "TransitionDecision",
    "TransitionVerdict",
    "ValueBand",
    "WorkEvent",
    "WorkstreamConfig",
    "WorkstreamFunnel",
    "WorkstreamStats",
    "apply_configuration",
]
