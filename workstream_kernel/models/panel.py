"""Today Panel projections — one ranked list across signals, candidates and pursuits."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator

from workstream_kernel.clock import as_utc
from workstream_kernel.models.sla import SlaBadge
from workstream_kernel.models.workstream import IcpBand, PriorityTier


class ItemTypeFilter(str, Enum):
    ALL = "all"
    SIGNAL = "signal"
    CANDIDATE = "candidate"
    PURSUIT = "pursuit"


def _lenient_enum(enum_cls, value: Any):
    """Coerce to ``enum_cls`` or fall back to None."""
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        return None


class PanelItem(BaseModel):
    """
    A heterogeneous work item as the panel sees it.

    Ranking fields are optional and tolerant: a malformed score, tier or
    badge degrades to None (lowest rank) instead of failing validation.
    """

    item_type: Optional[str] = None          # "signal" | "candidate" | "pursuit"
    item_id: Optional[int] = None
    label: str = ""
    state: Optional[str] = None              # Current status/stage
    owner_user_id: Optional[int] = None
    last_touch_at: Optional[datetime] = None
    due_date: Optional[datetime] = None
    badge: Optional[SlaBadge] = None
    sla_metric: Optional[str] = None         # Human readable SLA status
    urgency_score: Optional[float] = None    # Signals
    value_band: Optional[str] = None         # Candidates
    forecast_value_usd: Optional[float] = None  # Pursuits
    priority_score: Optional[float] = None
    priority_tier: Optional[PriorityTier] = None
    icp_band: Optional[IcpBand] = None
    has_threads: bool = False
    has_docs: bool = False

    @field_validator("priority_score", "urgency_score", "forecast_value_usd", mode="before")
    @classmethod
    def _lenient_number(cls, value):
        if value is None or isinstance(value, bool):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        if number != number:  # NaN
            return None
        return number

    @field_validator("priority_tier", mode="before")
    @classmethod
    def _lenient_tier(cls, value):
        return _lenient_enum(PriorityTier, value)

    @field_validator("badge", mode="before")
    @classmethod
    def _lenient_badge(cls, value):
        return _lenient_enum(SlaBadge, value)

    @field_validator("icp_band", mode="before")
    @classmethod
    def _lenient_icp(cls, value):
        return _lenient_enum(IcpBand, value)

    @field_validator("item_type", mode="before")
    @classmethod
    def _lenient_type(cls, value):
        return str(value).lower() if value is not None else None

    @field_validator("item_id", "owner_user_id", mode="before")
    @classmethod
    def _lenient_int(cls, value):
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    @field_validator("last_touch_at", "due_date", mode="before")
    @classmethod
    def _lenient_datetime(cls, value):
        if value is None:
            return None
        if isinstance(value, datetime):
            return as_utc(value)
        try:
            return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
        except ValueError:
            return None

    @field_validator("label", mode="before")
    @classmethod
    def _lenient_label(cls, value):
        return "" if value is None else str(value)

    @field_validator("state", "sla_metric", "value_band", mode="before")
    @classmethod
    def _lenient_text(cls, value):
        return None if value is None else str(value)

    @field_validator("has_threads", "has_docs", mode="before")
    @classmethod
    def _lenient_flag(cls, value):
        return bool(value)


class PanelFilter(BaseModel):
    """Explicit filter state for one aggregation."""

    item_type: ItemTypeFilter = ItemTypeFilter.ALL
    tier: Optional[PriorityTier] = None
    owner_user_id: Optional[int] = None
    badge: Optional[SlaBadge] = None


class TodayPanelView(BaseModel):
    """Ranked, grouped output of one aggregation."""

    items: List[PanelItem]
    by_tier: Dict[str, List[PanelItem]]
    tier_counts: Dict[str, int]
    ready_to_promote: List[PanelItem]
    ready_to_promote_count: int
    total: int
    generated_at: datetime


class WorkstreamStats(BaseModel):
    today_due: int = 0
    overdue: int = 0
    this_week: int = 0
    avg_cycle_time_days: Optional[float] = None
    win_rate: Optional[float] = None


class ConversionRates(BaseModel):
    signal_to_candidate: float = 0.0
    candidate_to_pursuit: float = 0.0
    pursuit_to_won: float = 0.0


class WorkstreamFunnel(BaseModel):
    signals: int = 0
    candidates: int = 0
    pursuits: int = 0
    won: int = 0
    conversion_rates: ConversionRates = ConversionRates()


class PanelSnapshot(BaseModel):
    """What a panel session currently shows. Replaced wholesale on refresh."""

    generation: int
    panel_filter: PanelFilter
    view: TodayPanelView
    stats: WorkstreamStats
