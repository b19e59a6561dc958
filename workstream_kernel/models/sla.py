"""SLA rules, breaches and the traffic-light badge."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from workstream_kernel.models.workstream import EntityType


class SlaBadge(str, Enum):
    GREEN = "green"   # On track
    AMBER = "amber"   # Due soon
    RED = "red"       # Overdue


class SlaRule(BaseModel):
    """A threshold (hours) per entity type and rule name."""

    rule_id: int
    org_id: int = 1
    rule_name: str                          # "triage_sla" | "proposal_sla" | "response_sla"
    entity_type: EntityType
    threshold_hours: float = Field(gt=0)
    is_active: bool = True


class SlaBreach(BaseModel):
    """Immutable record of a missed expectation; only ``resolved_at`` is ever stamped."""

    breach_id: int
    org_id: int = 1
    rule_id: int
    rule_name: str
    entity_type: EntityType
    entity_id: int
    expected_by: datetime
    actual_time: datetime
    hours_over: float
    resolved_at: Optional[datetime] = None
    created_utc: datetime


class SlaStatus(BaseModel):
    """Read-side projection of one entity against its applicable rule."""

    entity_type: EntityType
    entity_id: int
    rule_name: Optional[str] = None
    expected_by: Optional[datetime] = None
    badge: Optional[SlaBadge] = None
