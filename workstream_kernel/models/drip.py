"""Drip Schedule — scheduled nurture actions for a Candidate."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class DripAction(str, Enum):
    EMAIL = "email"
    TASK = "task"
    CALL = "call"


class DripStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class DripSchedule(BaseModel):
    drip_id: int = 0
    org_id: int = 1
    candidate_id: int
    sequence_day: int                       # Day offset from sequence start
    action_type: DripAction = DripAction.EMAIL
    template_id: Optional[str] = None
    scheduled_for: datetime
    completed_at: Optional[datetime] = None
    status: DripStatus = DripStatus.PENDING
    created_utc: datetime


class DripAcknowledgement(BaseModel):
    """What the caller sees after asking for a drip sequence."""

    candidate_id: int
    event_id: int
    accepted: bool
    error: Optional[str] = None
