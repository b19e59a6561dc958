"""Transition Decision — the validator's ruling on a requested status/stage change."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from workstream_kernel.models.workstream import EntityType


class TransitionVerdict(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class TransitionDecision(BaseModel):
    """
    Outcome of validating one transition request.

    ``rejection_reason`` is machine-readable (an ``ErrorCode`` value),
    ``rejection_detail`` is for people. ``missing_items`` is populated only
    when a checklist gate blocked the request.
    """

    entity_type: EntityType
    entity_id: Optional[int] = None
    current: str
    target: str
    verdict: TransitionVerdict
    rejection_reason: Optional[str] = None
    rejection_detail: Optional[str] = None
    missing_items: List[str] = []
    allowed_targets: List[str] = []
    evaluated_at: datetime

    @property
    def approved(self) -> bool:
        return self.verdict == TransitionVerdict.APPROVED
