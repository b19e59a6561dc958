"""
Checklist Gate — named prerequisites for entering the pink, red and submit stages.

The gate is informational except at the moment a stage transition is
requested: completing or un-completing an item never moves a Pursuit.
"""

import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from workstream_kernel.models.workstream import ChecklistItem, GatedStage, PursuitStage

logger = logging.getLogger(__name__)

ChecklistLoader = Callable[[int], Awaitable[List[ChecklistItem]]]

GATED_STAGES = frozenset(s.value for s in GatedStage)


class GateResult(BaseModel):
    target_stage: str
    satisfied: bool
    missing_items: List[str] = []
    required_count: int = 0


def _stage_value(stage) -> str:
    return stage.value if hasattr(stage, "value") else str(stage)


class ChecklistGate:
    """Answers whether every item required for a target stage is complete."""

    def __init__(self, loader: Optional[ChecklistLoader] = None):
        self._loader = loader

    def evaluate(self, items: Iterable[ChecklistItem], target_stage) -> GateResult:
        """Pure check over already-fetched checklist items."""
        target = _stage_value(target_stage)
        if target not in GATED_STAGES:
            return GateResult(target_stage=target, satisfied=True)

        required = [i for i in items if i.required_for_stage.value == target]
        missing = [i.item_name for i in required if not i.completed]
        return GateResult(
            target_stage=target,
            satisfied=not missing,
            missing_items=missing,
            required_count=len(required),
        )

    async def is_satisfied(self, pursuit_id: int, target_stage) -> Tuple[bool, List[str]]:
        """Fetch the pursuit's checklist and report satisfaction plus unmet item names."""
        if self._loader is None:
            raise RuntimeError("ChecklistGate has no loader configured")
        items = await self._loader(pursuit_id)
        result = self.evaluate(items, target_stage)
        logger.debug(
            "Gate %s for pursuit %s: satisfied=%s missing=%s",
            result.target_stage, pursuit_id, result.satisfied, result.missing_items,
        )
        return result.satisfied, result.missing_items


def next_gated_stage(stage: PursuitStage) -> Optional[str]:
    """The gate a pursuit will face on its next forward move, if any."""
    forward = {
        PursuitStage.QUAL: GatedStage.PINK.value,
        PursuitStage.PINK: GatedStage.RED.value,
        PursuitStage.RED: GatedStage.SUBMIT.value,
    }
    return forward.get(stage)
