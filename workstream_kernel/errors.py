"""Workstream errors.

All domain errors inherit from ``WorkstreamError`` so the command layer and the
HTTP surface can catch the whole family with one clause. Each subclass carries
a machine-readable ``code`` and the fields a caller needs to act on it.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    INVALID_TRANSITION = "invalid_transition"
    CHECKLIST_INCOMPLETE = "checklist_incomplete"
    NOT_FOUND = "not_found"
    TRANSIENT_FAILURE = "transient_failure"
    STALE_READ = "stale_read"


class WorkstreamError(Exception):
    """Base exception for workstream errors."""

    code: ErrorCode

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message, **self.details}


class InvalidTransitionError(WorkstreamError):
    """The requested status/stage is not in the legal set for the current one."""

    code = ErrorCode.INVALID_TRANSITION

    def __init__(
        self,
        entity_type: str,
        current: str,
        target: str,
        allowed: Optional[List[str]] = None,
        entity_id: Optional[int] = None,
    ) -> None:
        allowed = sorted(allowed or [])
        super().__init__(
            f"Cannot move {entity_type} from '{current}' to '{target}'",
            {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current": current,
                "target": target,
                "allowed": allowed,
            },
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current = current
        self.target = target
        self.allowed = allowed


class ChecklistIncompleteError(WorkstreamError):
    """Stage advancement is blocked by unmet checklist items."""

    code = ErrorCode.CHECKLIST_INCOMPLETE

    def __init__(self, pursuit_id: Optional[int], target_stage: str, missing_items: List[str]) -> None:
        super().__init__(
            f"Checklist incomplete for stage '{target_stage}': {', '.join(missing_items)}",
            {
                "pursuit_id": pursuit_id,
                "target_stage": target_stage,
                "missing_items": list(missing_items),
            },
        )
        self.pursuit_id = pursuit_id
        self.target_stage = target_stage
        self.missing_items = list(missing_items)


class NotFoundError(WorkstreamError):
    """A referenced entity does not exist in the store."""

    code = ErrorCode.NOT_FOUND

    def __init__(self, entity_type: str, entity_id: int) -> None:
        super().__init__(
            f"{entity_type} {entity_id} not found",
            {"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class TransientFailureError(WorkstreamError):
    """A collaborator (drip provider, enrichment) failed in a retryable way."""

    code = ErrorCode.TRANSIENT_FAILURE

    def __init__(self, message: str = "Collaborator request failed", provider: str = "") -> None:
        super().__init__(message, {"provider": provider})
        self.provider = provider


class StaleReadError(WorkstreamError):
    """
    A write was based on a view that no longer matches the store.

    ``current`` holds the refetched entity so the caller can re-present it.
    """

    code = ErrorCode.STALE_READ

    def __init__(
        self,
        entity_type: str,
        entity_id: int,
        expected: str,
        actual: str,
        current: Any = None,
    ) -> None:
        super().__init__(
            f"{entity_type} {entity_id} changed underneath this request "
            f"(expected '{expected}', found '{actual}')",
            {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "expected": expected,
                "actual": actual,
            },
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        self.current = current
