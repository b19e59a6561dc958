"""
Event Dispatcher — hands recorded work events to their side-effect handlers.

Behavioral Contract:
- Handlers are registered per event name; an event with no handler is audit-only
- A handler signals a retryable failure by raising; the outcome carries the error
- The dispatcher never touches retry bookkeeping, the scheduler owns that
- Drip sequences are requested through a DripProvider; a refusal or an
  unexpected provider error surfaces as TransientFailureError
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

from croniter import croniter

from workstream_kernel.clock import as_utc, utcnow
from workstream_kernel.errors import TransientFailureError
from workstream_kernel.models.config import WorkstreamConfig
from workstream_kernel.models.drip import DripAction, DripSchedule
from workstream_kernel.models.events import DispatchOutcome, EventName, WorkEvent
from workstream_kernel.models.workstream import Candidate

logger = logging.getLogger(__name__)

EventHandler = Callable[[WorkEvent], Awaitable[None]]


class DripProvider(Protocol):
    """External nurture-campaign service."""

    async def trigger(self, candidate_id: int) -> bool: ...


class NullDripProvider:
    """Accepts every request. Stands in until a real provider is wired."""

    async def trigger(self, candidate_id: int) -> bool:
        logger.info("Drip requested for candidate %s (no provider configured)", candidate_id)
        return True


def drip_handler(provider: DripProvider) -> EventHandler:
    """Handler for ``candidate.drip_requested`` events."""

    async def handle(event: WorkEvent) -> None:
        candidate_id = event.payload.candidate_id
        try:
            accepted = await provider.trigger(candidate_id)
        except TransientFailureError:
            raise
        except Exception as e:
            raise TransientFailureError(
                f"Drip provider failed for candidate {candidate_id}: {e}",
                provider=type(provider).__name__,
            ) from e
        if not accepted:
            raise TransientFailureError(
                f"Drip provider declined candidate {candidate_id}",
                provider=type(provider).__name__,
            )

    return handle


def _action_for(index: int, total: int) -> DripAction:
    """Emails throughout, a call task to close the sequence."""
    if total > 1 and index == total - 1:
        return DripAction.CALL
    return DripAction.EMAIL


def build_drip_schedule(
    candidate: Candidate,
    start: Optional[datetime] = None,
    config: Optional[WorkstreamConfig] = None,
) -> List[DripSchedule]:
    """
    One pending DripSchedule row per configured sequence day.

    With a send window configured, each step moves forward to the first
    matching cron slot at or after its nominal day.
    """
    config = config or WorkstreamConfig()
    start = as_utc(start or utcnow())
    days = sorted(set(config.drip_sequence_days))

    rows = []
    for index, day in enumerate(days):
        nominal = start + timedelta(days=day)
        scheduled = nominal
        if config.drip_send_window:
            if not croniter.match(config.drip_send_window, nominal):
                scheduled = croniter(config.drip_send_window, nominal).get_next(datetime)
        rows.append(DripSchedule(
            org_id=candidate.org_id,
            candidate_id=candidate.candidate_id,
            sequence_day=day,
            action_type=_action_for(index, len(days)),
            template_id=f"nurture_day_{day}",
            scheduled_for=scheduled,
            created_utc=start,
        ))
    return rows


class EventDispatcher:
    """
    Routes work events to registered async handlers.

    The default registry carries only the drip handler; every other event
    name is recorded for audit and needs no side effect.
    """

    def __init__(self, drip_provider: Optional[DripProvider] = None):
        self._handlers: Dict[EventName, EventHandler] = {}
        self.register_handler(
            EventName.CANDIDATE_DRIP_REQUESTED,
            drip_handler(drip_provider or NullDripProvider()),
        )

    def register_handler(self, event_name, handler: EventHandler) -> None:
        """Register (or replace) the handler for an event name."""
        self._handlers[EventName(event_name)] = handler

    def has_handler(self, event_name) -> bool:
        return EventName(event_name) in self._handlers

    async def dispatch(self, event: WorkEvent) -> DispatchOutcome:
        """Run the handler for one event and report what happened."""
        handler = self._handlers.get(event.event_name)
        if handler is None:
            return DispatchOutcome(
                event_id=event.event_id,
                event_name=event.event_name,
                success=True,
                handled=False,
                retry_count=event.retry_count,
            )

        start = time.monotonic()
        try:
            await handler(event)
        except Exception as e:
            elapsed = time.monotonic() - start
            logger.warning(
                "Handler for %s failed on event %s: %s",
                event.event_name.value, event.event_id, e,
            )
            return DispatchOutcome(
                event_id=event.event_id,
                event_name=event.event_name,
                success=False,
                error=str(e),
                retry_count=event.retry_count,
                duration=round(elapsed, 3),
            )

        elapsed = time.monotonic() - start
        return DispatchOutcome(
            event_id=event.event_id,
            event_name=event.event_name,
            success=True,
            retry_count=event.retry_count,
            duration=round(elapsed, 3),
        )
