"""
Outbox Scheduler — the heartbeat that drains the outbox.

States per event:
  PENDING → DISPATCHED → PROCESSED
  PENDING → FAILED → (backoff) PENDING … → EXHAUSTED

Failures are retried with exponential backoff from the configured
RetryPolicy. An event that runs out of retries is parked and surfaced for
a human, never retried again. An optional SLA sweep runs on the same beat.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional

from workstream_kernel.clock import utcnow
from workstream_kernel.models.config import WorkstreamConfig
from workstream_kernel.models.events import DispatchOutcome, WorkEvent
from workstream_kernel.outbox.dispatcher import EventDispatcher
from workstream_kernel.outbox.store import OutboxStore

logger = logging.getLogger(__name__)

Sweep = Callable[[datetime], Awaitable[object]]


class OutboxScheduler:
    def __init__(
        self,
        outbox: OutboxStore,
        dispatcher: EventDispatcher,
        config: Optional[WorkstreamConfig] = None,
        sweep: Optional[Sweep] = None,
    ):
        self.outbox = outbox
        self.dispatcher = dispatcher
        self.config = config or WorkstreamConfig()
        self.sweep = sweep
        self._running = False

    @property
    def status(self) -> str:
        """Current scheduler status."""
        return "running" if self._running else "stopped"

    @property
    def exhausted_events(self) -> List[WorkEvent]:
        """Events that used up their retries and wait for a human."""
        return self.outbox.exhausted(self.config.retry.max_retries)

    async def dispatch_event(self, event: WorkEvent, now: Optional[datetime] = None) -> DispatchOutcome:
        """Dispatch one event and record the outcome in the outbox."""
        if now is None:
            now = utcnow()

        outcome = await self.dispatcher.dispatch(event)
        if outcome.success:
            self.outbox.mark_processed(event.event_id, now)
            return outcome

        policy = self.config.retry
        retry_count = event.retry_count + 1
        if retry_count >= policy.max_retries:
            self.outbox.record_failure(event.event_id, outcome.error or "", None)
            logger.error(
                "Event %s (%s) exhausted %d retries: %s",
                event.event_id, event.event_name.value, retry_count, outcome.error,
            )
            return outcome.model_copy(update={"retry_count": retry_count, "exhausted": True})

        next_retry_at = now + timedelta(seconds=policy.delay_for(retry_count))
        self.outbox.record_failure(event.event_id, outcome.error or "", next_retry_at)
        logger.info(
            "Event %s retry %d scheduled for %s",
            event.event_id, retry_count, next_retry_at.isoformat(),
        )
        return outcome.model_copy(update={
            "retry_count": retry_count,
            "next_retry_at": next_retry_at,
        })

    async def dispatch_due(self, now: Optional[datetime] = None, limit: int = 100) -> List[DispatchOutcome]:
        """
        Run a single outbox cycle.
        Returns one outcome per event that was due.
        """
        if now is None:
            now = utcnow()

        outcomes = []
        for event in self.outbox.pending(now, limit):
            outcomes.append(await self.dispatch_event(event, now))
        if outcomes:
            logger.debug("Outbox cycle dispatched %d events", len(outcomes))
        return outcomes

    async def tick(self, now: Optional[datetime] = None) -> List[DispatchOutcome]:
        """One heartbeat: drain due events, then run the SLA sweep if configured."""
        if now is None:
            now = utcnow()
        outcomes = await self.dispatch_due(now)
        if self.sweep is not None:
            await self.sweep(now)
        return outcomes

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run the outbox loop asynchronously."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                await self.tick()
                try:
                    await asyncio.wait_for(
                        stop_event.wait(),
                        timeout=self.config.heartbeat_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False
