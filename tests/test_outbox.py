"""Tests for the outbox store and scheduler."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from workstream_kernel.errors import NotFoundError, TransientFailureError
from workstream_kernel.models.config import RetryPolicy, WorkstreamConfig
from workstream_kernel.models.events import (
    DripRequestedPayload,
    EventName,
    StatusChangedPayload,
    WorkEvent,
)
from workstream_kernel.models.workstream import EntityType
from workstream_kernel.outbox.dispatcher import EventDispatcher
from workstream_kernel.outbox.scheduler import OutboxScheduler
from workstream_kernel.outbox.store import OutboxStore

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _make_status_event(entity_id: int = 1) -> WorkEvent:
    return WorkEvent(
        entity_type=EntityType.CANDIDATE,
        entity_id=entity_id,
        event_name=EventName.CANDIDATE_STATUS_CHANGED,
        payload=StatusChangedPayload(from_status="new", to_status="triaged"),
        created_utc=NOW,
    )


def _make_drip_event(candidate_id: int = 1) -> WorkEvent:
    return WorkEvent(
        entity_type=EntityType.CANDIDATE,
        entity_id=candidate_id,
        event_name=EventName.CANDIDATE_DRIP_REQUESTED,
        payload=DripRequestedPayload(candidate_id=candidate_id),
        created_utc=NOW,
    )


class FlakyProvider:
    """Fails the first ``failures`` calls, then accepts."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def trigger(self, candidate_id: int) -> bool:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("provider unavailable")
        return True


class TestOutboxStore:
    def setup_method(self):
        self.outbox = OutboxStore()

    def teardown_method(self):
        self.outbox.close()

    def test_append_assigns_ids(self):
        first = self.outbox.append(_make_status_event())
        second = self.outbox.append(_make_status_event())
        assert second.event_id == first.event_id + 1
        assert self.outbox.count() == 2

    def test_payload_round_trips(self):
        stored = self.outbox.append(_make_drip_event(candidate_id=8))
        loaded = self.outbox.get(stored.event_id)
        assert isinstance(loaded.payload, DripRequestedPayload)
        assert loaded.payload.candidate_id == 8

    def test_pending_oldest_first(self):
        ids = [self.outbox.append(_make_status_event(n)).event_id for n in range(3)]
        assert [e.event_id for e in self.outbox.pending(NOW)] == ids

    def test_processed_events_leave_pending(self):
        event = self.outbox.append(_make_status_event())
        processed = self.outbox.mark_processed(event.event_id, NOW)
        assert processed.processed_at == NOW
        assert self.outbox.pending(NOW) == []
        assert self.outbox.count(pending_only=True) == 0

    def test_retry_not_due_until_scheduled(self):
        event = self.outbox.append(_make_status_event())
        self.outbox.record_failure(event.event_id, "boom", NOW + timedelta(minutes=1))
        assert self.outbox.pending(NOW) == []
        due = self.outbox.pending(NOW + timedelta(minutes=1))
        assert [e.retry_count for e in due] == [1]
        assert due[0].error_message == "boom"

    def test_parked_event_never_due(self):
        event = self.outbox.append(_make_status_event())
        self.outbox.record_failure(event.event_id, "gone", None)
        assert self.outbox.pending(NOW + timedelta(days=365)) == []
        assert self.outbox.count(pending_only=True) == 1

    def test_query_by_entity(self):
        self.outbox.append(_make_status_event(entity_id=1))
        self.outbox.append(_make_status_event(entity_id=2))
        self.outbox.append(_make_drip_event(candidate_id=1))
        events = self.outbox.query_by_entity("candidate", 1)
        assert [e.event_name for e in events] == [
            EventName.CANDIDATE_STATUS_CHANGED,
            EventName.CANDIDATE_DRIP_REQUESTED,
        ]

    def test_query_recent(self):
        for n in range(5):
            self.outbox.append(_make_status_event(entity_id=n))
        assert [e.entity_id for e in self.outbox.query_recent(limit=2)] == [3, 4]

    def test_unknown_event(self):
        assert self.outbox.get(404) is None
        with pytest.raises(NotFoundError):
            self.outbox.mark_processed(404, NOW)


class TestOutboxScheduler:
    def setup_method(self):
        self.outbox = OutboxStore()
        self.config = WorkstreamConfig(
            retry=RetryPolicy(max_retries=3, base_delay_seconds=10, multiplier=2, max_delay_seconds=300),
        )

    def teardown_method(self):
        self.outbox.close()

    def _scheduler(self, provider=None, sweep=None) -> OutboxScheduler:
        return OutboxScheduler(self.outbox, EventDispatcher(provider), self.config, sweep=sweep)

    @pytest.mark.asyncio
    async def test_audit_only_events_processed(self):
        scheduler = self._scheduler()
        event = self.outbox.append(_make_status_event())
        outcomes = await scheduler.dispatch_due(NOW)
        assert [(o.success, o.handled) for o in outcomes] == [(True, False)]
        assert self.outbox.get(event.event_id).processed_at == NOW

    @pytest.mark.asyncio
    async def test_failure_backs_off(self):
        scheduler = self._scheduler(FlakyProvider(failures=10))
        event = self.outbox.append(_make_drip_event())

        outcome = (await scheduler.dispatch_due(NOW))[0]
        assert not outcome.success
        assert outcome.retry_count == 1
        assert outcome.next_retry_at == NOW + timedelta(seconds=10)

        assert await scheduler.dispatch_due(NOW + timedelta(seconds=5)) == []

        later = NOW + timedelta(seconds=10)
        outcome = (await scheduler.dispatch_due(later))[0]
        assert outcome.retry_count == 2
        assert outcome.next_retry_at == later + timedelta(seconds=20)
        assert self.outbox.get(event.event_id).retry_count == 2

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self):
        provider = FlakyProvider(failures=1)
        scheduler = self._scheduler(provider)
        event = self.outbox.append(_make_drip_event())

        await scheduler.dispatch_due(NOW)
        outcome = (await scheduler.dispatch_due(NOW + timedelta(seconds=10)))[0]
        assert outcome.success
        assert provider.calls == 2
        stored = self.outbox.get(event.event_id)
        assert stored.processed_at is not None
        assert stored.next_retry_at is None

    @pytest.mark.asyncio
    async def test_exhausted_events_parked(self):
        scheduler = self._scheduler(FlakyProvider(failures=10))
        event = self.outbox.append(_make_drip_event())

        now = NOW
        outcome = None
        for _ in range(3):
            outcome = (await scheduler.dispatch_due(now))[0]
            now = now + timedelta(hours=1)

        assert outcome.exhausted
        assert outcome.retry_count == 3
        assert await scheduler.dispatch_due(now + timedelta(days=1)) == []
        assert [e.event_id for e in scheduler.exhausted_events] == [event.event_id]

    @pytest.mark.asyncio
    async def test_declining_provider_is_transient(self):
        class Declining:
            async def trigger(self, candidate_id):
                return False

        dispatcher = EventDispatcher(Declining())
        outcome = await dispatcher.dispatch(
            self.outbox.append(_make_drip_event()),
        )
        assert not outcome.success
        assert "declined" in outcome.error

    @pytest.mark.asyncio
    async def test_custom_handler(self):
        seen = []

        async def handler(event):
            seen.append(event.entity_id)

        dispatcher = EventDispatcher()
        dispatcher.register_handler("candidate.status_changed", handler)
        assert dispatcher.has_handler(EventName.CANDIDATE_STATUS_CHANGED)
        outcome = await dispatcher.dispatch(self.outbox.append(_make_status_event(entity_id=4)))
        assert outcome.handled
        assert seen == [4]

    @pytest.mark.asyncio
    async def test_handler_transient_error_reported(self):
        async def handler(event):
            raise TransientFailureError("enrichment down", provider="enrich")

        dispatcher = EventDispatcher()
        dispatcher.register_handler(EventName.CANDIDATE_STATUS_CHANGED, handler)
        outcome = await dispatcher.dispatch(self.outbox.append(_make_status_event()))
        assert not outcome.success
        assert outcome.error == "enrichment down"

    @pytest.mark.asyncio
    async def test_tick_runs_sweep(self):
        swept = []

        async def sweep(now):
            swept.append(now)

        scheduler = self._scheduler(sweep=sweep)
        self.outbox.append(_make_status_event())
        outcomes = await scheduler.tick(NOW)
        assert len(outcomes) == 1
        assert swept == [NOW]

    @pytest.mark.asyncio
    async def test_run_async_stops(self):
        scheduler = self._scheduler()
        self.outbox.append(_make_status_event())
        stop = asyncio.Event()

        task = asyncio.create_task(scheduler.run_async(stop))
        await asyncio.sleep(0.05)
        assert scheduler.status == "running"
        stop.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert scheduler.status == "stopped"
        assert self.outbox.count(pending_only=True) == 0
