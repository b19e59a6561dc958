"""
Workstream Service — the command layer over the persistence collaborator.

Every mutation follows the same path:
  LOCK(entity) → READ → VALIDATE → WRITE(expected prior status) → RECORD EVENT → UNLOCK

Behavioral Contract:
- Nothing is written before the Transition Validator approves it
- Requests against the same entity are serialised; different entities run concurrently
- A write that finds a different prior status raises StaleReadError carrying
  the refetched entity; the service never retries the original request
- Every mutation appends one WorkEvent to the outbox
- Side effects (drip) go through the outbox and are non-fatal to the caller
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union

from workstream_kernel.clock import utcnow
from workstream_kernel.errors import InvalidTransitionError, NotFoundError, StaleReadError
from workstream_kernel.models.config import ConfigurationItem, WorkstreamConfig, apply_configuration
from workstream_kernel.models.drip import DripAcknowledgement, DripSchedule
from workstream_kernel.models.events import (
    CandidateCreatedPayload,
    CandidatePromotedPayload,
    ChecklistUpdatedPayload,
    DripRequestedPayload,
    EventName,
    FieldsUpdatedPayload,
    ProposalCreatedPayload,
    ProposalStatusPayload,
    PursuitDecidedPayload,
    RescoredPayload,
    SignalCreatedPayload,
    SignalIgnoredPayload,
    SlaBreachedPayload,
    StageChangedPayload,
    StatusChangedPayload,
    WorkEvent,
)
from workstream_kernel.models.panel import (
    PanelFilter,
    TodayPanelView,
    WorkstreamFunnel,
    WorkstreamStats,
)
from workstream_kernel.models.sla import SlaBreach
from workstream_kernel.models.workstream import (
    Candidate,
    CandidateFilters,
    CandidateStatus,
    CandidateUpdate,
    ChecklistItem,
    EntityType,
    GatedStage,
    Page,
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
from workstream_kernel.outbox.dispatcher import EventDispatcher, build_drip_schedule
from workstream_kernel.outbox.scheduler import OutboxScheduler
from workstream_kernel.outbox.store import OutboxStore
from workstream_kernel.panel.aggregator import PanelProjector, TodayPanelAggregator
from workstream_kernel.panel.session import TodayPanelSession
from workstream_kernel.panel.stats import compute_funnel, compute_stats
from workstream_kernel.scoring.priority import PriorityScorer
from workstream_kernel.sla.evaluator import SlaEvaluator, SlaMonitor
from workstream_kernel.store.backend import WorkstreamBackend
from workstream_kernel.store.memory import InMemoryWorkstreamStore
from workstream_kernel.transitions.checklist import (
    GATED_STAGES,
    ChecklistGate,
    next_gated_stage,
)
from workstream_kernel.transitions.validator import TransitionValidator

logger = logging.getLogger(__name__)

_DECIDED_EVENTS = {
    PursuitStage.SUBMIT: EventName.PURSUIT_SUBMITTED,
    PursuitStage.WON: EventName.PURSUIT_WON,
    PursuitStage.LOST: EventName.PURSUIT_LOST,
}


def _set_fields(changes) -> dict:
    """Fields the caller set. A title can be replaced but never cleared."""
    fields = changes.model_dump(exclude_unset=True)
    if "title" in fields and fields["title"] is None:
        del fields["title"]
    return fields


class WorkstreamService:
    def __init__(
        self,
        backend: Optional[WorkstreamBackend] = None,
        outbox: Optional[OutboxStore] = None,
        dispatcher: Optional[EventDispatcher] = None,
        config: Optional[WorkstreamConfig] = None,
    ):
        self.backend = backend or InMemoryWorkstreamStore()
        self.config = config or WorkstreamConfig()
        self.outbox = outbox or OutboxStore()
        self.gate = ChecklistGate(loader=self.backend.get_checklist)
        self.validator = TransitionValidator(self.gate)
        self.monitor = SlaMonitor()
        self.scheduler = OutboxScheduler(
            self.outbox,
            dispatcher or EventDispatcher(),
            self.config,
            sweep=self.sweep_sla,
        )
        self._locks: Dict[Tuple[EntityType, int], asyncio.Lock] = {}
        self._lock_users: Dict[Tuple[EntityType, int], int] = {}
        self._base_config = self.config
        self.configuration_items: List[ConfigurationItem] = []
        self.reconfigure(self.config)

    def reconfigure(self, config: WorkstreamConfig) -> None:
        """Swap in a new configuration. Recorded breaches and events are kept."""
        self.config = config
        self.evaluator = SlaEvaluator(config)
        self.monitor.evaluator = self.evaluator
        self.scorer = PriorityScorer(config)
        self.aggregator = TodayPanelAggregator(config, self.scorer)
        self.projector = PanelProjector(self.evaluator)
        self.scheduler.config = config

    def add_configuration(
        self, item: ConfigurationItem, current_time: Optional[datetime] = None,
    ) -> WorkstreamConfig:
        """Store an override and rebuild the effective configuration from the base."""
        items = self.configuration_items + [item]
        config = apply_configuration(self._base_config, items, current_time)
        self.configuration_items = items
        self.reconfigure(config)
        logger.info("Configuration %s.%s set to %r", item.config_type.value, item.config_key, item.config_value)
        return config

    # === INTERNALS ===

    @asynccontextmanager
    async def _lock(self, entity_type: EntityType, entity_id: int):
        """Serialise work on one entity. The lock is dropped once nobody holds or awaits it."""
        key = (entity_type, entity_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    def _record(
        self,
        entity_type: EntityType,
        entity_id: int,
        event_name: EventName,
        payload,
        org_id: int,
        now: datetime,
    ) -> WorkEvent:
        return self.outbox.append(WorkEvent(
            org_id=org_id,
            entity_type=entity_type,
            entity_id=entity_id,
            event_name=event_name,
            payload=payload,
            created_utc=now,
        ))

    async def _refetch_stale(self, exc: StaleReadError) -> StaleReadError:
        """Attach the entity as it is now, so the caller can re-present it."""
        getters = {
            "signal": self.backend.get_signal,
            "candidate": self.backend.get_candidate,
            "pursuit": self.backend.get_pursuit,
            "proposal": self.backend.get_proposal,
        }
        getter = getters.get(exc.entity_type)
        if getter is not None:
            exc.current = await getter(exc.entity_id)
        logger.warning(
            "Stale read on %s %s: expected '%s', store has '%s'",
            exc.entity_type, exc.entity_id, exc.expected, exc.actual,
        )
        return exc

    # === READS ===

    async def get_signal(self, signal_id: int) -> Signal:
        signal = await self.backend.get_signal(signal_id)
        if signal is None:
            raise NotFoundError("signal", signal_id)
        return signal

    async def get_candidate(self, candidate_id: int) -> Candidate:
        candidate = await self.backend.get_candidate(candidate_id)
        if candidate is None:
            raise NotFoundError("candidate", candidate_id)
        return candidate

    async def get_pursuit(self, pursuit_id: int) -> Pursuit:
        pursuit = await self.backend.get_pursuit(pursuit_id)
        if pursuit is None:
            raise NotFoundError("pursuit", pursuit_id)
        return pursuit

    async def get_proposal(self, proposal_id: int) -> Proposal:
        proposal = await self.backend.get_proposal(proposal_id)
        if proposal is None:
            raise NotFoundError("proposal", proposal_id)
        return proposal

    async def list_signals(
        self, filters: Optional[SignalFilters] = None, page: int = 1, limit: int = 50,
    ) -> Page[Signal]:
        return await self.backend.list_signals(filters, page, limit)

    async def list_candidates(
        self, filters: Optional[CandidateFilters] = None, page: int = 1, limit: int = 50,
    ) -> Page[Candidate]:
        return await self.backend.list_candidates(filters, page, limit)

    async def list_pursuits(
        self, filters: Optional[PursuitFilters] = None, page: int = 1, limit: int = 50,
    ) -> Page[Pursuit]:
        return await self.backend.list_pursuits(filters, page, limit)

    def list_events(self, entity_type, entity_id: int) -> List[WorkEvent]:
        return self.outbox.query_by_entity(EntityType(entity_type).value, entity_id)

    # === SIGNALS ===

    async def create_signal(
        self,
        snippet: str,
        source_type: SourceType = SourceType.OTHER,
        urgency_score: float = 0.0,
        owner_user_id: Optional[int] = None,
        client_id: Optional[int] = None,
        contact_id: Optional[int] = None,
        cluster_id: Optional[str] = None,
        org_id: int = 1,
        current_time: Optional[datetime] = None,
    ) -> Signal:
        now = current_time or utcnow()
        signal = await self.backend.insert_signal(Signal(
            org_id=org_id,
            snippet=snippet,
            source_type=source_type,
            urgency_score=urgency_score,
            owner_user_id=owner_user_id,
            client_id=client_id,
            contact_id=contact_id,
            cluster_id=cluster_id,
            created_utc=now,
        ))
        self._record(
            EntityType.SIGNAL, signal.signal_id, EventName.SIGNAL_CREATED,
            SignalCreatedPayload(source_type=signal.source_type.value, urgency_score=signal.urgency_score),
            org_id, now,
        )
        logger.info("Signal %s created from %s", signal.signal_id, signal.source_type.value)
        return signal

    async def triage_signal(self, signal_id: int, current_time: Optional[datetime] = None) -> Signal:
        now = current_time or utcnow()
        async with self._lock(EntityType.SIGNAL, signal_id):
            signal = await self.get_signal(signal_id)
            self.validator.ensure(self.validator.evaluate_signal(signal, SignalStatus.TRIAGED, now))
            try:
                saved = await self.backend.save_signal(
                    signal.model_copy(update={"status": SignalStatus.TRIAGED}), signal.status,
                )
            except StaleReadError as e:
                raise await self._refetch_stale(e)
            self._record(
                EntityType.SIGNAL, signal_id, EventName.SIGNAL_STATUS_CHANGED,
                StatusChangedPayload(from_status=signal.status.value, to_status=saved.status.value),
                signal.org_id, now,
            )
        logger.info("Signal %s triaged", signal_id)
        return saved

    async def ignore_signal(
        self, signal_id: int, reason: Optional[str] = None, current_time: Optional[datetime] = None,
    ) -> Signal:
        now = current_time or utcnow()
        async with self._lock(EntityType.SIGNAL, signal_id):
            signal = await self.get_signal(signal_id)
            self.validator.ensure(self.validator.evaluate_signal(signal, SignalStatus.IGNORED, now))
            try:
                saved = await self.backend.save_signal(
                    signal.model_copy(update={"status": SignalStatus.IGNORED, "ignored_reason": reason}),
                    signal.status,
                )
            except StaleReadError as e:
                raise await self._refetch_stale(e)
            self._record(
                EntityType.SIGNAL, signal_id, EventName.SIGNAL_IGNORED,
                SignalIgnoredPayload(reason=reason), signal.org_id, now,
            )
        logger.info("Signal %s ignored: %s", signal_id, reason)
        return saved

    # === CANDIDATES ===

    async def create_candidate_from_signal(
        self,
        signal_id: int,
        title: str,
        contact_name: Optional[str] = None,
        contact_email: Optional[str] = None,
        value_band: ValueBand = ValueBand.SMALL,
        owner_user_id: Optional[int] = None,
        notes: Optional[str] = None,
        current_time: Optional[datetime] = None,
    ) -> Candidate:
        """Derive a candidate from a signal; the signal becomes candidate_created."""
        now = current_time or utcnow()
        async with self._lock(EntityType.SIGNAL, signal_id):
            signal = await self.get_signal(signal_id)
            self.validator.ensure(
                self.validator.evaluate_signal(signal, SignalStatus.CANDIDATE_CREATED, now)
            )
            candidate = Candidate(
                org_id=signal.org_id,
                signal_id=signal_id,
                title=title,
                client_id=signal.client_id,
                contact_name=contact_name,
                contact_email=contact_email,
                value_band=value_band,
                owner_user_id=owner_user_id if owner_user_id is not None else signal.owner_user_id,
                notes=notes,
                last_touch_at=now,
                icp_band=signal.icp_band,
                priority_score=signal.priority_score,
                priority_tier=signal.priority_tier,
                created_utc=now,
            )
            try:
                created = await self.backend.insert_candidate(candidate, origin_expected_status=signal.status)
            except StaleReadError as e:
                raise await self._refetch_stale(e)
            self._record(
                EntityType.CANDIDATE, created.candidate_id, EventName.CANDIDATE_CREATED,
                CandidateCreatedPayload(signal_id=signal_id, title=title), signal.org_id, now,
            )
        logger.info("Candidate %s created from signal %s", created.candidate_id, signal_id)
        return created

    async def create_candidate(
        self,
        title: str,
        contact_name: Optional[str] = None,
        contact_email: Optional[str] = None,
        value_band: ValueBand = ValueBand.SMALL,
        client_id: Optional[int] = None,
        owner_user_id: Optional[int] = None,
        confidence: int = 50,
        notes: Optional[str] = None,
        org_id: int = 1,
        current_time: Optional[datetime] = None,
    ) -> Candidate:
        """Create a candidate with no origin signal."""
        now = current_time or utcnow()
        created = await self.backend.insert_candidate(Candidate(
            org_id=org_id,
            title=title,
            client_id=client_id,
            contact_name=contact_name,
            contact_email=contact_email,
            value_band=value_band,
            confidence=confidence,
            owner_user_id=owner_user_id,
            notes=notes,
            last_touch_at=now,
            created_utc=now,
        ))
        self._record(
            EntityType.CANDIDATE, created.candidate_id, EventName.CANDIDATE_CREATED,
            CandidateCreatedPayload(title=title), org_id, now,
        )
        logger.info("Candidate %s created", created.candidate_id)
        return created

    async def update_candidate_status(
        self,
        candidate_id: int,
        target: CandidateStatus,
        note: Optional[str] = None,
        current_time: Optional[datetime] = None,
    ) -> Candidate:
        now = current_time or utcnow()
        target = CandidateStatus(target)
        async with self._lock(EntityType.CANDIDATE, candidate_id):
            candidate = await self.get_candidate(candidate_id)
            decision = self.validator.evaluate_candidate(candidate, target, now)
            self.validator.ensure(decision)
            if target == CandidateStatus.PROMOTED:
                # Promotion goes through promote_candidate.
                raise InvalidTransitionError(
                    "candidate", candidate.status.value, target.value,
                    allowed=[t for t in decision.allowed_targets if t != target.value],
                    entity_id=candidate_id,
                )
            try:
                saved = await self.backend.save_candidate(
                    candidate.model_copy(update={"status": target, "last_touch_at": now}),
                    candidate.status,
                )
            except StaleReadError as e:
                raise await self._refetch_stale(e)
            self._record(
                EntityType.CANDIDATE, candidate_id, EventName.CANDIDATE_STATUS_CHANGED,
                StatusChangedPayload(
                    from_status=candidate.status.value, to_status=target.value, note=note,
                ),
                candidate.org_id, now,
            )
        logger.info("Candidate %s: %s -> %s", candidate_id, candidate.status.value, target.value)
        return saved

    async def promote_candidate(
        self,
        candidate_id: int,
        title: Optional[str] = None,
        forecast_value_usd: Optional[float] = None,
        due_date: Optional[datetime] = None,
        owner_user_id: Optional[int] = None,
        description: Optional[str] = None,
        current_time: Optional[datetime] = None,
    ) -> Pursuit:
        """Promote a candidate; the new pursuit starts in qual."""
        now = current_time or utcnow()
        async with self._lock(EntityType.CANDIDATE, candidate_id):
            candidate = await self.get_candidate(candidate_id)
            self.validator.ensure(self.validator.evaluate_promotion(candidate, now))

            promoted = candidate.model_copy(update={
                "status": CandidateStatus.PROMOTED,
                "promoted_at": now,
                "last_touch_at": now,
            })
            pursuit = Pursuit(
                org_id=candidate.org_id,
                candidate_id=candidate_id,
                title=title or candidate.title,
                client_id=candidate.client_id,
                stage=PursuitStage.QUAL,
                stage_entered_at=now,
                due_date=due_date,
                owner_user_id=owner_user_id if owner_user_id is not None else candidate.owner_user_id,
                forecast_value_usd=forecast_value_usd,
                description=description,
                icp_band=candidate.icp_band,
                priority_score=candidate.priority_score,
                priority_tier=candidate.priority_tier,
                created_utc=now,
            )
            try:
                created = await self.backend.promote(promoted, candidate.status, pursuit)
            except StaleReadError as e:
                raise await self._refetch_stale(e)
            self._record(
                EntityType.CANDIDATE, candidate_id, EventName.CANDIDATE_PROMOTED,
                CandidatePromotedPayload(pursuit_id=created.pursuit_id, from_status=candidate.status.value),
                candidate.org_id, now,
            )
        logger.info("Candidate %s promoted to pursuit %s", candidate_id, created.pursuit_id)
        return created

    async def update_candidate(
        self,
        candidate_id: int,
        changes: Union[CandidateUpdate, dict],
        current_time: Optional[datetime] = None,
    ) -> Candidate:
        """Apply a partial update. Status only moves through update_candidate_status."""
        now = current_time or utcnow()
        fields = _set_fields(CandidateUpdate.model_validate(changes))
        async with self._lock(EntityType.CANDIDATE, candidate_id):
            candidate = await self.get_candidate(candidate_id)
            if not fields:
                return candidate
            try:
                saved = await self.backend.save_candidate(
                    candidate.model_copy(update=fields), candidate.status,
                )
            except StaleReadError as e:
                raise await self._refetch_stale(e)
            self._record(
                EntityType.CANDIDATE, candidate_id, EventName.CANDIDATE_UPDATED,
                FieldsUpdatedPayload(fields=sorted(fields)), candidate.org_id, now,
            )
        logger.info("Candidate %s updated: %s", candidate_id, ", ".join(sorted(fields)))
        return saved

    async def bulk_update_candidates(
        self,
        candidate_ids: List[int],
        changes: Union[CandidateUpdate, dict],
        current_time: Optional[datetime] = None,
    ) -> List[Candidate]:
        """Same update for several candidates, one at a time; stops at the first failure."""
        changes = CandidateUpdate.model_validate(changes)
        return [
            await self.update_candidate(candidate_id, changes, current_time)
            for candidate_id in candidate_ids
        ]

    # === PURSUITS ===

    async def _move_pursuit(
        self,
        pursuit_id: int,
        target: PursuitStage,
        now: datetime,
        updates: Optional[dict] = None,
        payload=None,
        notes: Optional[str] = None,
    ) -> Pursuit:
        async with self._lock(EntityType.PURSUIT, pursuit_id):
            pursuit = await self.get_pursuit(pursuit_id)
            checklist: List[ChecklistItem] = []
            if target.value in GATED_STAGES:
                checklist = await self.backend.get_checklist(pursuit_id)
            self.validator.ensure(self.validator.evaluate_pursuit(pursuit, target, checklist, now))

            changes = {"stage": target, "stage_entered_at": now}
            if target == PursuitStage.SUBMIT:
                changes["submitted_at"] = now
            if target in (PursuitStage.WON, PursuitStage.LOST):
                changes["decision_at"] = now
            changes.update(updates or {})
            if not checklist:
                checklist = await self.backend.get_checklist(pursuit_id)
            changes.update(self._checklist_flags(target, checklist))

            try:
                saved = await self.backend.save_pursuit(pursuit.model_copy(update=changes), pursuit.stage)
            except StaleReadError as e:
                raise await self._refetch_stale(e)

            if payload is None:
                payload = StageChangedPayload(
                    from_stage=pursuit.stage.value, to_stage=target.value, notes=notes,
                )
            self._record(
                EntityType.PURSUIT, pursuit_id,
                _DECIDED_EVENTS.get(target, EventName.PURSUIT_STAGE_CHANGED),
                payload, pursuit.org_id, now,
            )
        logger.info("Pursuit %s: %s -> %s", pursuit_id, pursuit.stage.value, target.value)
        return saved

    async def change_pursuit_stage(
        self,
        pursuit_id: int,
        target: PursuitStage,
        notes: Optional[str] = None,
        current_time: Optional[datetime] = None,
    ) -> Pursuit:
        target = PursuitStage(target)
        now = current_time or utcnow()
        if target == PursuitStage.WON:
            return await self.mark_won(pursuit_id, notes=notes, current_time=now)
        if target == PursuitStage.LOST:
            return await self.mark_lost(pursuit_id, notes=notes, current_time=now)
        return await self._move_pursuit(pursuit_id, target, now, notes=notes)

    async def submit_pursuit(
        self, pursuit_id: int, notes: Optional[str] = None, current_time: Optional[datetime] = None,
    ) -> Pursuit:
        return await self._move_pursuit(
            pursuit_id, PursuitStage.SUBMIT, current_time or utcnow(), notes=notes,
        )

    async def mark_won(
        self,
        pursuit_id: int,
        value_usd: Optional[float] = None,
        notes: Optional[str] = None,
        current_time: Optional[datetime] = None,
    ) -> Pursuit:
        updates = {"probability": 100}
        if value_usd is not None:
            updates["forecast_value_usd"] = value_usd
        return await self._move_pursuit(
            pursuit_id, PursuitStage.WON, current_time or utcnow(), updates,
            PursuitDecidedPayload(outcome="won", value_usd=value_usd, notes=notes),
        )

    async def mark_lost(
        self,
        pursuit_id: int,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        current_time: Optional[datetime] = None,
    ) -> Pursuit:
        return await self._move_pursuit(
            pursuit_id, PursuitStage.LOST, current_time or utcnow(),
            {"probability": 0, "lost_reason": reason},
            PursuitDecidedPayload(outcome="lost", reason=reason, notes=notes),
        )

    async def update_pursuit(
        self,
        pursuit_id: int,
        changes: Union[PursuitUpdate, dict],
        current_time: Optional[datetime] = None,
    ) -> Pursuit:
        """Apply a partial update. The stage only moves through the stage commands."""
        now = current_time or utcnow()
        fields = _set_fields(PursuitUpdate.model_validate(changes))
        async with self._lock(EntityType.PURSUIT, pursuit_id):
            pursuit = await self.get_pursuit(pursuit_id)
            if not fields:
                return pursuit
            try:
                saved = await self.backend.save_pursuit(
                    pursuit.model_copy(update=fields), pursuit.stage,
                )
            except StaleReadError as e:
                raise await self._refetch_stale(e)
            self._record(
                EntityType.PURSUIT, pursuit_id, EventName.PURSUIT_UPDATED,
                FieldsUpdatedPayload(fields=sorted(fields)), pursuit.org_id, now,
            )
        logger.info("Pursuit %s updated: %s", pursuit_id, ", ".join(sorted(fields)))
        return saved

    async def bulk_update_pursuits(
        self,
        pursuit_ids: List[int],
        changes: Union[PursuitUpdate, dict],
        current_time: Optional[datetime] = None,
    ) -> List[Pursuit]:
        changes = PursuitUpdate.model_validate(changes)
        return [
            await self.update_pursuit(pursuit_id, changes, current_time)
            for pursuit_id in pursuit_ids
        ]

    # === CHECKLIST ===

    def _checklist_flags(self, stage: PursuitStage, items: List[ChecklistItem]) -> dict:
        """Summary flags for the gate the pursuit faces next."""
        upcoming = next_gated_stage(stage)
        if upcoming is None:
            return {"checklist_required": False, "checklist_complete": False}
        result = self.gate.evaluate(items, upcoming)
        return {
            "checklist_required": result.required_count > 0,
            "checklist_complete": result.required_count > 0 and result.satisfied,
        }

    async def get_checklist(self, pursuit_id: int) -> List[ChecklistItem]:
        await self.get_pursuit(pursuit_id)
        return await self.backend.get_checklist(pursuit_id)

    async def gate_status(self, pursuit_id: int, target_stage) -> Tuple[bool, List[str]]:
        """Whether the pursuit could enter ``target_stage`` as far as its checklist goes."""
        await self.get_pursuit(pursuit_id)
        return await self.gate.is_satisfied(pursuit_id, target_stage)

    async def add_checklist_item(
        self,
        pursuit_id: int,
        item_name: str,
        required_for_stage: GatedStage,
        notes: Optional[str] = None,
        current_time: Optional[datetime] = None,
    ) -> ChecklistItem:
        now = current_time or utcnow()
        async with self._lock(EntityType.PURSUIT, pursuit_id):
            pursuit = await self.get_pursuit(pursuit_id)
            item = await self.backend.insert_checklist_item(ChecklistItem(
                org_id=pursuit.org_id,
                pursuit_id=pursuit_id,
                item_name=item_name,
                required_for_stage=GatedStage(required_for_stage),
                notes=notes,
                created_utc=now,
            ))
            await self._refresh_checklist_flags(pursuit)
            self._record(
                EntityType.PURSUIT, pursuit_id, EventName.CHECKLIST_UPDATED,
                ChecklistUpdatedPayload(
                    checklist_id=item.checklist_id, item_name=item.item_name, completed=False,
                ),
                pursuit.org_id, now,
            )
        logger.info("Checklist item '%s' added to pursuit %s", item_name, pursuit_id)
        return item

    async def update_checklist_item(
        self,
        pursuit_id: int,
        checklist_id: int,
        completed: bool,
        completed_by: Optional[int] = None,
        notes: Optional[str] = None,
        current_time: Optional[datetime] = None,
    ) -> List[ChecklistItem]:
        """
        Complete or reopen one item; returns the pursuit's full checklist.

        Never moves the pursuit: only its summary flags are refreshed.
        """
        now = current_time or utcnow()
        async with self._lock(EntityType.PURSUIT, pursuit_id):
            pursuit = await self.get_pursuit(pursuit_id)
            items = await self.backend.get_checklist(pursuit_id)
            item = next((i for i in items if i.checklist_id == checklist_id), None)
            if item is None:
                raise NotFoundError("checklist_item", checklist_id)

            changes = {
                "completed": completed,
                "completed_by": completed_by if completed else None,
                "completed_at": now if completed else None,
            }
            if notes is not None:
                changes["notes"] = notes
            await self.backend.save_checklist_item(item.model_copy(update=changes))
            await self._refresh_checklist_flags(pursuit)
            self._record(
                EntityType.PURSUIT, pursuit_id, EventName.CHECKLIST_UPDATED,
                ChecklistUpdatedPayload(
                    checklist_id=checklist_id, item_name=item.item_name, completed=completed,
                ),
                pursuit.org_id, now,
            )
        logger.info(
            "Checklist item %s on pursuit %s marked %s",
            checklist_id, pursuit_id, "complete" if completed else "open",
        )
        return await self.backend.get_checklist(pursuit_id)

    async def _refresh_checklist_flags(self, pursuit: Pursuit) -> None:
        flags = self._checklist_flags(pursuit.stage, await self.backend.get_checklist(pursuit.pursuit_id))
        if all(getattr(pursuit, k) == v for k, v in flags.items()):
            return
        try:
            await self.backend.save_pursuit(pursuit.model_copy(update=flags), pursuit.stage)
        except StaleReadError as e:
            raise await self._refetch_stale(e)

    # === PROPOSALS ===

    async def create_proposal(
        self,
        pursuit_id: int,
        title: Optional[str] = None,
        content: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        current_time: Optional[datetime] = None,
    ) -> Proposal:
        """New draft proposal; its version follows the pursuit's latest."""
        now = current_time or utcnow()
        pursuit = await self.get_pursuit(pursuit_id)
        proposal = await self.backend.insert_proposal(Proposal(
            org_id=pursuit.org_id,
            pursuit_id=pursuit_id,
            title=title or pursuit.title,
            content=content,
            expires_at=expires_at,
            created_utc=now,
        ))
        self._record(
            EntityType.PROPOSAL, proposal.proposal_id, EventName.PROPOSAL_CREATED,
            ProposalCreatedPayload(proposal_id=proposal.proposal_id, version=proposal.version),
            pursuit.org_id, now,
        )
        logger.info("Proposal %s v%d created for pursuit %s", proposal.proposal_id, proposal.version, pursuit_id)
        return proposal

    async def list_proposals(self, pursuit_id: int) -> List[Proposal]:
        await self.get_pursuit(pursuit_id)
        return await self.backend.list_proposals(pursuit_id)

    async def change_proposal_status(
        self,
        proposal_id: int,
        target: ProposalStatus,
        current_time: Optional[datetime] = None,
    ) -> Proposal:
        now = current_time or utcnow()
        target = ProposalStatus(target)
        async with self._lock(EntityType.PROPOSAL, proposal_id):
            proposal = await self.get_proposal(proposal_id)
            self.validator.ensure(self.validator.evaluate_proposal(proposal, target, now))
            changes = {"status": target}
            if target == ProposalStatus.SENT:
                changes["sent_at"] = now
            try:
                saved = await self.backend.save_proposal(proposal.model_copy(update=changes), proposal.status)
            except StaleReadError as e:
                raise await self._refetch_stale(e)
            self._record(
                EntityType.PROPOSAL, proposal_id, EventName.PROPOSAL_STATUS_CHANGED,
                ProposalStatusPayload(
                    proposal_id=proposal_id,
                    version=proposal.version,
                    from_status=proposal.status.value,
                    to_status=target.value,
                ),
                proposal.org_id, now,
            )
        logger.info("Proposal %s: %s -> %s", proposal_id, proposal.status.value, target.value)
        return saved

    # === DRIP ===

    async def trigger_drip(
        self, candidate_id: int, current_time: Optional[datetime] = None,
    ) -> DripAcknowledgement:
        """
        Schedule the nurture sequence and ask the provider to start it.

        A provider failure does not raise: it is reported in the
        acknowledgement and the outbox retries it with backoff.
        """
        now = current_time or utcnow()
        candidate = await self.get_candidate(candidate_id)
        if candidate.status in (CandidateStatus.PROMOTED, CandidateStatus.ARCHIVED):
            raise InvalidTransitionError(
                "candidate", candidate.status.value, "nurture", entity_id=candidate_id,
            )

        await self.backend.insert_drips(build_drip_schedule(candidate, now, self.config))
        event = self._record(
            EntityType.CANDIDATE, candidate_id, EventName.CANDIDATE_DRIP_REQUESTED,
            DripRequestedPayload(candidate_id=candidate_id), candidate.org_id, now,
        )
        outcome = await self.scheduler.dispatch_event(event, now)
        if not outcome.success:
            logger.warning(
                "Drip for candidate %s not accepted yet (event %s): %s",
                candidate_id, event.event_id, outcome.error,
            )
        return DripAcknowledgement(
            candidate_id=candidate_id,
            event_id=event.event_id,
            accepted=outcome.success,
            error=outcome.error,
        )

    async def list_drips(self, candidate_id: int) -> List[DripSchedule]:
        await self.get_candidate(candidate_id)
        return await self.backend.list_drips(candidate_id)

    # === SCORING ===

    async def rescore_item(
        self,
        entity_type,
        entity_id: int,
        score: Union[ScoreUpdate, dict],
        current_time: Optional[datetime] = None,
    ):
        """
        Set the ranking inputs (priority score, tier, ICP band) of a signal,
        candidate or pursuit. Fields left unset keep their current value.
        """
        now = current_time or utcnow()
        entity_type = EntityType(entity_type)
        ranked = {
            EntityType.SIGNAL: (self.get_signal, self.backend.save_signal, "status"),
            EntityType.CANDIDATE: (self.get_candidate, self.backend.save_candidate, "status"),
            EntityType.PURSUIT: (self.get_pursuit, self.backend.save_pursuit, "stage"),
        }
        if entity_type not in ranked:
            raise ValueError(f"{entity_type.value} items carry no ranking inputs")
        get, save, state_field = ranked[entity_type]

        fields = ScoreUpdate.model_validate(score).model_dump(exclude_unset=True)
        async with self._lock(entity_type, entity_id):
            entity = await get(entity_id)
            if not fields:
                return entity
            try:
                saved = await save(entity.model_copy(update=fields), getattr(entity, state_field))
            except StaleReadError as e:
                raise await self._refetch_stale(e)
            self._record(
                entity_type, entity_id, EventName.ITEM_RESCORED,
                RescoredPayload(
                    priority_score=saved.priority_score,
                    priority_tier=saved.priority_tier.value if saved.priority_tier else None,
                    icp_band=saved.icp_band.value if saved.icp_band else None,
                ),
                entity.org_id, now,
            )
        logger.info(
            "Rescored %s %s: score=%s tier=%s icp=%s", entity_type.value, entity_id,
            saved.priority_score, saved.priority_tier, saved.icp_band,
        )
        return saved

    # === TODAY PANEL & REPORTING ===

    async def get_today_panel(
        self,
        panel_filter: Optional[PanelFilter] = None,
        current_time: Optional[datetime] = None,
    ) -> TodayPanelView:
        now = current_time or utcnow()
        signals, candidates, pursuits = await self.backend.snapshot()
        rows = self.projector.project_open_work(signals, candidates, pursuits, now)
        return self.aggregator.aggregate(rows, panel_filter, now)

    async def get_stats(self, current_time: Optional[datetime] = None) -> WorkstreamStats:
        signals, candidates, pursuits = await self.backend.snapshot()
        return compute_stats(signals, candidates, pursuits, self.evaluator, current_time or utcnow())

    async def get_funnel(self) -> WorkstreamFunnel:
        signals, candidates, pursuits = await self.backend.snapshot()
        return compute_funnel(signals, candidates, pursuits)

    def new_panel_session(self, current_time: Optional[datetime] = None) -> TodayPanelSession:
        """A last-request-wins panel session backed by this service."""

        async def load_panel(panel_filter: PanelFilter) -> TodayPanelView:
            return await self.get_today_panel(panel_filter, current_time)

        async def load_stats() -> WorkstreamStats:
            return await self.get_stats(current_time)

        return TodayPanelSession(load_panel, load_stats)

    # === SLA ===

    async def sweep_sla(self, current_time: Optional[datetime] = None) -> List[SlaBreach]:
        """Observe every entity; records an event per new breach."""
        now = current_time or utcnow()
        signals, candidates, pursuits = await self.backend.snapshot()
        breaches = self.monitor.sweep(signals, candidates, pursuits, now)
        for breach in breaches:
            self._record(
                breach.entity_type, breach.entity_id, EventName.SLA_BREACHED,
                SlaBreachedPayload(
                    breach_id=breach.breach_id,
                    rule_name=breach.rule_name,
                    hours_over=breach.hours_over,
                ),
                breach.org_id, now,
            )
        return breaches

    def list_sla_breaches(
        self, entity_type=None, open_only: bool = False, limit: int = 50,
    ) -> List[SlaBreach]:
        return self.monitor.list_breaches(entity_type, open_only, limit)