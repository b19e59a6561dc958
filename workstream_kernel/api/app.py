"""
Workstream Kernel API — FastAPI endpoints.

Exposes the command layer via a REST API for:
- Signal intake and triage
- Candidate management, promotion and drip
- Pursuit stages, checklist and proposals
- Rescoring ranking inputs
- Today panel, stats and funnel
- SLA breaches and the outbox
- Configuration overrides
"""

from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from workstream_kernel.errors import ErrorCode, WorkstreamError
from workstream_kernel.models.config import ConfigurationItem, WorkstreamConfig
from workstream_kernel.models.panel import ItemTypeFilter, PanelFilter
from workstream_kernel.models.sla import SlaBadge
from workstream_kernel.models.workstream import (
    CandidateFilters,
    CandidateStatus,
    CandidateUpdate,
    EntityType,
    GatedStage,
    PriorityTier,
    ProposalStatus,
    PursuitFilters,
    PursuitStage,
    PursuitUpdate,
    ScoreUpdate,
    SignalFilters,
    SignalStatus,
    SourceType,
    ValueBand,
)
from workstream_kernel.outbox.dispatcher import EventDispatcher
from workstream_kernel.service.commands import WorkstreamService
from workstream_kernel.store.backend import WorkstreamBackend


_STATUS_CODES = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_TRANSITION: 409,
    ErrorCode.CHECKLIST_INCOMPLETE: 409,
    ErrorCode.STALE_READ: 409,
    ErrorCode.TRANSIENT_FAILURE: 503,
}


# --- Request/Response Models ---

class SignalCreateRequest(BaseModel):
    snippet: str
    source_type: SourceType = SourceType.OTHER
    urgency_score: float = 0.0
    owner_user_id: Optional[int] = None
    client_id: Optional[int] = None
    contact_id: Optional[int] = None
    cluster_id: Optional[str] = None
    org_id: int = 1


class IgnoreRequest(BaseModel):
    reason: Optional[str] = None


class CandidateFromSignalRequest(BaseModel):
    title: str
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    value_band: ValueBand = ValueBand.SMALL
    owner_user_id: Optional[int] = None
    notes: Optional[str] = None


class CandidateCreateRequest(CandidateFromSignalRequest):
    client_id: Optional[int] = None
    confidence: int = 50
    org_id: int = 1


class CandidateStatusRequest(BaseModel):
    status: CandidateStatus
    note: Optional[str] = None


class PromoteRequest(BaseModel):
    title: Optional[str] = None
    forecast_value_usd: Optional[float] = None
    due_date: Optional[datetime] = None
    owner_user_id: Optional[int] = None
    description: Optional[str] = None


class StageRequest(BaseModel):
    stage: PursuitStage
    notes: Optional[str] = None


class NotesRequest(BaseModel):
    notes: Optional[str] = None


class WonRequest(BaseModel):
    value: Optional[float] = None
    notes: Optional[str] = None


class LostRequest(BaseModel):
    reason: Optional[str] = None
    notes: Optional[str] = None


class ChecklistItemCreateRequest(BaseModel):
    item_name: str
    required_for_stage: GatedStage
    notes: Optional[str] = None


class ChecklistItemUpdateRequest(BaseModel):
    completed: bool
    completed_by: Optional[int] = None
    notes: Optional[str] = None


class ProposalCreateRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    expires_at: Optional[datetime] = None


class ProposalStatusRequest(BaseModel):
    status: ProposalStatus


class CandidateBulkUpdateRequest(BaseModel):
    ids: List[int]
    updates: CandidateUpdate


class PursuitBulkUpdateRequest(BaseModel):
    ids: List[int]
    updates: PursuitUpdate


class OutboxDispatchResponse(BaseModel):
    outcomes: list
    dispatched: int


# --- Application Factory ---

def create_app(
    store: Optional[WorkstreamBackend] = None,
    config: Optional[WorkstreamConfig] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Workstream Kernel API",
        description="Signal → Candidate → Pursuit workstream pipeline",
        version="0.1.0-alpha",
    )

    service = WorkstreamService(backend=store, dispatcher=dispatcher, config=config)

    # Store components on app state for access in endpoints
    app.state.service = service
    app.state.outbox = service.outbox
    app.state.scheduler = service.scheduler

    @app.exception_handler(WorkstreamError)
    async def workstream_error_handler(request: Request, exc: WorkstreamError):
        return JSONResponse(
            status_code=_STATUS_CODES.get(exc.code, 400),
            content={"detail": exc.to_dict()},
        )

    # === SIGNALS ===

    @app.get("/workstream/signals")
    async def list_signals(
        status: Optional[SignalStatus] = None,
        source: Optional[SourceType] = None,
        urgency_min: Optional[float] = None,
        owner: Optional[int] = None,
        clustered: Optional[bool] = None,
        page: int = 1,
        limit: int = 50,
    ):
        """Paged signals with filters."""
        filters = SignalFilters(
            status=status, source=source, urgency_min=urgency_min,
            owner=owner, clustered=clustered,
        )
        result = await service.list_signals(filters, page, limit)
        return result.model_dump(mode="json")

    @app.get("/workstream/signals/{signal_id}")
    async def get_signal(signal_id: int):
        return (await service.get_signal(signal_id)).model_dump(mode="json")

    @app.post("/workstream/signals")
    async def create_signal(req: SignalCreateRequest):
        """Record an inbound signal."""
        signal = await service.create_signal(**req.model_dump())
        return signal.model_dump(mode="json")

    @app.post("/workstream/signals/{signal_id}/triage")
    async def triage_signal(signal_id: int):
        return (await service.triage_signal(signal_id)).model_dump(mode="json")

    @app.post("/workstream/signals/{signal_id}/ignore")
    async def ignore_signal(signal_id: int, req: IgnoreRequest):
        signal = await service.ignore_signal(signal_id, req.reason)
        return {"ok": True, "signal": signal.model_dump(mode="json")}

    @app.post("/workstream/signals/{signal_id}/create-candidate")
    async def create_candidate_from_signal(signal_id: int, req: CandidateFromSignalRequest):
        """Derive a candidate from a signal."""
        candidate = await service.create_candidate_from_signal(signal_id, **req.model_dump())
        return candidate.model_dump(mode="json")

    # === CANDIDATES ===

    @app.get("/workstream/candidates")
    async def list_candidates(
        status: Optional[CandidateStatus] = None,
        owner: Optional[int] = None,
        client: Optional[int] = None,
        value_band: Optional[ValueBand] = None,
        page: int = 1,
        limit: int = 50,
    ):
        filters = CandidateFilters(status=status, owner=owner, client=client, value_band=value_band)
        result = await service.list_candidates(filters, page, limit)
        return result.model_dump(mode="json")

    @app.get("/workstream/candidates/{candidate_id}")
    async def get_candidate(candidate_id: int):
        return (await service.get_candidate(candidate_id)).model_dump(mode="json")

    @app.post("/workstream/candidates")
    async def create_candidate(req: CandidateCreateRequest):
        candidate = await service.create_candidate(**req.model_dump())
        return candidate.model_dump(mode="json")

    @app.put("/workstream/candidates/bulk")
    async def bulk_update_candidates(req: CandidateBulkUpdateRequest):
        candidates = await service.bulk_update_candidates(req.ids, req.updates)
        return {"updated": len(candidates)}

    @app.put("/workstream/candidates/{candidate_id}")
    async def update_candidate(candidate_id: int, req: CandidateUpdate):
        """Partial update; status changes go through /status and /promote."""
        return (await service.update_candidate(candidate_id, req)).model_dump(mode="json")

    @app.post("/workstream/candidates/{candidate_id}/status")
    async def update_candidate_status(candidate_id: int, req: CandidateStatusRequest):
        candidate = await service.update_candidate_status(candidate_id, req.status, req.note)
        return candidate.model_dump(mode="json")

    @app.post("/workstream/candidates/{candidate_id}/promote")
    async def promote_candidate(candidate_id: int, req: PromoteRequest):
        """Promote a candidate into a new pursuit."""
        pursuit = await service.promote_candidate(candidate_id, **req.model_dump())
        return pursuit.model_dump(mode="json")

    @app.post("/workstream/candidates/{candidate_id}/drip")
    async def trigger_drip(candidate_id: int):
        """Start the nurture sequence; provider failures are reported, not raised."""
        ack = await service.trigger_drip(candidate_id)
        return ack.model_dump(mode="json")

    @app.get("/workstream/candidates/{candidate_id}/drips")
    async def list_drips(candidate_id: int):
        return [d.model_dump(mode="json") for d in await service.list_drips(candidate_id)]

    # === PURSUITS ===

    @app.get("/workstream/pursuits")
    async def list_pursuits(
        stage: Optional[PursuitStage] = None,
        owner: Optional[int] = None,
        client: Optional[int] = None,
        due_before: Optional[datetime] = None,
        page: int = 1,
        limit: int = 50,
    ):
        filters = PursuitFilters(stage=stage, owner=owner, client=client, due_before=due_before)
        result = await service.list_pursuits(filters, page, limit)
        return result.model_dump(mode="json")

    @app.get("/workstream/pursuits/{pursuit_id}")
    async def get_pursuit(pursuit_id: int):
        return (await service.get_pursuit(pursuit_id)).model_dump(mode="json")

    @app.put("/workstream/pursuits/bulk")
    async def bulk_update_pursuits(req: PursuitBulkUpdateRequest):
        pursuits = await service.bulk_update_pursuits(req.ids, req.updates)
        return {"updated": len(pursuits)}

    @app.put("/workstream/pursuits/{pursuit_id}")
    async def update_pursuit(pursuit_id: int, req: PursuitUpdate):
        """Partial update; stage changes go through /stage."""
        return (await service.update_pursuit(pursuit_id, req)).model_dump(mode="json")

    @app.post("/workstream/pursuits/{pursuit_id}/stage")
    async def change_pursuit_stage(pursuit_id: int, req: StageRequest):
        """Move a pursuit; gated stages check the checklist first."""
        pursuit = await service.change_pursuit_stage(pursuit_id, req.stage, req.notes)
        return pursuit.model_dump(mode="json")

    @app.post("/workstream/pursuits/{pursuit_id}/submit")
    async def submit_pursuit(pursuit_id: int, req: NotesRequest):
        return (await service.submit_pursuit(pursuit_id, req.notes)).model_dump(mode="json")

    @app.post("/workstream/pursuits/{pursuit_id}/won")
    async def mark_won(pursuit_id: int, req: WonRequest):
        return (await service.mark_won(pursuit_id, req.value, req.notes)).model_dump(mode="json")

    @app.post("/workstream/pursuits/{pursuit_id}/lost")
    async def mark_lost(pursuit_id: int, req: LostRequest):
        return (await service.mark_lost(pursuit_id, req.reason, req.notes)).model_dump(mode="json")

    # === CHECKLIST ===

    @app.get("/workstream/pursuits/{pursuit_id}/checklist")
    async def get_checklist(pursuit_id: int):
        return [i.model_dump(mode="json") for i in await service.get_checklist(pursuit_id)]

    @app.post("/workstream/pursuits/{pursuit_id}/checklist")
    async def add_checklist_item(pursuit_id: int, req: ChecklistItemCreateRequest):
        item = await service.add_checklist_item(
            pursuit_id, req.item_name, req.required_for_stage, req.notes,
        )
        return item.model_dump(mode="json")

    @app.put("/workstream/pursuits/{pursuit_id}/checklist/{item_id}")
    async def update_checklist_item(pursuit_id: int, item_id: int, req: ChecklistItemUpdateRequest):
        """Complete or reopen an item. Never changes the pursuit's stage."""
        items = await service.update_checklist_item(
            pursuit_id, item_id, req.completed, req.completed_by, req.notes,
        )
        return [i.model_dump(mode="json") for i in items]

    @app.get("/workstream/pursuits/{pursuit_id}/gate/{stage}")
    async def get_gate_status(pursuit_id: int, stage: PursuitStage):
        satisfied, missing = await service.gate_status(pursuit_id, stage)
        return {"pursuit_id": pursuit_id, "target_stage": stage.value,
                "satisfied": satisfied, "missing_items": missing}

    # === PROPOSALS ===

    @app.post("/workstream/pursuits/{pursuit_id}/proposals")
    async def create_proposal(pursuit_id: int, req: ProposalCreateRequest):
        proposal = await service.create_proposal(pursuit_id, **req.model_dump())
        return proposal.model_dump(mode="json")

    @app.get("/workstream/pursuits/{pursuit_id}/proposals")
    async def list_proposals(pursuit_id: int):
        return [p.model_dump(mode="json") for p in await service.list_proposals(pursuit_id)]

    @app.get("/workstream/proposals/{proposal_id}")
    async def get_proposal(proposal_id: int):
        return (await service.get_proposal(proposal_id)).model_dump(mode="json")

    @app.post("/workstream/proposals/{proposal_id}/status")
    async def change_proposal_status(proposal_id: int, req: ProposalStatusRequest):
        proposal = await service.change_proposal_status(proposal_id, req.status)
        return proposal.model_dump(mode="json")

    @app.post("/workstream/proposals/{proposal_id}/send")
    async def send_proposal(proposal_id: int):
        proposal = await service.change_proposal_status(proposal_id, ProposalStatus.SENT)
        return proposal.model_dump(mode="json")

    # === SCORING ===

    @app.post("/workstream/scores/{entity_type}/{entity_id}/rescore")
    async def rescore_item(entity_type: EntityType, entity_id: int, req: ScoreUpdate):
        """Set priority score, tier and ICP band on a signal, candidate or pursuit."""
        try:
            item = await service.rescore_item(entity_type, entity_id, req)
        except ValueError as e:
            raise HTTPException(422, str(e))
        return item.model_dump(mode="json")

    # === TODAY PANEL & REPORTING ===

    @app.get("/workstream/today")
    async def get_today_panel(
        item_type: ItemTypeFilter = ItemTypeFilter.ALL,
        priority_tier: Optional[PriorityTier] = None,
        owner_user_id: Optional[int] = None,
        sla_badge: Optional[SlaBadge] = None,
    ):
        """Ranked open work across signals, candidates and pursuits."""
        panel_filter = PanelFilter(
            item_type=item_type, tier=priority_tier,
            owner_user_id=owner_user_id, badge=sla_badge,
        )
        view = await service.get_today_panel(panel_filter)
        return view.model_dump(mode="json")

    @app.get("/workstream/stats")
    async def get_stats():
        return (await service.get_stats()).model_dump(mode="json")

    @app.get("/workstream/funnel")
    async def get_funnel():
        return (await service.get_funnel()).model_dump(mode="json")

    # === SLA ===

    @app.get("/workstream/sla-breaches")
    async def list_sla_breaches(
        entity_type: Optional[EntityType] = None,
        open_only: bool = False,
        limit: int = 50,
    ):
        breaches = service.list_sla_breaches(entity_type, open_only, limit)
        return [b.model_dump(mode="json") for b in breaches]

    @app.post("/workstream/sla-breaches/sweep")
    async def sweep_sla():
        """Force an SLA sweep (for testing)."""
        breaches = await service.sweep_sla()
        return {"created": [b.model_dump(mode="json") for b in breaches]}

    # === OUTBOX ===

    @app.get("/workstream/events/{entity_type}/{entity_id}")
    async def list_events(entity_type: EntityType, entity_id: int):
        """All work events recorded for an entity."""
        return [e.model_dump(mode="json") for e in service.list_events(entity_type, entity_id)]

    @app.get("/workstream/outbox/status")
    async def outbox_status():
        return {
            "status": service.scheduler.status,
            "total_events": service.outbox.count(),
            "pending_events": service.outbox.count(pending_only=True),
            "exhausted_events": len(service.scheduler.exhausted_events),
        }

    @app.post("/workstream/outbox/dispatch")
    async def dispatch_outbox():
        """Force an outbox cycle (for testing)."""
        outcomes = await service.scheduler.dispatch_due()
        return OutboxDispatchResponse(
            outcomes=[o.model_dump(mode="json") for o in outcomes],
            dispatched=len(outcomes),
        )

    @app.get("/workstream/outbox/exhausted")
    async def get_exhausted_events():
        """Events awaiting a human after running out of retries."""
        return [e.model_dump(mode="json") for e in service.scheduler.exhausted_events]

    @app.get("/workstream/outbox/{event_id}")
    async def get_event(event_id: int):
        event = service.outbox.get(event_id)
        if event is None:
            raise HTTPException(404, "Event not found")
        return event.model_dump(mode="json")

    # === CONFIGURATION ===

    @app.get("/workstream/config")
    async def get_config():
        """Effective configuration."""
        return service.config.model_dump(mode="json")

    @app.get("/workstream/config/items")
    async def list_configuration_items():
        return [i.model_dump(mode="json") for i in service.configuration_items]

    @app.post("/workstream/config")
    async def add_configuration(item: ConfigurationItem):
        """Store an override and return the resulting configuration."""
        try:
            config = service.add_configuration(item)
        except ValueError as e:
            raise HTTPException(422, str(e))
        return config.model_dump(mode="json")

    return app


# Default application instance
app = create_app()
