"""Tests for the workstream data models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from workstream_kernel.models import (
    Candidate,
    CandidateStatus,
    ChecklistItem,
    EntityType,
    EventName,
    GatedStage,
    PanelItem,
    PriorityTier,
    Pursuit,
    PursuitStage,
    Signal,
    SignalStatus,
    SlaBadge,
    WorkEvent,
)
from workstream_kernel.models.events import (
    PursuitDecidedPayload,
    StageChangedPayload,
    StatusChangedPayload,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class TestEntities:
    def test_signal_defaults(self):
        signal = Signal(snippet="Inbound RFP from Acme", created_utc=NOW)
        assert signal.status == SignalStatus.NEW
        assert signal.org_id == 1
        assert signal.urgency_score == 0.0
        assert signal.priority_tier is None

    def test_signal_urgency_bounds(self):
        with pytest.raises(ValidationError):
            Signal(snippet="x", urgency_score=1.5, created_utc=NOW)

    def test_candidate_confidence_bounds(self):
        with pytest.raises(ValidationError):
            Candidate(title="Acme", confidence=101, created_utc=NOW)

    def test_candidate_status_is_closed(self):
        with pytest.raises(ValidationError):
            Candidate(title="Acme", status="pending", created_utc=NOW)

    def test_pursuit_starts_in_qual(self):
        pursuit = Pursuit(candidate_id=1, title="Acme expansion", created_utc=NOW)
        assert pursuit.stage == PursuitStage.QUAL
        assert pursuit.probability == 10
        assert not pursuit.checklist_required

    def test_checklist_item_only_for_gated_stages(self):
        item = ChecklistItem(
            pursuit_id=1, item_name="reference check",
            required_for_stage="pink", created_utc=NOW,
        )
        assert item.required_for_stage == GatedStage.PINK
        with pytest.raises(ValidationError):
            ChecklistItem(
                pursuit_id=1, item_name="kickoff",
                required_for_stage="qual", created_utc=NOW,
            )


class TestWorkEvent:
    def test_payload_variant_from_kind(self):
        event = WorkEvent.model_validate({
            "entity_type": "pursuit",
            "entity_id": 4,
            "event_name": "pursuit.stage_changed",
            "payload": {"kind": "stage_changed", "from_stage": "qual", "to_stage": "pink"},
            "created_utc": NOW.isoformat(),
        })
        assert isinstance(event.payload, StageChangedPayload)
        assert event.payload.to_stage == "pink"
        assert event.entity_type == EntityType.PURSUIT

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            WorkEvent.model_validate({
                "entity_type": "candidate",
                "entity_id": 1,
                "event_name": "candidate.status_changed",
                "payload": {"kind": "mystery"},
                "created_utc": NOW.isoformat(),
            })

    def test_json_round_trip_keeps_variant(self):
        event = WorkEvent(
            entity_type=EntityType.PURSUIT,
            entity_id=9,
            event_name=EventName.PURSUIT_WON,
            payload=PursuitDecidedPayload(outcome="won", value_usd=125000.0),
            created_utc=NOW,
        )
        restored = WorkEvent.model_validate_json(event.model_dump_json())
        assert isinstance(restored.payload, PursuitDecidedPayload)
        assert restored.payload.value_usd == 125000.0

    def test_retry_bookkeeping_defaults(self):
        event = WorkEvent(
            entity_type=EntityType.CANDIDATE,
            entity_id=1,
            event_name=EventName.CANDIDATE_STATUS_CHANGED,
            payload=StatusChangedPayload(from_status="new", to_status="triaged"),
            created_utc=NOW,
        )
        assert event.retry_count == 0
        assert event.processed_at is None
        assert event.next_retry_at is None


class TestPanelItem:
    def test_malformed_fields_degrade_to_none(self):
        item = PanelItem.model_validate({
            "item_type": "Candidate",
            "item_id": "7",
            "label": None,
            "priority_score": "not-a-number",
            "priority_tier": "urgent",
            "badge": "purple",
            "icp_band": 3,
            "due_date": "yesterday",
        })
        assert item.item_type == "candidate"
        assert item.item_id == 7
        assert item.label == ""
        assert item.priority_score is None
        assert item.priority_tier is None
        assert item.badge is None
        assert item.icp_band is None
        assert item.due_date is None

    def test_nan_score_is_missing(self):
        assert PanelItem(priority_score=float("nan")).priority_score is None

    def test_case_insensitive_enums(self):
        item = PanelItem(priority_tier="HIGH", badge="Red")
        assert item.priority_tier == PriorityTier.HIGH
        assert item.badge == SlaBadge.RED

    def test_naive_datetimes_are_read_as_utc(self):
        item = PanelItem(due_date="2026-03-02T18:00:00")
        assert item.due_date == NOW + timedelta(hours=6)
        assert item.due_date.tzinfo is not None
