import uuid
from datetime import datetime, timezone

import pytest

from app.core.exceptions import NotFound
from app.domains.licensing.entities import ApprovalDecision, ApprovalRecord, ApprovalStage, RequestStatus
from app.domains.licensing.events import EventType
from app.domains.licensing.services import ApprovalTracker


@pytest.fixture
async def request_id(engine, artwork_id, requester_id, owner_id, base_terms):
    outcome = await engine.open_request(artwork_id, requester_id, owner_id, base_terms)
    return outcome.request.id


async def test_stage_without_records_is_pending(tracker, request_id):
    assert await tracker.current_decision(request_id, ApprovalStage.LEGAL) == ApprovalDecision.PENDING
    assert await tracker.summary(request_id) == {
        ApprovalStage.LEGAL: ApprovalDecision.PENDING,
        ApprovalStage.FINANCE: ApprovalDecision.PENDING,
        ApprovalStage.BRAND: ApprovalDecision.PENDING,
    }


async def test_latest_record_wins(tracker, request_id, owner_id):
    await tracker.record_decision(request_id, ApprovalStage.LEGAL, ApprovalDecision.APPROVED, owner_id)
    await tracker.record_decision(request_id, ApprovalStage.LEGAL, ApprovalDecision.REJECTED, owner_id, "Clause 4")

    assert await tracker.current_decision(request_id, ApprovalStage.LEGAL) == ApprovalDecision.REJECTED
    assert await tracker.current_decision(request_id, ApprovalStage.FINANCE) == ApprovalDecision.PENDING


async def test_history_is_append_only(tracker, request_id, owner_id, requester_id):
    await tracker.record_decision(request_id, ApprovalStage.BRAND, ApprovalDecision.PENDING, owner_id)
    await tracker.record_decision(request_id, ApprovalStage.BRAND, ApprovalDecision.APPROVED, requester_id)

    records = await tracker.list_approvals(request_id)

    assert [r.decision for r in records] == [ApprovalDecision.PENDING, ApprovalDecision.APPROVED]
    assert records[0].decided_at is None
    assert records[1].decided_at is not None
    assert records[1].approver_id == requester_id


async def test_record_emits_approval_event(tracker, request_id, owner_id):
    outcome = await tracker.record_decision(
        request_id, ApprovalStage.FINANCE, ApprovalDecision.APPROVED, owner_id, "Budget ok"
    )

    (event,) = outcome.events
    assert event.type == EventType.APPROVAL_UPSERTED
    assert event.topic == request_id
    assert event.data["stage"] == "finance"
    assert event.data["note"] == "Budget ok"


async def test_all_approved_requires_every_stage(tracker, request_id, owner_id):
    for stage in (ApprovalStage.LEGAL, ApprovalStage.FINANCE):
        await tracker.record_decision(request_id, stage, ApprovalDecision.APPROVED, owner_id)
    assert await tracker.all_approved(request_id) is False

    await tracker.record_decision(request_id, ApprovalStage.BRAND, ApprovalDecision.APPROVED, owner_id)
    assert await tracker.all_approved(request_id) is True


async def test_approvals_do_not_touch_request_status(tracker, engine, request_id, owner_id):
    await tracker.record_decision(request_id, ApprovalStage.LEGAL, ApprovalDecision.REJECTED, owner_id)

    request = await engine.get_request(request_id)
    assert request.status == RequestStatus.OPEN
    assert request.version == 1


async def test_decision_for_unknown_request(tracker, owner_id):
    with pytest.raises(NotFound):
        await tracker.record_decision(uuid.uuid4(), ApprovalStage.LEGAL, ApprovalDecision.APPROVED, owner_id)


async def test_records_with_same_timestamp_have_stable_order(tracker, store, request_id, owner_id):
    created_at = datetime.now(timezone.utc)
    records = [
        ApprovalRecord(uuid.UUID(int=2), request_id, owner_id, ApprovalStage.LEGAL, ApprovalDecision.APPROVED,
                       created_at=created_at),
        ApprovalRecord(uuid.UUID(int=1), request_id, owner_id, ApprovalStage.LEGAL, ApprovalDecision.REJECTED,
                       created_at=created_at),
    ]
    for record in records:
        await store.add_approval(record)

    listed = await tracker.list_approvals(request_id)

    assert [r.id for r in listed] == [uuid.UUID(int=1), uuid.UUID(int=2)]
    assert await tracker.current_decision(request_id, ApprovalStage.LEGAL) == ApprovalDecision.APPROVED
    assert (await tracker.summary(request_id))[ApprovalStage.LEGAL] == ApprovalDecision.APPROVED


def test_fully_approved_summary():
    summary = {stage: ApprovalDecision.APPROVED for stage in ApprovalStage}
    assert ApprovalTracker.is_fully_approved(summary) is True

    summary[ApprovalStage.BRAND] = ApprovalDecision.PENDING
    assert ApprovalTracker.is_fully_approved(summary) is False
