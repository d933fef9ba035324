import asyncio
import uuid

import pytest

from app.core.exceptions import Conflict, Forbidden, NotFound, ValidationError
from app.domains.licensing.entities import RequestStatus
from app.domains.licensing.events import EventDispatcher, EventType
from app.domains.licensing.services import NegotiationEngine, RequestLocks
from app.domains.licensing.terms import LicenseTerms

from .conftest import FailingNotifier


SCENARIO_TERMS = {
    "purpose": "Advertising - Social & Web",
    "term_months": 12,
    "territory": "Worldwide",
    "exclusivity": "non-exclusive",
    "media": ["Web", "Social"],
    "fee": {"amount": 1500, "currency": "USD"},
}


async def open_request(engine, artwork_id, requester_id, owner_id, terms=None):
    outcome = await engine.open_request(artwork_id, requester_id, owner_id, terms or SCENARIO_TERMS)
    return outcome.request


async def test_open_request_starts_in_open_status(engine, artwork_id, requester_id, owner_id):
    outcome = await engine.open_request(artwork_id, requester_id, owner_id, SCENARIO_TERMS)

    assert outcome.request.status == RequestStatus.OPEN
    assert outcome.request.accepted_terms is None
    assert outcome.request.version == 1
    assert [e.type for e in outcome.events] == [EventType.REQUEST_UPDATED]

    stored = await engine.get_request(outcome.request.id)
    assert stored.requested == LicenseTerms(**SCENARIO_TERMS)


async def test_owner_cannot_request_own_artwork(engine, artwork_id, owner_id):
    with pytest.raises(ValidationError):
        await engine.open_request(artwork_id, owner_id, owner_id, SCENARIO_TERMS)


async def test_invalid_terms_are_rejected_on_open(engine, artwork_id, requester_id, owner_id):
    with pytest.raises(ValidationError):
        await engine.open_request(artwork_id, requester_id, owner_id, {"purpose": "Ad"})


async def test_patch_from_thread_moves_request_to_negotiating(engine, artwork_id, requester_id, owner_id):
    request = await open_request(engine, artwork_id, requester_id, owner_id)

    posted = await engine.post_message(request.id, requester_id, "Can we extend?", {"term_months": 18})
    assert [e.type for e in posted.events] == [EventType.MESSAGE_INSERTED]

    # Сообщение само по себе условия не меняет
    unchanged = await engine.get_request(request.id)
    assert unchanged.status == RequestStatus.OPEN
    assert unchanged.requested.term_months == 12

    outcome = await engine.accept_patch(request.id, posted.message.patch)

    assert outcome.request.status == RequestStatus.NEGOTIATING
    assert outcome.request.requested.term_months == 18
    assert outcome.request.requested.fee.amount == 1500
    assert outcome.request.requested.media == ["Web", "Social"]
    assert outcome.request.version == 2
    assert [e.type for e in outcome.events] == [EventType.REQUEST_UPDATED]


async def test_accept_offer_snapshots_working_terms(engine, artwork_id, requester_id, owner_id):
    request = await open_request(engine, artwork_id, requester_id, owner_id)
    await engine.accept_patch(request.id, {"term_months": 18})

    outcome = await engine.accept_offer(request.id)

    assert outcome.request.status == RequestStatus.ACCEPTED
    assert outcome.request.accepted_terms.term_months == 18
    assert outcome.request.accepted_terms.fee.amount == 1500
    assert await engine.working_terms(request.id) == outcome.request.accepted_terms


async def test_terminal_request_rejects_status_change(engine, artwork_id, requester_id, owner_id):
    request = await open_request(engine, artwork_id, requester_id, owner_id)
    await engine.accept_offer(request.id)

    with pytest.raises(Conflict):
        await engine.set_status(request.id, RequestStatus.DECLINED)

    with pytest.raises(Conflict):
        await engine.accept_offer(request.id)


async def test_accepted_terms_cannot_be_patched(engine, artwork_id, requester_id, owner_id):
    request = await open_request(engine, artwork_id, requester_id, owner_id)
    accepted = (await engine.accept_offer(request.id)).request.accepted_terms

    with pytest.raises(Conflict):
        await engine.accept_patch(request.id, {"fee": {"amount": 1, "currency": "USD"}})

    stored = await engine.get_request(request.id)
    assert stored.accepted_terms == accepted


@pytest.mark.parametrize("final_status", [RequestStatus.DECLINED, RequestStatus.WITHDRAWN])
async def test_close_request(engine, artwork_id, requester_id, owner_id, final_status):
    request = await open_request(engine, artwork_id, requester_id, owner_id)

    outcome = await engine.set_status(request.id, final_status)
    assert outcome.request.status == final_status

    with pytest.raises(Conflict):
        await engine.accept_patch(request.id, {"term_months": 1})


@pytest.mark.parametrize("status", ["accepted", "negotiating", "open", "archived"])
async def test_set_status_only_closes(engine, artwork_id, requester_id, owner_id, status):
    request = await open_request(engine, artwork_id, requester_id, owner_id)

    with pytest.raises(ValidationError):
        await engine.set_status(request.id, status)


async def test_identical_patch_is_a_no_op(engine, artwork_id, requester_id, owner_id):
    request = await open_request(engine, artwork_id, requester_id, owner_id)
    first = await engine.accept_patch(request.id, {"term_months": 18})

    second = await engine.accept_patch(request.id, {"term_months": 18})

    assert second.events == []
    assert second.request.version == first.request.version
    assert second.request.requested == first.request.requested


async def test_message_from_non_party_is_rejected_and_not_stored(engine, artwork_id, requester_id, owner_id):
    request = await open_request(engine, artwork_id, requester_id, owner_id)

    with pytest.raises(Forbidden):
        await engine.post_message(request.id, uuid.uuid4(), "hello")

    assert await engine.get_thread(request.id) == []


async def test_message_requires_body_or_patch(engine, artwork_id, requester_id, owner_id):
    request = await open_request(engine, artwork_id, requester_id, owner_id)

    with pytest.raises(ValidationError):
        await engine.post_message(request.id, owner_id, "   ", None)

    with pytest.raises(ValidationError):
        await engine.post_message(request.id, owner_id, None, {})


async def test_messages_allowed_after_terminal_status(engine, artwork_id, requester_id, owner_id):
    request = await open_request(engine, artwork_id, requester_id, owner_id)
    await engine.set_status(request.id, RequestStatus.WITHDRAWN)

    outcome = await engine.post_message(request.id, owner_id, "Sorry to see you go")

    assert outcome.message.body == "Sorry to see you go"
    assert (await engine.get_request(request.id)).status == RequestStatus.WITHDRAWN


async def test_thread_is_ordered_by_creation(engine, artwork_id, requester_id, owner_id):
    request = await open_request(engine, artwork_id, requester_id, owner_id)

    for i in range(3):
        await engine.post_message(request.id, requester_id, f"message {i}")

    thread = await engine.get_thread(request.id)
    assert [m.body for m in thread] == ["message 0", "message 1", "message 2"]


async def test_get_message_checks_request(engine, artwork_id, requester_id, owner_id):
    first = await open_request(engine, artwork_id, requester_id, owner_id)
    second = await open_request(engine, artwork_id, requester_id, owner_id)
    message = (await engine.post_message(first.id, requester_id, None, {"term_months": 3})).message

    assert (await engine.get_message(first.id, message.id)).patch.term_months == 3

    with pytest.raises(NotFound):
        await engine.get_message(second.id, message.id)


async def test_unknown_request_raises_not_found(engine):
    with pytest.raises(NotFound):
        await engine.get_request(uuid.uuid4())

    with pytest.raises(NotFound):
        await engine.accept_patch(uuid.uuid4(), {"term_months": 1})


async def test_preview_patch_does_not_mutate(engine, artwork_id, requester_id, owner_id):
    request = await open_request(engine, artwork_id, requester_id, owner_id)

    changes = await engine.preview_patch(request.id, {"term_months": 24, "media": ["Web", "Social"]})

    assert [(c.key, c.before, c.after) for c in changes] == [("term_months", 12, 24)]
    stored = await engine.get_request(request.id)
    assert stored.version == 1
    assert stored.status == RequestStatus.OPEN


async def test_list_for_artwork_and_party(engine, artwork_id, requester_id, owner_id):
    first = await open_request(engine, artwork_id, requester_id, owner_id)
    other_requester = uuid.uuid4()
    second = await open_request(engine, artwork_id, other_requester, owner_id)
    await engine.set_status(second.id, RequestStatus.WITHDRAWN)

    by_artwork = await engine.list_for_artwork(artwork_id)
    assert {r.id for r in by_artwork} == {first.id, second.id}

    assert [r.id for r in await engine.list_for_party(requester_id)] == [first.id]
    assert {r.id for r in await engine.list_for_party(owner_id)} == {first.id, second.id}
    assert [r.id for r in await engine.list_for_party(owner_id, RequestStatus.WITHDRAWN)] == [second.id]


async def test_concurrent_patches_are_both_applied(engine, artwork_id, requester_id, owner_id):
    request = await open_request(engine, artwork_id, requester_id, owner_id)

    await asyncio.gather(
        engine.accept_patch(request.id, {"term_months": 6}),
        engine.accept_patch(request.id, {"fee": {"amount": 2000, "currency": "USD"}}),
    )

    final = await engine.get_request(request.id)
    assert final.requested.term_months == 6
    assert final.requested.fee.amount == 2000
    assert final.version == 3


async def test_concurrent_patches_across_lock_registries(store, artwork_id, requester_id, owner_id):
    # Два процесса: разные реестры блокировок, общая база
    first = NegotiationEngine(store, RequestLocks(), retry_attempts=5)
    second = NegotiationEngine(store, RequestLocks(), retry_attempts=5)
    request = await open_request(first, artwork_id, requester_id, owner_id)

    await asyncio.gather(
        first.accept_patch(request.id, {"term_months": 6}),
        second.accept_patch(request.id, {"fee": {"amount": 2000, "currency": "USD"}}),
    )

    final = await first.get_request(request.id)
    assert final.requested.term_months == 6
    assert final.requested.fee.amount == 2000


async def test_stale_version_write_is_refused(engine, store, artwork_id, requester_id, owner_id):
    request = await open_request(engine, artwork_id, requester_id, owner_id)
    stale = await store.get_request(request.id)

    await engine.accept_patch(request.id, {"term_months": 6})

    stale.requested = stale.requested.model_copy(update={"purpose": "Print"})
    assert await store.save_request(stale, 1) is False

    stored = await store.get_request(request.id)
    assert stored.requested.purpose == SCENARIO_TERMS["purpose"]
    assert stored.requested.term_months == 6


async def test_dispatch_failure_does_not_undo_mutation(engine, artwork_id, requester_id, owner_id):
    request = await open_request(engine, artwork_id, requester_id, owner_id)
    outcome = await engine.accept_patch(request.id, {"term_months": 9})

    delivered = await EventDispatcher(FailingNotifier()).dispatch(outcome.events)

    assert delivered == 0
    assert (await engine.get_request(request.id)).requested.term_months == 9


async def test_dispatcher_delivers_events_in_order(engine, notifier, artwork_id, requester_id, owner_id):
    dispatcher = EventDispatcher(notifier)
    opened = await engine.open_request(artwork_id, requester_id, owner_id, SCENARIO_TERMS)
    await dispatcher.dispatch(opened.events)

    posted = await engine.post_message(opened.request.id, owner_id, None, {"term_months": 3})
    await dispatcher.dispatch(posted.events)

    accepted = await engine.accept_offer(opened.request.id)
    await dispatcher.dispatch(accepted.events)

    assert notifier.types() == ["request_updated", "message_inserted", "request_updated"]
    assert all(e.topic == opened.request.id for e in notifier.events)
    assert notifier.events[-1].data["status"] == "accepted"
