import os
import uuid

import pytest

from app.core.exceptions import Conflict, NotFound, ValidationError
from app.core.security import create_file_token, verify_file_token
from app.domains.licensing.entities import RequestStatus
from app.domains.licensing.events import EventType


@pytest.fixture
async def accepted_request(engine, artwork_id, requester_id, owner_id, base_terms):
    request = (await engine.open_request(artwork_id, requester_id, owner_id, base_terms)).request
    return (await engine.accept_offer(request.id)).request


async def test_same_document_gives_same_hash(recorder, accepted_request):
    document = os.urandom(10 * 1024)

    first = await recorder.record_execution(accepted_request.id, document, "Jane Doe")
    second = await recorder.record_execution(accepted_request.id, document, "Jane Doe")

    assert first.hash == second.hash
    assert len(first.hash) == 64
    assert first.hash == first.hash.lower()


async def test_execution_is_recorded_on_request(recorder, engine, accepted_request, contracts_storage):
    document = b"%PDF-1.7 signed contract"

    receipt = await recorder.record_execution(accepted_request.id, document, "  Jane Doe ", "CEO")

    stored = await engine.get_request(accepted_request.id)
    assert stored.executed_document_hash == receipt.hash
    assert stored.executed_document_ref == receipt.stored_ref
    assert stored.signer_name == "Jane Doe"
    assert stored.signer_title == "CEO"
    assert stored.signed_at is not None
    assert stored.status == RequestStatus.ACCEPTED
    assert stored.is_executed

    assert receipt.stored_ref.startswith(f"contracts/requests/{accepted_request.id}/executed-")
    assert receipt.stored_ref.endswith(".pdf")
    assert await contracts_storage.get(receipt.stored_ref) == document
    assert [e.type for e in receipt.events] == [EventType.REQUEST_UPDATED]


async def test_signed_url_points_to_stored_object(recorder, accepted_request):
    receipt = await recorder.record_execution(accepted_request.id, b"%PDF-1.7", "Jane Doe")

    assert receipt.url.startswith("http://testserver/licensing/files/")
    token = receipt.url.rsplit("/", 1)[-1]
    assert verify_file_token(token) == receipt.stored_ref


async def test_execution_requires_accepted_status(recorder, engine, artwork_id, requester_id, owner_id, base_terms):
    request = (await engine.open_request(artwork_id, requester_id, owner_id, base_terms)).request

    with pytest.raises(Conflict):
        await recorder.record_execution(request.id, b"%PDF-1.7", "Jane Doe")

    stored = await engine.get_request(request.id)
    assert stored.executed_document_hash is None


@pytest.mark.parametrize("document, signer", [(b"", "Jane Doe"), (b"%PDF", "   ")])
async def test_execution_input_is_validated(recorder, accepted_request, document, signer):
    with pytest.raises(ValidationError):
        await recorder.record_execution(accepted_request.id, document, signer)


async def test_execution_of_unknown_request(recorder):
    with pytest.raises(NotFound):
        await recorder.record_execution(uuid.uuid4(), b"%PDF", "Jane Doe")


def test_expired_file_link_is_rejected():
    token = create_file_token("contracts/requests/x/executed.pdf", ttl_seconds=-10)

    assert verify_file_token(token) is None


async def test_failed_execution_removes_stored_document(
    recorder, engine, store, accepted_request, contracts_storage, monkeypatch
):
    async def stale_save(request, expected_version):
        return False

    monkeypatch.setattr(store, "save_request", stale_save)

    with pytest.raises(Conflict):
        await recorder.record_execution(accepted_request.id, b"%PDF-1.7", "Jane Doe")

    folder = contracts_storage.root / "contracts" / "requests" / str(accepted_request.id)
    assert not folder.exists() or list(folder.iterdir()) == []
    assert (await engine.get_request(accepted_request.id)).executed_document_ref is None


async def test_local_storage_delete(contracts_storage):
    ref = await contracts_storage.put("requests/x/executed.pdf", b"%PDF")

    await contracts_storage.delete(ref)
    await contracts_storage.delete(ref)

    with pytest.raises(NotFound):
        await contracts_storage.get(ref)
