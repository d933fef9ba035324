"""Сборка сервисов лицензирования для обработчиков FastAPI.

Хранилище и реестр блокировок общие для процесса; сервисы создаются на
каждый запрос, как и в остальных роутерах.
"""
from fastapi import Depends

from app.api.ws.manager import manager
from app.core.config import settings
from app.core.db import SessionLocal
from app.domains.licensing.events import EventDispatcher
from app.domains.licensing.services import (
    ApprovalTracker, AttachmentService, ContractDraftService, ExecutionRecorder,
    NegotiationEngine, RequestLocks
)
from app.infrastructure.storage import ObjectStorage, build_object_storage
from app.infrastructure.store import NegotiationStore

request_locks = RequestLocks()
_store = NegotiationStore(SessionLocal, timeout=settings.store_timeout_seconds)


def get_store() -> NegotiationStore:
    return _store


def get_contracts_storage() -> ObjectStorage:
    return build_object_storage(settings, settings.contracts_bucket)


def get_attachments_storage() -> ObjectStorage:
    return build_object_storage(settings, settings.attachments_bucket)


def get_dispatcher() -> EventDispatcher:
    return EventDispatcher(manager)


def get_engine(store: NegotiationStore = Depends(get_store)) -> NegotiationEngine:
    return NegotiationEngine(store, request_locks, settings.patch_retry_attempts)


def get_tracker(store: NegotiationStore = Depends(get_store)) -> ApprovalTracker:
    return ApprovalTracker(store)


def get_recorder(
    store: NegotiationStore = Depends(get_store),
    storage: ObjectStorage = Depends(get_contracts_storage)
) -> ExecutionRecorder:
    return ExecutionRecorder(
        store,
        storage,
        request_locks,
        settings.patch_retry_attempts,
        signed_url_ttl=settings.signed_url_ttl_seconds
    )


def get_draft_service(
    engine: NegotiationEngine = Depends(get_engine),
    storage: ObjectStorage = Depends(get_contracts_storage)
) -> ContractDraftService:
    return ContractDraftService(engine, storage, signed_url_ttl=60 * 60)


def get_attachment_service(
    store: NegotiationStore = Depends(get_store),
    storage: ObjectStorage = Depends(get_attachments_storage)
) -> AttachmentService:
    return AttachmentService(store, storage, signed_url_ttl=settings.signed_url_ttl_seconds)
