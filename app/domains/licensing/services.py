import asyncio
import hashlib
import logging
import mimetypes
import time
import uuid
import weakref
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from app.core.exceptions import Conflict, LicensingError, NotFound, StorageError, ValidationError
from app.domains.licensing import events
from app.domains.licensing.entities import (
    ApprovalDecision, ApprovalRecord, ApprovalStage, Attachment, LicenseRequest,
    RequestStatus, ThreadMessage
)
from app.domains.licensing.events import DomainEvent
from app.domains.licensing.rendering import CONTENT_TYPES, ContractRenderer
from app.domains.licensing.terms import (
    LicenseTerms, LicenseTermsPatch, TermDiff, diff_terms, merge_terms, parse_patch, parse_terms
)
from app.infrastructure.storage import ObjectStorage
from app.infrastructure.store import NegotiationStore

logger = logging.getLogger(__name__)


@dataclass
class RequestOutcome:
    """Новое состояние запроса и события для публикации"""
    request: LicenseRequest
    events: List[DomainEvent] = field(default_factory=list)


@dataclass
class MessageOutcome:
    message: ThreadMessage
    events: List[DomainEvent] = field(default_factory=list)


@dataclass
class ApprovalOutcome:
    record: ApprovalRecord
    events: List[DomainEvent] = field(default_factory=list)


@dataclass
class ExecutionReceipt:
    """Результат загрузки исполненного договора"""
    hash: str
    stored_ref: str
    url: Optional[str]
    request: LicenseRequest
    events: List[DomainEvent] = field(default_factory=list)


@dataclass
class DraftDocument:
    path: str
    url: Optional[str]
    content: bytes
    content_type: str


class RequestLocks:
    """Блокировки по request_id для сериализации изменений внутри процесса"""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, request_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(request_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[request_id] = lock
        return lock


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class _RequestWriter:
    """Сериализованное чтение-изменение-запись запроса.

    Внутри процесса изменения одного запроса идут под его блокировкой, между
    процессами - через CAS по версии; при устаревшей версии изменение
    пересчитывается от свежего состояния.
    """

    def __init__(
        self,
        store: NegotiationStore,
        locks: Optional[RequestLocks] = None,
        retry_attempts: int = 5
    ):
        self.store = store
        self.locks = locks or RequestLocks()
        self.retry_attempts = max(1, retry_attempts)

    async def _load(self, request_id: uuid.UUID) -> LicenseRequest:
        request = await self.store.get_request(request_id)
        if request is None:
            raise NotFound("License request not found")
        return request

    async def _mutate(
        self,
        request_id: uuid.UUID,
        mutate: Callable[[LicenseRequest], Optional[bool]],
        action: str
    ) -> RequestOutcome:
        async with self.locks.get(request_id):
            for attempt in range(1, self.retry_attempts + 1):
                request = await self._load(request_id)
                expected_version = request.version

                if mutate(request) is False:
                    return RequestOutcome(request)

                if await self.store.save_request(request, expected_version):
                    logger.info(f"{action}: request {request_id} -> {request.status.value} (v{request.version})")
                    return RequestOutcome(request, [events.request_updated(request)])

                logger.debug(f"{action}: stale version {expected_version} for {request_id}, attempt {attempt}")

        raise Conflict("License request was modified concurrently; reload and retry")


class NegotiationEngine(_RequestWriter):
    """Машина состояний запроса, ветка сообщений и рабочие условия"""

    async def open_request(
        self,
        artwork_id: uuid.UUID,
        requester_id: uuid.UUID,
        owner_id: uuid.UUID,
        terms
    ) -> RequestOutcome:
        """Создание запроса лицензии в статусе open"""
        request = LicenseRequest.create_request(artwork_id, requester_id, owner_id, parse_terms(terms))
        created = await self.store.create_request(request)
        logger.info(f"License request {created.id} opened for artwork {artwork_id}")
        return RequestOutcome(created, [events.request_updated(created)])

    async def get_request(self, request_id: uuid.UUID) -> LicenseRequest:
        return await self._load(request_id)

    async def list_for_artwork(self, artwork_id: uuid.UUID) -> List[LicenseRequest]:
        return await self.store.list_requests_for_artwork(artwork_id)

    async def list_for_party(
        self,
        user_id: uuid.UUID,
        status: Optional[RequestStatus] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[LicenseRequest]:
        return await self.store.list_requests_for_party(
            user_id, RequestStatus(status).value if status else None, limit, offset
        )

    async def count_for_party(self, user_id: uuid.UUID, status: Optional[RequestStatus] = None) -> int:
        return await self.store.count_requests_for_party(
            user_id, RequestStatus(status).value if status else None
        )

    async def ensure_party(self, request_id: uuid.UUID, actor_id: uuid.UUID) -> LicenseRequest:
        """Загрузка запроса с проверкой, что пользователь - сторона"""
        request = await self._load(request_id)
        request.ensure_party(actor_id)
        return request

    async def get_thread(self, request_id: uuid.UUID) -> List[ThreadMessage]:
        await self._load(request_id)
        return await self.store.list_messages(request_id)

    async def get_message(self, request_id: uuid.UUID, message_id: uuid.UUID) -> ThreadMessage:
        message = await self.store.get_message(message_id)
        if message is None or message.request_id != request_id:
            raise NotFound("Message not found")
        return message

    async def post_message(
        self,
        request_id: uuid.UUID,
        author_id: uuid.UUID,
        body: Optional[str],
        patch=None
    ) -> MessageOutcome:
        """Добавление сообщения в ветку; условия и статус не меняются"""
        request = await self._load(request_id)
        request.ensure_party(author_id)

        message = ThreadMessage.create_message(request_id, author_id, body, parse_patch(patch))
        created = await self.store.add_message(message)
        return MessageOutcome(created, [events.message_inserted(created)])

    async def accept_patch(self, request_id: uuid.UUID, patch) -> RequestOutcome:
        """Принятие встречного предложения: merge поверх актуальных условий"""
        patch = parse_patch(patch)
        return await self._mutate(request_id, lambda r: r.apply_patch(patch), "accept_patch")

    async def accept_offer(self, request_id: uuid.UUID) -> RequestOutcome:
        """Фиксация условий; право вызова проверяет вызывающая сторона"""
        return await self._mutate(request_id, lambda r: r.accept_offer(), "accept_offer")

    async def set_status(self, request_id: uuid.UUID, status: RequestStatus) -> RequestOutcome:
        """Отклонение или отзыв запроса"""
        try:
            status = RequestStatus(status)
        except ValueError as e:
            raise ValidationError(f"Unknown status: {status}") from e
        return await self._mutate(request_id, lambda r: r.close(status), "set_status")

    async def working_terms(self, request_id: uuid.UUID) -> LicenseTerms:
        """Проекция для рендера документа: принятые условия либо текущие"""
        request = await self._load(request_id)
        return request.working_terms

    async def preview_patch(self, request_id: uuid.UUID, patch) -> List[TermDiff]:
        """Что изменит патч относительно текущих условий"""
        request = await self._load(request_id)
        patch: Optional[LicenseTermsPatch] = parse_patch(patch)
        return diff_terms(request.requested, merge_terms(request.requested, patch))


class ApprovalTracker:
    """Журнал решений legal/finance/brand, независимый от статуса запроса"""

    def __init__(self, store: NegotiationStore):
        self.store = store

    async def _ensure_request(self, request_id: uuid.UUID) -> None:
        if await self.store.get_request(request_id) is None:
            raise NotFound("License request not found")

    async def record_decision(
        self,
        request_id: uuid.UUID,
        stage: ApprovalStage,
        decision: ApprovalDecision,
        approver_id: uuid.UUID,
        note: Optional[str] = None
    ) -> ApprovalOutcome:
        """Добавление новой записи; существующие записи не изменяются"""
        await self._ensure_request(request_id)

        try:
            record = ApprovalRecord.create_record(request_id, approver_id, stage, decision, note)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        created = await self.store.add_approval(record)
        logger.info(f"Approval {created.stage.value}={created.decision.value} recorded for {request_id}")
        return ApprovalOutcome(created, [events.approval_upserted(created)])

    async def list_approvals(self, request_id: uuid.UUID) -> List[ApprovalRecord]:
        await self._ensure_request(request_id)
        return await self.store.list_approvals(request_id)

    async def current_decision(self, request_id: uuid.UUID, stage: ApprovalStage) -> ApprovalDecision:
        """Решение последней записи этапа; pending, если записей нет"""
        records = await self.store.list_approvals(request_id, ApprovalStage(stage).value)
        decision = ApprovalDecision.PENDING
        for record in records:
            decision = record.decision
        return decision

    async def summary(self, request_id: uuid.UUID) -> Dict[ApprovalStage, ApprovalDecision]:
        """Текущее решение по каждому этапу"""
        current = {stage: ApprovalDecision.PENDING for stage in ApprovalStage}
        for record in await self.list_approvals(request_id):
            current[record.stage] = record.decision
        return current

    @staticmethod
    def is_fully_approved(summary: Dict[ApprovalStage, ApprovalDecision]) -> bool:
        """Все этапы одобрены"""
        return all(decision == ApprovalDecision.APPROVED for decision in summary.values())

    async def all_approved(self, request_id: uuid.UUID) -> bool:
        return self.is_fully_approved(await self.summary(request_id))


class ExecutionRecorder(_RequestWriter):
    """Привязка подписанного документа (хеш, подписант, время) к запросу"""

    def __init__(
        self,
        store: NegotiationStore,
        storage: ObjectStorage,
        locks: Optional[RequestLocks] = None,
        retry_attempts: int = 5,
        signed_url_ttl: Optional[int] = None
    ):
        super().__init__(store, locks, retry_attempts)
        self.storage = storage
        self.signed_url_ttl = signed_url_ttl

    async def _discard(self, stored_ref: str) -> None:
        try:
            await self.storage.delete(stored_ref)
        except StorageError as e:
            logger.error(f"Orphaned executed document {stored_ref}: {e}")

    async def record_execution(
        self,
        request_id: uuid.UUID,
        document_bytes: bytes,
        signer_name: str,
        signer_title: Optional[str] = None,
        content_type: str = "application/pdf"
    ) -> ExecutionReceipt:
        if not document_bytes:
            raise ValidationError("Executed document is empty")
        if not signer_name or not signer_name.strip():
            raise ValidationError("Signer name is required")

        signer_name = signer_name.strip()
        signer_title = signer_title.strip() if signer_title and signer_title.strip() else None
        document_hash = sha256_hex(document_bytes)

        request = await self._load(request_id)
        if request.status != RequestStatus.ACCEPTED:
            raise Conflict("Only accepted requests can be executed")

        extension = mimetypes.guess_extension(content_type.split(";")[0].strip()) or ".bin"
        key = f"requests/{request_id}/executed-{int(time.time() * 1000)}{extension}"
        stored_ref = await self.storage.put(key, document_bytes, content_type=content_type)

        try:
            outcome = await self._mutate(
                request_id,
                lambda r: r.record_execution(stored_ref, document_hash, signer_name, signer_title),
                "record_execution"
            )
        except LicensingError as e:
            logger.warning(f"Execution of {request_id} not recorded ({e}), removing {stored_ref}")
            await self._discard(stored_ref)
            raise

        url = None
        if self.signed_url_ttl:
            url = await self.storage.get_signed_url(stored_ref, self.signed_url_ttl)

        return ExecutionReceipt(
            hash=document_hash,
            stored_ref=stored_ref,
            url=url,
            request=outcome.request,
            events=outcome.events
        )


class ContractDraftService:
    """Генерация черновика договора из рабочих условий"""

    def __init__(
        self,
        engine: NegotiationEngine,
        storage: ObjectStorage,
        renderer: Optional[ContractRenderer] = None,
        signed_url_ttl: Optional[int] = None
    ):
        self.engine = engine
        self.storage = storage
        self.renderer = renderer or ContractRenderer()
        self.signed_url_ttl = signed_url_ttl

    async def generate_draft(
        self,
        request_id: uuid.UUID,
        fmt: str = "html",
        artwork_title: Optional[str] = None
    ) -> DraftDocument:
        terms = await self.engine.working_terms(request_id)
        content = self.renderer.render(request_id, terms, fmt, artwork_title=artwork_title)
        content_type = CONTENT_TYPES[fmt]

        key = f"requests/{request_id}/draft-{int(time.time() * 1000)}.{fmt}"
        path = await self.storage.put(key, content, content_type=content_type)

        url = None
        if self.signed_url_ttl:
            url = await self.storage.get_signed_url(path, self.signed_url_ttl)

        return DraftDocument(path=path, url=url, content=content, content_type=content_type)


class AttachmentService:
    """Вложения к запросу (брифы, макеты)"""

    def __init__(
        self,
        store: NegotiationStore,
        storage: ObjectStorage,
        signed_url_ttl: Optional[int] = None
    ):
        self.store = store
        self.storage = storage
        self.signed_url_ttl = signed_url_ttl

    async def attach(
        self,
        request_id: uuid.UUID,
        uploader_id: uuid.UUID,
        filename: str,
        data: bytes,
        kind: Optional[str] = None,
        content_type: str = "application/octet-stream"
    ) -> Attachment:
        request = await self.store.get_request(request_id)
        if request is None:
            raise NotFound("License request not found")
        request.ensure_party(uploader_id)

        if not data:
            raise ValidationError("Attachment is empty")

        filename = filename or "attachment.bin"
        key = f"requests/{request_id}/{int(time.time() * 1000)}-{filename}"
        storage_ref = await self.storage.put(key, data, content_type=content_type)

        attachment = Attachment(
            id=uuid.uuid4(),
            request_id=request_id,
            uploader_id=uploader_id,
            filename=filename,
            storage_ref=storage_ref,
            content_hash=sha256_hex(data),
            size_bytes=len(data),
            kind=kind
        )
        return await self.store.add_attachment(attachment)

    async def list_attachments(self, request_id: uuid.UUID) -> List[Attachment]:
        return await self.store.list_attachments(request_id)

    async def signed_url(self, attachment: Attachment) -> Optional[str]:
        if not self.signed_url_ttl:
            return None
        return await self.storage.get_signed_url(attachment.storage_ref, self.signed_url_ttl)
