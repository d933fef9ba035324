import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from app.core.exceptions import Conflict, Forbidden, ValidationError
from app.domains.licensing.terms import LicenseTerms, LicenseTermsPatch, diff_terms, merge_terms


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestStatus(str, Enum):
    """Статусы запроса лицензии"""
    OPEN = "open"
    NEGOTIATING = "negotiating"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    WITHDRAWN = "withdrawn"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({RequestStatus.ACCEPTED, RequestStatus.DECLINED, RequestStatus.WITHDRAWN})


class ApprovalStage(str, Enum):
    """Независимые треки согласования"""
    LEGAL = "legal"
    FINANCE = "finance"
    BRAND = "brand"


class ApprovalDecision(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LicenseRequest:
    """Запрос лицензии - корень агрегата переговоров"""

    def __init__(
        self,
        id: uuid.UUID,
        artwork_id: uuid.UUID,
        requester_id: uuid.UUID,
        owner_id: uuid.UUID,
        requested: LicenseTerms,
        status: RequestStatus = RequestStatus.OPEN,
        accepted_terms: Optional[LicenseTerms] = None,
        executed_document_ref: Optional[str] = None,
        executed_document_hash: Optional[str] = None,
        signed_at: Optional[datetime] = None,
        signer_name: Optional[str] = None,
        signer_title: Optional[str] = None,
        version: int = 1,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None
    ):
        self.id = id
        self.artwork_id = artwork_id
        self.requester_id = requester_id
        self.owner_id = owner_id
        self.requested = requested
        self.status = RequestStatus(status)
        self.accepted_terms = accepted_terms
        self.executed_document_ref = executed_document_ref
        self.executed_document_hash = executed_document_hash
        self.signed_at = signed_at
        self.signer_name = signer_name
        self.signer_title = signer_title
        self.version = version
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at or self.created_at

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_executed(self) -> bool:
        return self.executed_document_hash is not None

    @property
    def working_terms(self) -> LicenseTerms:
        """Зафиксированные условия, если оффер принят, иначе текущие"""
        return self.accepted_terms if self.accepted_terms is not None else self.requested

    def is_party(self, user_id: uuid.UUID) -> bool:
        return user_id == self.requester_id or user_id == self.owner_id

    def ensure_party(self, user_id: uuid.UUID) -> None:
        if not self.is_party(user_id):
            raise Forbidden("User is not a party to this license request")

    def _ensure_mutable(self, action: str) -> None:
        if self.is_terminal:
            raise Conflict(f"Cannot {action}: request is already {self.status.value}")

    def _touch(self) -> None:
        self.updated_at = utcnow()

    def apply_patch(self, patch: Optional[LicenseTermsPatch]) -> bool:
        """Принятие патча; возвращает False, если условия не изменились"""
        self._ensure_mutable("accept patch")

        next_terms = merge_terms(self.requested, patch)
        next_status = RequestStatus.NEGOTIATING if self.status == RequestStatus.OPEN else self.status

        if not diff_terms(self.requested, next_terms) and next_status == self.status:
            return False

        self.requested = next_terms
        self.status = next_status
        self._touch()
        return True

    def accept_offer(self) -> None:
        """Фиксация текущих условий как принятых"""
        self._ensure_mutable("accept offer")
        self.accepted_terms = self.requested.model_copy(deep=True)
        self.status = RequestStatus.ACCEPTED
        self._touch()

    def close(self, status: RequestStatus) -> None:
        """Отклонение или отзыв запроса"""
        status = RequestStatus(status)
        if status not in (RequestStatus.DECLINED, RequestStatus.WITHDRAWN):
            raise ValidationError(f"Status '{status.value}' cannot be set directly")
        self._ensure_mutable(f"set status to {status.value}")
        self.status = status
        self._touch()

    def record_execution(
        self,
        document_ref: str,
        document_hash: str,
        signer_name: str,
        signer_title: Optional[str] = None
    ) -> None:
        """Привязка подписанного документа"""
        if self.status != RequestStatus.ACCEPTED:
            raise Conflict("Only accepted requests can be executed")
        self.executed_document_ref = document_ref
        self.executed_document_hash = document_hash
        self.signed_at = utcnow()
        self.signer_name = signer_name
        self.signer_title = signer_title
        self.updated_at = self.signed_at

    @classmethod
    def create_request(
        cls,
        artwork_id: uuid.UUID,
        requester_id: uuid.UUID,
        owner_id: uuid.UUID,
        requested: LicenseTerms
    ) -> "LicenseRequest":
        """Создание нового запроса в статусе open"""
        if requester_id == owner_id:
            raise ValidationError("Owner cannot request a license for their own artwork")

        return cls(
            id=uuid.uuid4(),
            artwork_id=artwork_id,
            requester_id=requester_id,
            owner_id=owner_id,
            requested=requested
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, LicenseRequest):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return f"LicenseRequest(id={self.id}, status={self.status.value}, version={self.version})"


class ThreadMessage:
    """Сообщение в ветке переговоров (неизменяемо после создания)"""

    def __init__(
        self,
        id: uuid.UUID,
        request_id: uuid.UUID,
        author_id: uuid.UUID,
        body: Optional[str] = None,
        patch: Optional[LicenseTermsPatch] = None,
        created_at: Optional[datetime] = None
    ):
        self.id = id
        self.request_id = request_id
        self.author_id = author_id
        self.body = body
        self.patch = patch
        self.created_at = created_at or utcnow()

    @classmethod
    def create_message(
        cls,
        request_id: uuid.UUID,
        author_id: uuid.UUID,
        body: Optional[str] = None,
        patch: Optional[LicenseTermsPatch] = None
    ) -> "ThreadMessage":
        body = body.strip() if body else None
        if patch is not None and patch.is_empty():
            patch = None
        if not body and patch is None:
            raise ValidationError("Message must have a body or a terms patch")

        return cls(
            id=uuid.uuid4(),
            request_id=request_id,
            author_id=author_id,
            body=body,
            patch=patch
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, ThreadMessage):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return f"ThreadMessage(id={self.id}, request_id={self.request_id}, has_patch={self.patch is not None})"


class ApprovalRecord:
    """Запись журнала согласований"""

    def __init__(
        self,
        id: uuid.UUID,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        stage: ApprovalStage,
        decision: ApprovalDecision,
        note: Optional[str] = None,
        decided_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None
    ):
        self.id = id
        self.request_id = request_id
        self.approver_id = approver_id
        self.stage = ApprovalStage(stage)
        self.decision = ApprovalDecision(decision)
        self.note = note
        self.decided_at = decided_at
        self.created_at = created_at or utcnow()

    @classmethod
    def create_record(
        cls,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        stage: ApprovalStage,
        decision: ApprovalDecision,
        note: Optional[str] = None
    ) -> "ApprovalRecord":
        decision = ApprovalDecision(decision)
        now = utcnow()
        return cls(
            id=uuid.uuid4(),
            request_id=request_id,
            approver_id=approver_id,
            stage=stage,
            decision=decision,
            note=note,
            decided_at=None if decision == ApprovalDecision.PENDING else now,
            created_at=now
        )

    def __repr__(self) -> str:
        return f"ApprovalRecord(stage={self.stage.value}, decision={self.decision.value})"


class Attachment:
    """Вложение к запросу (макеты, брифы и т.п.)"""

    def __init__(
        self,
        id: uuid.UUID,
        request_id: uuid.UUID,
        uploader_id: uuid.UUID,
        filename: str,
        storage_ref: str,
        content_hash: str,
        size_bytes: int,
        kind: Optional[str] = None,
        created_at: Optional[datetime] = None
    ):
        self.id = id
        self.request_id = request_id
        self.uploader_id = uploader_id
        self.filename = filename
        self.storage_ref = storage_ref
        self.content_hash = content_hash
        self.size_bytes = size_bytes
        self.kind = kind
        self.created_at = created_at or utcnow()

    def __repr__(self) -> str:
        return f"Attachment(id={self.id}, filename={self.filename})"
