from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional, List, Dict, Any
import uuid
from datetime import datetime

from app.domains.licensing.entities import (
    ApprovalDecision, ApprovalRecord, ApprovalStage, Attachment, LicenseRequest,
    RequestStatus, ThreadMessage
)
from app.domains.licensing.terms import LicenseTerms, LicenseTermsPatch, TermDiff


class LicenseRequestCreate(BaseModel):
    """Схема для создания запроса лицензии"""
    artwork_id: uuid.UUID
    owner_id: uuid.UUID
    requested: Optional[LicenseTerms] = None
    template_id: Optional[str] = None


class LicenseRequestResponse(BaseModel):
    """Схема для ответа с данными запроса"""
    id: uuid.UUID
    artwork_id: uuid.UUID
    requester_id: uuid.UUID
    owner_id: uuid.UUID
    requested: LicenseTerms
    status: RequestStatus
    accepted_terms: Optional[LicenseTerms] = None
    executed_document_ref: Optional[str] = None
    executed_document_hash: Optional[str] = None
    signed_at: Optional[datetime] = None
    signer_name: Optional[str] = None
    signer_title: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_entity(cls, request: LicenseRequest) -> "LicenseRequestResponse":
        return cls.model_validate(request)


class LicenseRequestListResponse(BaseModel):
    requests: List[LicenseRequestResponse]
    total: int


class ThreadMessageCreate(BaseModel):
    """Схема для нового сообщения в ветке"""
    body: Optional[str] = Field(None, max_length=10000)
    patch: Optional[LicenseTermsPatch] = None


class ThreadMessageResponse(BaseModel):
    id: uuid.UUID
    request_id: uuid.UUID
    author_id: uuid.UUID
    body: Optional[str] = None
    patch: Optional[Dict[str, Any]] = None
    created_at: datetime

    @classmethod
    def from_entity(cls, message: ThreadMessage) -> "ThreadMessageResponse":
        return cls(
            id=message.id,
            request_id=message.request_id,
            author_id=message.author_id,
            body=message.body,
            patch=message.patch.to_json() if message.patch else None,
            created_at=message.created_at
        )


class RequestDetailResponse(BaseModel):
    """Запрос вместе с веткой - основа для сверки после пропущенных событий"""
    request: LicenseRequestResponse
    messages: List[ThreadMessageResponse]


class AcceptPatchRequest(BaseModel):
    """Патч передается явно либо берется из сообщения ветки"""
    patch: Optional[LicenseTermsPatch] = None
    message_id: Optional[uuid.UUID] = None

    @model_validator(mode="after")
    def validate_source(self):
        if (self.patch is None) == (self.message_id is None):
            raise ValueError("Provide exactly one of patch or message_id")
        return self


class StatusUpdateRequest(BaseModel):
    status: RequestStatus


class TermDiffResponse(BaseModel):
    key: str
    before: Any = None
    after: Any = None

    @classmethod
    def from_diff(cls, diff: TermDiff) -> "TermDiffResponse":
        return cls(key=diff.key, before=diff.before, after=diff.after)


class PatchPreviewResponse(BaseModel):
    request_id: uuid.UUID
    changes: List[TermDiffResponse]


class WorkingTermsResponse(BaseModel):
    request_id: uuid.UUID
    status: RequestStatus
    is_final: bool
    terms: LicenseTerms


class ApprovalCreate(BaseModel):
    stage: ApprovalStage
    decision: ApprovalDecision
    note: Optional[str] = Field(None, max_length=2000)


class ApprovalResponse(BaseModel):
    id: uuid.UUID
    request_id: uuid.UUID
    approver_id: uuid.UUID
    stage: ApprovalStage
    decision: ApprovalDecision
    note: Optional[str] = None
    decided_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_entity(cls, record: ApprovalRecord) -> "ApprovalResponse":
        return cls.model_validate(record)


class ApprovalListResponse(BaseModel):
    request_id: uuid.UUID
    records: List[ApprovalResponse]
    current: Dict[ApprovalStage, ApprovalDecision]
    all_approved: bool


class ExecutionResponse(BaseModel):
    request_id: uuid.UUID
    hash: str
    stored_ref: str
    url: Optional[str] = None
    signed_at: datetime
    signer_name: str
    signer_title: Optional[str] = None


class DraftResponse(BaseModel):
    request_id: uuid.UUID
    path: str
    url: Optional[str] = None
    content_type: str
    content: str


class AttachmentResponse(BaseModel):
    id: uuid.UUID
    request_id: uuid.UUID
    uploader_id: uuid.UUID
    filename: str
    kind: Optional[str] = None
    content_hash: str
    size_bytes: int
    url: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_entity(cls, attachment: Attachment, url: Optional[str] = None) -> "AttachmentResponse":
        return cls(
            id=attachment.id,
            request_id=attachment.request_id,
            uploader_id=attachment.uploader_id,
            filename=attachment.filename,
            kind=attachment.kind,
            content_hash=attachment.content_hash,
            size_bytes=attachment.size_bytes,
            url=url,
            created_at=attachment.created_at
        )


class LicenseTemplateResponse(BaseModel):
    id: str
    title: str
    terms: LicenseTerms
