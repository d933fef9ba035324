from fastapi import APIRouter, Depends, HTTPException, status, File, Form, Query, UploadFile
from fastapi.responses import Response
from typing import Optional, List
import mimetypes
import uuid

from app.api.deps import (
    get_attachment_service, get_dispatcher, get_draft_service, get_engine,
    get_recorder, get_tracker
)
from app.core.auth import get_current_user_id
from app.core.config import settings
from app.core.exceptions import (
    Conflict, Forbidden, LicensingError, NotFound, StorageError, ValidationError
)
from app.core.security import verify_file_token
from app.domains.licensing.entities import RequestStatus
from app.domains.licensing.events import EventDispatcher
from app.domains.licensing.schemas import (
    AcceptPatchRequest, ApprovalCreate, ApprovalListResponse, ApprovalResponse,
    AttachmentResponse, DraftResponse, ExecutionResponse, LicenseRequestCreate,
    LicenseRequestListResponse, LicenseRequestResponse, LicenseTemplateResponse,
    PatchPreviewResponse, RequestDetailResponse, StatusUpdateRequest, TermDiffResponse,
    ThreadMessageCreate, ThreadMessageResponse, WorkingTermsResponse
)
from app.domains.licensing.services import (
    ApprovalTracker, AttachmentService, ContractDraftService, ExecutionRecorder, NegotiationEngine
)
from app.domains.licensing.templates import DEFAULT_LICENSE_TERMS, LICENSE_TEMPLATES, get_template
from app.infrastructure.storage import LocalObjectStorage

router = APIRouter(prefix="/licensing", tags=["licensing"])

_STATUS_CODES = {
    NotFound: status.HTTP_404_NOT_FOUND,
    Forbidden: status.HTTP_403_FORBIDDEN,
    Conflict: status.HTTP_409_CONFLICT,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    StorageError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def to_http_exception(error: LicensingError) -> HTTPException:
    """Преобразование доменной ошибки в HTTP-ответ"""
    for error_type, status_code in _STATUS_CODES.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.message or str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))


@router.get("/templates", response_model=List[LicenseTemplateResponse])
async def list_templates():
    """Готовые шаблоны условий"""
    return [
        LicenseTemplateResponse(id=t.id, title=t.title, terms=t.terms)
        for t in LICENSE_TEMPLATES
    ]


@router.post("/requests", response_model=LicenseRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_request(
    request_data: LicenseRequestCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: NegotiationEngine = Depends(get_engine),
    dispatcher: EventDispatcher = Depends(get_dispatcher)
):
    """Создание запроса лицензии от имени текущего пользователя"""
    try:
        terms = request_data.requested
        if terms is None and request_data.template_id:
            terms = get_template(request_data.template_id).terms
        elif terms is None:
            terms = DEFAULT_LICENSE_TERMS

        outcome = await engine.open_request(
            request_data.artwork_id, user_id, request_data.owner_id, terms
        )
    except LicensingError as e:
        raise to_http_exception(e)

    await dispatcher.dispatch(outcome.events)
    return LicenseRequestResponse.from_entity(outcome.request)


@router.get("/requests", response_model=LicenseRequestListResponse)
async def list_my_requests(
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: NegotiationEngine = Depends(get_engine)
):
    """Запросы, где текущий пользователь - заявитель или владелец"""
    offset = (page - 1) * per_page
    try:
        requests = await engine.list_for_party(user_id, status_filter, limit=per_page, offset=offset)
        total = await engine.count_for_party(user_id, status_filter)
    except LicensingError as e:
        raise to_http_exception(e)

    return LicenseRequestListResponse(
        requests=[LicenseRequestResponse.from_entity(r) for r in requests],
        total=total
    )


@router.get("/artworks/{artwork_id}/requests", response_model=LicenseRequestListResponse)
async def list_artwork_requests(
    artwork_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: NegotiationEngine = Depends(get_engine)
):
    """Запросы по произведению, видимые текущему пользователю"""
    try:
        requests = await engine.list_for_artwork(artwork_id)
    except LicensingError as e:
        raise to_http_exception(e)

    visible = [r for r in requests if r.is_party(user_id)]
    return LicenseRequestListResponse(
        requests=[LicenseRequestResponse.from_entity(r) for r in visible],
        total=len(visible)
    )


@router.get("/requests/{request_id}", response_model=RequestDetailResponse)
async def get_request(
    request_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: NegotiationEngine = Depends(get_engine)
):
    """Запрос вместе с веткой сообщений"""
    try:
        request = await engine.ensure_party(request_id, user_id)
        messages = await engine.get_thread(request_id)
    except LicensingError as e:
        raise to_http_exception(e)

    return RequestDetailResponse(
        request=LicenseRequestResponse.from_entity(request),
        messages=[ThreadMessageResponse.from_entity(m) for m in messages]
    )


@router.get("/requests/{request_id}/working-terms", response_model=WorkingTermsResponse)
async def get_working_terms(
    request_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: NegotiationEngine = Depends(get_engine)
):
    """Текущие рабочие (или принятые) условия"""
    try:
        request = await engine.ensure_party(request_id, user_id)
    except LicensingError as e:
        raise to_http_exception(e)

    return WorkingTermsResponse(
        request_id=request.id,
        status=request.status,
        is_final=request.accepted_terms is not None,
        terms=request.working_terms
    )


@router.get("/requests/{request_id}/messages", response_model=List[ThreadMessageResponse])
async def list_messages(
    request_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: NegotiationEngine = Depends(get_engine)
):
    try:
        await engine.ensure_party(request_id, user_id)
        messages = await engine.get_thread(request_id)
    except LicensingError as e:
        raise to_http_exception(e)

    return [ThreadMessageResponse.from_entity(m) for m in messages]


@router.post(
    "/requests/{request_id}/messages",
    response_model=ThreadMessageResponse,
    status_code=status.HTTP_201_CREATED
)
async def post_message(
    request_id: uuid.UUID,
    message_data: ThreadMessageCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: NegotiationEngine = Depends(get_engine),
    dispatcher: EventDispatcher = Depends(get_dispatcher)
):
    """Сообщение или встречное предложение в ветке"""
    try:
        outcome = await engine.post_message(request_id, user_id, message_data.body, message_data.patch)
    except LicensingError as e:
        raise to_http_exception(e)

    await dispatcher.dispatch(outcome.events)
    return ThreadMessageResponse.from_entity(outcome.message)


@router.post("/requests/{request_id}/patches/preview", response_model=PatchPreviewResponse)
async def preview_patch(
    request_id: uuid.UUID,
    patch_data: AcceptPatchRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: NegotiationEngine = Depends(get_engine)
):
    """Diff текущих условий и условий после патча"""
    try:
        await engine.ensure_party(request_id, user_id)
        patch = patch_data.patch
        if patch is None:
            patch = (await engine.get_message(request_id, patch_data.message_id)).patch
        changes = await engine.preview_patch(request_id, patch)
    except LicensingError as e:
        raise to_http_exception(e)

    return PatchPreviewResponse(
        request_id=request_id,
        changes=[TermDiffResponse.from_diff(d) for d in changes]
    )


@router.post("/requests/{request_id}/patches", response_model=LicenseRequestResponse)
async def accept_patch(
    request_id: uuid.UUID,
    patch_data: AcceptPatchRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: NegotiationEngine = Depends(get_engine),
    dispatcher: EventDispatcher = Depends(get_dispatcher)
):
    """Принятие патча: явного или из сообщения ветки"""
    try:
        await engine.ensure_party(request_id, user_id)

        patch = patch_data.patch
        if patch is None:
            message = await engine.get_message(request_id, patch_data.message_id)
            if message.patch is None:
                raise ValidationError("Message does not carry a terms patch")
            patch = message.patch

        outcome = await engine.accept_patch(request_id, patch)
    except LicensingError as e:
        raise to_http_exception(e)

    await dispatcher.dispatch(outcome.events)
    return LicenseRequestResponse.from_entity(outcome.request)


@router.post("/requests/{request_id}/accept", response_model=LicenseRequestResponse)
async def accept_offer(
    request_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: NegotiationEngine = Depends(get_engine),
    dispatcher: EventDispatcher = Depends(get_dispatcher)
):
    """Принятие оффера владельцем"""
    try:
        request = await engine.get_request(request_id)
        if request.owner_id != user_id:
            raise Forbidden("Only the owner can accept the offer")

        outcome = await engine.accept_offer(request_id)
    except LicensingError as e:
        raise to_http_exception(e)

    await dispatcher.dispatch(outcome.events)
    return LicenseRequestResponse.from_entity(outcome.request)


@router.post("/requests/{request_id}/status", response_model=LicenseRequestResponse)
async def update_status(
    request_id: uuid.UUID,
    status_data: StatusUpdateRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: NegotiationEngine = Depends(get_engine),
    dispatcher: EventDispatcher = Depends(get_dispatcher)
):
    """Отклонение (владелец) или отзыв (заявитель)"""
    try:
        request = await engine.ensure_party(request_id, user_id)

        if status_data.status == RequestStatus.DECLINED and user_id != request.owner_id:
            raise Forbidden("Only the owner can decline a request")
        if status_data.status == RequestStatus.WITHDRAWN and user_id != request.requester_id:
            raise Forbidden("Only the requester can withdraw a request")

        outcome = await engine.set_status(request_id, status_data.status)
    except LicensingError as e:
        raise to_http_exception(e)

    await dispatcher.dispatch(outcome.events)
    return LicenseRequestResponse.from_entity(outcome.request)


@router.get("/requests/{request_id}/approvals", response_model=ApprovalListResponse)
async def list_approvals(
    request_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: NegotiationEngine = Depends(get_engine),
    tracker: ApprovalTracker = Depends(get_tracker)
):
    """Журнал согласований и текущее решение по этапам"""
    try:
        await engine.ensure_party(request_id, user_id)
        records = await tracker.list_approvals(request_id)
        current = await tracker.summary(request_id)
    except LicensingError as e:
        raise to_http_exception(e)

    return ApprovalListResponse(
        request_id=request_id,
        records=[ApprovalResponse.from_entity(r) for r in records],
        current=current,
        all_approved=tracker.is_fully_approved(current)
    )


@router.post(
    "/requests/{request_id}/approvals",
    response_model=ApprovalResponse,
    status_code=status.HTTP_201_CREATED
)
async def record_approval(
    request_id: uuid.UUID,
    approval_data: ApprovalCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: NegotiationEngine = Depends(get_engine),
    tracker: ApprovalTracker = Depends(get_tracker),
    dispatcher: EventDispatcher = Depends(get_dispatcher)
):
    try:
        await engine.ensure_party(request_id, user_id)
        outcome = await tracker.record_decision(
            request_id, approval_data.stage, approval_data.decision, user_id, approval_data.note
        )
    except LicensingError as e:
        raise to_http_exception(e)

    await dispatcher.dispatch(outcome.events)
    return ApprovalResponse.from_entity(outcome.record)


@router.post("/requests/{request_id}/execution", response_model=ExecutionResponse)
async def upload_executed_document(
    request_id: uuid.UUID,
    file: UploadFile = File(...),
    signer_name: str = Form(...),
    signer_title: Optional[str] = Form(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: NegotiationEngine = Depends(get_engine),
    recorder: ExecutionRecorder = Depends(get_recorder),
    dispatcher: EventDispatcher = Depends(get_dispatcher)
):
    """Загрузка подписанного PDF"""
    if file.content_type != "application/pdf":
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Please upload a PDF"
        )

    data = await file.read()

    try:
        await engine.ensure_party(request_id, user_id)
        receipt = await recorder.record_execution(
            request_id, data, signer_name, signer_title, content_type=file.content_type
        )
    except LicensingError as e:
        raise to_http_exception(e)

    await dispatcher.dispatch(receipt.events)
    return ExecutionResponse(
        request_id=request_id,
        hash=receipt.hash,
        stored_ref=receipt.stored_ref,
        url=receipt.url,
        signed_at=receipt.request.signed_at,
        signer_name=receipt.request.signer_name,
        signer_title=receipt.request.signer_title
    )


@router.post("/requests/{request_id}/draft", response_model=DraftResponse)
async def generate_draft(
    request_id: uuid.UUID,
    fmt: str = Query("html", pattern="^(html|md|txt)$"),
    artwork_title: Optional[str] = Query(None, max_length=255),
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: NegotiationEngine = Depends(get_engine),
    drafts: ContractDraftService = Depends(get_draft_service)
):
    """Черновик договора для предпросмотра перед подписанием"""
    try:
        await engine.ensure_party(request_id, user_id)
        draft = await drafts.generate_draft(request_id, fmt, artwork_title=artwork_title)
    except LicensingError as e:
        raise to_http_exception(e)

    return DraftResponse(
        request_id=request_id,
        path=draft.path,
        url=draft.url,
        content_type=draft.content_type,
        content=draft.content.decode("utf-8")
    )


@router.get("/requests/{request_id}/attachments", response_model=List[AttachmentResponse])
async def list_attachments(
    request_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: NegotiationEngine = Depends(get_engine),
    attachments: AttachmentService = Depends(get_attachment_service)
):
    try:
        await engine.ensure_party(request_id, user_id)
        items = await attachments.list_attachments(request_id)
        return [
            AttachmentResponse.from_entity(a, await attachments.signed_url(a))
            for a in items
        ]
    except LicensingError as e:
        raise to_http_exception(e)


@router.post(
    "/requests/{request_id}/attachments",
    response_model=AttachmentResponse,
    status_code=status.HTTP_201_CREATED
)
async def upload_attachment(
    request_id: uuid.UUID,
    file: UploadFile = File(...),
    kind: Optional[str] = Form(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    attachments: AttachmentService = Depends(get_attachment_service)
):
    data = await file.read()

    try:
        attachment = await attachments.attach(
            request_id,
            user_id,
            file.filename or "attachment.bin",
            data,
            kind=kind,
            content_type=file.content_type or "application/octet-stream"
        )
        url = await attachments.signed_url(attachment)
    except LicensingError as e:
        raise to_http_exception(e)

    return AttachmentResponse.from_entity(attachment, url)


@router.get("/files/{token}")
async def download_file(token: str):
    """Выдача файла из локального хранилища по подписанной ссылке"""
    ref = verify_file_token(token)

    if ref is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired link"
        )

    storage = LocalObjectStorage(settings.upload_dir)
    try:
        data = await storage.get(ref)
    except LicensingError as e:
        raise to_http_exception(e)

    media_type = mimetypes.guess_type(ref)[0] or "application/octet-stream"
    return Response(content=data, media_type=media_type)
