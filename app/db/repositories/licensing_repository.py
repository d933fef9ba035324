from typing import Optional, List, TYPE_CHECKING
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, or_
import uuid

from app.db.models.licensing import (
    LicenseRequest as LicenseRequestModel,
    LicenseThreadMessage as LicenseThreadMessageModel,
    LicenseApproval as LicenseApprovalModel,
    LicenseAttachment as LicenseAttachmentModel
)

if TYPE_CHECKING:
    from app.domains.licensing.entities import LicenseRequest, ThreadMessage, ApprovalRecord, Attachment


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite возвращает naive datetime
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class LicenseRequestRepository:
    """Репозиторий для работы с запросами лицензий"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, request: "LicenseRequest") -> "LicenseRequest":
        """Создание нового запроса"""
        db_request = LicenseRequestModel(
            id=request.id,
            artwork_id=request.artwork_id,
            requester_id=request.requester_id,
            owner_id=request.owner_id,
            requested=request.requested.model_dump(mode="json"),
            status=request.status.value,
            accepted_terms=None,
            version=request.version,
            created_at=request.created_at,
            updated_at=request.updated_at
        )

        self.session.add(db_request)
        await self.session.commit()
        await self.session.refresh(db_request)
        return self._to_domain(db_request)

    async def get_by_id(self, request_id: uuid.UUID) -> Optional["LicenseRequest"]:
        """Получение запроса по ID"""
        result = await self.session.execute(
            select(LicenseRequestModel).where(LicenseRequestModel.id == request_id)
        )
        db_request = result.scalar_one_or_none()
        return self._to_domain(db_request) if db_request else None

    async def get_by_artwork(self, artwork_id: uuid.UUID) -> List["LicenseRequest"]:
        """Запросы по произведению, новые первыми"""
        result = await self.session.execute(
            select(LicenseRequestModel)
            .where(LicenseRequestModel.artwork_id == artwork_id)
            .order_by(LicenseRequestModel.created_at.desc(), LicenseRequestModel.id.desc())
        )
        return [self._to_domain(r) for r in result.scalars().all()]

    async def get_by_party(
        self,
        user_id: uuid.UUID,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List["LicenseRequest"]:
        """Запросы, где пользователь - заявитель или владелец"""
        query = select(LicenseRequestModel).where(
            or_(
                LicenseRequestModel.requester_id == user_id,
                LicenseRequestModel.owner_id == user_id
            )
        )

        if status:
            query = query.where(LicenseRequestModel.status == status)

        result = await self.session.execute(
            query
            .order_by(LicenseRequestModel.updated_at.desc(), LicenseRequestModel.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return [self._to_domain(r) for r in result.scalars().all()]

    async def count_by_party(self, user_id: uuid.UUID, status: Optional[str] = None) -> int:
        """Количество запросов стороны (для пагинации)"""
        query = select(func.count(LicenseRequestModel.id)).where(
            or_(
                LicenseRequestModel.requester_id == user_id,
                LicenseRequestModel.owner_id == user_id
            )
        )

        if status:
            query = query.where(LicenseRequestModel.status == status)

        result = await self.session.execute(query)
        return result.scalar_one()

    async def compare_and_swap(self, request: "LicenseRequest", expected_version: int) -> bool:
        """Запись состояния, только если версия в БД не изменилась"""
        stmt = (
            update(LicenseRequestModel)
            .where(
                LicenseRequestModel.id == request.id,
                LicenseRequestModel.version == expected_version
            )
            .values(
                requested=request.requested.model_dump(mode="json"),
                status=request.status.value,
                accepted_terms=request.accepted_terms.model_dump(mode="json") if request.accepted_terms else None,
                executed_document_ref=request.executed_document_ref,
                executed_document_hash=request.executed_document_hash,
                signed_at=request.signed_at,
                signer_name=request.signer_name,
                signer_title=request.signer_title,
                updated_at=request.updated_at,
                version=expected_version + 1
            )
        )

        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1

    def _to_domain(self, db_request: LicenseRequestModel) -> "LicenseRequest":
        """Преобразование модели БД в доменную сущность"""
        from app.domains.licensing.entities import LicenseRequest
        from app.domains.licensing.terms import LicenseTerms

        return LicenseRequest(
            id=db_request.id,
            artwork_id=db_request.artwork_id,
            requester_id=db_request.requester_id,
            owner_id=db_request.owner_id,
            requested=LicenseTerms.model_validate(db_request.requested),
            status=db_request.status,
            accepted_terms=(
                LicenseTerms.model_validate(db_request.accepted_terms)
                if db_request.accepted_terms is not None else None
            ),
            executed_document_ref=db_request.executed_document_ref,
            executed_document_hash=db_request.executed_document_hash,
            signed_at=_aware(db_request.signed_at),
            signer_name=db_request.signer_name,
            signer_title=db_request.signer_title,
            version=db_request.version,
            created_at=_aware(db_request.created_at),
            updated_at=_aware(db_request.updated_at)
        )


class ThreadMessageRepository:
    """Репозиторий для сообщений ветки переговоров"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, message: "ThreadMessage") -> "ThreadMessage":
        """Добавление сообщения"""
        db_message = LicenseThreadMessageModel(
            id=message.id,
            request_id=message.request_id,
            author_id=message.author_id,
            body=message.body,
            patch=message.patch.to_json() if message.patch else None,
            created_at=message.created_at
        )

        self.session.add(db_message)
        await self.session.commit()
        await self.session.refresh(db_message)
        return self._to_domain(db_message)

    async def get_by_id(self, message_id: uuid.UUID) -> Optional["ThreadMessage"]:
        result = await self.session.execute(
            select(LicenseThreadMessageModel).where(LicenseThreadMessageModel.id == message_id)
        )
        db_message = result.scalar_one_or_none()
        return self._to_domain(db_message) if db_message else None

    async def get_by_request(self, request_id: uuid.UUID) -> List["ThreadMessage"]:
        """Ветка сообщений в хронологическом порядке"""
        result = await self.session.execute(
            select(LicenseThreadMessageModel)
            .where(LicenseThreadMessageModel.request_id == request_id)
            .order_by(LicenseThreadMessageModel.created_at.asc(), LicenseThreadMessageModel.id.asc())
        )
        return [self._to_domain(m) for m in result.scalars().all()]

    def _to_domain(self, db_message: LicenseThreadMessageModel) -> "ThreadMessage":
        from app.domains.licensing.entities import ThreadMessage
        from app.domains.licensing.terms import LicenseTermsPatch

        return ThreadMessage(
            id=db_message.id,
            request_id=db_message.request_id,
            author_id=db_message.author_id,
            body=db_message.body,
            patch=LicenseTermsPatch.model_validate(db_message.patch) if db_message.patch is not None else None,
            created_at=_aware(db_message.created_at)
        )


class ApprovalRepository:
    """Репозиторий журнала согласований (только добавление)"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, record: "ApprovalRecord") -> "ApprovalRecord":
        db_record = LicenseApprovalModel(
            id=record.id,
            request_id=record.request_id,
            approver_id=record.approver_id,
            stage=record.stage.value,
            decision=record.decision.value,
            note=record.note,
            decided_at=record.decided_at,
            created_at=record.created_at
        )

        self.session.add(db_record)
        await self.session.commit()
        await self.session.refresh(db_record)
        return self._to_domain(db_record)

    async def get_by_request(
        self,
        request_id: uuid.UUID,
        stage: Optional[str] = None
    ) -> List["ApprovalRecord"]:
        """Записи согласований по возрастанию created_at, при равенстве - по id"""
        query = select(LicenseApprovalModel).where(LicenseApprovalModel.request_id == request_id)

        if stage:
            query = query.where(LicenseApprovalModel.stage == stage)

        query = query.order_by(LicenseApprovalModel.created_at.asc(), LicenseApprovalModel.id.asc())
        result = await self.session.execute(query)
        return [self._to_domain(r) for r in result.scalars().all()]

    def _to_domain(self, db_record: LicenseApprovalModel) -> "ApprovalRecord":
        from app.domains.licensing.entities import ApprovalRecord

        return ApprovalRecord(
            id=db_record.id,
            request_id=db_record.request_id,
            approver_id=db_record.approver_id,
            stage=db_record.stage,
            decision=db_record.decision,
            note=db_record.note,
            decided_at=_aware(db_record.decided_at),
            created_at=_aware(db_record.created_at)
        )


class AttachmentRepository:
    """Репозиторий вложений"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, attachment: "Attachment") -> "Attachment":
        db_attachment = LicenseAttachmentModel(
            id=attachment.id,
            request_id=attachment.request_id,
            uploader_id=attachment.uploader_id,
            filename=attachment.filename,
            kind=attachment.kind,
            storage_ref=attachment.storage_ref,
            content_hash=attachment.content_hash,
            size_bytes=attachment.size_bytes,
            created_at=attachment.created_at
        )

        self.session.add(db_attachment)
        await self.session.commit()
        await self.session.refresh(db_attachment)
        return self._to_domain(db_attachment)

    async def get_by_request(self, request_id: uuid.UUID) -> List["Attachment"]:
        result = await self.session.execute(
            select(LicenseAttachmentModel)
            .where(LicenseAttachmentModel.request_id == request_id)
            .order_by(LicenseAttachmentModel.created_at.asc(), LicenseAttachmentModel.id.asc())
        )
        return [self._to_domain(a) for a in result.scalars().all()]

    def _to_domain(self, db_attachment: LicenseAttachmentModel) -> "Attachment":
        from app.domains.licensing.entities import Attachment

        return Attachment(
            id=db_attachment.id,
            request_id=db_attachment.request_id,
            uploader_id=db_attachment.uploader_id,
            filename=db_attachment.filename,
            storage_ref=db_attachment.storage_ref,
            content_hash=db_attachment.content_hash,
            size_bytes=db_attachment.size_bytes,
            kind=db_attachment.kind,
            created_at=_aware(db_attachment.created_at)
        )
