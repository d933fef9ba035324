"""Хранилище переговоров: единственный разделяемый изменяемый ресурс.

Каждый вызов открывает собственную сессию, поэтому операция либо целиком
фиксируется, либо откатывается (в том числе при отмене корутины).
Изменения запроса проходят через compare-and-swap по ``version``.
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import StorageError
from app.db.repositories.licensing_repository import (
    LicenseRequestRepository, ThreadMessageRepository, ApprovalRepository, AttachmentRepository
)

if TYPE_CHECKING:
    from app.domains.licensing.entities import ApprovalRecord, Attachment, LicenseRequest, ThreadMessage

logger = logging.getLogger(__name__)


class NegotiationStore:
    """CRUD над запросами, сообщениями, согласованиями и вложениями"""

    def __init__(self, session_factory: async_sessionmaker, timeout: Optional[float] = None):
        self.session_factory = session_factory
        self.timeout = timeout

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            try:
                yield session
            except (SQLAlchemyError, OSError) as e:
                await session.rollback()
                logger.error(f"Store operation failed: {e}")
                raise StorageError(f"Store operation failed: {e}") from e

    async def _run(self, coro):
        if self.timeout is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StorageError(f"Store operation timed out after {self.timeout}s") from e

    async def ping(self) -> None:
        async def op():
            async with self._session() as session:
                await session.execute(text("SELECT 1"))
        await self._run(op())

    # Запросы

    async def create_request(self, request: "LicenseRequest") -> "LicenseRequest":
        async def op():
            async with self._session() as session:
                return await LicenseRequestRepository(session).create(request)
        return await self._run(op())

    async def get_request(self, request_id: uuid.UUID) -> Optional["LicenseRequest"]:
        async def op():
            async with self._session() as session:
                return await LicenseRequestRepository(session).get_by_id(request_id)
        return await self._run(op())

    async def list_requests_for_artwork(self, artwork_id: uuid.UUID) -> List["LicenseRequest"]:
        async def op():
            async with self._session() as session:
                return await LicenseRequestRepository(session).get_by_artwork(artwork_id)
        return await self._run(op())

    async def list_requests_for_party(
        self,
        user_id: uuid.UUID,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List["LicenseRequest"]:
        async def op():
            async with self._session() as session:
                return await LicenseRequestRepository(session).get_by_party(user_id, status, limit, offset)
        return await self._run(op())

    async def count_requests_for_party(self, user_id: uuid.UUID, status: Optional[str] = None) -> int:
        async def op():
            async with self._session() as session:
                return await LicenseRequestRepository(session).count_by_party(user_id, status)
        return await self._run(op())

    async def save_request(self, request: "LicenseRequest", expected_version: int) -> bool:
        """CAS-запись; False означает, что запрос успели изменить"""
        async def op():
            async with self._session() as session:
                return await LicenseRequestRepository(session).compare_and_swap(request, expected_version)

        swapped = await self._run(op())
        if swapped:
            request.version = expected_version + 1
        return swapped

    # Ветка сообщений

    async def add_message(self, message: "ThreadMessage") -> "ThreadMessage":
        async def op():
            async with self._session() as session:
                return await ThreadMessageRepository(session).create(message)
        return await self._run(op())

    async def get_message(self, message_id: uuid.UUID) -> Optional["ThreadMessage"]:
        async def op():
            async with self._session() as session:
                return await ThreadMessageRepository(session).get_by_id(message_id)
        return await self._run(op())

    async def list_messages(self, request_id: uuid.UUID) -> List["ThreadMessage"]:
        async def op():
            async with self._session() as session:
                return await ThreadMessageRepository(session).get_by_request(request_id)
        return await self._run(op())

    # Согласования

    async def add_approval(self, record: "ApprovalRecord") -> "ApprovalRecord":
        async def op():
            async with self._session() as session:
                return await ApprovalRepository(session).create(record)
        return await self._run(op())

    async def list_approvals(self, request_id: uuid.UUID, stage: Optional[str] = None) -> List["ApprovalRecord"]:
        async def op():
            async with self._session() as session:
                return await ApprovalRepository(session).get_by_request(request_id, stage)
        return await self._run(op())

    # Вложения

    async def add_attachment(self, attachment: "Attachment") -> "Attachment":
        async def op():
            async with self._session() as session:
                return await AttachmentRepository(session).create(attachment)
        return await self._run(op())

    async def list_attachments(self, request_id: uuid.UUID) -> List["Attachment"]:
        async def op():
            async with self._session() as session:
                return await AttachmentRepository(session).get_by_request(request_id)
        return await self._run(op())
