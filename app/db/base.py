import uuid

from sqlalchemy import Column, DateTime, UUID
from sqlalchemy.sql import func

from app.core.db import Base


class BaseModel(Base):
    """Общие колонки: идентификатор и время создания"""
    __abstract__ = True

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
