from sqlalchemy import Column, String, Text, Integer, ForeignKey, UUID, DateTime, JSON, Index
from sqlalchemy.orm import relationship

from app.db.base import BaseModel


class LicenseRequest(BaseModel):
    __tablename__ = "license_requests"

    artwork_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    requester_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    owner_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    requested = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, default="open")
    accepted_terms = Column(JSON, nullable=True)

    # Запись об исполнении
    executed_document_ref = Column(String(1024), nullable=True)
    executed_document_hash = Column(String(64), nullable=True)
    signed_at = Column(DateTime(timezone=True), nullable=True)
    signer_name = Column(String(255), nullable=True)
    signer_title = Column(String(255), nullable=True)

    # Версия для оптимистичной блокировки
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    messages = relationship("LicenseThreadMessage", back_populates="request")
    approvals = relationship("LicenseApproval", back_populates="request")
    attachments = relationship("LicenseAttachment", back_populates="request")


class LicenseThreadMessage(BaseModel):
    __tablename__ = "license_thread_messages"

    request_id = Column(UUID(as_uuid=True), ForeignKey("license_requests.id"), nullable=False)
    author_id = Column(UUID(as_uuid=True), nullable=False)
    body = Column(Text, nullable=True)
    patch = Column(JSON, nullable=True)

    # Relationships
    request = relationship("LicenseRequest", back_populates="messages")

    __table_args__ = (Index("ix_license_thread_messages_request_created", "request_id", "created_at"),)


class LicenseApproval(BaseModel):
    __tablename__ = "license_approvals"

    request_id = Column(UUID(as_uuid=True), ForeignKey("license_requests.id"), nullable=False)
    approver_id = Column(UUID(as_uuid=True), nullable=False)
    stage = Column(String(20), nullable=False)
    decision = Column(String(20), nullable=False, default="pending")
    note = Column(Text, nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    request = relationship("LicenseRequest", back_populates="approvals")

    __table_args__ = (Index("ix_license_approvals_request_stage", "request_id", "stage", "created_at"),)


class LicenseAttachment(BaseModel):
    __tablename__ = "license_attachments"

    request_id = Column(UUID(as_uuid=True), ForeignKey("license_requests.id"), nullable=False, index=True)
    uploader_id = Column(UUID(as_uuid=True), nullable=False)
    filename = Column(String(255), nullable=False)
    kind = Column(String(50), nullable=True)
    storage_ref = Column(String(1024), nullable=False)
    content_hash = Column(String(64), nullable=False)
    size_bytes = Column(Integer, nullable=False)

    # Relationships
    request = relationship("LicenseRequest", back_populates="attachments")
