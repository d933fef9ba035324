from app.db.repositories.licensing_repository import (
    LicenseRequestRepository, ThreadMessageRepository, ApprovalRepository, AttachmentRepository
)

__all__ = [
    "LicenseRequestRepository",
    "ThreadMessageRepository",
    "ApprovalRepository",
    "AttachmentRepository"
]
