from app.db.models.licensing import (
    LicenseRequest, LicenseThreadMessage, LicenseApproval, LicenseAttachment
)

__all__ = [
    "LicenseRequest",
    "LicenseThreadMessage",
    "LicenseApproval",
    "LicenseAttachment"
]
