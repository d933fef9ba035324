from app.domains.licensing.terms import (
    LicenseTerms, LicenseTermsPatch, Exclusivity, Fee, TermDiff,
    diff_terms, merge_terms, parse_terms, parse_patch
)
from app.domains.licensing.entities import (
    LicenseRequest, ThreadMessage, ApprovalRecord, Attachment,
    RequestStatus, ApprovalStage, ApprovalDecision
)
from app.domains.licensing.events import DomainEvent, EventType, EventDispatcher
from app.domains.licensing.services import (
    NegotiationEngine, ApprovalTracker, ExecutionRecorder, ContractDraftService,
    AttachmentService, RequestLocks
)

__all__ = [
    "LicenseTerms", "LicenseTermsPatch", "Exclusivity", "Fee", "TermDiff",
    "diff_terms", "merge_terms", "parse_terms", "parse_patch",
    "LicenseRequest", "ThreadMessage", "ApprovalRecord", "Attachment",
    "RequestStatus", "ApprovalStage", "ApprovalDecision",
    "DomainEvent", "EventType", "EventDispatcher",
    "NegotiationEngine", "ApprovalTracker", "ExecutionRecorder", "ContractDraftService",
    "AttachmentService", "RequestLocks"
]
