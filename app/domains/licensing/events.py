"""События переговоров и их доставка.

Движок не знает о транспорте: мутации возвращают новое состояние вместе со
списком событий, а ``EventDispatcher`` передает их нотификатору. Доставка
best-effort: клиент, пропустивший событие, перечитывает запрос и ветку.
"""
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Protocol

from app.core.exceptions import TransportError
from app.domains.licensing.entities import ApprovalRecord, LicenseRequest, ThreadMessage

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    MESSAGE_INSERTED = "message_inserted"
    APPROVAL_UPSERTED = "approval_upserted"
    REQUEST_UPDATED = "request_updated"


@dataclass(frozen=True)
class DomainEvent:
    """Событие для публикации в топик запроса"""
    topic: uuid.UUID
    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> Dict[str, Any]:
        return {"type": self.type.value, "topic": str(self.topic), "data": self.data}


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def request_payload(request: LicenseRequest) -> Dict[str, Any]:
    return {
        "id": str(request.id),
        "artwork_id": str(request.artwork_id),
        "requester_id": str(request.requester_id),
        "owner_id": str(request.owner_id),
        "status": request.status.value,
        "requested": request.requested.model_dump(mode="json"),
        "accepted_terms": request.accepted_terms.model_dump(mode="json") if request.accepted_terms else None,
        "executed_document_hash": request.executed_document_hash,
        "signed_at": _iso(request.signed_at),
        "version": request.version,
        "updated_at": _iso(request.updated_at),
    }


def message_payload(message: ThreadMessage) -> Dict[str, Any]:
    return {
        "id": str(message.id),
        "request_id": str(message.request_id),
        "author_id": str(message.author_id),
        "body": message.body,
        "patch": message.patch.to_json() if message.patch else None,
        "created_at": _iso(message.created_at),
    }


def approval_payload(record: ApprovalRecord) -> Dict[str, Any]:
    return {
        "id": str(record.id),
        "request_id": str(record.request_id),
        "approver_id": str(record.approver_id),
        "stage": record.stage.value,
        "decision": record.decision.value,
        "note": record.note,
        "decided_at": _iso(record.decided_at),
        "created_at": _iso(record.created_at),
    }


def request_updated(request: LicenseRequest) -> DomainEvent:
    return DomainEvent(request.id, EventType.REQUEST_UPDATED, request_payload(request))


def message_inserted(message: ThreadMessage) -> DomainEvent:
    return DomainEvent(message.request_id, EventType.MESSAGE_INSERTED, message_payload(message))


def approval_upserted(record: ApprovalRecord) -> DomainEvent:
    return DomainEvent(record.request_id, EventType.APPROVAL_UPSERTED, approval_payload(record))


class Notifier(Protocol):
    """Граница realtime-доставки"""

    async def publish(self, event: DomainEvent) -> None:
        ...


class EventDispatcher:
    """Доставка событий нотификатору без влияния на результат мутации"""

    def __init__(self, notifier: Optional[Notifier] = None):
        self.notifier = notifier

    async def dispatch(self, events: Iterable[DomainEvent]) -> int:
        """Публикация событий; возвращает число доставленных"""
        if self.notifier is None:
            return 0

        delivered = 0
        for event in events:
            try:
                await self.notifier.publish(event)
                delivered += 1
            except TransportError as e:
                logger.warning(f"Realtime delivery of {event.type.value} to {event.topic} failed: {e}")
        return delivered
