from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from typing import Optional
import json
import logging
import uuid

from app.api.deps import get_engine
from app.api.ws.manager import manager
from app.core.auth import user_id_from_token
from app.core.exceptions import LicensingError
from app.domains.licensing.events import message_payload, request_payload
from app.domains.licensing.services import NegotiationEngine

logger = logging.getLogger(__name__)

router = APIRouter()


async def _sync_state(engine: NegotiationEngine, request_id: uuid.UUID) -> dict:
    """Полное состояние запроса для сверки после пропущенных событий"""
    request = await engine.get_request(request_id)
    messages = await engine.get_thread(request_id)
    return {
        "request": request_payload(request),
        "messages": [message_payload(m) for m in messages]
    }


@router.websocket("/licensing/requests/{request_id}/ws")
async def negotiation_ws(
    websocket: WebSocket,
    request_id: uuid.UUID,
    token: Optional[str] = Query(None),
    engine: NegotiationEngine = Depends(get_engine)
):
    """Подписка стороны на события запроса"""
    user_id = user_id_from_token(token) if token else None
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        await engine.ensure_party(request_id, user_id)
    except LicensingError as e:
        logger.info(f"Rejected subscription of {user_id} to {request_id}: {e}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    topic = str(request_id)
    await manager.connect(websocket, topic, str(user_id))

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_text(json.dumps({"type": "error", "data": {"detail": "Invalid JSON"}}))
                continue

            message_type = message.get("type") if isinstance(message, dict) else None

            if message_type == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))

            elif message_type == "sync_request":
                try:
                    state = await _sync_state(engine, request_id)
                except LicensingError as e:
                    await websocket.send_text(json.dumps({"type": "error", "data": {"detail": str(e)}}))
                    continue

                await websocket.send_text(json.dumps({"type": "sync_response", "data": state}, default=str))
                logger.info(f"Sent sync response to user {user_id} for request {request_id}")

    except WebSocketDisconnect:
        logger.info(f"User {user_id} left request {request_id}")
    finally:
        manager.disconnect(topic, str(user_id))
