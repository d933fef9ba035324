from fastapi import WebSocket, WebSocketDisconnect
from typing import Dict, Optional
import json
import logging

from app.domains.licensing.events import DomainEvent

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Realtime-нотификатор: websocket-подписчики по топику запроса"""

    def __init__(self):
        # Хранилище активных соединений: {request_id: {user_id: websocket}}
        self.active_connections: Dict[str, Dict[str, WebSocket]] = {}

    async def connect(self, websocket: WebSocket, request_id: str, user_id: str):
        """Подписка стороны на события запроса"""
        await websocket.accept()

        if request_id not in self.active_connections:
            self.active_connections[request_id] = {}

        self.active_connections[request_id][user_id] = websocket
        logger.info(f"User {user_id} subscribed to license request {request_id}")

        await websocket.send_text(json.dumps({
            "type": "connected",
            "data": {
                "request_id": request_id,
                "user_id": user_id,
                "subscribers": list(self.active_connections[request_id].keys())
            }
        }))

    def disconnect(self, request_id: str, user_id: str):
        """Отписка пользователя"""
        if request_id in self.active_connections:
            self.active_connections[request_id].pop(user_id, None)

            # Если подписчиков не осталось, удаляем топик
            if not self.active_connections[request_id]:
                del self.active_connections[request_id]

        logger.info(f"User {user_id} unsubscribed from license request {request_id}")

    async def broadcast_to_request(self, request_id: str, message: dict, exclude_user: Optional[str] = None) -> int:
        """Рассылка сообщения всем подписчикам запроса"""
        if request_id not in self.active_connections:
            return 0

        message_json = json.dumps(message, default=str)
        disconnected_users = []
        sent = 0

        for user_id, websocket in list(self.active_connections[request_id].items()):
            if exclude_user and user_id == exclude_user:
                continue

            try:
                await websocket.send_text(message_json)
                sent += 1
            except (RuntimeError, OSError, WebSocketDisconnect) as e:
                logger.warning(f"Dropping subscriber {user_id} of {request_id}: {e}")
                disconnected_users.append(user_id)

        # Удаляем отключенных пользователей
        for user_id in disconnected_users:
            self.disconnect(request_id, user_id)

        return sent

    async def publish(self, event: DomainEvent) -> None:
        """Публикация доменного события в топик запроса"""
        await self.broadcast_to_request(str(event.topic), event.to_message())


manager = ConnectionManager()
