from fastapi import APIRouter, Depends
import logging

from app.api.deps import get_store
from app.api.ws.manager import manager
from app.core.exceptions import StorageError
from app.infrastructure.store import NegotiationStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health(store: NegotiationStore = Depends(get_store)):
    """Проверка доступности сервиса и базы данных"""
    database = "ok"
    try:
        await store.ping()
    except StorageError as e:
        logger.warning(f"Health check: database unavailable: {e}")
        database = "unavailable"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "realtime_topics": len(manager.active_connections)
    }
