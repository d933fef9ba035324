from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from app.api.http.health import router as health_router
from app.api.http.licensing import router as licensing_router
from app.api.ws.negotiation import router as websocket_router
from app.core.config import settings
from app.core.db import create_tables

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.create_tables_on_startup:
        await create_tables()
        logger.info("Database tables are ready")
    yield


app = FastAPI(
    title="ArtLicensing",
    description="Согласование условий лицензирования произведений между заявителем и владельцем",
    version="1.0.0",
    lifespan=lifespan
)

# Настройка CORS для работы с frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # В продакшене указать конкретные домены
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Подключаем роутеры
app.include_router(health_router)
app.include_router(licensing_router)
app.include_router(websocket_router)


@app.get("/")
async def root():
    """Корневой эндпоинт"""
    return {
        "message": "ArtLicensing API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }
