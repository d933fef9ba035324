from app.api.http.health import router as health_router
from app.api.http.licensing import router as licensing_router

__all__ = [
    "health_router",
    "licensing_router"
]
