from tribepick.api.health import router as health_router
from tribepick.api.sessions import router as sessions_router

__all__ = [
    "health_router",
    "sessions_router",
]
