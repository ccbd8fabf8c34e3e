from fastapi import APIRouter

from app.api.v1.routes import (
    messages_router,
    push_router,
    realtime_router,
    threads_router,
)
from app.core.config import settings

api_v1_router = APIRouter(prefix=settings.API_V1_STR)
api_v1_router.include_router(threads_router)
api_v1_router.include_router(messages_router)
api_v1_router.include_router(push_router)
api_v1_router.include_router(realtime_router)

__all__ = ["api_v1_router"]
