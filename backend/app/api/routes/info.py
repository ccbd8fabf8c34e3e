"""Service metadata and liveness."""

from fastapi import APIRouter

from app.core.config import settings

router = APIRouter(tags=["info"])


@router.get("/info")
def get_info():
    """Name, version and which optional integrations are active."""
    return {
        "name": settings.PROJECT_NAME,
        "version": settings.PROJECT_VERSION,
        "description": settings.DESCRIPTION,
        "realtime_backend": settings.REALTIME_BACKEND,
        "push_enabled": bool(settings.VAPID_PUBLIC_KEY and settings.VAPID_PRIVATE_KEY),
    }


@router.get("/health")
def health_check():
    return {"status": "ok"}
