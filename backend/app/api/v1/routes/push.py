"""Push subscription routes."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session

from app.core.config import settings
from app.core.db import get_db_session
from app.core.logger import logger
from app.schemas.push import (
    PushResponse,
    SubscribeRequest,
    UnsubscribeRequest,
    VapidKeyResponse,
)
from app.services import push_store

router = APIRouter(prefix="/push", tags=["push"])


@router.post("/subscribe", response_model=PushResponse)
def subscribe(
    subscribe_request: SubscribeRequest,
    db_session: Session = Depends(get_db_session),
) -> PushResponse:
    """Register (or refresh) a browser push subscription."""
    push_store.subscribe(
        db_session,
        subscribe_request.user_id,
        subscribe_request.subscription,
        subscribe_request.thread_ids,
    )
    logger.info(
        "Push subscription registered", extra={"user_id": subscribe_request.user_id}
    )
    return PushResponse(message="Successfully subscribed to push notifications")


@router.post("/unsubscribe", response_model=PushResponse)
def unsubscribe(
    unsubscribe_request: UnsubscribeRequest,
    db_session: Session = Depends(get_db_session),
) -> PushResponse:
    """Drop every subscription of the user; succeeds when there were none."""
    removed = push_store.unsubscribe(db_session, unsubscribe_request.user_id)
    logger.info(
        f"Removed {removed} push subscriptions",
        extra={"user_id": unsubscribe_request.user_id},
    )
    return PushResponse(message="Successfully unsubscribed from push notifications")


@router.get("/vapid-public-key", response_model=VapidKeyResponse)
def get_vapid_public_key() -> VapidKeyResponse:
    """Application server key the browser needs for pushManager.subscribe()."""
    if not settings.VAPID_PUBLIC_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Push notifications are not configured",
        )
    return VapidKeyResponse(public_key=settings.VAPID_PUBLIC_KEY)
