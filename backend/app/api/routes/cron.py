"""Scheduled maintenance triggers."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.api.deps import verify_cron_secret
from app.core.db import get_db_session
from app.schemas.push import CleanupCounts, CleanupResponse
from app.services import push_store

router = APIRouter(prefix="/cron", tags=["cron"])


@router.get(
    "/cleanup-expired-subscriptions",
    response_model=CleanupResponse,
    dependencies=[Depends(verify_cron_secret)],
)
def cleanup_expired_subscriptions(
    db_session: Session = Depends(get_db_session),
) -> CleanupResponse:
    """Purge push subscriptions and delivery logs older than the retention window."""
    result = push_store.purge_stale(db_session)
    return CleanupResponse(
        success=True,
        cleaned_up=CleanupCounts(
            push_subscriptions=result.push_subscriptions,
            notification_logs=result.notification_logs,
        ),
        timestamp=datetime.now(UTC),
    )
