"""Push subscription store - registration lifecycle and retention sweep."""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.core.config import settings
from app.core.exceptions import InvalidSubscription
from app.core.logger import logger
from app.models.push_subscription import (
    DeliveryStatus,
    NotificationLog,
    PushSubscription,
)
from app.schemas.push import SubscriptionPayload


@dataclass
class CleanupResult:
    push_subscriptions: int
    notification_logs: int


def validate_subscription(payload: SubscriptionPayload | dict | None) -> SubscriptionPayload:
    """Reject registrations that cannot be used to encrypt a push payload."""
    if payload is None:
        raise InvalidSubscription("Missing required field: subscription")
    if isinstance(payload, dict):
        try:
            payload = SubscriptionPayload.model_validate(payload)
        except ValidationError:
            raise InvalidSubscription("Invalid subscription object")

    if not payload.endpoint or not payload.endpoint.strip():
        raise InvalidSubscription("Invalid subscription object")
    if payload.keys is None or not payload.keys.p256dh or not payload.keys.auth:
        raise InvalidSubscription("Missing subscription keys")
    return payload


def _find(session: Session, user_id: str, endpoint: str) -> PushSubscription | None:
    return session.exec(
        select(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.endpoint == endpoint,
        )
    ).first()


def subscribe(
    session: Session,
    user_id: str,
    payload: SubscriptionPayload | dict | None,
    thread_ids: list[str] | None = None,
) -> PushSubscription:
    """Create or refresh the subscription for (user_id, endpoint)."""
    payload = validate_subscription(payload)
    endpoint = payload.endpoint.strip()
    scope = sorted(set(thread_ids or []))
    now = datetime.now(UTC)

    for _ in range(2):
        subscription = _find(session, user_id, endpoint)
        if subscription is None:
            subscription = PushSubscription(
                user_id=user_id,
                endpoint=endpoint,
                p256dh=payload.keys.p256dh,
                auth=payload.keys.auth,
                thread_ids=scope,
                created_at=now,
                updated_at=now,
            )
        else:
            subscription.p256dh = payload.keys.p256dh
            subscription.auth = payload.keys.auth
            subscription.thread_ids = scope
            subscription.updated_at = now

        session.add(subscription)
        try:
            session.commit()
        except IntegrityError:
            # Lost an insert race for the same endpoint; retry as an update
            session.rollback()
            continue

        session.refresh(subscription)
        return subscription

    raise InvalidSubscription("Subscription could not be saved, please retry")


def unsubscribe(session: Session, user_id: str) -> int:
    """Remove every subscription the user holds."""
    result = session.execute(
        delete(PushSubscription).where(PushSubscription.user_id == user_id)
    )
    session.commit()
    return result.rowcount


def subscriptions_for(
    session: Session, user_id: str, thread_id: str
) -> list[PushSubscription]:
    """Subscriptions of user_id that cover thread_id (unscoped ones cover all)."""
    subscriptions = session.exec(
        select(PushSubscription).where(PushSubscription.user_id == user_id)
    ).all()
    return [s for s in subscriptions if s.covers(thread_id)]


def touch(session: Session, subscription_id: str) -> None:
    subscription = session.get(PushSubscription, subscription_id)
    if subscription:
        subscription.updated_at = datetime.now(UTC)
        session.add(subscription)
        session.commit()


def delete_subscription(session: Session, subscription_id: str) -> bool:
    result = session.execute(
        delete(PushSubscription).where(PushSubscription.id == subscription_id)
    )
    session.commit()
    return result.rowcount > 0


def record_delivery(
    session: Session,
    user_id: str,
    message_id: str,
    endpoint: str,
    status: DeliveryStatus,
    detail: str | None = None,
) -> None:
    session.add(
        NotificationLog(
            user_id=user_id,
            message_id=message_id,
            endpoint=endpoint,
            status=status,
            detail=detail[:255] if detail else None,
        )
    )
    session.commit()


def purge_stale(session: Session, older_than: datetime | None = None) -> CleanupResult:
    """Delete subscriptions and delivery logs not touched within the retention window."""
    if older_than is None:
        older_than = datetime.now(UTC) - timedelta(
            days=settings.PUSH_SUBSCRIPTION_RETENTION_DAYS
        )
    elif older_than.tzinfo is None:
        # Stored timestamps are UTC
        older_than = older_than.replace(tzinfo=UTC)

    subscriptions = session.execute(
        delete(PushSubscription).where(PushSubscription.updated_at < older_than)
    )
    logs = session.execute(
        delete(NotificationLog).where(NotificationLog.sent_at < older_than)
    )
    session.commit()

    result = CleanupResult(
        push_subscriptions=subscriptions.rowcount,
        notification_logs=logs.rowcount,
    )
    logger.info(
        f"Cleanup removed {result.push_subscriptions} push subscriptions "
        f"and {result.notification_logs} notification logs"
    )
    return result
