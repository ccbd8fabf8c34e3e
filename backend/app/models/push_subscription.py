from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.models.thread import new_id


class PushSubscriptionBase(SQLModel):
    """Browser push registration fields."""

    user_id: str = Field(index=True, max_length=64)
    endpoint: str = Field(max_length=2048)
    p256dh: str = Field(max_length=255)
    auth: str = Field(max_length=255)


class PushSubscription(PushSubscriptionBase, table=True):
    """
    One Web Push registration per (user, endpoint).
    An empty thread_ids list means the subscription covers every thread.
    """

    __tablename__ = "push_subscription"
    __table_args__ = (UniqueConstraint("user_id", "endpoint"),)

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    thread_ids: list[str] = Field(default_factory=list, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC), index=True)

    def covers(self, thread_id: str) -> bool:
        return not self.thread_ids or thread_id in self.thread_ids

    def subscription_info(self) -> dict:
        """Shape expected by the Web Push encryption step."""
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    EXPIRED = "expired"
    FAILED = "failed"


class NotificationLog(SQLModel, table=True):
    """Outcome of a single push delivery attempt."""

    __tablename__ = "notification_log"

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=64)
    message_id: str = Field(index=True, max_length=32)
    endpoint: str = Field(max_length=2048)
    status: DeliveryStatus
    detail: str | None = Field(default=None, max_length=255)
    sent_at: datetime = Field(default_factory=lambda: datetime.now(UTC), index=True)
