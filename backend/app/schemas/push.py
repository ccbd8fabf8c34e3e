from datetime import datetime

from pydantic import BaseModel, Field

from app.schemas.messages import RequestModel


class SubscriptionKeys(BaseModel):
    p256dh: str = ""
    auth: str = ""


class SubscriptionPayload(BaseModel):
    """PushSubscription.toJSON() as produced by the browser."""

    endpoint: str = ""
    keys: SubscriptionKeys | None = None


class SubscribeRequest(RequestModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    subscription: SubscriptionPayload | None = None
    thread_ids: list[str] | None = None


class UnsubscribeRequest(RequestModel):
    # Unsubscribing always succeeds, even for an unknown or empty id
    user_id: str = Field(..., max_length=64)


class PushResponse(BaseModel):
    message: str


class VapidKeyResponse(BaseModel):
    public_key: str


class NotificationAction(BaseModel):
    action: str
    title: str


class NotificationData(BaseModel):
    url: str
    type: str
    id: str


class PushPayload(BaseModel):
    """JSON body the service worker turns into a system notification."""

    title: str
    body: str
    icon: str
    tag: str
    data: NotificationData
    actions: list[NotificationAction] = []
    requireInteraction: bool = False
    silent: bool = False


class CleanupCounts(BaseModel):
    push_subscriptions: int
    notification_logs: int


class CleanupResponse(BaseModel):
    success: bool
    cleaned_up: CleanupCounts
    timestamp: datetime
