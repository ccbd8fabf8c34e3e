from app.models.message import Message, MessageKind, MessageRead
from app.models.push_subscription import (
    DeliveryStatus,
    NotificationLog,
    PushSubscription,
)
from app.models.thread import Thread, ThreadRead

__all__ = [
    "Thread",
    "ThreadRead",
    "Message",
    "MessageKind",
    "MessageRead",
    "PushSubscription",
    "NotificationLog",
    "DeliveryStatus",
]
