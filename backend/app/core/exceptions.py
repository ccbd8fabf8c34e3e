"""Domain errors shared by the store, channel and dispatcher."""

from fastapi import status


class MessagingError(Exception):
    """Base error carrying a message that is safe to show to the user."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_detail: str = "Unable to process request"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class AccessDenied(MessagingError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Access denied"


class NotFound(MessagingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class InvalidMessage(MessagingError):
    default_detail = "Invalid message"


class InvalidSubscription(MessagingError):
    default_detail = "Invalid subscription object"


class DeliveryError(MessagingError):
    """Push service rejected a delivery."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, detail: str | None = None, http_status: int | None = None):
        super().__init__(detail)
        self.http_status = http_status


class DeliveryExpired(DeliveryError):
    default_detail = "Push endpoint is no longer valid"


class DeliveryTransient(DeliveryError):
    default_detail = "Push delivery failed"


class ChannelDisconnected(MessagingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Realtime channel disconnected"
