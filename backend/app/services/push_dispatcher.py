"""Push notification dispatch for newly persisted messages."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import requests
from fastapi.concurrency import run_in_threadpool
from pywebpush import WebPushException, webpush
from sqlmodel import Session

from app.core.config import settings
from app.core.db import open_session
from app.core.exceptions import (
    ChannelDisconnected,
    DeliveryExpired,
    DeliveryTransient,
)
from app.core.logger import logger
from app.core.security_utils import truncate
from app.models.message import Message, MessageKind, MessageRead
from app.models.push_subscription import DeliveryStatus, PushSubscription
from app.models.thread import Thread
from app.realtime.channel import ThreadChannel
from app.schemas.push import (
    NotificationAction,
    NotificationData,
    PushPayload,
)
from app.services import push_store

# Push services answer these for endpoints that will never work again
GONE_STATUSES = (404, 410)


class PushSender(Protocol):
    def send(self, subscription_info: dict, data: str) -> None: ...


class WebPushSender:
    """Encrypts and posts payloads with VAPID authentication."""

    def __init__(
        self,
        private_key: str = settings.VAPID_PRIVATE_KEY,
        subject: str = settings.VAPID_SUBJECT,
        ttl: int = settings.PUSH_TTL_SECONDS,
        timeout: float = settings.PUSH_TIMEOUT_SECONDS,
    ):
        self._private_key = private_key
        self._subject = subject
        self._ttl = ttl
        self._timeout = timeout

    def send(self, subscription_info: dict, data: str) -> None:
        if not self._private_key:
            raise DeliveryTransient("VAPID keys are not configured")

        try:
            webpush(
                subscription_info=subscription_info,
                data=data,
                vapid_private_key=self._private_key,
                # webpush adds aud/exp to the claims, so pass a fresh dict
                vapid_claims={"sub": self._subject},
                ttl=self._ttl,
                timeout=self._timeout,
            )
        except WebPushException as exc:
            http_status = exc.response.status_code if exc.response is not None else None
            if http_status in GONE_STATUSES:
                raise DeliveryExpired(str(exc), http_status=http_status) from exc
            raise DeliveryTransient(str(exc), http_status=http_status) from exc
        except requests.RequestException as exc:
            raise DeliveryTransient(str(exc)) from exc


def describe(message: MessageRead) -> str:
    if message.kind == MessageKind.FILE:
        return "Sent a file"
    if message.kind == MessageKind.IMAGE:
        return "Sent an image"
    return truncate(message.content, settings.PUSH_BODY_MAX_LENGTH)


def build_payload(message: Message | MessageRead) -> PushPayload:
    message = MessageRead.model_validate(message)
    return PushPayload(
        title="New message",
        body=describe(message),
        icon=settings.PUSH_ICON,
        # One visible notification per thread; newer messages replace it
        tag=f"thread-{message.thread_id}",
        data=NotificationData(
            url=f"/messages/{message.thread_id}",
            type="message",
            id=message.id,
        ),
        actions=[
            NotificationAction(action="view", title="View"),
            NotificationAction(action="dismiss", title="Dismiss"),
        ],
        requireInteraction=False,
        silent=False,
    )


@dataclass
class DispatchReport:
    delivered: int = 0
    expired: int = 0
    failed: int = 0
    online: int = 0

    def count(self, status: DeliveryStatus) -> None:
        if status == DeliveryStatus.DELIVERED:
            self.delivered += 1
        elif status == DeliveryStatus.EXPIRED:
            self.expired += 1
        else:
            self.failed += 1


class PushDispatcher:
    """
    Notify thread participants who are not connected to the thread channel.

    Every subscription is delivered on its own; an expired endpoint is
    deleted, any other failure is logged and the subscription kept.
    """

    def __init__(
        self,
        channel: ThreadChannel,
        sender: PushSender | None = None,
        session_factory: Callable[[], Session] = open_session,
    ):
        self._channel = channel
        self._sender = sender or WebPushSender()
        self._session_factory = session_factory

    async def dispatch(self, message: Message | MessageRead) -> DispatchReport:
        message = MessageRead.model_validate(message)
        report = DispatchReport()

        participants = await run_in_threadpool(self._participants, message.thread_id)
        if participants is None:
            logger.warning(
                "Skipping push for message in unknown thread",
                extra={"thread_id": message.thread_id},
            )
            return report

        targets: list[PushSubscription] = []
        for user_id in participants:
            if user_id == message.sender_id:
                continue
            if await self._is_online(message.thread_id, user_id):
                report.online += 1
                continue
            targets.extend(
                await run_in_threadpool(
                    self._subscriptions, user_id, message.thread_id
                )
            )

        if not targets:
            return report

        payload = build_payload(message).model_dump_json()
        results = await asyncio.gather(
            *(self._deliver(sub, message.id, payload) for sub in targets),
            return_exceptions=True,
        )
        for subscription, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Unexpected push failure: {result!r}",
                    extra={"subscription_id": subscription.id},
                )
                report.failed += 1
            else:
                report.count(result)

        logger.info(
            f"Push dispatch for message {message.id}: {report.delivered} delivered, "
            f"{report.expired} expired, {report.failed} failed, {report.online} online"
        )
        return report

    async def _is_online(self, thread_id: str, user_id: str) -> bool:
        try:
            return await self._channel.is_connected(thread_id, user_id)
        except ChannelDisconnected:
            # Presence unknown; a duplicate notification beats a missed one
            return False

    async def _deliver(
        self, subscription: PushSubscription, message_id: str, payload: str
    ) -> DeliveryStatus:
        try:
            await run_in_threadpool(
                self._sender.send, subscription.subscription_info(), payload
            )
        except DeliveryExpired as exc:
            logger.info(
                "Removing expired push subscription",
                extra={"subscription_id": subscription.id, "status": exc.http_status},
            )
            await run_in_threadpool(self._expired, subscription, message_id, exc.detail)
            return DeliveryStatus.EXPIRED
        except DeliveryTransient as exc:
            logger.warning(
                f"Push delivery failed: {exc.detail}",
                extra={"subscription_id": subscription.id, "status": exc.http_status},
            )
            await run_in_threadpool(
                self._record, subscription, message_id, DeliveryStatus.FAILED, exc.detail
            )
            return DeliveryStatus.FAILED

        await run_in_threadpool(self._delivered, subscription, message_id)
        return DeliveryStatus.DELIVERED

    def _participants(self, thread_id: str) -> tuple[str, str] | None:
        with self._session_factory() as session:
            thread = session.get(Thread, thread_id)
            return thread.participants if thread else None

    def _subscriptions(self, user_id: str, thread_id: str) -> list[PushSubscription]:
        with self._session_factory() as session:
            return push_store.subscriptions_for(session, user_id, thread_id)

    def _delivered(self, subscription: PushSubscription, message_id: str) -> None:
        with self._session_factory() as session:
            push_store.touch(session, subscription.id)
        self._record(subscription, message_id, DeliveryStatus.DELIVERED)

    def _expired(
        self, subscription: PushSubscription, message_id: str, detail: str
    ) -> None:
        with self._session_factory() as session:
            push_store.delete_subscription(session, subscription.id)
        self._record(subscription, message_id, DeliveryStatus.EXPIRED, detail)

    def _record(
        self,
        subscription: PushSubscription,
        message_id: str,
        status: DeliveryStatus,
        detail: str | None = None,
    ) -> None:
        with self._session_factory() as session:
            push_store.record_delivery(
                session,
                subscription.user_id,
                message_id,
                subscription.endpoint,
                status,
                detail,
            )
