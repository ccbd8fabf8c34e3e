"""Message routes - append, read receipts and push fan-out."""

from fastapi import APIRouter, BackgroundTasks, Depends, status
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from app.api.deps import get_channel, get_dispatcher
from app.core.db import get_db_session
from app.core.exceptions import ChannelDisconnected
from app.core.logger import logger
from app.models.message import MessageRead
from app.realtime.channel import ThreadChannel
from app.schemas.messages import MarkReadRequest, SendMessageRequest
from app.services import message_store
from app.services.push_dispatcher import PushDispatcher

router = APIRouter(prefix="/messages", tags=["messages"])


async def notify_offline_participants(
    dispatcher: PushDispatcher, message: MessageRead
) -> None:
    try:
        await dispatcher.dispatch(message)
    except Exception:
        logger.exception("Push dispatch failed", extra={"message_id": message.id})


@router.post("", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def send_message(
    send_request: SendMessageRequest,
    background_tasks: BackgroundTasks,
    db_session: Session = Depends(get_db_session),
    channel: ThreadChannel = Depends(get_channel),
    dispatcher: PushDispatcher = Depends(get_dispatcher),
) -> MessageRead:
    """
    Append a message to a thread.

    Once persisted the message is broadcast to everyone connected to the
    thread, and offline participants are notified by push after the response
    has been sent.
    """
    message = await run_in_threadpool(
        message_store.append_message,
        db_session,
        send_request.thread_id,
        send_request.sender_id,
        send_request.content,
        send_request.kind,
        send_request.client_id,
    )
    payload = MessageRead.model_validate(message)

    try:
        await channel.publish_message(payload)
    except ChannelDisconnected as exc:
        # The message is stored; connected clients heal by re-fetching
        logger.warning(
            "Realtime publish failed",
            extra={"message_id": payload.id, "error": exc.detail},
        )

    background_tasks.add_task(notify_offline_participants, dispatcher, payload)
    return payload


@router.put("/{message_id}/read", response_model=MessageRead)
def mark_as_read(
    message_id: str,
    read_request: MarkReadRequest,
    db_session: Session = Depends(get_db_session),
) -> MessageRead:
    """Mark message as read (recipient only, idempotent)."""
    message = message_store.mark_read(db_session, message_id, read_request.reader_id)
    return MessageRead.model_validate(message)
