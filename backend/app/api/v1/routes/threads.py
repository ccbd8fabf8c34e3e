"""Thread routes - inbox, history and read state."""

from fastapi import APIRouter, Depends, Query, Response, status
from sqlmodel import Session

from app.core.db import get_db_session
from app.models.message import MessageRead
from app.models.thread import ThreadRead
from app.schemas.messages import (
    CreateThreadRequest,
    MarkReadRequest,
    MarkThreadReadResponse,
    ThreadSummary,
)
from app.services import message_store

router = APIRouter(prefix="/threads", tags=["threads"])


@router.post("", response_model=ThreadRead, status_code=status.HTTP_201_CREATED)
def create_thread(
    create_request: CreateThreadRequest,
    response: Response,
    db_session: Session = Depends(get_db_session),
) -> ThreadRead:
    """Create the thread for a bounty pairing, or return the existing one."""
    thread, created = message_store.create_thread(
        db_session,
        bounty_id=create_request.bounty_id,
        client_id=create_request.client_id,
        freelancer_id=create_request.freelancer_id,
        actor_id=create_request.actor_id,
        bounty_title=create_request.bounty_title,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return ThreadRead.model_validate(thread)


@router.get("", response_model=list[ThreadSummary])
def list_threads(
    user_id: str = Query(..., min_length=1),
    db_session: Session = Depends(get_db_session),
) -> list[ThreadSummary]:
    return message_store.list_threads(db_session, user_id)


@router.get("/{thread_id}/messages", response_model=list[MessageRead])
def list_messages(
    thread_id: str,
    user_id: str = Query(..., min_length=1),
    after_seq: int | None = Query(None, ge=0),
    db_session: Session = Depends(get_db_session),
) -> list[MessageRead]:
    """Thread history in persisted order; after_seq returns only newer messages."""
    messages = message_store.list_messages(db_session, thread_id, user_id, after_seq)
    return [MessageRead.model_validate(m) for m in messages]


@router.put("/{thread_id}/read", response_model=MarkThreadReadResponse)
def mark_thread_read(
    thread_id: str,
    read_request: MarkReadRequest,
    db_session: Session = Depends(get_db_session),
) -> MarkThreadReadResponse:
    updated = message_store.mark_thread_read(
        db_session, thread_id, read_request.reader_id
    )
    return MarkThreadReadResponse(updated=updated)
