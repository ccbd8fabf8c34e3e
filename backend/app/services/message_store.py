"""Message store - durable per-thread message log with read state."""

from datetime import UTC, datetime

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.core.config import settings
from app.core.exceptions import AccessDenied, InvalidMessage, NotFound
from app.core.logger import logger
from app.core.security_utils import sanitize_string
from app.models.message import Message, MessageKind, MessageRead
from app.models.thread import Thread
from app.schemas.messages import ThreadSummary


def get_thread(session: Session, thread_id: str) -> Thread:
    thread = session.get(Thread, thread_id)
    if not thread:
        raise NotFound("Message thread not found.")
    return thread


def get_participant_thread(session: Session, thread_id: str, user_id: str) -> Thread:
    """Load a thread, rejecting anyone who is not one of its two participants."""
    thread = get_thread(session, thread_id)
    if not thread.is_participant(user_id):
        raise AccessDenied("You can only access threads you are part of.")
    return thread


def validate_content(content: str) -> str:
    content = sanitize_string(content)
    if not content:
        raise InvalidMessage("Message content cannot be empty.")
    if len(content) > settings.MESSAGE_MAX_LENGTH:
        raise InvalidMessage(
            f"Message content cannot exceed {settings.MESSAGE_MAX_LENGTH} characters."
        )
    return content


def _insert_message(
    session: Session,
    thread_id: str,
    sender_id: str,
    content: str,
    kind: MessageKind,
    client_id: str | None,
) -> Message:
    now = datetime.now(UTC)

    # Claim the next sequence number in the same statement that bumps it,
    # so concurrent senders can never share a position.
    seq = session.execute(
        update(Thread)
        .where(Thread.id == thread_id)
        .values(last_seq=Thread.last_seq + 1, last_message_at=now)
        .returning(Thread.last_seq)
    ).scalar_one()

    message = Message(
        thread_id=thread_id,
        sender_id=sender_id,
        content=content,
        kind=kind,
        seq=seq,
        client_id=client_id,
        created_at=now,
    )
    session.add(message)
    return message


def create_thread(
    session: Session,
    bounty_id: str,
    client_id: str,
    freelancer_id: str,
    actor_id: str,
    bounty_title: str | None = None,
) -> tuple[Thread, bool]:
    """
    Get or create the thread for a bounty pairing.

    Returns:
        Tuple of (thread, created)
    """
    if client_id == freelancer_id:
        raise InvalidMessage("A thread needs two different participants.")
    if actor_id not in (client_id, freelancer_id):
        raise AccessDenied(
            "You can only create message threads for bounties you are involved in."
        )

    statement = select(Thread).where(
        Thread.bounty_id == bounty_id,
        Thread.client_id == client_id,
        Thread.freelancer_id == freelancer_id,
    )
    existing = session.exec(statement).first()
    if existing:
        return existing, False

    thread = Thread(bounty_id=bounty_id, client_id=client_id, freelancer_id=freelancer_id)
    session.add(thread)
    try:
        session.flush()
    except IntegrityError:
        # Another request created the same pairing first
        session.rollback()
        return session.exec(statement).one(), False

    title = sanitize_string(bounty_title or "", max_length=255) or bounty_id
    _insert_message(
        session,
        thread.id,
        actor_id,
        f"Message thread created for bounty: {title}",
        MessageKind.SYSTEM,
        None,
    )
    session.commit()
    session.refresh(thread)

    logger.info(
        f"Thread {thread.id} created for bounty {bounty_id}",
        extra={"client_id": client_id, "freelancer_id": freelancer_id},
    )
    return thread, True


def append_message(
    session: Session,
    thread_id: str,
    sender_id: str,
    content: str,
    kind: MessageKind = MessageKind.TEXT,
    client_id: str | None = None,
) -> Message:
    """
    Persist a message at the end of its thread.

    Raises:
        NotFound: thread does not exist
        AccessDenied: sender is not one of the thread's participants
        InvalidMessage: content is empty or too long
    """
    thread = get_thread(session, thread_id)
    if not thread.is_participant(sender_id):
        raise AccessDenied("You can only send messages in threads you are part of.")

    content = validate_content(content)

    message = _insert_message(session, thread.id, sender_id, content, kind, client_id)
    session.commit()
    session.refresh(message)
    return message


def mark_read(session: Session, message_id: str, reader_id: str) -> Message:
    """
    Set read_at on a message received by reader_id.

    Marking an already-read message changes nothing; the returned message
    carries the original read timestamp.
    """
    message = session.get(Message, message_id)
    if not message:
        raise NotFound("Message not found.")

    thread = get_thread(session, message.thread_id)
    if thread.counterpart_of(message.sender_id) != reader_id:
        raise AccessDenied("Only the recipient can mark this message as read.")

    if message.read_at is None:
        session.execute(
            update(Message)
            .where(Message.id == message_id, Message.read_at.is_(None))
            .values(read_at=datetime.now(UTC))
        )
        session.commit()
        session.refresh(message)

    return message


def mark_thread_read(session: Session, thread_id: str, reader_id: str) -> int:
    """Mark every unread counterpart message in the thread as read."""
    get_participant_thread(session, thread_id, reader_id)

    result = session.execute(
        update(Message)
        .where(
            Message.thread_id == thread_id,
            Message.sender_id != reader_id,
            Message.read_at.is_(None),
        )
        .values(read_at=datetime.now(UTC))
    )
    session.commit()
    return result.rowcount


def list_messages(
    session: Session,
    thread_id: str,
    requester_id: str,
    after_seq: int | None = None,
) -> list[Message]:
    """Messages of a thread in the order they were persisted."""
    get_participant_thread(session, thread_id, requester_id)

    statement = select(Message).where(Message.thread_id == thread_id)
    if after_seq is not None:
        statement = statement.where(Message.seq > after_seq)
    statement = statement.order_by(Message.seq)
    return list(session.exec(statement).all())


def list_threads(session: Session, user_id: str) -> list[ThreadSummary]:
    """Threads the user takes part in, most recently active first."""
    threads = session.exec(
        select(Thread)
        .where(or_(Thread.client_id == user_id, Thread.freelancer_id == user_id))
        .order_by(Thread.last_message_at.desc())
    ).all()

    summaries = []
    for thread in threads:
        last_message = session.exec(
            select(Message)
            .where(Message.thread_id == thread.id)
            .order_by(Message.seq.desc())
            .limit(1)
        ).first()
        unread_count = session.exec(
            select(func.count())
            .select_from(Message)
            .where(
                Message.thread_id == thread.id,
                Message.sender_id != user_id,
                Message.read_at.is_(None),
            )
        ).one()

        summaries.append(
            ThreadSummary(
                id=thread.id,
                bounty_id=thread.bounty_id,
                client_id=thread.client_id,
                freelancer_id=thread.freelancer_id,
                last_message=(
                    MessageRead.model_validate(last_message) if last_message else None
                ),
                unread_count=unread_count,
                last_message_at=thread.last_message_at,
                created_at=thread.created_at,
            )
        )
    return summaries
