from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from app.models.thread import new_id


class MessageKind(str, Enum):
    TEXT = "TEXT"
    FILE = "FILE"
    IMAGE = "IMAGE"
    SYSTEM = "SYSTEM"


class MessageBase(SQLModel):
    """Base message fields."""

    content: str
    kind: MessageKind = MessageKind.TEXT


class Message(MessageBase, table=True):
    """
    Append-only chat message.
    Everything except read_at is fixed once the row is written.
    """

    __table_args__ = (UniqueConstraint("thread_id", "seq"),)

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    thread_id: str = Field(foreign_key="thread.id", ondelete="CASCADE", index=True)
    sender_id: str = Field(index=True, max_length=64)

    # Position in the thread, assigned from Thread.last_seq
    seq: int = Field(index=True)
    # Correlation id chosen by the sending client for its optimistic entry
    client_id: str | None = Field(default=None, max_length=64)

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), index=True)
    read_at: datetime | None = None


class MessageRead(MessageBase):
    """Message read schema, also the realtime payload."""

    id: str
    thread_id: str
    sender_id: str
    seq: int
    client_id: str | None = None
    created_at: datetime
    read_at: datetime | None = None
