from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.models.message import MessageKind, MessageRead


class RequestModel(BaseModel):
    """Accepts snake_case or camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateThreadRequest(RequestModel):
    """Request to open (or reopen) the thread for a bounty pairing."""

    bounty_id: str = Field(..., min_length=1, max_length=64)
    client_id: str = Field(..., min_length=1, max_length=64)
    freelancer_id: str = Field(..., min_length=1, max_length=64)
    actor_id: str = Field(..., min_length=1, max_length=64)
    bounty_title: str | None = Field(default=None, max_length=255)


class SendMessageRequest(RequestModel):
    """Request to append a message to a thread."""

    thread_id: str
    sender_id: str
    content: str
    kind: MessageKind = MessageKind.TEXT
    client_id: str | None = Field(default=None, max_length=64)

    @field_validator("kind")
    @classmethod
    def reject_system_kind(cls, kind: MessageKind) -> MessageKind:
        if kind == MessageKind.SYSTEM:
            raise ValueError("System messages cannot be sent by participants")
        return kind


class MarkReadRequest(RequestModel):
    reader_id: str


class MarkThreadReadResponse(BaseModel):
    updated: int


class ThreadSummary(BaseModel):
    """Inbox entry for one thread."""

    id: str
    bounty_id: str
    client_id: str
    freelancer_id: str
    last_message: MessageRead | None
    unread_count: int
    last_message_at: datetime
    created_at: datetime
