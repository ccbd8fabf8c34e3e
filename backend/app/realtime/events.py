"""Realtime event envelopes sent over a thread channel."""

from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

from app.models.message import MessageRead


class MessageInserted(BaseModel):
    """A message was persisted in the thread."""

    type: Literal["message.inserted"] = "message.inserted"
    message: MessageRead


class PresenceSync(BaseModel):
    """Users connected to the thread at the moment of subscribing."""

    type: Literal["presence.sync"] = "presence.sync"
    user_ids: list[str] = []


class PresenceJoin(BaseModel):
    type: Literal["presence.join"] = "presence.join"
    user_id: str


class PresenceLeave(BaseModel):
    type: Literal["presence.leave"] = "presence.leave"
    user_id: str


class ChannelDegraded(BaseModel):
    """Delivery can no longer be trusted; re-fetch the thread to heal."""

    type: Literal["channel.degraded"] = "channel.degraded"
    reason: str


RealtimeEvent = Annotated[
    MessageInserted | PresenceSync | PresenceJoin | PresenceLeave | ChannelDegraded,
    Field(discriminator="type"),
]

event_adapter: TypeAdapter[RealtimeEvent] = TypeAdapter(RealtimeEvent)


def encode_event(event: RealtimeEvent) -> str:
    return event.model_dump_json()


def decode_event(data: str | bytes) -> RealtimeEvent:
    return event_adapter.validate_json(data)
