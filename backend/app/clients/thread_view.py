"""Client-side view of one thread: snapshot, optimistic sends and live events."""

from __future__ import annotations

import bisect
from collections.abc import AsyncIterable, Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import assert_never
from uuid import uuid4

from app.models.message import MessageKind, MessageRead
from app.realtime.events import (
    ChannelDegraded,
    MessageInserted,
    PresenceJoin,
    PresenceLeave,
    PresenceSync,
    RealtimeEvent,
)


@dataclass
class ViewEntry:
    """One row of the rendered thread."""

    id: str
    thread_id: str
    sender_id: str
    content: str
    kind: MessageKind
    created_at: datetime
    read_at: datetime | None = None
    seq: int | None = None
    client_id: str | None = None
    pending: bool = False

    @classmethod
    def from_message(cls, message: MessageRead) -> ViewEntry:
        return cls(
            id=message.id,
            thread_id=message.thread_id,
            sender_id=message.sender_id,
            content=message.content,
            kind=message.kind,
            created_at=message.created_at,
            read_at=message.read_at,
            seq=message.seq,
            client_id=message.client_id,
        )


@dataclass
class ThreadView:
    """
    State owned by a single client session.

    Confirmed messages are kept in sequence order; optimistic entries follow
    them in the order they were sent until the server confirms or the send
    fails. Optimistic entries are matched to their persisted message by the
    correlation id (client_id), never by sender, so a message the same user
    sends from another device still shows up.
    """

    thread_id: str
    user_id: str
    connected: bool = False
    present_users: set[str] = field(default_factory=set)
    _confirmed: list[ViewEntry] = field(default_factory=list, init=False, repr=False)
    _ids: set[str] = field(default_factory=set, init=False, repr=False)
    _pending: dict[str, ViewEntry] = field(default_factory=dict, init=False, repr=False)

    @property
    def messages(self) -> list[ViewEntry]:
        return [*self._confirmed, *self._pending.values()]

    @property
    def pending(self) -> list[ViewEntry]:
        return list(self._pending.values())

    @property
    def last_seq(self) -> int | None:
        return self._confirmed[-1].seq if self._confirmed else None

    def load_snapshot(self, messages: list[MessageRead]) -> None:
        """Replace confirmed entries with the authoritative list from the store."""
        self._confirmed = []
        self._ids = set()
        for message in messages:
            self._merge(message)

        for client_id in [c for c in self._pending if self._has_client_id(c)]:
            del self._pending[client_id]

    def add_optimistic(
        self, content: str, kind: MessageKind = MessageKind.TEXT
    ) -> ViewEntry:
        client_id = uuid4().hex
        entry = ViewEntry(
            id=f"temp-{client_id}",
            thread_id=self.thread_id,
            sender_id=self.user_id,
            content=content,
            kind=kind,
            created_at=datetime.now(UTC),
            client_id=client_id,
            pending=True,
        )
        self._pending[client_id] = entry
        return entry

    def confirm(self, client_id: str, message: MessageRead) -> ViewEntry:
        """Swap the optimistic entry for the message the server persisted."""
        self._pending.pop(client_id, None)
        return self._merge(message)

    def discard(self, client_id: str) -> ViewEntry | None:
        return self._pending.pop(client_id, None)

    def update_read(self, message_id: str, read_at: datetime) -> bool:
        for index, entry in enumerate(self._confirmed):
            if entry.id == message_id:
                self._confirmed[index] = replace(entry, read_at=read_at)
                return True
        return False

    def set_connected(self, connected: bool) -> None:
        self.connected = connected

    def apply(self, event: RealtimeEvent) -> None:
        if isinstance(event, MessageInserted):
            message = event.message
            if message.client_id and message.client_id in self._pending:
                self.confirm(message.client_id, message)
            else:
                self._merge(message)
        elif isinstance(event, PresenceSync):
            self.present_users = set(event.user_ids)
            self.connected = True
        elif isinstance(event, PresenceJoin):
            self.present_users.add(event.user_id)
            self.connected = True
        elif isinstance(event, PresenceLeave):
            if event.user_id != self.user_id:
                self.present_users.discard(event.user_id)
        elif isinstance(event, ChannelDegraded):
            # A gap still leaves the stream open; only a lost link ends it
            if event.reason == "disconnected":
                self.connected = False
        else:
            assert_never(event)

    def _merge(self, message: MessageRead) -> ViewEntry:
        if message.id in self._ids:
            return next(e for e in self._confirmed if e.id == message.id)

        entry = ViewEntry.from_message(message)
        bisect.insort(self._confirmed, entry, key=lambda e: e.seq)
        self._ids.add(entry.id)
        return entry

    def _has_client_id(self, client_id: str) -> bool:
        return any(e.client_id == client_id for e in self._confirmed)


async def follow(
    view: ThreadView,
    events: AsyncIterable[RealtimeEvent],
    on_degraded: Callable[[ThreadView], Awaitable[None]] | None = None,
) -> None:
    """Apply events to the view until the stream ends."""
    async for event in events:
        view.apply(event)
        if isinstance(event, ChannelDegraded) and on_degraded is not None:
            await on_degraded(view)
