"""Per-thread fan-out channel with ordered delivery and presence."""

from __future__ import annotations

import asyncio
from collections import deque
from uuid import uuid4

from app.core.config import settings
from app.core.exceptions import ChannelDisconnected
from app.core.logger import logger
from app.models.message import Message, MessageRead
from app.realtime.broker import Broker, Listener, create_broker
from app.realtime.events import (
    ChannelDegraded,
    MessageInserted,
    PresenceJoin,
    PresenceLeave,
    PresenceSync,
    RealtimeEvent,
    decode_event,
    encode_event,
)


class Subscription:
    """
    Live event stream for one user on one thread.

    Use as ``async with channel.subscribe(...) as sub: async for event in sub``.
    Message events come out in sequence order; events that overtake a missing
    sequence number are held back until the gap fills or the gap timeout
    passes, in which case a ChannelDegraded event tells the consumer to
    re-fetch the thread.
    """

    def __init__(
        self,
        channel: ThreadChannel,
        thread_id: str,
        user_id: str,
        after_seq: int | None = None,
        gap_timeout: float = settings.REALTIME_GAP_TIMEOUT_SECONDS,
    ):
        self.thread_id = thread_id
        self.user_id = user_id
        self.connection_id = uuid4().hex
        self._channel = channel
        self._gap_timeout = gap_timeout
        self._gap_deadline: float | None = None
        self._listener: Listener | None = None
        self._heartbeat: asyncio.Task | None = None
        self._ready: deque[RealtimeEvent] = deque()
        self._pending: dict[int, MessageInserted] = {}
        self._next_seq = after_seq + 1 if after_seq is not None else None
        self._baseline_known = after_seq is not None
        self._closed = False
        self._released = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> Subscription:
        broker = self._channel.broker
        # Listen before announcing so nothing published after the join is missed
        self._listener = await broker.listen(self.thread_id)
        try:
            await broker.add_presence(self.thread_id, self.user_id, self.connection_id)
            present = await broker.presence(self.thread_id)
            self._ready.append(PresenceSync(user_ids=sorted(present)))
            await self._channel.publish(
                self.thread_id, PresenceJoin(user_id=self.user_id)
            )
        except ChannelDisconnected:
            await self._release()
            raise

        if broker.presence_refresh_interval:
            self._heartbeat = asyncio.create_task(
                self._refresh_presence(broker.presence_refresh_interval)
            )
        return self

    async def __aenter__(self) -> Subscription:
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> RealtimeEvent:
        while True:
            if self._ready:
                return self._ready.popleft()
            if self._closed or self._listener is None:
                raise StopAsyncIteration
            await self._receive()

    async def aclose(self) -> None:
        """Stop the stream; nothing is yielded after this returns."""
        self._ready.clear()
        self._pending.clear()
        self._gap_deadline = None
        await self._release()

    async def _receive(self) -> None:
        timeout = None
        if self._gap_deadline is not None:
            # Measured from when the gap opened, not from the last event received
            timeout = max(0.0, self._gap_deadline - asyncio.get_running_loop().time())
        try:
            data = await asyncio.wait_for(self._listener.get(), timeout)
        except TimeoutError:
            self._skip_gap()
            return
        except ChannelDisconnected as exc:
            logger.warning(
                "Realtime subscription lost",
                extra={"thread_id": self.thread_id, "error": exc.detail},
            )
            self._release_pending()
            self._ready.append(ChannelDegraded(reason="disconnected"))
            await self._release()
            return

        self._accept(decode_event(data))

    def _accept(self, event: RealtimeEvent) -> None:
        if not isinstance(event, MessageInserted):
            self._ready.append(event)
            return

        seq = event.message.seq
        if self._next_seq is None:
            self._next_seq = seq

        if seq < self._next_seq:
            if not self._baseline_known:
                # Arrived behind the first event we saw; order is unknown
                self._ready.append(ChannelDegraded(reason="reordered"))
            return

        self._pending[seq] = event
        waiting_for = self._next_seq
        self._drain()

        if not self._pending:
            self._gap_deadline = None
        elif self._gap_deadline is None or self._next_seq != waiting_for:
            self._gap_deadline = asyncio.get_running_loop().time() + self._gap_timeout

    def _drain(self) -> None:
        while self._next_seq in self._pending:
            self._ready.append(self._pending.pop(self._next_seq))
            self._next_seq += 1

    def _skip_gap(self) -> None:
        logger.warning(
            f"Sequence gap at {self._next_seq} not filled in time",
            extra={"thread_id": self.thread_id},
        )
        self._ready.append(ChannelDegraded(reason="gap"))
        self._release_pending()

    def _release_pending(self) -> None:
        self._gap_deadline = None
        while self._pending:
            self._next_seq = min(self._pending)
            self._drain()

    async def _refresh_presence(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self._channel.broker.add_presence(
                    self.thread_id, self.user_id, self.connection_id
                )
            except ChannelDisconnected as exc:
                logger.warning(
                    "Could not refresh realtime presence",
                    extra={"thread_id": self.thread_id, "error": exc.detail},
                )

    async def _release(self) -> None:
        self._closed = True
        if self._released:
            return
        self._released = True

        if self._heartbeat is not None:
            self._heartbeat.cancel()

        broker = self._channel.broker
        if self._listener is not None:
            await self._listener.close()
        try:
            await broker.remove_presence(
                self.thread_id, self.user_id, self.connection_id
            )
            await self._channel.publish(
                self.thread_id, PresenceLeave(user_id=self.user_id)
            )
        except ChannelDisconnected as exc:
            logger.warning(
                "Could not announce realtime leave",
                extra={"thread_id": self.thread_id, "error": exc.detail},
            )


class ThreadChannel:
    """Fan-out of persisted messages and presence to a thread's subscribers."""

    def __init__(
        self,
        broker: Broker,
        gap_timeout: float = settings.REALTIME_GAP_TIMEOUT_SECONDS,
    ):
        self.broker = broker
        self.gap_timeout = gap_timeout

    def subscribe(
        self, thread_id: str, user_id: str, after_seq: int | None = None
    ) -> Subscription:
        return Subscription(
            self, thread_id, user_id, after_seq=after_seq, gap_timeout=self.gap_timeout
        )

    async def publish(self, thread_id: str, event: RealtimeEvent) -> None:
        await self.broker.publish(thread_id, encode_event(event))

    async def publish_message(self, message: Message | MessageRead) -> None:
        payload = MessageRead.model_validate(message)
        await self.publish(payload.thread_id, MessageInserted(message=payload))

    async def present_users(self, thread_id: str) -> set[str]:
        return await self.broker.presence(thread_id)

    async def is_connected(self, thread_id: str, user_id: str) -> bool:
        return user_id in await self.present_users(thread_id)

    async def connect(self) -> None:
        await self.broker.connect()

    async def close(self) -> None:
        await self.broker.close()


def create_channel() -> ThreadChannel:
    return ThreadChannel(create_broker())
