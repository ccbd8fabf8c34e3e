"""Transports that move serialized channel events and track presence."""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections import defaultdict

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.exceptions import ChannelDisconnected
from app.core.logger import logger


class Listener(ABC):
    """Receiving end of one topic subscription."""

    @abstractmethod
    async def get(self) -> str:
        """Next raw event; raises ChannelDisconnected when the link is lost."""

    @abstractmethod
    async def close(self) -> None: ...


class Broker(ABC):
    # Seconds between presence refreshes; None when entries never expire
    presence_refresh_interval: float | None = None

    @abstractmethod
    async def publish(self, topic: str, data: str) -> None: ...

    @abstractmethod
    async def listen(self, topic: str) -> Listener: ...

    @abstractmethod
    async def add_presence(self, topic: str, member: str, connection_id: str) -> None:
        """Register or refresh one connection of member on topic."""

    @abstractmethod
    async def remove_presence(
        self, topic: str, member: str, connection_id: str
    ) -> None: ...

    @abstractmethod
    async def presence(self, topic: str) -> set[str]: ...

    async def connect(self) -> None:
        """Verify the transport is reachable."""

    async def close(self) -> None:
        """Release transport resources."""


# ============================================================================
# IN-PROCESS
# ============================================================================


class _QueueListener(Listener):
    def __init__(self, broker: InMemoryBroker, topic: str, maxsize: int):
        self._broker = broker
        self.topic = topic
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)
        self.overflowed = False

    def offer(self, data: str) -> bool:
        try:
            self.queue.put_nowait(data)
            return True
        except asyncio.QueueFull:
            self.overflowed = True
            return False

    async def get(self) -> str:
        # Events queued before an overflow are still delivered, then the link drops
        if self.overflowed and self.queue.empty():
            raise ChannelDisconnected("Subscriber fell behind the channel")
        return await self.queue.get()

    async def close(self) -> None:
        self._broker.detach(self)


class InMemoryBroker(Broker):
    """Single-process broker built on asyncio queues."""

    def __init__(self, queue_size: int = settings.REALTIME_QUEUE_SIZE):
        self._queue_size = queue_size
        self._listeners: dict[str, set[_QueueListener]] = defaultdict(set)
        # topic -> connection id -> member
        self._presence: dict[str, dict[str, str]] = defaultdict(dict)

    async def publish(self, topic: str, data: str) -> None:
        for listener in list(self._listeners.get(topic, ())):
            if not listener.offer(data):
                self.detach(listener)
                logger.warning(
                    "Dropped slow realtime subscriber", extra={"topic": topic}
                )

    async def listen(self, topic: str) -> Listener:
        listener = _QueueListener(self, topic, self._queue_size)
        self._listeners[topic].add(listener)
        return listener

    def detach(self, listener: _QueueListener) -> None:
        listeners = self._listeners.get(listener.topic)
        if listeners is not None:
            listeners.discard(listener)
            if not listeners:
                del self._listeners[listener.topic]

    def listener_count(self, topic: str) -> int:
        return len(self._listeners.get(topic, ()))

    async def add_presence(self, topic: str, member: str, connection_id: str) -> None:
        self._presence[topic][connection_id] = member

    async def remove_presence(
        self, topic: str, member: str, connection_id: str
    ) -> None:
        connections = self._presence.get(topic)
        if connections is None:
            return
        connections.pop(connection_id, None)
        if not connections:
            del self._presence[topic]

    async def presence(self, topic: str) -> set[str]:
        return set(self._presence.get(topic, {}).values())


# ============================================================================
# REDIS
# ============================================================================


class _RedisListener(Listener):
    def __init__(self, pubsub):
        self._pubsub = pubsub

    async def get(self) -> str:
        while True:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
            except RedisError as exc:
                raise ChannelDisconnected(f"Realtime channel lost: {exc}") from exc
            if message and message["type"] == "message":
                return message["data"]

    async def close(self) -> None:
        try:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
        except RedisError as exc:
            logger.warning("Redis unsubscribe failed", extra={"error": str(exc)})


class RedisBroker(Broker):
    """Broker shared by every worker process through Redis pub/sub."""

    def __init__(
        self,
        url: str = settings.REDIS_URL,
        channel_prefix: str = settings.REDIS_CHANNEL_PREFIX,
        presence_prefix: str = settings.REDIS_PRESENCE_PREFIX,
        presence_ttl: int = settings.REALTIME_PRESENCE_TTL_SECONDS,
        client=None,
    ):
        self._url = url
        self._channel_prefix = channel_prefix
        self._presence_prefix = presence_prefix
        self._presence_ttl = presence_ttl
        self.presence_refresh_interval = presence_ttl / 3
        self._client = client or aioredis.from_url(url, decode_responses=True)

    async def connect(self) -> None:
        """Ping Redis with retry logic."""
        last_error = None
        for attempt in range(1, 6):
            try:
                await self._client.ping()
                logger.info(f"Connected to Redis for realtime fan-out (attempt {attempt})")
                return
            except RedisError as exc:
                last_error = exc
                logger.warning(
                    f"Redis connection attempt {attempt}/5 failed",
                    extra={"error": str(exc)},
                )
                if attempt < 5:
                    await asyncio.sleep(2.0)

        logger.critical(
            "Could not connect to Redis after 5 attempts",
            extra={"redis_url": self._url, "error": str(last_error)},
        )
        raise ChannelDisconnected(f"Redis connection failed: {last_error}")

    async def publish(self, topic: str, data: str) -> None:
        try:
            await self._client.publish(self._channel_prefix + topic, data)
        except RedisError as exc:
            raise ChannelDisconnected(f"Could not publish event: {exc}") from exc

    async def listen(self, topic: str) -> Listener:
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        try:
            await pubsub.subscribe(self._channel_prefix + topic)
        except RedisError as exc:
            raise ChannelDisconnected(f"Could not subscribe: {exc}") from exc
        return _RedisListener(pubsub)

    def _presence_entry(self, member: str, connection_id: str) -> str:
        return f"{connection_id}:{member}"

    async def add_presence(self, topic: str, member: str, connection_id: str) -> None:
        key = self._presence_prefix + topic
        # Score is the moment the entry goes stale unless refreshed again
        expires_at = time.time() + self._presence_ttl
        try:
            await self._client.zadd(
                key, {self._presence_entry(member, connection_id): expires_at}
            )
            await self._client.expire(key, self._presence_ttl)
        except RedisError as exc:
            raise ChannelDisconnected(f"Could not register presence: {exc}") from exc

    async def remove_presence(
        self, topic: str, member: str, connection_id: str
    ) -> None:
        try:
            await self._client.zrem(
                self._presence_prefix + topic,
                self._presence_entry(member, connection_id),
            )
        except RedisError as exc:
            raise ChannelDisconnected(f"Could not clear presence: {exc}") from exc

    async def presence(self, topic: str) -> set[str]:
        key = self._presence_prefix + topic
        try:
            await self._client.zremrangebyscore(key, "-inf", time.time())
            entries = await self._client.zrange(key, 0, -1)
        except RedisError as exc:
            raise ChannelDisconnected(f"Could not read presence: {exc}") from exc
        return {entry.split(":", 1)[1] for entry in entries}

    async def close(self) -> None:
        await self._client.aclose()


def create_broker() -> Broker:
    backend = settings.REALTIME_BACKEND.lower()
    if backend == "redis":
        return RedisBroker()
    if backend == "memory":
        return InMemoryBroker()
    raise ValueError(f"Unknown realtime backend: {settings.REALTIME_BACKEND}")
