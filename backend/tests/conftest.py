"""Shared fixtures: a file-backed SQLite database per test, an in-memory
channel and a recording push sender wired into the FastAPI app."""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime

os.environ["DATABASE_URI"] = "sqlite://"
os.environ["REALTIME_BACKEND"] = "memory"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["VAPID_PUBLIC_KEY"] = ""
os.environ["VAPID_PRIVATE_KEY"] = ""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlmodel import Session, SQLModel

from app.api.deps import get_channel, get_dispatcher
from app.core.db import build_engine, get_db_session
from app.core.exceptions import DeliveryExpired, DeliveryTransient
from app.main import app as fastapi_app
from app.models.message import MessageKind, MessageRead
from app.realtime.broker import InMemoryBroker
from app.realtime.channel import ThreadChannel
from app.services import message_store
from app.services.push_dispatcher import PushDispatcher

CLIENT = "client-a"
FREELANCER = "freelancer-b"
OUTSIDER = "outsider-c"


class FakePushSender:
    """Records payloads; endpoints can be marked gone or failing."""

    def __init__(self):
        self.sent: list[tuple[str, dict]] = []
        self.expired: set[str] = set()
        self.failing: set[str] = set()

    def send(self, subscription_info: dict, data: str) -> None:
        endpoint = subscription_info["endpoint"]
        if endpoint in self.expired:
            raise DeliveryExpired("Push subscription has unsubscribed or expired.", 410)
        if endpoint in self.failing:
            raise DeliveryTransient("Service unavailable", 503)
        self.sent.append((endpoint, json.loads(data)))

    @property
    def endpoints(self) -> list[str]:
        return [endpoint for endpoint, _ in self.sent]


def make_message(
    seq: int,
    thread_id: str = "thread-1",
    sender_id: str = CLIENT,
    content: str | None = None,
    client_id: str | None = None,
) -> MessageRead:
    return MessageRead(
        id=f"m{seq}",
        thread_id=thread_id,
        sender_id=sender_id,
        content=content or f"message {seq}",
        kind=MessageKind.TEXT,
        seq=seq,
        client_id=client_id,
        created_at=datetime.now(UTC),
    )


def subscription_payload(endpoint: str) -> dict:
    return {
        "endpoint": endpoint,
        "keys": {"p256dh": f"p256dh-{endpoint}", "auth": f"auth-{endpoint}"},
    }


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def session_factory(engine):
    return lambda: Session(engine)


@pytest.fixture
def thread(session):
    thread, _ = message_store.create_thread(
        session,
        bounty_id="bounty-1",
        client_id=CLIENT,
        freelancer_id=FREELANCER,
        actor_id=CLIENT,
        bounty_title="Logo design",
    )
    return thread


@pytest.fixture
def broker():
    return InMemoryBroker(queue_size=16)


@pytest.fixture
def channel(broker):
    return ThreadChannel(broker, gap_timeout=0.2)


@pytest.fixture
def push_sender():
    return FakePushSender()


@pytest.fixture
def dispatcher(channel, push_sender, session_factory):
    return PushDispatcher(channel, push_sender, session_factory)


@pytest.fixture
def test_app(engine, channel, dispatcher):
    def override_db_session():
        with Session(engine) as session:
            yield session

    fastapi_app.dependency_overrides[get_db_session] = override_db_session
    fastapi_app.dependency_overrides[get_channel] = lambda: channel
    fastapi_app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(test_app):
    """Create an async test client for the FastAPI app."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
