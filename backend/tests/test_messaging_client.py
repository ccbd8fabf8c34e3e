"""MessagingClient driven against the app over an in-process transport."""

from __future__ import annotations

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from app.clients.messaging_client import MessagingClient
from app.core.exceptions import AccessDenied, InvalidMessage, InvalidSubscription, NotFound
from app.realtime.events import MessageInserted
from conftest import CLIENT, FREELANCER, OUTSIDER, make_message, subscription_payload


def messaging_client(app, user_id: str) -> MessagingClient:
    http = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    return MessagingClient(user_id, http=http)


@pytest.fixture
async def alice(test_app):
    async with messaging_client(test_app, CLIENT) as c:
        yield c


@pytest.fixture
async def bob(test_app):
    async with messaging_client(test_app, FREELANCER) as c:
        yield c


@pytest.mark.asyncio
async def test_send_confirms_optimistic_entry(alice, thread):
    view = await alice.open_thread(thread.id)

    entry = await alice.send(view, "Hello")

    assert view.pending == []
    assert not entry.pending
    assert entry.seq == 2
    assert [e.content for e in view.messages][-1] == "Hello"


@pytest.mark.asyncio
async def test_failed_send_removes_optimistic_entry(alice, thread):
    view = await alice.open_thread(thread.id)

    with pytest.raises(InvalidMessage):
        await alice.send(view, "   ")

    assert view.pending == []
    assert len(view.messages) == 1


@pytest.mark.asyncio
async def test_recipient_marks_read(alice, bob, thread):
    alice_view = await alice.open_thread(thread.id)
    sent = await alice.send(alice_view, "Hello")

    bob_view = await bob.open_thread(thread.id)
    message = await bob.mark_read(bob_view, sent.id)

    assert message.read_at is not None
    assert bob_view.messages[-1].read_at is not None
    with pytest.raises(AccessDenied):
        await alice.mark_read(alice_view, sent.id)


@pytest.mark.asyncio
async def test_event_after_confirm_is_not_duplicated(alice, thread):
    view = await alice.open_thread(thread.id)
    entry = await alice.send(view, "Hello")

    persisted = make_message(
        entry.seq, thread_id=thread.id, content="Hello", client_id=entry.client_id
    )
    persisted.id = entry.id
    view.apply(MessageInserted(message=persisted))

    assert [e.seq for e in view.messages] == [1, 2]


@pytest.mark.asyncio
async def test_errors_are_mapped(test_app, thread):
    async with messaging_client(test_app, OUTSIDER) as outsider:
        with pytest.raises(AccessDenied):
            await outsider.open_thread(thread.id)
        with pytest.raises(NotFound):
            await outsider.fetch_messages("missing")
        with pytest.raises(InvalidSubscription):
            await outsider.subscribe_push({"endpoint": "https://push.example/1"})


@pytest.mark.asyncio
async def test_push_subscription_lifecycle(bob):
    subscribed = await bob.subscribe_push(subscription_payload("https://push.example/1"))
    unsubscribed = await bob.unsubscribe_push()

    assert subscribed == "Successfully subscribed to push notifications"
    assert unsubscribed == "Successfully unsubscribed from push notifications"


@pytest.mark.asyncio
async def test_error_body_without_detail_object():
    def reject(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json=["not", "an", "object"])

    http = AsyncClient(transport=httpx.MockTransport(reject), base_url="http://test")
    async with MessagingClient(CLIENT, http=http) as c:
        with pytest.raises(InvalidMessage) as exc_info:
            await c.fetch_messages("thread-1")

    assert exc_info.value.detail == "Bad Request"
