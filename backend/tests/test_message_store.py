"""Tests for the durable message store."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlmodel import Session, select

from app.core.config import settings
from app.core.exceptions import AccessDenied, InvalidMessage, NotFound
from app.models.message import Message, MessageKind
from app.services import message_store
from conftest import CLIENT, FREELANCER, OUTSIDER


# ---------------------------------------------------------------------------
# create_thread
# ---------------------------------------------------------------------------


def test_create_thread_adds_system_message(session, thread):
    messages = message_store.list_messages(session, thread.id, CLIENT)

    assert len(messages) == 1
    assert messages[0].kind == MessageKind.SYSTEM
    assert messages[0].seq == 1
    assert messages[0].content == "Message thread created for bounty: Logo design"


def test_create_thread_is_get_or_create(session, thread):
    again, created = message_store.create_thread(
        session, "bounty-1", CLIENT, FREELANCER, actor_id=FREELANCER
    )

    assert created is False
    assert again.id == thread.id
    assert len(message_store.list_messages(session, thread.id, CLIENT)) == 1


def test_create_thread_rejects_outsider_actor(session):
    with pytest.raises(AccessDenied):
        message_store.create_thread(
            session, "bounty-2", CLIENT, FREELANCER, actor_id=OUTSIDER
        )


def test_create_thread_needs_two_participants(session):
    with pytest.raises(InvalidMessage):
        message_store.create_thread(session, "bounty-2", CLIENT, CLIENT, actor_id=CLIENT)


# ---------------------------------------------------------------------------
# append_message
# ---------------------------------------------------------------------------


def test_append_assigns_increasing_seq(session, thread):
    first = message_store.append_message(session, thread.id, CLIENT, "Hello")
    second = message_store.append_message(session, thread.id, FREELANCER, "Hi!")

    assert (first.seq, second.seq) == (2, 3)
    assert first.read_at is None
    assert [m.content for m in message_store.list_messages(session, thread.id, CLIENT)][
        1:
    ] == ["Hello", "Hi!"]


def test_append_keeps_client_id(session, thread):
    message = message_store.append_message(
        session, thread.id, CLIENT, "Hello", client_id="abc123"
    )
    assert message.client_id == "abc123"


def test_outsider_cannot_append(session, thread):
    with pytest.raises(AccessDenied):
        message_store.append_message(session, thread.id, OUTSIDER, "Let me in")

    count = len(session.exec(select(Message).where(Message.thread_id == thread.id)).all())
    assert count == 1


def test_append_to_unknown_thread(session):
    with pytest.raises(NotFound):
        message_store.append_message(session, "missing", CLIENT, "Hello")


@pytest.mark.parametrize("content", ["", "   ", "\x00\x01"])
def test_append_rejects_empty_content(session, thread, content):
    with pytest.raises(InvalidMessage):
        message_store.append_message(session, thread.id, CLIENT, content)


def test_append_rejects_oversize_content(session, thread):
    with pytest.raises(InvalidMessage):
        message_store.append_message(
            session, thread.id, CLIENT, "x" * (settings.MESSAGE_MAX_LENGTH + 1)
        )


def test_append_sanitizes_content(session, thread):
    message = message_store.append_message(
        session, thread.id, CLIENT, "  line one\nline\x07 two  "
    )
    assert message.content == "line one\nline two"


def test_concurrent_appends_get_distinct_seqs(engine, thread):
    def send(index: int) -> int:
        with Session(engine) as session:
            sender = CLIENT if index % 2 else FREELANCER
            return message_store.append_message(
                session, thread.id, sender, f"message {index}"
            ).seq

    with ThreadPoolExecutor(max_workers=4) as pool:
        seqs = list(pool.map(send, range(12)))

    assert sorted(seqs) == list(range(2, 14))

    with Session(engine) as session:
        stored = message_store.list_messages(session, thread.id, CLIENT)
        assert [m.seq for m in stored] == list(range(1, 14))
        assert message_store.get_thread(session, thread.id).last_seq == 13


# ---------------------------------------------------------------------------
# Read state
# ---------------------------------------------------------------------------


def test_mark_read_is_idempotent(session, thread):
    message = message_store.append_message(session, thread.id, CLIENT, "Hello")

    first = message_store.mark_read(session, message.id, FREELANCER)
    read_at = first.read_at
    second = message_store.mark_read(session, message.id, FREELANCER)

    assert read_at is not None
    assert second.read_at == read_at


@pytest.mark.parametrize("reader", [CLIENT, OUTSIDER])
def test_only_recipient_marks_read(session, thread, reader):
    message = message_store.append_message(session, thread.id, CLIENT, "Hello")

    with pytest.raises(AccessDenied):
        message_store.mark_read(session, message.id, reader)

    session.refresh(message)
    assert message.read_at is None


def test_mark_read_unknown_message(session, thread):
    with pytest.raises(NotFound):
        message_store.mark_read(session, "missing", FREELANCER)


def test_mark_thread_read_counts_only_counterpart_messages(session, thread):
    message_store.append_message(session, thread.id, CLIENT, "one")
    message_store.append_message(session, thread.id, CLIENT, "two")
    message_store.append_message(session, thread.id, FREELANCER, "three")

    # system message was authored by the client, so it is unread for the freelancer
    assert message_store.mark_thread_read(session, thread.id, FREELANCER) == 3
    assert message_store.mark_thread_read(session, thread.id, FREELANCER) == 0
    assert message_store.mark_thread_read(session, thread.id, CLIENT) == 1


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


def test_list_messages_after_seq(session, thread):
    for content in ("a", "b", "c"):
        message_store.append_message(session, thread.id, CLIENT, content)

    newer = message_store.list_messages(session, thread.id, FREELANCER, after_seq=2)
    assert [m.content for m in newer] == ["b", "c"]


def test_outsider_cannot_list_messages(session, thread):
    with pytest.raises(AccessDenied):
        message_store.list_messages(session, thread.id, OUTSIDER)


def test_list_threads_reports_unread_counts(session, thread):
    other, _ = message_store.create_thread(
        session, "bounty-2", CLIENT, "freelancer-d", actor_id=CLIENT
    )
    message_store.append_message(session, thread.id, CLIENT, "Hello")
    message_store.append_message(session, other.id, "freelancer-d", "Ping")

    summaries = {s.id: s for s in message_store.list_threads(session, FREELANCER)}
    assert list(summaries) == [thread.id]
    assert summaries[thread.id].unread_count == 2
    assert summaries[thread.id].last_message.content == "Hello"

    client_view = message_store.list_threads(session, CLIENT)
    assert [s.id for s in client_view] == [other.id, thread.id]
    assert {s.id: s.unread_count for s in client_view} == {other.id: 1, thread.id: 0}
