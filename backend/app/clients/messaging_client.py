"""HTTP client for the messaging API, driving a ThreadView."""

from __future__ import annotations

import httpx

from app.clients.thread_view import ThreadView, ViewEntry
from app.core.exceptions import (
    AccessDenied,
    InvalidMessage,
    InvalidSubscription,
    MessagingError,
    NotFound,
)
from app.models.message import MessageKind, MessageRead

API_PREFIX = "/api/v1"


def _raise_for_response(response: httpx.Response, invalid: type[MessagingError]) -> None:
    if response.is_success:
        return

    try:
        body = response.json()
    except ValueError:
        body = None
    detail = body.get("detail") if isinstance(body, dict) else None
    if not isinstance(detail, str):
        detail = response.reason_phrase

    if response.status_code == 403:
        raise AccessDenied(detail)
    if response.status_code == 404:
        raise NotFound(detail)
    if response.status_code in (400, 422):
        raise invalid(detail)
    raise MessagingError(detail)


class MessagingClient:
    """
    Messaging API client for one user.

    Sends are optimistic: the entry appears in the view immediately and is
    swapped for the persisted message when the server answers, or removed if
    the send fails.
    """

    def __init__(
        self,
        user_id: str,
        base_url: str = "http://localhost:8000",
        http: httpx.AsyncClient | None = None,
    ):
        self.user_id = user_id
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=10.0)

    async def __aenter__(self) -> MessagingClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def fetch_messages(
        self, thread_id: str, after_seq: int | None = None
    ) -> list[MessageRead]:
        params = {"user_id": self.user_id}
        if after_seq is not None:
            params["after_seq"] = after_seq
        response = await self._http.get(
            f"{API_PREFIX}/threads/{thread_id}/messages", params=params
        )
        _raise_for_response(response, InvalidMessage)
        return [MessageRead.model_validate(m) for m in response.json()]

    async def open_thread(self, thread_id: str) -> ThreadView:
        view = ThreadView(thread_id=thread_id, user_id=self.user_id)
        await self.refresh(view)
        return view

    async def refresh(self, view: ThreadView) -> None:
        """Reload the authoritative list, e.g. after the channel degraded."""
        view.load_snapshot(await self.fetch_messages(view.thread_id))

    async def send(
        self,
        view: ThreadView,
        content: str,
        kind: MessageKind = MessageKind.TEXT,
    ) -> ViewEntry:
        entry = view.add_optimistic(content, kind)
        try:
            response = await self._http.post(
                f"{API_PREFIX}/messages",
                json={
                    "thread_id": view.thread_id,
                    "sender_id": self.user_id,
                    "content": content,
                    "kind": kind.value,
                    "client_id": entry.client_id,
                },
            )
            _raise_for_response(response, InvalidMessage)
        except (MessagingError, httpx.HTTPError):
            view.discard(entry.client_id)
            raise

        return view.confirm(entry.client_id, MessageRead.model_validate(response.json()))

    async def mark_read(self, view: ThreadView, message_id: str) -> MessageRead:
        response = await self._http.put(
            f"{API_PREFIX}/messages/{message_id}/read",
            json={"reader_id": self.user_id},
        )
        _raise_for_response(response, InvalidMessage)
        message = MessageRead.model_validate(response.json())
        view.update_read(message.id, message.read_at)
        return message

    async def subscribe_push(
        self, subscription: dict, thread_ids: list[str] | None = None
    ) -> str:
        response = await self._http.post(
            f"{API_PREFIX}/push/subscribe",
            json={
                "user_id": self.user_id,
                "subscription": subscription,
                "thread_ids": thread_ids or [],
            },
        )
        _raise_for_response(response, InvalidSubscription)
        return response.json()["message"]

    async def unsubscribe_push(self) -> str:
        response = await self._http.post(
            f"{API_PREFIX}/push/unsubscribe", json={"user_id": self.user_id}
        )
        _raise_for_response(response, InvalidSubscription)
        return response.json()["message"]
