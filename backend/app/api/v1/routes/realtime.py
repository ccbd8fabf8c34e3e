"""WebSocket stream of a thread's realtime channel."""

import asyncio

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from app.api.deps import get_channel
from app.core.db import get_db_session
from app.core.exceptions import AccessDenied, ChannelDisconnected, NotFound
from app.core.logger import logger
from app.realtime.channel import Subscription, ThreadChannel
from app.realtime.events import encode_event
from app.services import message_store

router = APIRouter(tags=["realtime"])

# Application close codes, mirroring HTTP 403/404
CLOSE_ACCESS_DENIED = 4403
CLOSE_NOT_FOUND = 4404


async def _forward_events(websocket: WebSocket, subscription: Subscription) -> None:
    async for event in subscription:
        await websocket.send_text(encode_event(event))


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # Client frames carry nothing; reading them is how a disconnect is noticed
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


@router.websocket("/threads/{thread_id}/ws")
async def thread_events(
    websocket: WebSocket,
    thread_id: str,
    user_id: str = Query(...),
    after_seq: int | None = Query(None),
    db_session: Session = Depends(get_db_session),
    channel: ThreadChannel = Depends(get_channel),
) -> None:
    try:
        thread = await run_in_threadpool(
            message_store.get_participant_thread, db_session, thread_id, user_id
        )
    except NotFound:
        await websocket.close(code=CLOSE_NOT_FOUND)
        return
    except AccessDenied:
        await websocket.close(code=CLOSE_ACCESS_DENIED)
        return

    # Anything persisted after this point is delivered or reported as a gap
    if after_seq is None:
        after_seq = thread.last_seq

    await websocket.accept()
    try:
        async with channel.subscribe(thread_id, user_id, after_seq) as subscription:
            forward = asyncio.create_task(_forward_events(websocket, subscription))
            disconnect = asyncio.create_task(_wait_for_disconnect(websocket))
            done, pending = await asyncio.wait(
                {forward, disconnect}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(forward, disconnect, return_exceptions=True)

            if disconnect not in done and forward.exception() is None:
                # Stream ended on our side (channel degraded); let the client reconnect
                await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
    except ChannelDisconnected as exc:
        logger.warning(
            "Realtime channel unavailable",
            extra={"thread_id": thread_id, "error": exc.detail},
        )
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
