"""Shared route dependencies."""

from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status

from app.core.config import settings
from app.core.security_utils import verify_bearer_token
from app.realtime.channel import ThreadChannel, create_channel
from app.services.push_dispatcher import PushDispatcher


@lru_cache
def get_channel() -> ThreadChannel:
    """Process-wide fan-out channel."""
    return create_channel()


def get_dispatcher(channel: ThreadChannel = Depends(get_channel)) -> PushDispatcher:
    return PushDispatcher(channel)


def verify_cron_secret(authorization: str | None = Header(default=None)) -> None:
    """Only the scheduler, holding CRON_SECRET, may trigger maintenance."""
    if not verify_bearer_token(authorization, settings.CRON_SECRET):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
