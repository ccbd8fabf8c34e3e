from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import api_v1_router, cron_router, info_router
from app.api.deps import get_channel
from app.core.config import settings
from app.core.db import init_db
from app.core.exceptions import ChannelDisconnected, MessagingError
from app.core.logger import logger

logger.info(f"Starting {settings.PROJECT_NAME} v{settings.PROJECT_VERSION}")
# Initialize database on startup
init_db()


@asynccontextmanager
async def lifespan(app: FastAPI):
    channel = get_channel()
    try:
        await channel.connect()
    except ChannelDisconnected as e:
        logger.critical(
            f"Could not start realtime backend {settings.REALTIME_BACKEND}: {e}"
        )
        raise
    yield
    await channel.close()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    description=settings.DESCRIPTION,
    lifespan=lifespan,
)


@app.exception_handler(MessagingError)
async def messaging_error_handler(request: Request, exc: MessagingError):
    """Return domain errors with their status and display message."""
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.middleware("http")
async def log_exceptions(request: Request, call_next):
    """Log unhandled exceptions with request context."""
    try:
        return await call_next(request)
    except Exception:
        logger.exception("Unhandled exception", extra={"path": str(request.url)})
        raise


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS.split(","),
    allow_credentials=settings.ALLOW_CREDENTIALS,
    allow_methods=settings.ALLOW_METHODS,
    allow_headers=settings.ALLOW_HEADERS,
    max_age=600,
)

app.include_router(api_v1_router)
app.include_router(info_router, prefix="/api")
app.include_router(cron_router, prefix="/api")
