from app.api.v1.routes.messages import router as messages_router
from app.api.v1.routes.push import router as push_router
from app.api.v1.routes.realtime import router as realtime_router
from app.api.v1.routes.threads import router as threads_router

__all__ = ["messages_router", "push_router", "realtime_router", "threads_router"]
