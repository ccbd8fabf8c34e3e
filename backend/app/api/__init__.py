from app.api.routes.cron import router as cron_router
from app.api.routes.info import router as info_router
from app.api.v1 import api_v1_router

__all__ = ["api_v1_router", "cron_router", "info_router"]
