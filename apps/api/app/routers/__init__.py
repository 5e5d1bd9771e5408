"""API routers."""

from app.routers.automations import router as automations_router
from app.routers.internal import router as internal_router

__all__ = ["automations_router", "internal_router"]
