"""API routes for Blood Residence."""

from fastapi import APIRouter

from .dm_notifications import router as dm_notifications_router
from .realtime import router as realtime_router
from .telegram_bot import router as telegram_bot_router
from .user import router as user_router

# Main API router
api_router = APIRouter()

# User routes (/me/*)
api_router.include_router(user_router)

# Realtime change stream (/realtime/ws)
api_router.include_router(realtime_router)

# Function endpoints called by the bot process and the site
functions_router = APIRouter()
functions_router.include_router(telegram_bot_router)
functions_router.include_router(dm_notifications_router)

__all__ = ["api_router", "functions_router"]
