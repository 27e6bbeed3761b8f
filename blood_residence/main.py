"""Blood Residence: Main FastAPI Application.

Backend for the Blood Residence community portal: in-app notifications with
a realtime change stream, browser notifications, and the Telegram bot
integration.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import api_router, functions_router
from .core import close_db, connect_listener, get_settings, init_db
from .realtime import get_hub
from .realtime.listener import PostgresChangeListener
from .schemas import ErrorResponse

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info(f"Starting {settings.app_name} ({settings.environment})")
    if not settings.bot_gateway_enabled:
        logger.error("TELEGRAM_BOT_SECRET is not set, the bot gateway will reject every request")
    if not settings.telegram_push_enabled:
        logger.info("TELEGRAM_BOT_TOKEN is not set, Telegram DM forwarding is disabled")

    # The hosted project owns the schema in production
    if settings.environment != "production":
        try:
            await init_db()
        except Exception as e:
            logger.warning(f"Could not initialize database: {e}")

    listener = None
    if settings.realtime_source == "database":
        listener = PostgresChangeListener(
            get_hub(),
            connect_listener,
            install_triggers=settings.realtime_install_triggers,
            reconnect_delay=settings.realtime_reconnect_seconds,
        )
        try:
            await listener.start()
        except Exception as e:
            logger.error(f"Database change listener did not start, realtime events are off: {e}")
            listener = None
    else:
        logger.info("Realtime changes come from this process's sessions only")
    yield
    # Shutdown
    if listener is not None:
        await listener.stop()
    await get_hub().drain()
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Blood Residence API

    ### Key Features

    - **Notifications**: per-user in-app notifications, live over `/api/realtime/ws`.
    - **Browser Notifications**: system alerts for new messages, paid contracts, and notifications.
    - **Telegram**: account linking by code, DM forwarding, and the bot gateway.

    ### Authentication

    `/api/me/*` endpoints require `Authorization: Bearer <access token>`.
    The bot gateway requires the `x-bot-secret` header.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

# Bearer tokens only, so no credentials and any origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-bot-secret"],
    max_age=86400,
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)

    message = "An unexpected error occurred"
    if settings.debug:
        message = f"{message}: {str(exc)[:200]}"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal_error",
            message=message,
            details=[],
        ).model_dump(),
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)

# Function endpoints answer at the root and under the functions prefix
app.include_router(functions_router)
app.include_router(functions_router, prefix=settings.functions_prefix, include_in_schema=False)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "blood_residence.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
