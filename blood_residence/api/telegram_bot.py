"""Telegram bot gateway endpoint.

The external bot process posts `{"action": ..., ...params}` with the shared
secret in the `x-bot-secret` header. Mounted at the site root and under the
functions prefix.
"""

import logging

from fastapi import APIRouter, Header, Request, status
from fastapi.responses import JSONResponse, Response

from ..core import SessionDep, get_settings, verify_bot_secret
from ..schemas import FunctionErrorResponse
from ..services.telegram_gateway import (
    InvalidParamsError,
    TelegramBotGateway,
    UnknownActionError,
)

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(tags=["telegram-bot"])


def error_response(status_code: int, error: str, details: list | None = None) -> JSONResponse:
    body = FunctionErrorResponse(error=error, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@router.options("/telegram-bot", include_in_schema=False)
async def telegram_bot_preflight():
    return Response(status_code=status.HTTP_200_OK)


@router.post("/telegram-bot")
async def telegram_bot(
    request: Request,
    session: SessionDep,
    x_bot_secret: str | None = Header(default=None, alias="x-bot-secret"),
):
    """Run one bot action and return its JSON result."""
    if not settings.bot_gateway_enabled:
        logger.error("TELEGRAM_BOT_SECRET is not set, rejecting bot request")
        return error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "Bot gateway is not configured")

    if not verify_bot_secret(x_bot_secret):
        logger.error("Invalid bot secret")
        return error_response(status.HTTP_401_UNAUTHORIZED, "Unauthorized")

    try:
        body = await request.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid JSON body")

    params = dict(body)
    action = params.pop("action", None)
    logger.info(f"Telegram bot action: {action}")

    gateway = TelegramBotGateway(session)
    try:
        return await gateway.dispatch(action, params)
    except UnknownActionError:
        return error_response(status.HTTP_400_BAD_REQUEST, "Unknown action")
    except InvalidParamsError as e:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid request", e.details)
    except Exception as e:
        # The session dependency would otherwise commit a partial action
        await session.rollback()
        logger.error(f"Telegram bot action {action} failed: {e}", exc_info=True)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")
