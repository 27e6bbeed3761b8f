"""DM notification dispatcher endpoint.

Called by the site after a direct message is stored. Always records the
in-app notification; the Telegram push is best effort.
"""

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import Response
from pydantic import ValidationError

from ..core import SessionDep
from ..integrations.telegram import TelegramClient
from ..schemas import DMNotificationRequest
from ..services.dm_notifications import DirectMessageNotifier
from .telegram_bot import error_response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])


async def get_telegram_client() -> AsyncGenerator[TelegramClient | None, None]:
    """Bot API client for the request, or None when no bot token is set."""
    client = TelegramClient.from_settings()
    try:
        yield client
    finally:
        if client is not None:
            await client.close()


TelegramClientDep = Annotated[TelegramClient | None, Depends(get_telegram_client)]


@router.options("/send-dm-notification", include_in_schema=False)
async def send_dm_notification_preflight():
    return Response(status_code=status.HTTP_200_OK)


@router.post("/send-dm-notification")
async def send_dm_notification(
    request: Request,
    session: SessionDep,
    telegram: TelegramClientDep,
):
    try:
        body = await request.json()
    except ValueError:
        body = None

    if not isinstance(body, dict) or not body.get("receiver_id") or not body.get("sender_username"):
        return error_response(status.HTTP_400_BAD_REQUEST, "Missing required fields")

    try:
        payload = DMNotificationRequest.model_validate(body)
    except ValidationError as e:
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            "Invalid request",
            e.errors(include_url=False, include_context=False),
        )

    logger.info(f"DM notification request for receiver {payload.receiver_id} from {payload.sender_username}")

    result = await DirectMessageNotifier(session, telegram).dispatch(
        payload.receiver_id,
        payload.sender_username,
        payload.message_preview,
    )

    return {"success": True, "telegram_sent": result.telegram_sent}
