"""Realtime WebSocket endpoint.

Browsers authenticate with their access token in the query string, since
the WebSocket API cannot set an Authorization header.
"""

import json
import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core import async_session_factory, load_user
from ..models import Profile
from ..realtime import get_hub
from ..realtime.websocket import RealtimeSession
from ..services.browser_notifications import NotificationPermission

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


SessionFactoryDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


@router.websocket("/ws")
async def realtime_ws(
    websocket: WebSocket,
    session_factory: SessionFactoryDep,
    token: str | None = Query(default=None),
    permission: NotificationPermission = Query(default=NotificationPermission.DEFAULT),
    supported: bool = Query(default=True),
    focused: bool = Query(default=True),
):
    """Stream the user's changes and browser notifications to one tab."""
    user = None
    if token:
        async with session_factory() as session:
            user = await load_user(session, token)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()

    async def resolve_username(user_id: UUID) -> str | None:
        async with session_factory() as session:
            return await session.scalar(
                select(Profile.username).where(Profile.id == UUID(str(user_id)))
            )

    realtime = RealtimeSession(
        websocket.send_json,
        get_hub(),
        user.id,
        resolve_username=resolve_username,
        supported=supported,
        permission=permission,
        focused=focused,
    )

    try:
        async with realtime.open():
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except ValueError:
                    message = None
                await realtime.handle_message(message)
    except WebSocketDisconnect:
        logger.info(f"Realtime client disconnected for user {user.id}")
