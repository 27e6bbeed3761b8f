"""
Telegram Connection Manager.

A user links their account to a Telegram chat by generating a short code
here and sending it to the bot. The bot gateway consumes the code (see
`telegram_gateway.TelegramBotGateway.connect`), after which the connection
row carries the chat id and `is_connected = true`.

Codes are not checked for uniqueness across users. Two pending generations
colliding on the same 8-character code is a residual risk.
"""

import inspect
import logging
import secrets
import string
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import TelegramConnection
from ..realtime.hub import (
    ChangeEvent,
    ChangeFilter,
    ChangeKind,
    RealtimeHub,
    Subscription,
    unique_channel_name,
)

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8


class TelegramConnectionError(Exception):
    """Base exception for connection management."""
    pass


def generate_connection_code(length: int = CODE_LENGTH) -> str:
    """Random code drawn uniformly from [A-Z0-9]."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def serialize_connection(connection: TelegramConnection | None) -> dict:
    if connection is None:
        return {"connection_code": None, "is_connected": False, "connected_at": None}
    return {
        "connection_code": connection.connection_code,
        "is_connected": connection.is_connected,
        "connected_at": connection.connected_at.isoformat() if connection.connected_at else None,
    }


class TelegramConnectionManager:
    """Pairing codes and connection state for one database session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_connection(self, user_id: UUID) -> TelegramConnection | None:
        # The bot gateway claims codes with a bulk UPDATE; always reload
        result = await self.session.execute(
            select(TelegramConnection)
            .where(TelegramConnection.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def generate_code(self, user_id: UUID) -> str:
        """Issue a fresh code, resetting any existing link for the user."""
        code = generate_connection_code()
        connection = await self.get_connection(user_id)

        if connection is None:
            connection = TelegramConnection(
                user_id=user_id,
                connection_code=code,
                is_connected=False,
            )
            self.session.add(connection)
        else:
            connection.connection_code = code
            connection.is_connected = False
            connection.telegram_chat_id = None
            connection.connected_at = None

        await self.session.flush()
        logger.info(f"Telegram connection code generated for user {user_id}")
        return code

    async def copy_code(
        self,
        user_id: UUID,
        clipboard: Callable[[str], Awaitable[None] | None],
    ) -> bool:
        """Hand the current code to a clipboard writer. No state change."""
        connection = await self.get_connection(user_id)
        if connection is None or not connection.connection_code:
            return False

        result = clipboard(connection.connection_code)
        if inspect.isawaitable(result):
            await result
        return True

    @staticmethod
    @asynccontextmanager
    async def watch(
        hub: RealtimeHub,
        user_id: UUID,
        on_change: Callable[[ChangeEvent], Awaitable[None] | None],
    ) -> AsyncIterator[Subscription]:
        """Live updates of the user's own connection row."""
        async with hub.channel(
            ChangeFilter(
                table=TelegramConnection.__tablename__,
                event=ChangeKind.UPDATE,
                column="user_id",
                value=user_id,
            ),
            on_change,
            name=unique_channel_name("telegram-connection", user_id),
        ) as subscription:
            yield subscription
