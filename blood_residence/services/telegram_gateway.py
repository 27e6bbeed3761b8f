"""
Telegram Bot Gateway: stateless command dispatcher for the external bot.

The bot process forwards user commands here as `{action, ...params}`.
Every action runs against a fresh database session and returns a JSON
payload; authorization failures and unknown codes/tickets are reported in
the payload, never raised.
"""

import logging
from collections.abc import Awaitable, Callable
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.permissions import Capability, has_capability
from ..models import (
    NotificationType,
    Profile,
    SupportTicket,
    TelegramConnection,
    TicketStatus,
    TicketType,
    utcnow,
)
from ..realtime.capture import record_change
from ..realtime.hub import ChangeEvent, ChangeKind
from .notifications import NotificationStore, serialize_notification

logger = logging.getLogger(__name__)

UNREAD_LIMIT = 10
OPEN_TICKETS_LIMIT = 20

MSG_CONNECT_FAILED = "❌ Невірний код або акаунт вже підключено"
MSG_CONNECTED = '✅ Акаунт "{username}" успішно підключено!'
MSG_IDEA_RECEIVED = "💡 Дякуємо за ідею! Ми розглянемо її."
MSG_SUPPORT_RECEIVED = "📩 Ваше звернення отримано. Очікуйте відповідь."
MSG_TICKETS_FORBIDDEN = "Тільки розробники можуть переглядати тікети"
MSG_RESPOND_FORBIDDEN = "Тільки розробники можуть відповідати на тікети"
MSG_TICKET_NOT_FOUND = "Тікет не знайдено"
MSG_RESPONSE_SENT = "✅ Відповідь надіслано"

CONNECTED_NOTIFICATION_TITLE = "Telegram підключено!"
CONNECTED_NOTIFICATION_MESSAGE = (
    "Ваш Telegram акаунт успішно підключено. Тепер ви будете отримувати сповіщення."
)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class GatewayError(Exception):
    """Base exception for bot gateway requests."""
    pass


class UnknownActionError(GatewayError):
    """The action field names no known command."""
    pass


class InvalidParamsError(GatewayError):
    """The parameters for an action failed validation."""

    def __init__(self, message: str, details: list | None = None):
        super().__init__(message)
        self.details = details or []


# =============================================================================
# ACTION PARAMETERS
# =============================================================================


class BotParams(BaseModel):
    """Bot payloads send chat ids as numbers; keep them as strings."""

    model_config = ConfigDict(
        coerce_numbers_to_str=True,
        extra="ignore",
        populate_by_name=True,
    )


class ChatParams(BotParams):
    telegram_chat_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("telegram_chat_id", "chat_id"),
    )


class ConnectParams(ChatParams):
    code: str = Field(min_length=1)


class SupportParams(ChatParams):
    message: str = Field(min_length=1)
    type: TicketType = TicketType.SUPPORT


class MarkReadParams(BotParams):
    notification_ids: list[UUID] = Field(default_factory=list)


class RespondTicketParams(ChatParams):
    ticket_id: UUID
    response_message: str = Field(min_length=1)


# =============================================================================
# SERIALIZATION
# =============================================================================


def serialize_ticket(ticket: SupportTicket) -> dict:
    return {
        "id": str(ticket.id),
        "user_id": str(ticket.user_id) if ticket.user_id else None,
        "telegram_chat_id": ticket.telegram_chat_id,
        "message": ticket.message,
        "type": ticket.type,
        "status": ticket.status,
        "admin_response": ticket.admin_response,
        "responded_by": str(ticket.responded_by) if ticket.responded_by else None,
        "created_at": ticket.created_at.isoformat() if ticket.created_at else None,
        "updated_at": ticket.updated_at.isoformat() if ticket.updated_at else None,
        "profiles": {"username": ticket.profile.username} if ticket.profile else None,
    }


# =============================================================================
# GATEWAY
# =============================================================================


class TelegramBotGateway:
    """Executes bot commands against the portal tables."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.notifications = NotificationStore(session)
        self._actions: dict[str, tuple[type[BotParams], Callable[..., Awaitable[dict]]]] = {
            "connect": (ConnectParams, self.connect),
            "support": (SupportParams, self.support),
            "get_notifications": (ChatParams, self.get_notifications),
            "mark_read": (MarkReadParams, self.mark_read),
            "get_support_tickets": (ChatParams, self.get_support_tickets),
            "respond_ticket": (RespondTicketParams, self.respond_ticket),
            "check_connection": (ChatParams, self.check_connection),
        }

    @property
    def actions(self) -> list[str]:
        return list(self._actions)

    async def dispatch(self, action: str | None, params: dict) -> dict:
        """Validate params for `action` and run it."""
        if action not in self._actions:
            raise UnknownActionError(f"Unknown action: {action}")

        params_model, handler = self._actions[action]
        try:
            parsed = params_model.model_validate(params)
        except ValidationError as e:
            raise InvalidParamsError(
                f"Invalid parameters for {action}",
                details=e.errors(include_url=False, include_context=False),
            ) from e

        return await handler(parsed)

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def _linked_connection(self, chat_id: str) -> TelegramConnection | None:
        """Active connection for a chat, with its profile loaded."""
        result = await self.session.execute(
            select(TelegramConnection)
            .where(
                TelegramConnection.telegram_chat_id == chat_id,
                TelegramConnection.is_connected.is_(True),
            )
            .order_by(TelegramConnection.connected_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def _linked_developer(self, chat_id: str) -> TelegramConnection | None:
        connection = await self._linked_connection(chat_id)
        if connection is None or connection.profile is None:
            return None
        # Ticket handling follows the base role only
        if not has_capability(connection.profile.role, Capability.SUPPORT_TICKETS):
            return None
        return connection

    # =========================================================================
    # ACTIONS
    # =========================================================================

    async def connect(self, params: ConnectParams) -> dict:
        """Consume a pairing code and attach the chat id to its connection.

        A single conditional UPDATE claims the row, so the same code cannot
        be consumed twice even by concurrent requests.
        """
        code = params.code.strip().upper()
        connected_at = utcnow()

        pending_row = (
            select(TelegramConnection.id)
            .where(
                TelegramConnection.connection_code == code,
                TelegramConnection.is_connected.is_(False),
            )
            .limit(1)
            .scalar_subquery()
        )
        result = await self.session.execute(
            update(TelegramConnection)
            .where(
                TelegramConnection.id == pending_row,
                TelegramConnection.is_connected.is_(False),
            )
            .values(
                telegram_chat_id=params.telegram_chat_id,
                is_connected=True,
                connected_at=connected_at,
            )
            .returning(TelegramConnection.id, TelegramConnection.user_id)
            .execution_options(synchronize_session=False)
        )
        claimed = result.first()

        if claimed is None:
            logger.info(f"Telegram connect rejected for chat {params.telegram_chat_id}: invalid or used code")
            return {"success": False, "message": MSG_CONNECT_FAILED}

        connection_id, user_id = claimed
        record_change(self.session, ChangeEvent(
            table=TelegramConnection.__tablename__,
            event=ChangeKind.UPDATE,
            new={
                "id": connection_id,
                "user_id": user_id,
                "connection_code": code,
                "telegram_chat_id": params.telegram_chat_id,
                "is_connected": True,
                "connected_at": connected_at,
            },
            old={
                "id": connection_id,
                "user_id": user_id,
                "connection_code": code,
                "telegram_chat_id": None,
                "is_connected": False,
                "connected_at": None,
            },
        ))

        await self.notifications.create(
            user_id=user_id,
            title=CONNECTED_NOTIFICATION_TITLE,
            message=CONNECTED_NOTIFICATION_MESSAGE,
            type=NotificationType.SUCCESS,
        )

        username = await self.session.scalar(
            select(Profile.username).where(Profile.id == user_id)
        )
        logger.info(f"Telegram chat {params.telegram_chat_id} connected to user {user_id}")
        return {
            "success": True,
            "message": MSG_CONNECTED.format(username=username),
            "username": username,
        }

    async def support(self, params: SupportParams) -> dict:
        """File a support ticket or idea from a chat, linked or not."""
        connection = await self._linked_connection(params.telegram_chat_id)

        ticket = SupportTicket(
            user_id=connection.user_id if connection else None,
            telegram_chat_id=params.telegram_chat_id,
            message=params.message,
            type=params.type.value,
            status=TicketStatus.OPEN.value,
        )
        self.session.add(ticket)
        await self.session.flush()
        logger.info(f"Support ticket {ticket.id} ({ticket.type}) opened from chat {params.telegram_chat_id}")

        message = MSG_IDEA_RECEIVED if params.type == TicketType.IDEA else MSG_SUPPORT_RECEIVED
        return {"success": True, "message": message}

    async def get_notifications(self, params: ChatParams) -> dict:
        """Latest unread notifications of the linked user."""
        connection = await self._linked_connection(params.telegram_chat_id)
        if connection is None:
            return {"notifications": []}

        notifications = await self.notifications.list_unread(connection.user_id, limit=UNREAD_LIMIT)
        return {"notifications": [serialize_notification(n) for n in notifications]}

    async def mark_read(self, params: MarkReadParams) -> dict:
        """Bulk mark notifications read. The bot is trusted with the ids."""
        if params.notification_ids:
            await self.notifications.mark_read_bulk(params.notification_ids)
        return {"success": True}

    async def get_support_tickets(self, params: ChatParams) -> dict:
        """Open tickets for a linked developer, newest first."""
        developer = await self._linked_developer(params.telegram_chat_id)
        if developer is None:
            return {"success": False, "message": MSG_TICKETS_FORBIDDEN}

        result = await self.session.execute(
            select(SupportTicket)
            .where(SupportTicket.status == TicketStatus.OPEN.value)
            .order_by(SupportTicket.created_at.desc())
            .limit(OPEN_TICKETS_LIMIT)
            .execution_options(populate_existing=True)
        )
        tickets = result.scalars().all()
        return {"tickets": [serialize_ticket(t) for t in tickets]}

    async def respond_ticket(self, params: RespondTicketParams) -> dict:
        """Record a developer's answer and return the chat to reply to."""
        developer = await self._linked_developer(params.telegram_chat_id)
        if developer is None:
            return {"success": False, "message": MSG_RESPOND_FORBIDDEN}

        ticket = await self.session.get(SupportTicket, params.ticket_id)
        if ticket is None:
            return {"success": False, "message": MSG_TICKET_NOT_FOUND}

        ticket.admin_response = params.response_message
        ticket.responded_by = developer.user_id
        ticket.status = TicketStatus.ANSWERED.value
        ticket.updated_at = utcnow()
        await self.session.flush()
        logger.info(f"Support ticket {ticket.id} answered by {developer.user_id}")

        return {
            "success": True,
            "user_telegram_chat_id": ticket.telegram_chat_id,
            "message": MSG_RESPONSE_SENT,
        }

    async def check_connection(self, params: ChatParams) -> dict:
        """Whether a chat is linked, to whom, and if that user is a developer."""
        connection = await self._linked_connection(params.telegram_chat_id)
        profile = connection.profile if connection else None
        return {
            "connected": connection is not None,
            "username": profile.username if profile else None,
            "is_developer": bool(
                profile and has_capability(profile.role, Capability.SUPPORT_TICKETS)
            ),
        }
