"""
DM Notification Dispatcher.

Called after a direct message is stored. The in-app notification is the
delivery guarantee; forwarding to a linked Telegram chat is best effort and
never fails the request.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..integrations.telegram import TelegramClient
from ..models import Notification, NotificationType, TelegramConnection
from .notifications import NotificationStore, truncate

logger = logging.getLogger(__name__)

NOTIFICATION_PREVIEW_LIMIT = 50
TELEGRAM_PREVIEW_LIMIT = 200

DM_NOTIFICATION_TITLE = "Нове повідомлення"


@dataclass
class DispatchResult:
    """Outcome of one DM dispatch."""
    notification: Notification
    telegram_sent: bool = False
    telegram_error: str | None = None


def format_notification_message(sender_username: str, preview: str | None) -> str:
    return f"{sender_username}: {truncate(preview, NOTIFICATION_PREVIEW_LIMIT)}"


def format_telegram_message(sender_username: str, preview: str | None) -> str:
    return (
        f"💬 *Нове повідомлення від {sender_username}*\n\n"
        f"{truncate(preview, TELEGRAM_PREVIEW_LIMIT)}\n\n"
        f"_Відкрийте сайт для відповіді_"
    )


class DirectMessageNotifier:
    """Fans a direct message out to the in-app store and Telegram."""

    def __init__(self, session: AsyncSession, telegram: TelegramClient | None = None):
        self.session = session
        self.telegram = telegram
        self.notifications = NotificationStore(session)

    async def _linked_chat_id(self, user_id: UUID) -> str | None:
        result = await self.session.execute(
            select(TelegramConnection.telegram_chat_id).where(
                TelegramConnection.user_id == user_id,
                TelegramConnection.is_connected.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def dispatch(
        self,
        receiver_id: UUID,
        sender_username: str,
        message_preview: str | None,
    ) -> DispatchResult:
        """Store the notification, then try the Telegram push."""
        notification = await self.notifications.create(
            user_id=receiver_id,
            title=DM_NOTIFICATION_TITLE,
            message=format_notification_message(sender_username, message_preview),
            type=NotificationType.MESSAGE,
        )
        outcome = DispatchResult(notification=notification)

        chat_id = await self._linked_chat_id(receiver_id)
        if not chat_id or self.telegram is None:
            logger.info(f"No Telegram connection for user {receiver_id} or no bot token")
            return outcome

        try:
            await self.telegram.send_message(
                chat_id,
                format_telegram_message(sender_username, message_preview),
                parse_mode="Markdown",
            )
            outcome.telegram_sent = True
        except Exception as e:
            logger.error(f"Telegram send error for user {receiver_id}: {e}")
            outcome.telegram_error = str(e)

        return outcome
