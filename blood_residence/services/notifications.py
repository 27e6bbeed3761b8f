"""
Notification Store: per-user durable in-app notifications.

Rows are insert-only apart from the read flag. Only the owner flips the
flag through the user-facing methods; `mark_read_bulk` is the trusted path
used by the bot gateway and performs no ownership check.
"""

import logging
from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Notification, NotificationType
from ..realtime.capture import record_change
from ..realtime.hub import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)

DISPLAY_LIMIT = 50
BOT_UNREAD_LIMIT = 10


# =============================================================================
# EXCEPTIONS
# =============================================================================


class NotificationError(Exception):
    """Base exception for notification operations."""
    pass


class NotificationNotFoundError(NotificationError):
    """Notification does not exist or belongs to another user."""
    pass


# =============================================================================
# HELPERS
# =============================================================================


def truncate(text: str | None, limit: int, suffix: str = "...") -> str:
    """Cut text to `limit` characters, appending `suffix` only if it was cut."""
    text = text or ""
    if len(text) > limit:
        return text[:limit] + suffix
    return text


def serialize_notification(notification: Notification) -> dict:
    return {
        "id": str(notification.id),
        "user_id": str(notification.user_id),
        "title": notification.title,
        "message": notification.message,
        "type": notification.type,
        "is_read": notification.is_read,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


# =============================================================================
# STORE
# =============================================================================


class NotificationStore:
    """Reads and writes the notifications table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        user_id: UUID,
        title: str,
        message: str,
        type: NotificationType | str = NotificationType.DEFAULT,
    ) -> Notification:
        """Insert a notification for a user."""
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=NotificationType(type).value,
        )
        self.session.add(notification)
        await self.session.flush()
        logger.info(f"Notification {notification.id} ({notification.type}) created for user {user_id}")
        return notification

    async def list_recent(
        self,
        user_id: UUID,
        limit: int = DISPLAY_LIMIT,
    ) -> Sequence[Notification]:
        """Most recent notifications for a user, newest first."""
        result = await self.session.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        return result.scalars().all()

    async def list_unread(
        self,
        user_id: UUID,
        limit: int = BOT_UNREAD_LIMIT,
    ) -> Sequence[Notification]:
        """Unread notifications for a user, newest first."""
        result = await self.session.execute(
            select(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        return result.scalars().all()

    async def unread_count(self, user_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()

    async def mark_read(self, user_id: UUID, notification_id: UUID) -> Notification:
        """Mark one of the user's own notifications as read."""
        result = await self.session.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")

        if not notification.is_read:
            notification.is_read = True
            await self.session.flush()
        return notification

    async def mark_all_read(self, user_id: UUID) -> list[UUID]:
        """Mark every unread notification of the user as read."""
        result = await self.session.execute(
            select(Notification.id).where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
        )
        unread_ids = list(result.scalars().all())
        if unread_ids:
            await self.mark_read_bulk(unread_ids)
        return unread_ids

    async def mark_read_bulk(self, notification_ids: Sequence[UUID]) -> int:
        """Set is_read on exactly the given ids. Idempotent, no ownership check."""
        if not notification_ids:
            return 0

        result = await self.session.execute(
            update(Notification)
            .where(Notification.id.in_(list(notification_ids)))
            .values(is_read=True)
            .returning(Notification.id, Notification.user_id)
            .execution_options(synchronize_session=False)
        )
        rows = result.all()
        for notification_id, owner_id in rows:
            record_change(self.session, ChangeEvent(
                table=Notification.__tablename__,
                event=ChangeKind.UPDATE,
                new={"id": notification_id, "user_id": owner_id, "is_read": True},
            ))
        return len(rows)
