"""
Live notification feed for one user.

Loads the most recent notifications once, then keeps the list current from
realtime inserts. Read state changes go through the store and are mirrored
locally so the list never needs a reload.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..services.notifications import (
    DISPLAY_LIMIT,
    NotificationStore,
    serialize_notification,
)
from .hub import ChangeEvent, ChangeFilter, ChangeKind, RealtimeHub, unique_channel_name

logger = logging.getLogger(__name__)

_FEED_FIELDS = ("id", "user_id", "title", "message", "type", "is_read", "created_at")


class NotificationFeed:
    """In-memory list of a user's notifications, newest first."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hub: RealtimeHub,
        user_id: UUID,
        limit: int = DISPLAY_LIMIT,
    ):
        self.session_factory = session_factory
        self.hub = hub
        self.user_id = user_id
        self.limit = limit
        self.items: list[dict] = []

    @property
    def unread_count(self) -> int:
        return sum(1 for item in self.items if not item["is_read"])

    async def load(self) -> list[dict]:
        async with self.session_factory() as session:
            notifications = await NotificationStore(session).list_recent(self.user_id, self.limit)
        loaded = [serialize_notification(n) for n in notifications]
        # Inserts delivered while the query ran are newer than the snapshot
        loaded_ids = {item["id"] for item in loaded}
        arrived = [item for item in self.items if item["id"] not in loaded_ids]
        self.items = (arrived + loaded)[: self.limit]
        return self.items

    def _on_insert(self, event: ChangeEvent) -> None:
        item = jsonable_encoder({key: event.new.get(key) for key in _FEED_FIELDS})
        item["is_read"] = bool(item["is_read"])
        if any(existing["id"] == item["id"] for existing in self.items):
            return
        self.items.insert(0, item)

    @asynccontextmanager
    async def live(self) -> AsyncIterator["NotificationFeed"]:
        """Load, then follow inserts until the block exits."""
        async with self.hub.channel(
            ChangeFilter("notifications", ChangeKind.INSERT, "user_id", self.user_id),
            self._on_insert,
            name=unique_channel_name("notifications", self.user_id),
        ):
            await self.load()
            yield self

    async def mark_read(self, notification_id: UUID | str) -> None:
        notification_id = UUID(str(notification_id))
        async with self.session_factory() as session:
            await NotificationStore(session).mark_read(self.user_id, notification_id)
            await session.commit()

        for item in self.items:
            if item["id"] == str(notification_id):
                item["is_read"] = True

    async def mark_all_read(self) -> int:
        async with self.session_factory() as session:
            marked = await NotificationStore(session).mark_all_read(self.user_id)
            await session.commit()

        for item in self.items:
            item["is_read"] = True
        logger.info(f"Marked {len(marked)} notifications read for user {self.user_id}")
        return len(marked)
