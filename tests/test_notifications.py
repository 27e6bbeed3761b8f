"""
Tests for the Notification Store.

These tests verify:
1. LISTING: newest first, capped, scoped to the owner
2. READ STATE: owner-only single marks, idempotent bulk marks
3. LIVE FEED: inserts prepend to the in-memory list
"""

import asyncio
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from blood_residence.models import Notification
from blood_residence.realtime import ChangeEvent, ChangeFilter, ChangeKind, RealtimeHub
from blood_residence.realtime.feed import NotificationFeed
from blood_residence.services.notifications import (
    NotificationNotFoundError,
    NotificationStore,
    truncate,
)


class TestTruncate:
    def test_short_text_is_unchanged(self):
        assert truncate("hello", 50) == "hello"

    def test_exact_limit_has_no_ellipsis(self):
        assert truncate("a" * 50, 50) == "a" * 50

    def test_long_text_is_cut_with_ellipsis(self):
        assert truncate("a" * 60, 50) == "a" * 50 + "..."

    def test_missing_text_is_empty(self):
        assert truncate(None, 50) == ""


class TestNotificationStore:
    """Create, list, and mark notifications."""

    async def test_list_recent_is_newest_first_and_capped(
        self,
        session: AsyncSession,
        make_profile,
    ):
        profile = await make_profile("alice")
        store = NotificationStore(session)
        for i in range(55):
            await store.create(profile.id, f"Title {i}", f"Message {i}")
            await asyncio.sleep(0.001)
        await session.commit()

        notifications = await store.list_recent(profile.id)

        assert len(notifications) == 50
        assert notifications[0].title == "Title 54"
        created = [n.created_at for n in notifications]
        assert created == sorted(created, reverse=True)

    async def test_list_is_scoped_to_owner(
        self,
        session: AsyncSession,
        make_profile,
    ):
        alice = await make_profile("alice")
        bob = await make_profile("bob")
        store = NotificationStore(session)
        await store.create(alice.id, "For Alice", "...")
        await store.create(bob.id, "For Bob", "...")
        await session.commit()

        notifications = await store.list_recent(alice.id)

        assert [n.title for n in notifications] == ["For Alice"]

    async def test_mark_read_by_owner(
        self,
        session: AsyncSession,
        make_profile,
    ):
        profile = await make_profile("alice")
        store = NotificationStore(session)
        notification = await store.create(profile.id, "T", "M")

        marked = await store.mark_read(profile.id, notification.id)

        assert marked.is_read is True
        assert await store.unread_count(profile.id) == 0

    async def test_mark_read_of_foreign_notification_fails(
        self,
        session: AsyncSession,
        make_profile,
    ):
        alice = await make_profile("alice")
        bob = await make_profile("bob")
        store = NotificationStore(session)
        notification = await store.create(alice.id, "T", "M")

        with pytest.raises(NotificationNotFoundError):
            await store.mark_read(bob.id, notification.id)

    async def test_mark_all_read(
        self,
        session: AsyncSession,
        make_profile,
    ):
        profile = await make_profile("alice")
        store = NotificationStore(session)
        for i in range(3):
            await store.create(profile.id, f"T{i}", "M")

        marked = await store.mark_all_read(profile.id)

        assert len(marked) == 3
        assert await store.unread_count(profile.id) == 0

    async def test_mark_read_bulk_is_idempotent(
        self,
        session: AsyncSession,
        hub: RealtimeHub,
        make_profile,
    ):
        profile = await make_profile("alice")
        store = NotificationStore(session)
        first = await store.create(profile.id, "T1", "M")
        second = await store.create(profile.id, "T2", "M")
        untouched = await store.create(profile.id, "T3", "M")
        await session.commit()
        await hub.drain()

        updates = []
        hub.subscribe(ChangeFilter("notifications", ChangeKind.UPDATE, "user_id", profile.id), updates.append)

        assert await store.mark_read_bulk([first.id, second.id]) == 2
        assert await store.mark_read_bulk([first.id, second.id]) == 2
        await session.commit()
        await hub.drain()

        result = await session.execute(
            select(Notification.id, Notification.is_read).where(Notification.user_id == profile.id)
        )
        states = dict(result.all())
        assert states[first.id] is True
        assert states[second.id] is True
        assert states[untouched.id] is False
        assert len(updates) == 4

    async def test_mark_read_bulk_with_no_ids(self, session: AsyncSession):
        assert await NotificationStore(session).mark_read_bulk([]) == 0

    async def test_unknown_id_is_not_found(
        self,
        session: AsyncSession,
        make_profile,
    ):
        profile = await make_profile("alice")

        with pytest.raises(NotificationNotFoundError):
            await NotificationStore(session).mark_read(profile.id, uuid4())


class TestNotificationFeed:
    """In-memory feed kept current from realtime inserts."""

    async def test_feed_prepends_new_notifications(
        self,
        session_factory,
        hub: RealtimeHub,
        make_profile,
    ):
        profile = await make_profile("alice")
        async with session_factory() as session:
            await NotificationStore(session).create(profile.id, "Old", "M")
            await session.commit()
        await hub.drain()

        feed = NotificationFeed(session_factory, hub, profile.id)
        async with feed.live():
            assert [item["title"] for item in feed.items] == ["Old"]

            async with session_factory() as session:
                await NotificationStore(session).create(profile.id, "New", "M")
                await session.commit()
            await hub.drain()

            assert [item["title"] for item in feed.items] == ["New", "Old"]
            assert feed.unread_count == 2

            await feed.mark_read(feed.items[0]["id"])
            assert feed.unread_count == 1

            await feed.mark_all_read()
            assert feed.unread_count == 0

        assert hub.subscription_count == 0

    async def test_feed_ignores_other_users(
        self,
        session_factory,
        hub: RealtimeHub,
        make_profile,
    ):
        alice = await make_profile("alice")
        bob = await make_profile("bob")

        feed = NotificationFeed(session_factory, hub, alice.id)
        async with feed.live():
            async with session_factory() as session:
                await NotificationStore(session).create(bob.id, "For Bob", "M")
                await session.commit()
            await hub.drain()

            assert feed.items == []

    async def test_insert_during_load_survives(
        self,
        session_factory,
        hub: RealtimeHub,
        make_profile,
    ):
        profile = await make_profile("alice")
        async with session_factory() as session:
            stored = await NotificationStore(session).create(profile.id, "Stored", "M")
            await session.commit()
        await hub.drain()

        feed = NotificationFeed(session_factory, hub, profile.id)

        def row(notification_id, title: str) -> ChangeEvent:
            return ChangeEvent(
                table="notifications",
                event=ChangeKind.INSERT,
                new={
                    "id": notification_id,
                    "user_id": profile.id,
                    "title": title,
                    "message": "M",
                    "type": "default",
                    "is_read": False,
                    "created_at": None,
                },
            )

        class InterleavedFactory:
            """Delivers inserts between the feed opening its session and reading."""

            def __call__(self):
                feed._on_insert(row(stored.id, "Stored"))
                feed._on_insert(row(uuid4(), "In flight"))
                return session_factory()

        feed.session_factory = InterleavedFactory()
        await feed.load()

        assert [item["title"] for item in feed.items] == ["In flight", "Stored"]
        assert len({item["id"] for item in feed.items}) == 2
