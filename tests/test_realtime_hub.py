"""
Tests for the realtime hub.

These tests verify:
1. FILTERS: only matching table/event/column changes are delivered
2. CHANNELS: names are unique per mount and released on every exit path
3. ISOLATION: a failing handler does not affect other subscribers
"""

import asyncio
from uuid import uuid4

import pytest

from blood_residence.realtime import (
    ChangeEvent,
    ChangeFilter,
    ChangeKind,
    ChannelInUseError,
    RealtimeHub,
    unique_channel_name,
)


def notification_insert(user_id, **fields) -> ChangeEvent:
    return ChangeEvent(
        table="notifications",
        event=ChangeKind.INSERT,
        new={"id": uuid4(), "user_id": user_id, "title": "Hi", **fields},
    )


# =============================================================================
# TEST: FILTERS
# =============================================================================


class TestChangeFilter:
    """Matching of change events against subscription filters."""

    def test_matches_table_event_and_column(self):
        user_id = uuid4()
        change_filter = ChangeFilter("notifications", ChangeKind.INSERT, "user_id", user_id)

        assert change_filter.matches(notification_insert(user_id))
        assert not change_filter.matches(notification_insert(uuid4()))

    def test_uuid_and_string_values_compare_equal(self):
        user_id = uuid4()
        change_filter = ChangeFilter("notifications", ChangeKind.INSERT, "user_id", str(user_id))

        assert change_filter.matches(notification_insert(user_id))

    def test_other_event_kind_does_not_match(self):
        user_id = uuid4()
        change_filter = ChangeFilter("notifications", ChangeKind.UPDATE, "user_id", user_id)

        assert not change_filter.matches(notification_insert(user_id))

    def test_filter_without_column_matches_whole_table(self):
        change_filter = ChangeFilter("notifications", ChangeKind.INSERT)

        assert change_filter.matches(notification_insert(uuid4()))


# =============================================================================
# TEST: SUBSCRIPTIONS
# =============================================================================


class TestSubscriptions:
    """Subscribe, publish, unsubscribe."""

    async def test_publish_delivers_to_matching_subscribers_only(self, hub: RealtimeHub):
        alice, bob = uuid4(), uuid4()
        received_alice, received_bob = [], []
        hub.subscribe(ChangeFilter("notifications", ChangeKind.INSERT, "user_id", alice), received_alice.append)
        hub.subscribe(ChangeFilter("notifications", ChangeKind.INSERT, "user_id", bob), received_bob.append)

        delivered = await hub.publish(notification_insert(alice))

        assert delivered == 1
        assert len(received_alice) == 1
        assert received_bob == []

    async def test_async_handlers_are_awaited(self, hub: RealtimeHub):
        user_id = uuid4()
        received = []

        async def handler(event):
            await asyncio.sleep(0)
            received.append(event)

        hub.subscribe(ChangeFilter("notifications", ChangeKind.INSERT, "user_id", user_id), handler)
        await hub.publish(notification_insert(user_id))

        assert len(received) == 1

    async def test_failing_handler_does_not_affect_others(self, hub: RealtimeHub):
        user_id = uuid4()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        change_filter = ChangeFilter("notifications", ChangeKind.INSERT, "user_id", user_id)
        hub.subscribe(change_filter, broken)
        hub.subscribe(change_filter, received.append)

        delivered = await hub.publish(notification_insert(user_id))

        assert delivered == 1
        assert len(received) == 1

    async def test_no_replay_for_late_subscribers(self, hub: RealtimeHub):
        user_id = uuid4()
        await hub.publish(notification_insert(user_id))

        received = []
        hub.subscribe(ChangeFilter("notifications", ChangeKind.INSERT, "user_id", user_id), received.append)

        assert received == []

    def test_unsubscribe_is_idempotent(self, hub: RealtimeHub):
        subscription = hub.subscribe(ChangeFilter("notifications", ChangeKind.INSERT), lambda e: None)

        assert hub.unsubscribe(subscription) is True
        assert hub.unsubscribe(subscription) is False
        assert hub.unsubscribe(subscription.token) is False
        assert hub.subscription_count == 0

    def test_duplicate_channel_name_is_rejected(self, hub: RealtimeHub):
        change_filter = ChangeFilter("notifications", ChangeKind.INSERT)
        hub.subscribe(change_filter, lambda e: None, channel="notifications-fixed")

        with pytest.raises(ChannelInUseError):
            hub.subscribe(change_filter, lambda e: None, channel="notifications-fixed")

    def test_unique_channel_names_differ_per_mount(self):
        user_id = uuid4()
        first = unique_channel_name("notifications", user_id)
        second = unique_channel_name("notifications", user_id)

        assert first != second
        assert first.startswith(f"notifications-{user_id}-")

    def test_two_mounts_of_same_screen_coexist(self, hub: RealtimeHub):
        user_id = uuid4()
        change_filter = ChangeFilter("notifications", ChangeKind.INSERT, "user_id", user_id)

        hub.subscribe(change_filter, lambda e: None, channel=unique_channel_name("notifications", user_id))
        hub.subscribe(change_filter, lambda e: None, channel=unique_channel_name("notifications", user_id))

        assert hub.subscription_count == 2


# =============================================================================
# TEST: SCOPED CHANNELS
# =============================================================================


class TestScopedChannel:
    """`hub.channel()` releases its subscription on every exit path."""

    async def test_released_on_normal_exit(self, hub: RealtimeHub):
        async with hub.channel(ChangeFilter("contracts", ChangeKind.UPDATE), lambda e: None):
            assert hub.subscription_count == 1

        assert hub.subscription_count == 0

    async def test_released_on_exception(self, hub: RealtimeHub):
        with pytest.raises(ValueError):
            async with hub.channel(ChangeFilter("contracts", ChangeKind.UPDATE), lambda e: None):
                raise ValueError("unmount")

        assert hub.subscription_count == 0
        assert hub.channel_names == []

    async def test_released_on_cancellation(self, hub: RealtimeHub):
        entered = asyncio.Event()

        async def mounted():
            async with hub.channel(ChangeFilter("contracts", ChangeKind.UPDATE), lambda e: None):
                entered.set()
                await asyncio.Event().wait()

        task = asyncio.create_task(mounted())
        await entered.wait()
        assert hub.subscription_count == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert hub.subscription_count == 0

    async def test_publish_soon_is_drained(self, hub: RealtimeHub):
        user_id = uuid4()
        received = []
        hub.subscribe(ChangeFilter("notifications", ChangeKind.INSERT, "user_id", user_id), received.append)

        hub.publish_soon([notification_insert(user_id), notification_insert(user_id)])
        await hub.drain()

        assert len(received) == 2
