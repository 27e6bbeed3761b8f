"""
Tests for RealtimeSession, the per-tab WebSocket session.

Sessions are opened without the pump task; `flush()` hands over whatever
the tab would have received.
"""

import asyncio
from uuid import uuid4

import pytest

from blood_residence.realtime import ChangeEvent, ChangeKind, RealtimeHub
from blood_residence.realtime.websocket import RealtimeSession
from blood_residence.services.browser_notifications import NotificationPermission


class Tab:
    """Collects everything sent to the browser."""

    def __init__(self):
        self.received: list[dict] = []

    async def send_json(self, message: dict) -> None:
        self.received.append(message)

    def of_type(self, kind: str) -> list[dict]:
        return [m for m in self.received if m["type"] == kind]


@pytest.fixture
def tab() -> Tab:
    return Tab()


def notification_insert(user_id) -> ChangeEvent:
    return ChangeEvent(
        table="notifications",
        event=ChangeKind.INSERT,
        new={"id": "n1", "user_id": user_id, "title": "Увага", "message": "Збори о 20:00"},
    )


class TestChangeStream:
    async def test_forwards_own_changes_only(self, hub: RealtimeHub, tab: Tab):
        user_id = uuid4()
        session = RealtimeSession(tab.send_json, hub, user_id)

        async with session.open(pump=False):
            await hub.publish(notification_insert(user_id))
            await hub.publish(notification_insert(uuid4()))
            await session.flush()

        changes = tab.of_type("change")
        assert len(changes) == 1
        assert changes[0]["table"] == "notifications"
        assert changes[0]["event"] == "INSERT"
        assert changes[0]["new"]["user_id"] == str(user_id)

    async def test_channels_released_on_exit(self, hub: RealtimeHub, tab: Tab):
        session = RealtimeSession(
            tab.send_json,
            hub,
            uuid4(),
            permission=NotificationPermission.GRANTED,
        )

        async with session.open(pump=False):
            # four change streams plus three notification sources
            assert hub.subscription_count == 7

        assert hub.subscription_count == 0

    async def test_pump_delivers_without_flush(self, hub: RealtimeHub, tab: Tab):
        user_id = uuid4()
        session = RealtimeSession(tab.send_json, hub, user_id)

        async with session.open():
            await hub.publish(notification_insert(user_id))
            for _ in range(10):
                if tab.received:
                    break
                await asyncio.sleep(0.01)

        assert tab.of_type("change")


class TestNotifications:
    async def test_permission_message_enables_alerts(self, hub: RealtimeHub, tab: Tab):
        user_id = uuid4()
        session = RealtimeSession(tab.send_json, hub, user_id, focused=False)

        async with session.open(pump=False):
            await session.handle_message({"type": "permission", "value": "granted"})
            await hub.publish(notification_insert(user_id))
            await session.flush()

        state = tab.of_type("permission_state")[0]
        assert state["permission"] == "granted"
        assert state["can_request"] is False
        alert = tab.of_type("notification")[0]
        assert alert["title"] == "Увага"
        assert alert["tag"] == "notification-n1"

    async def test_focused_tab_gets_no_alert(self, hub: RealtimeHub, tab: Tab):
        user_id = uuid4()
        session = RealtimeSession(
            tab.send_json,
            hub,
            user_id,
            permission=NotificationPermission.GRANTED,
            focused=True,
        )

        async with session.open(pump=False):
            await hub.publish(notification_insert(user_id))
            await session.handle_message({"type": "visibility", "visible": False})
            await hub.publish(notification_insert(user_id))
            await session.flush()

        assert len(tab.of_type("change")) == 2
        assert len(tab.of_type("notification")) == 1

    async def test_enable_notifications_round_trip(self, hub: RealtimeHub, tab: Tab):
        session = RealtimeSession(tab.send_json, hub, uuid4())

        async with session.open(pump=False):
            await session.handle_message({"type": "enable_notifications"})
            await asyncio.sleep(0)
            await session.flush()
            assert tab.of_type("request_permission")

            await session.handle_message({"type": "permission", "value": "granted"})
            granted = await session.permission_request
            await session.flush()

        assert granted is True
        assert session.bridge.permission == NotificationPermission.GRANTED
        assert tab.of_type("permission_state")[-1]["permission"] == "granted"

    async def test_denied_tab_is_never_prompted(self, hub: RealtimeHub, tab: Tab):
        session = RealtimeSession(tab.send_json, hub, uuid4(), permission="denied")

        async with session.open(pump=False):
            await session.handle_message({"type": "enable_notifications"})
            assert await session.permission_request is False
            await session.flush()

        assert tab.of_type("request_permission") == []
        assert tab.of_type("permission_state")[0]["can_request"] is False

    async def test_click_focuses_and_closes(self, hub: RealtimeHub, tab: Tab):
        user_id = uuid4()
        session = RealtimeSession(
            tab.send_json,
            hub,
            user_id,
            permission=NotificationPermission.GRANTED,
            focused=False,
        )

        async with session.open(pump=False):
            await hub.publish(notification_insert(user_id))
            await session.flush()
            shown_id = tab.of_type("notification")[0]["id"]

            await session.handle_message({"type": "notification_click", "id": shown_id})
            await session.flush()

        assert tab.of_type("focus_window")
        assert tab.of_type("close_notification") == [{"type": "close_notification", "id": shown_id}]
        assert session.platform.open_notifications == []

    async def test_source_toggle(self, hub: RealtimeHub, tab: Tab):
        user_id = uuid4()
        session = RealtimeSession(
            tab.send_json,
            hub,
            user_id,
            permission=NotificationPermission.GRANTED,
            focused=False,
        )

        async with session.open(pump=False):
            await session.handle_message({"type": "set_source", "source": "notifications", "enabled": False})
            await hub.publish(notification_insert(user_id))
            await session.flush()

        assert tab.of_type("notification") == []
        assert len(tab.of_type("change")) == 1


class TestClientMessages:
    @pytest.mark.parametrize("message", [
        {"type": "teleport"},
        {"type": "set_source", "source": "weather", "enabled": True},
        {"type": "permission", "value": "maybe"},
        "not an object",
        None,
    ])
    async def test_bad_messages_answer_with_error(self, hub: RealtimeHub, tab: Tab, message):
        session = RealtimeSession(tab.send_json, hub, uuid4())

        async with session.open(pump=False):
            await session.handle_message(message)
            await session.flush()

        assert len(tab.of_type("error")) == 1
