"""
Realtime WebSocket sessions.

One `RealtimeSession` per connected browser tab. It streams the user's row
changes to the tab and drives a `BrowserNotificationBridge` whose platform
is the tab itself.

Client -> server messages:
    {"type": "permission", "value": "default|granted|denied", "supported": true}
    {"type": "focus", "focused": true}
    {"type": "visibility", "visible": true}
    {"type": "notification_click", "id": "..."}
    {"type": "enable_notifications"}
    {"type": "set_source", "source": "contracts", "enabled": false}

Server -> client messages:
    {"type": "change", "table", "event", "new", "old", "commit_timestamp"}
    {"type": "notification", "id", "title", "body", "tag"}
    {"type": "close_notification", "id"}
    {"type": "request_permission"}
    {"type": "focus_window"}
    {"type": "permission_state", "permission", "status", ...}
    {"type": "error", "message"}
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any
from uuid import UUID, uuid4

from ..services.browser_notifications import (
    BrowserNotificationBridge,
    NotificationPermission,
    NotificationSource,
    UsernameResolver,
    permission_instructions,
)
from .hub import ChangeEvent, ChangeFilter, ChangeKind, RealtimeHub, unique_channel_name

logger = logging.getLogger(__name__)

SendJson = Callable[[dict], Awaitable[None]]

# (table, event, owner column) streamed to every connected tab
STREAMED_CHANGES = (
    ("notifications", ChangeKind.INSERT, "user_id"),
    ("direct_messages", ChangeKind.INSERT, "receiver_id"),
    ("contracts", ChangeKind.UPDATE, "user_id"),
    ("telegram_connections", ChangeKind.UPDATE, "user_id"),
)


# =============================================================================
# PLATFORM
# =============================================================================


class WebSocketNotification:
    """A notification displayed in the connected tab."""

    def __init__(self, platform: "WebSocketNotificationPlatform", tag: str | None):
        self.id = uuid4().hex
        self.tag = tag
        self.on_click: Callable[[], None] | None = None
        self.closed = False
        self._platform = platform

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._platform._forget(self)
        self._platform.send({"type": "close_notification", "id": self.id})


class WebSocketNotificationPlatform:
    """Notification platform backed by a browser tab over a WebSocket."""

    def __init__(
        self,
        send: Callable[[dict], None],
        supported: bool = True,
        permission: NotificationPermission | str = NotificationPermission.DEFAULT,
        focused: bool = True,
    ):
        self.send = send
        self.supported = supported
        self.focused = focused
        self.visible = True
        self._permission = NotificationPermission(permission)
        self._open: dict[str, WebSocketNotification] = {}
        self._permission_waiters: list[asyncio.Future] = []

    @property
    def open_notifications(self) -> list[WebSocketNotification]:
        return list(self._open.values())

    def permission(self) -> NotificationPermission:
        return self._permission

    async def request_permission(self) -> NotificationPermission:
        waiter = asyncio.get_running_loop().create_future()
        self._permission_waiters.append(waiter)
        self.send({"type": "request_permission"})
        try:
            return await waiter
        finally:
            if waiter in self._permission_waiters:
                self._permission_waiters.remove(waiter)

    def has_focus(self) -> bool:
        return self.focused and self.visible

    def show(self, title: str, body: str, tag: str | None) -> WebSocketNotification:
        notification = WebSocketNotification(self, tag)
        self._open[notification.id] = notification
        self.send({
            "type": "notification",
            "id": notification.id,
            "title": title,
            "body": body,
            "tag": tag,
        })
        return notification

    def focus_window(self) -> None:
        self.send({"type": "focus_window"})

    def set_permission(self, value: NotificationPermission | str) -> None:
        self._permission = NotificationPermission(value)
        for waiter in self._permission_waiters:
            if not waiter.done():
                waiter.set_result(self._permission)

    def click(self, notification_id: str) -> bool:
        notification = self._open.get(notification_id)
        if notification is None or notification.on_click is None:
            return False
        notification.on_click()
        return True

    def _forget(self, notification: WebSocketNotification) -> None:
        self._open.pop(notification.id, None)


# =============================================================================
# SESSION
# =============================================================================


class RealtimeSession:
    """Change stream and browser notifications for one connected tab."""

    def __init__(
        self,
        send_json: SendJson,
        hub: RealtimeHub,
        user_id: UUID,
        resolve_username: UsernameResolver | None = None,
        supported: bool = True,
        permission: NotificationPermission | str = NotificationPermission.DEFAULT,
        focused: bool = True,
    ):
        self.send_json = send_json
        self.hub = hub
        self.user_id = user_id
        self.resolve_username = resolve_username
        self.outbox: asyncio.Queue[dict] = asyncio.Queue()
        self.platform = WebSocketNotificationPlatform(
            self.outbox.put_nowait,
            supported=supported,
            permission=permission,
            focused=focused,
        )
        self.bridge = BrowserNotificationBridge(self.platform)
        self.permission_request: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def _forward_change(self, event: ChangeEvent) -> None:
        self.outbox.put_nowait({"type": "change", **event.to_payload()})

    @asynccontextmanager
    async def open(self, pump: bool = True) -> AsyncIterator["RealtimeSession"]:
        """Subscribe the tab's channels; all of them are released on exit."""
        async with AsyncExitStack() as stack:
            for table, kind, column in STREAMED_CHANGES:
                await stack.enter_async_context(self.hub.channel(
                    ChangeFilter(table, kind, column, self.user_id),
                    self._forward_change,
                    name=unique_channel_name(f"ws-{table}", self.user_id),
                ))
            await stack.enter_async_context(
                self.bridge.attach(self.hub, self.user_id, self.resolve_username)
            )
            if pump:
                self._spawn(self._pump())
            logger.info(f"Realtime session opened for user {self.user_id}")
            try:
                yield self
            finally:
                await self._cancel_tasks()
                logger.info(f"Realtime session closed for user {self.user_id}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _cancel_tasks(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _pump(self) -> None:
        while True:
            message = await self.outbox.get()
            await self.send_json(message)

    async def flush(self) -> list[dict]:
        """Send every queued message now and return them."""
        sent = []
        while not self.outbox.empty():
            message = self.outbox.get_nowait()
            await self.send_json(message)
            sent.append(message)
        return sent

    # =========================================================================
    # CLIENT MESSAGES
    # =========================================================================

    def _send_permission_state(self) -> None:
        self.outbox.put_nowait({
            "type": "permission_state",
            **permission_instructions(self.bridge.permission),
        })

    async def _request_permission(self) -> bool:
        granted = await self.bridge.request()
        self._send_permission_state()
        return granted

    async def handle_message(self, message: Any) -> None:
        if not isinstance(message, dict):
            self.outbox.put_nowait({"type": "error", "message": "Invalid message"})
            return

        kind = message.get("type")
        try:
            if kind == "permission":
                if "supported" in message:
                    self.platform.supported = bool(message["supported"])
                self.platform.set_permission(message.get("value"))
                self.bridge.sync_permission()
                self._send_permission_state()
            elif kind == "focus":
                self.platform.focused = bool(message.get("focused"))
                self.bridge.sync_permission()
            elif kind == "visibility":
                self.platform.visible = bool(message.get("visible"))
                self.bridge.sync_permission()
            elif kind == "notification_click":
                self.platform.click(str(message.get("id")))
            elif kind == "enable_notifications":
                # Runs beside the receive loop, which must stay free to
                # deliver the tab's permission answer
                if self.permission_request is None or self.permission_request.done():
                    self.permission_request = self._spawn(self._request_permission())
            elif kind == "set_source":
                self.bridge.set_source_enabled(
                    NotificationSource(message.get("source")),
                    bool(message.get("enabled")),
                )
            else:
                logger.warning(f"Unknown realtime message type from user {self.user_id}: {kind}")
                self.outbox.put_nowait({"type": "error", "message": "Unknown message type"})
        except ValueError:
            self.outbox.put_nowait({"type": "error", "message": "Invalid message"})
