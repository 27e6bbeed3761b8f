"""
Browser Notification Bridge.

Turns realtime change events into native system notifications in the
user's browser, subject to the notification permission and page focus.

Permission lifecycle:
- default: the user has not decided; `request()` shows the prompt
- granted: notifications may be shown
- denied: terminal for this component. Browsers forbid re-prompting, so the
  only way back is the site settings; `sync_permission()` picks that up
  when the window regains focus or visibility

Three event sources feed `show()` through independent realtime channels:
new direct messages, contracts becoming paid, and new notification rows.
Channels are only open while permission is granted.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Protocol
from uuid import UUID

from ..core.config import get_settings
from ..realtime.hub import (
    ChangeEvent,
    ChangeFilter,
    ChangeKind,
    RealtimeHub,
    Subscription,
    unique_channel_name,
)
from .notifications import truncate

logger = logging.getLogger(__name__)
settings = get_settings()

DM_BODY_LIMIT = 100
UNKNOWN_SENDER = "Хтось"


class NotificationPermission(str, Enum):
    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"


class NotificationSource(str, Enum):
    DIRECT_MESSAGES = "direct_messages"
    CONTRACTS = "contracts"
    NOTIFICATIONS = "notifications"


# =============================================================================
# PLATFORM
# =============================================================================


class NotificationHandle(Protocol):
    """A notification currently displayed by the platform."""

    tag: str | None
    on_click: Callable[[], None] | None

    def close(self) -> None: ...


class NotificationPlatform(Protocol):
    """What the bridge needs from the browser."""

    supported: bool

    def permission(self) -> NotificationPermission | str: ...

    async def request_permission(self) -> NotificationPermission | str: ...

    def has_focus(self) -> bool: ...

    def show(self, title: str, body: str, tag: str | None) -> NotificationHandle: ...

    def focus_window(self) -> None: ...


UsernameResolver = Callable[[UUID], Awaitable[str | None]]


def _value(raw: Any) -> Any:
    return getattr(raw, "value", raw)


# =============================================================================
# BRIDGE
# =============================================================================


class BrowserNotificationBridge:
    """Permission state machine plus the show/suppress rules."""

    def __init__(
        self,
        platform: NotificationPlatform,
        timeout: float | None = None,
    ):
        self.platform = platform
        self.timeout = timeout if timeout is not None else settings.browser_notification_timeout_seconds
        self.permission = self._read_platform_permission()

        self._hub: RealtimeHub | None = None
        self._user_id: UUID | None = None
        self._resolve_username: UsernameResolver | None = None
        self._enabled: set[NotificationSource] = set(NotificationSource)
        self._subscriptions: dict[NotificationSource, Subscription] = {}

    @property
    def is_supported(self) -> bool:
        return bool(getattr(self.platform, "supported", False))

    @property
    def active_sources(self) -> list[NotificationSource]:
        return list(self._subscriptions)

    def _read_platform_permission(self) -> NotificationPermission:
        if not self.is_supported:
            return NotificationPermission.DEFAULT
        try:
            return NotificationPermission(_value(self.platform.permission()))
        except ValueError:
            return NotificationPermission.DEFAULT

    # =========================================================================
    # PERMISSION
    # =========================================================================

    def sync_permission(self) -> NotificationPermission:
        """Re-read the platform permission (window focus / visibility change)."""
        current = self._read_platform_permission()
        if current != self.permission:
            logger.info(f"Notification permission changed: {self.permission.value} -> {current.value}")
            self.permission = current
            self._reconcile()
        return self.permission

    async def request(self) -> bool:
        """Prompt the user for permission. Never re-prompts once denied."""
        if not self.is_supported:
            logger.info("This browser does not support notifications")
            return False
        if self.permission == NotificationPermission.DENIED:
            logger.info("Notification permission denied, only the browser settings can change it")
            return False
        if self.permission == NotificationPermission.GRANTED:
            return True

        try:
            result = await self.platform.request_permission()
            self.permission = NotificationPermission(_value(result))
        except Exception as e:
            logger.error(f"Error requesting notification permission: {e}")
            return False

        self._reconcile()
        return self.permission == NotificationPermission.GRANTED

    # =========================================================================
    # DISPLAY
    # =========================================================================

    def show(self, title: str, body: str = "", tag: str | None = None) -> bool:
        """Display a system notification. Returns True if one was shown."""
        if self.permission != NotificationPermission.GRANTED:
            return False
        if self.platform.has_focus():
            logger.debug(f"Page is focused, skipping notification {tag}")
            return False

        try:
            handle = self.platform.show(title, body, tag)
        except Exception as e:
            logger.error(f"Error showing notification: {e}")
            return False

        handle.on_click = lambda: self._on_click(handle)
        try:
            asyncio.get_running_loop().call_later(self.timeout, handle.close)
        except RuntimeError:
            logger.debug("No running loop, notification will not auto-close")
        return True

    def _on_click(self, handle: NotificationHandle) -> None:
        self.platform.focus_window()
        handle.close()

    # =========================================================================
    # EVENT SOURCES
    # =========================================================================

    async def _on_direct_message(self, event: ChangeEvent) -> None:
        message = event.new
        # Skip the sender lookup when the alert would be suppressed anyway
        if self.platform.has_focus():
            return

        sender_name = None
        if self._resolve_username is not None and message.get("sender_id"):
            sender_name = await self._resolve_username(message["sender_id"])

        self.show(
            f"Нове повідомлення від {sender_name or UNKNOWN_SENDER}",
            truncate(message.get("message"), DM_BODY_LIMIT),
            tag=f"dm-{message.get('id')}",
        )

    def _on_contract_update(self, event: ChangeEvent) -> None:
        new_status = _value(event.new.get("status"))
        old_status = _value(event.old.get("status"))
        if new_status != "paid" or old_status == "paid":
            return

        amount = event.new.get("amount") or 0
        self.show(
            "Контракт виплачено! 💰",
            f"Ваш контракт на суму {amount:,} виплачено!",
            tag=f"contract-paid-{event.new.get('id')}",
        )

    def _on_notification(self, event: ChangeEvent) -> None:
        row = event.new
        self.show(
            row.get("title") or "",
            row.get("message") or "",
            tag=f"notification-{row.get('id')}",
        )

    def _source_spec(self, source: NotificationSource) -> tuple[ChangeFilter, Callable, str]:
        if source == NotificationSource.DIRECT_MESSAGES:
            return (
                ChangeFilter("direct_messages", ChangeKind.INSERT, "receiver_id", self._user_id),
                self._on_direct_message,
                "browser-dm-notifications",
            )
        if source == NotificationSource.CONTRACTS:
            return (
                ChangeFilter("contracts", ChangeKind.UPDATE, "user_id", self._user_id),
                self._on_contract_update,
                "browser-contract-notifications",
            )
        return (
            ChangeFilter("notifications", ChangeKind.INSERT, "user_id", self._user_id),
            self._on_notification,
            "browser-notifications",
        )

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def _reconcile(self) -> None:
        """Open channels for enabled sources while granted, close the rest."""
        if self._hub is None:
            return

        wanted = self._enabled if self.permission == NotificationPermission.GRANTED else set()

        for source in list(self._subscriptions):
            if source not in wanted:
                self._hub.unsubscribe(self._subscriptions.pop(source))

        for source in NotificationSource:
            if source in wanted and source not in self._subscriptions:
                change_filter, handler, prefix = self._source_spec(source)
                self._subscriptions[source] = self._hub.subscribe(
                    change_filter,
                    handler,
                    channel=unique_channel_name(prefix, self._user_id),
                )

    def set_source_enabled(self, source: NotificationSource, enabled: bool) -> None:
        """Turn one event source on or off without touching the others."""
        if enabled:
            self._enabled.add(source)
        else:
            self._enabled.discard(source)
        self._reconcile()

    def bind(
        self,
        hub: RealtimeHub,
        user_id: UUID,
        resolve_username: UsernameResolver | None = None,
        enabled_sources: Iterable[NotificationSource] | None = None,
    ) -> None:
        """Connect the bridge to a user's change feed."""
        self.stop()
        self._hub = hub
        self._user_id = user_id
        self._resolve_username = resolve_username
        if enabled_sources is not None:
            self._enabled = set(enabled_sources)
        self._reconcile()

    def stop(self) -> None:
        """Release every channel and detach from the hub."""
        if self._hub is not None:
            for subscription in self._subscriptions.values():
                self._hub.unsubscribe(subscription)
        self._subscriptions.clear()
        self._hub = None

    @asynccontextmanager
    async def attach(
        self,
        hub: RealtimeHub,
        user_id: UUID,
        resolve_username: UsernameResolver | None = None,
        enabled_sources: Iterable[NotificationSource] | None = None,
    ) -> AsyncIterator["BrowserNotificationBridge"]:
        """Bridge bound to a user's change feed for the duration of a block."""
        self.bind(hub, user_id, resolve_username, enabled_sources)
        try:
            yield self
        finally:
            self.stop()


# =============================================================================
# PERMISSION UI TEXT
# =============================================================================


PERMISSION_STATUS_TEXT = {
    NotificationPermission.GRANTED: "Сповіщення увімкнені",
    NotificationPermission.DENIED: "Сповіщення заблоковані",
    NotificationPermission.DEFAULT: "Очікує дозволу",
}

PERMISSION_GUIDANCE = {
    NotificationPermission.GRANTED: (
        "Ви будете отримувати сповіщення про:",
        [
            "Нові особисті повідомлення",
            "Виплати контрактів",
            "Системні сповіщення",
        ],
    ),
    NotificationPermission.DENIED: (
        "Щоб увімкнути сповіщення:",
        [
            "Натисніть на іконку замка в адресному рядку",
            'Знайдіть "Сповіщення" в налаштуваннях',
            'Змініть на "Дозволити"',
            "Оновіть сторінку",
        ],
    ),
    NotificationPermission.DEFAULT: (
        'Натисніть "Увімкнути" вище, щоб отримувати сповіщення про нові '
        "повідомлення та виплати контрактів навіть коли вкладка не активна.",
        [],
    ),
}


def permission_banner_visible(
    supported: bool,
    permission: NotificationPermission | str,
    dismissed: bool,
) -> bool:
    """The opt-in banner only shows while the user has not decided."""
    return supported and not dismissed and _value(permission) == NotificationPermission.DEFAULT.value


def permission_status_label(permission: NotificationPermission | str) -> str:
    return PERMISSION_STATUS_TEXT[NotificationPermission(_value(permission))]


def permission_instructions(permission: NotificationPermission | str) -> dict:
    """Status line and next steps for the notification settings panel.

    Denied is only ever explained, never retried: the request button is
    offered for the default state alone.
    """
    state = NotificationPermission(_value(permission))
    heading, items = PERMISSION_GUIDANCE[state]
    return {
        "permission": state.value,
        "status": PERMISSION_STATUS_TEXT[state],
        "can_request": state == NotificationPermission.DEFAULT,
        "heading": heading,
        "items": list(items),
    }
