"""
In-process realtime change hub.

Subscribers register a filter ("insert events on notifications where
user_id = X") together with a handler and receive the new row image of every
matching change. Each subscription lives on a named channel; channel names
are unique per mount so that two mounts of the same screen never collide.

Delivery semantics:
- Events are delivered independently; no ordering relative to commit order
- A handler failure is logged and does not affect other subscribers
- There is no replay or resume token: events published while nobody is
  subscribed are lost
"""

import asyncio
import inspect
import logging
import secrets
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class RealtimeError(Exception):
    """Base exception for realtime operations."""
    pass


class ChannelInUseError(RealtimeError):
    """A channel with this name is already subscribed."""
    pass


# =============================================================================
# EVENTS & FILTERS
# =============================================================================


class ChangeKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"


def _normalize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    return value


@dataclass
class ChangeEvent:
    """A committed row change. `old` is only populated for updates."""
    table: str
    event: ChangeKind
    new: dict[str, Any]
    old: dict[str, Any] = field(default_factory=dict)
    commit_timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict:
        return jsonable_encoder({
            "table": self.table,
            "event": self.event.value,
            "new": self.new,
            "old": self.old,
            "commit_timestamp": self.commit_timestamp,
        })


@dataclass(frozen=True)
class ChangeFilter:
    """Matches one event kind on one table, optionally on `column == value`."""
    table: str
    event: ChangeKind
    column: str | None = None
    value: Any = None

    def matches(self, change: ChangeEvent) -> bool:
        if change.table != self.table or change.event != self.event:
            return False
        if self.column is None:
            return True
        return _normalize(change.new.get(self.column)) == _normalize(self.value)


ChangeHandler = Callable[[ChangeEvent], Awaitable[None] | None]


@dataclass
class Subscription:
    """Handle returned by `RealtimeHub.subscribe`."""
    token: str
    channel: str
    filter: ChangeFilter
    handler: ChangeHandler


def unique_channel_name(prefix: str, user_id: Any) -> str:
    """Build a channel name that is unique per mount."""
    return f"{prefix}-{_normalize(user_id)}-{secrets.token_hex(4)}"


# =============================================================================
# HUB
# =============================================================================


class RealtimeHub:
    """Registry of subscriptions and fan-out of change events."""

    def __init__(self):
        self._subscriptions: dict[str, Subscription] = {}
        self._channels: dict[str, str] = {}
        self._pending: set[asyncio.Task] = set()

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    @property
    def channel_names(self) -> list[str]:
        return list(self._channels)

    def subscribe(
        self,
        change_filter: ChangeFilter,
        handler: ChangeHandler,
        channel: str | None = None,
    ) -> Subscription:
        """Register a handler for matching changes and return its handle."""
        if channel is None:
            channel = unique_channel_name(change_filter.table, change_filter.value)
        if channel in self._channels:
            raise ChannelInUseError(f"Channel {channel} is already subscribed")

        subscription = Subscription(
            token=uuid4().hex,
            channel=channel,
            filter=change_filter,
            handler=handler,
        )
        self._subscriptions[subscription.token] = subscription
        self._channels[channel] = subscription.token
        logger.info(f"Realtime channel subscribed: {channel}")
        return subscription

    def unsubscribe(self, subscription: Subscription | str) -> bool:
        """Release a subscription. Safe to call more than once."""
        token = subscription.token if isinstance(subscription, Subscription) else subscription
        removed = self._subscriptions.pop(token, None)
        if removed is None:
            return False
        self._channels.pop(removed.channel, None)
        logger.info(f"Realtime channel removed: {removed.channel}")
        return True

    @asynccontextmanager
    async def channel(
        self,
        change_filter: ChangeFilter,
        handler: ChangeHandler,
        name: str | None = None,
    ) -> AsyncIterator[Subscription]:
        """Subscription scoped to a block; released on every exit path."""
        subscription = self.subscribe(change_filter, handler, channel=name)
        try:
            yield subscription
        finally:
            self.unsubscribe(subscription)

    async def publish(self, event: ChangeEvent) -> int:
        """Deliver an event to every matching subscription.

        Returns the number of handlers that completed without error.
        """
        delivered = 0
        # Snapshot: handlers may unsubscribe while we iterate
        for subscription in list(self._subscriptions.values()):
            if not subscription.filter.matches(event):
                continue
            try:
                result = subscription.handler(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Realtime handler failed on channel {subscription.channel}: {e}",
                    exc_info=True,
                )
        return delivered

    async def publish_all(self, events: Iterable[ChangeEvent]) -> int:
        delivered = 0
        for event in events:
            delivered += await self.publish(event)
        return delivered

    def publish_soon(self, events: list[ChangeEvent]) -> asyncio.Task | None:
        """Schedule delivery on the running loop without blocking the caller."""
        if not events:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, dropping {len(events)} realtime events")
            return None

        task = loop.create_task(self.publish_all(list(events)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait until every scheduled delivery has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


_hub = RealtimeHub()


def get_hub() -> RealtimeHub:
    """Process-wide hub used by request handlers and WebSocket sessions."""
    return _hub
