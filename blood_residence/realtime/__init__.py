"""Realtime change hub and session change capture."""

from . import capture
from .capture import record_change
from .hub import (
    ChangeEvent,
    ChangeFilter,
    ChangeKind,
    ChannelInUseError,
    RealtimeError,
    RealtimeHub,
    Subscription,
    get_hub,
    unique_channel_name,
)

__all__ = [
    "capture",
    "record_change",
    "ChangeEvent",
    "ChangeFilter",
    "ChangeKind",
    "ChannelInUseError",
    "RealtimeError",
    "RealtimeHub",
    "Subscription",
    "get_hub",
    "unique_channel_name",
]
