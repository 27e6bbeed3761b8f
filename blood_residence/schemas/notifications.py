"""Pydantic schemas for notifications, Telegram linking, and capabilities."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from .base import PortalBaseModel


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class NotificationResponse(PortalBaseModel):
    """One in-app notification."""

    id: UUID
    user_id: UUID
    title: str
    message: str
    type: str
    is_read: bool
    created_at: datetime | None = None


class NotificationsListResponse(PortalBaseModel):
    """Most recent notifications plus the unread total."""

    notifications: list[NotificationResponse]
    unread_count: int


class MarkAllReadResponse(PortalBaseModel):
    marked: int


# =============================================================================
# TELEGRAM
# =============================================================================


class TelegramConnectionResponse(PortalBaseModel):
    """The user's Telegram link state. All fields empty when never linked."""

    connection_code: str | None = None
    is_connected: bool = False
    connected_at: datetime | None = None


class DMNotificationRequest(PortalBaseModel):
    """Body of the DM dispatcher endpoint."""

    receiver_id: UUID
    sender_username: str = Field(..., min_length=1)
    message_preview: str | None = None


# =============================================================================
# CAPABILITIES
# =============================================================================


class CapabilitiesResponse(PortalBaseModel):
    """Role and resolved feature access of the signed-in user."""

    user_id: UUID
    username: str
    role: str
    capabilities: list[str]
