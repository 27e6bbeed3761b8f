"""Portal API Schemas.

- base: common configuration and error responses
- notifications: notifications, Telegram linking, capabilities
"""

from .base import ErrorResponse, FunctionErrorResponse, PortalBaseModel
from .notifications import (
    CapabilitiesResponse,
    DMNotificationRequest,
    MarkAllReadResponse,
    NotificationResponse,
    NotificationsListResponse,
    TelegramConnectionResponse,
)

__all__ = [
    "PortalBaseModel",
    "FunctionErrorResponse",
    "ErrorResponse",
    "NotificationResponse",
    "NotificationsListResponse",
    "MarkAllReadResponse",
    "TelegramConnectionResponse",
    "DMNotificationRequest",
    "CapabilitiesResponse",
]
