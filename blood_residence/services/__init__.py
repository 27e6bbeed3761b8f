"""Business logic services for Blood Residence."""

from .browser_notifications import (
    BrowserNotificationBridge,
    NotificationPermission,
    NotificationSource,
    permission_banner_visible,
    permission_instructions,
    permission_status_label,
)
from .contracts import ContractError, ContractNotFoundError, ContractService
from .dm_notifications import DirectMessageNotifier, DispatchResult
from .notifications import (
    NotificationError,
    NotificationNotFoundError,
    NotificationStore,
    serialize_notification,
    truncate,
)
from .telegram_connections import (
    TelegramConnectionError,
    TelegramConnectionManager,
    generate_connection_code,
    serialize_connection,
)
from .telegram_gateway import (
    GatewayError,
    InvalidParamsError,
    TelegramBotGateway,
    UnknownActionError,
)

__all__ = [
    # Notifications
    "NotificationStore",
    "NotificationError",
    "NotificationNotFoundError",
    "serialize_notification",
    "truncate",
    # Browser bridge
    "BrowserNotificationBridge",
    "NotificationPermission",
    "NotificationSource",
    "permission_banner_visible",
    "permission_instructions",
    "permission_status_label",
    # Telegram
    "TelegramConnectionManager",
    "TelegramConnectionError",
    "generate_connection_code",
    "serialize_connection",
    "TelegramBotGateway",
    "GatewayError",
    "UnknownActionError",
    "InvalidParamsError",
    # Direct messages
    "DirectMessageNotifier",
    "DispatchResult",
    # Contracts
    "ContractService",
    "ContractError",
    "ContractNotFoundError",
]
