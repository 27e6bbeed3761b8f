"""SQLAlchemy ORM Models for Blood Residence."""

from .base import Base, CreatedAtMixin, TimestampMixin, UUIDMixin, utcnow
from .models import (
    # Enums
    AppRole,
    ApplicationStatus,
    ContractStatus,
    NotificationType,
    TicketStatus,
    TicketType,
    # Profiles
    CustomRole,
    Profile,
    # Notifications & Telegram
    Notification,
    SupportTicket,
    TelegramConnection,
    # Member workflows
    Contract,
    DirectMessage,
    LeaveRequest,
    Vacation,
    # Admin content
    Application,
    News,
    SiteSettings,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "CreatedAtMixin",
    "TimestampMixin",
    "utcnow",
    # Enums
    "AppRole",
    "ApplicationStatus",
    "ContractStatus",
    "NotificationType",
    "TicketStatus",
    "TicketType",
    # Profiles
    "CustomRole",
    "Profile",
    # Notifications & Telegram
    "Notification",
    "SupportTicket",
    "TelegramConnection",
    # Member workflows
    "Contract",
    "DirectMessage",
    "LeaveRequest",
    "Vacation",
    # Admin content
    "Application",
    "News",
    "SiteSettings",
]
