"""SQLAlchemy ORM Models for Blood Residence.

These models map to the tables of the hosted PostgreSQL project. Row-level
security policies live in the database; the backend connects with the
service role and enforces ownership in the service layer.
"""

from datetime import date, datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, CreatedAtMixin, TimestampMixin, UUIDMixin


# =============================================================================
# ENUMS
# =============================================================================


class AppRole(str, PyEnum):
    """Coarse authorization tier of a profile."""
    GUEST = "guest"
    MEMBER = "member"
    ADMIN = "admin"
    DEVELOPER = "developer"


class ContractStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"


class ApplicationStatus(str, PyEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class NotificationType(str, PyEnum):
    DEFAULT = "default"
    SUCCESS = "success"
    WARNING = "warning"
    CONTRACT_PAID = "contract_paid"
    MESSAGE = "message"


class TicketType(str, PyEnum):
    SUPPORT = "support"
    IDEA = "idea"


class TicketStatus(str, PyEnum):
    OPEN = "open"
    ANSWERED = "answered"


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


# =============================================================================
# PROFILES & ROLES
# =============================================================================


class CustomRole(Base, UUIDMixin, CreatedAtMixin):
    """Named role with per-feature capability flags."""

    __tablename__ = "custom_roles"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    color: Mapped[str] = mapped_column(String(32), default="#ffffff", nullable=False)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)

    has_admin_access: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_developer_access: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_giveaways_access: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_news_access: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_reports_access: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_roulette_access: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_change_username: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_view_contracts: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class Profile(Base, UUIDMixin, TimestampMixin):
    """Portal profile. The id equals the auth provider's user id."""

    __tablename__ = "profiles"

    username: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[AppRole] = mapped_column(
        Enum(AppRole, name="app_role", values_callable=_enum_values),
        default=AppRole.GUEST,
        nullable=False,
    )
    custom_role_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("custom_roles.id", ondelete="SET NULL"),
        nullable=True,
    )
    discord_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    static: Mapped[str | None] = mapped_column(String(50), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    bc_balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sort_priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    custom_role: Mapped[CustomRole | None] = relationship(lazy="selectin")


# =============================================================================
# NOTIFICATIONS & TELEGRAM
# =============================================================================


class Notification(Base, UUIDMixin, CreatedAtMixin):
    """Durable in-app notification owned by one profile."""

    __tablename__ = "notifications"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(
        String(32), default=NotificationType.DEFAULT.value, nullable=False
    )
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("idx_notifications_user_created", "user_id", "created_at"),
    )


class TelegramConnection(Base, UUIDMixin, CreatedAtMixin):
    """Pairing between a profile and a Telegram chat. One row per user."""

    __tablename__ = "telegram_connections"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    connection_code: Mapped[str] = mapped_column(String(8), nullable=False, index=True)
    telegram_chat_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    is_connected: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    connected_at: Mapped[datetime | None] = mapped_column(nullable=True)

    profile: Mapped[Profile] = relationship(lazy="selectin")


class SupportTicket(Base, UUIDMixin, TimestampMixin):
    """Support request or idea submitted through the Telegram bot."""

    __tablename__ = "support_tickets"

    user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
    )
    telegram_chat_id: Mapped[str] = mapped_column(String(64), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(
        String(16), default=TicketType.SUPPORT.value, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(16), default=TicketStatus.OPEN.value, nullable=False, index=True
    )
    admin_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    responded_by: Mapped[UUID | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
    )

    profile: Mapped[Profile | None] = relationship(
        foreign_keys=[user_id], lazy="selectin"
    )


# =============================================================================
# MEMBER WORKFLOWS
# =============================================================================


class Contract(Base, TimestampMixin):
    """Contract submitted by a member and paid out by an admin."""

    __tablename__ = "contracts"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    discord_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ContractStatus] = mapped_column(
        Enum(ContractStatus, name="contract_status", values_callable=_enum_values),
        default=ContractStatus.PENDING,
        nullable=False,
    )
    notified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class DirectMessage(Base, UUIDMixin, CreatedAtMixin):
    """Private message between two profiles."""

    __tablename__ = "direct_messages"

    sender_id: Mapped[UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    receiver_id: Mapped[UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reply_to_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("direct_messages.id", ondelete="SET NULL"),
        nullable=True,
    )


class Vacation(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "vacations"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    vacation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)
    responded_by: Mapped[UUID | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )


class LeaveRequest(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "leave_requests"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    username_ingame: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)
    responded_by: Mapped[UUID | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )


# =============================================================================
# ADMIN CONTENT
# =============================================================================


class Application(Base, CreatedAtMixin):
    """Membership application submitted from the public Apply page."""

    __tablename__ = "applications"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    static: Mapped[str] = mapped_column(String(50), nullable=False)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    timezone: Mapped[str] = mapped_column(String(50), nullable=False)
    playtime: Mapped[str] = mapped_column(String(100), nullable=False)
    motive: Mapped[str] = mapped_column(Text, nullable=False)
    discord_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus, name="application_status", values_callable=_enum_values),
        default=ApplicationStatus.PENDING,
        nullable=False,
    )


class News(Base, CreatedAtMixin):
    __tablename__ = "news"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(nullable=True)


class SiteSettings(Base):
    """Single-row table with portal-wide switches."""

    __tablename__ = "site_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    maintenance_mode: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    member_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    primary_color: Mapped[str | None] = mapped_column(String(32), nullable=True)
    background_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    snow_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    garland_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    nav_labels: Mapped[dict | None] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=True
    )
    social_discord: Mapped[str | None] = mapped_column(Text, nullable=True)
    social_telegram: Mapped[str | None] = mapped_column(Text, nullable=True)
    social_tiktok: Mapped[str | None] = mapped_column(Text, nullable=True)
    social_youtube: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
