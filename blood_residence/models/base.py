"""Declarative base and column mixins shared by the portal tables."""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import DateTime, MetaData, Uuid, func, inspect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Constraint names match the hosted project's migrations
metadata = MetaData(naming_convention={
    "ix": "ix_%(column_0_label)s",
    "uq": "%(table_name)s_%(column_0_name)s_key",
    "ck": "%(table_name)s_%(constraint_name)s_check",
    "fk": "%(table_name)s_%(column_0_name)s_fkey",
    "pk": "%(table_name)s_pkey",
})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    metadata = metadata

    type_annotation_map = {
        UUID: Uuid(as_uuid=True),
        datetime: DateTime(timezone=True),
    }

    def __repr__(self) -> str:
        identity = inspect(self).identity
        key = identity[0] if identity else None
        return f"<{type(self).__name__} {self.__tablename__}:{key}>"


class UUIDMixin:
    """Client-generated UUID primary key (the hosted tables also default one)."""

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)


class CreatedAtMixin:
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )


class TimestampMixin(CreatedAtMixin):
    """created_at plus an updated_at stamped on every ORM update."""

    updated_at: Mapped[datetime | None] = mapped_column(onupdate=utcnow, nullable=True)
