"""SQLAlchemy declarative base with common mixins."""
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import DateTime, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from uuid6 import uuid7


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def next_timestamp(previous: datetime | None) -> datetime:
    """
    Return a timestamp strictly later than ``previous``.

    updated_at must advance on every mutation even when two writes land within
    the clock's resolution.
    """
    now = utcnow()
    if previous is None:
        return now
    previous = as_utc(previous)
    if now <= previous:
        return previous + timedelta(microseconds=1)
    return now


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class UUIDv7Mixin:
    """
    Mixin that adds a time-ordered UUIDv7 primary key.

    Ids are assigned by the application at insert time, so they are opaque to callers
    but sort roughly by creation time.
    """

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid7)


class TimestampMixin:
    """
    Mixin that adds created_at and updated_at columns.

    All timestamps are timezone-aware UTC. Values are assigned in Python rather
    than with a server default so that SQLite and PostgreSQL behave the same.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )

    def touch(self) -> None:
        """Advance updated_at after a field mutation."""
        self.updated_at = next_timestamp(self.updated_at)
