"""Bookmark model for storing user bookmarks."""
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, TimestampMixin, UUIDv7Mixin

if TYPE_CHECKING:
    from models.user import User


class Bookmark(Base, UUIDv7Mixin, TimestampMixin):
    """Bookmark model - stores a titled URL with a favorite flag and an optional collection label."""

    __tablename__ = "bookmarks"
    __table_args__ = (
        # Snapshot query: WHERE user_id = ? ORDER BY created_at DESC
        Index("ix_bookmarks_user_created", "user_id", "created_at"),
    )

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    is_favorite: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false(),
    )
    # Free-text grouping label; NULL means unassigned
    collection: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)

    user: Mapped["User"] = relationship(back_populates="bookmarks")
