"""Pydantic schemas for bookmark endpoints."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.base import as_utc
from schemas.validators import (
    validate_collection_length,
    validate_title_length,
    validate_url_length,
)


class BookmarkCreate(BaseModel):
    """
    Schema for creating a new bookmark.

    Title and url are accepted as plain strings; well-formedness (non-empty
    title, absolute url) is checked by the mutation gateway so that failures
    come back as field-level validation errors.
    """

    title: str = ""
    url: str = ""

    @field_validator("title")
    @classmethod
    def check_title_length(cls, v: str) -> str:
        """Validate title length."""
        return validate_title_length(v)

    @field_validator("url")
    @classmethod
    def check_url_length(cls, v: str) -> str:
        """Validate url length."""
        return validate_url_length(v)


class BookmarkUpdate(BaseModel):
    """
    Schema for updating an existing bookmark.

    Only fields present in the request are applied. ``collection`` may be sent
    as null to unassign the bookmark, which is different from omitting it.
    """

    title: str | None = None
    url: str | None = None
    collection: str | None = None

    @field_validator("title")
    @classmethod
    def check_title_length(cls, v: str | None) -> str | None:
        """Validate title length."""
        return validate_title_length(v)

    @field_validator("url")
    @classmethod
    def check_url_length(cls, v: str | None) -> str | None:
        """Validate url length."""
        return validate_url_length(v)

    @field_validator("collection")
    @classmethod
    def check_collection_length(cls, v: str | None) -> str | None:
        """Validate collection length."""
        return validate_collection_length(v)


class FavoriteUpdate(BaseModel):
    """Schema for setting the favorite flag to an explicit target value."""

    is_favorite: bool


class CollectionUpdate(BaseModel):
    """Schema for assigning (or clearing, with null) a bookmark's collection."""

    collection: str | None = None

    @field_validator("collection")
    @classmethod
    def check_collection_length(cls, v: str | None) -> str | None:
        """Validate collection length."""
        return validate_collection_length(v)


class BookmarkResponse(BaseModel):
    """Schema for bookmark responses; also the record shape carried by change events."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    title: str
    url: str
    is_favorite: bool = False
    collection: str | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Report timestamps as UTC even when the driver returns naive values."""
        return as_utc(v)


class BookmarkListResponse(BaseModel):
    """Authoritative snapshot of a user's bookmarks, newest first."""

    items: list[BookmarkResponse]
    total: int


class CollectionGroup(BaseModel):
    """Bookmarks sharing one collection label."""

    name: str
    count: int
    items: list[BookmarkResponse]


class CollectionsResponse(BaseModel):
    """Bookmarks grouped by collection, 'Unorganized' last."""

    groups: list[CollectionGroup]


class BookmarkStats(BaseModel):
    """Dashboard counters."""

    total: int
    recent: int = Field(description="Bookmarks created in the last 7 days")
    favorites: int
