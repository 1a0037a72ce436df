"""Schemas for the per-user bookmark change feed."""
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, model_validator

from schemas.bookmark import BookmarkResponse


class ChangeEventType(StrEnum):
    """Row-level change kinds delivered by the feed."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class BookmarkChangeEvent(BaseModel):
    """
    A single change to one bookmark.

    INSERT and UPDATE carry the new row in ``new``; DELETE carries the removed
    row in ``old``. UPDATE may also carry the previous row in ``old``.
    """

    event_type: ChangeEventType
    new: BookmarkResponse | None = None
    old: BookmarkResponse | None = None

    @model_validator(mode="after")
    def check_payload(self) -> "BookmarkChangeEvent":
        """Ensure the row required by the event type is present."""
        if self.event_type == ChangeEventType.DELETE:
            if self.old is None:
                raise ValueError("DELETE events require 'old'")
        elif self.new is None:
            raise ValueError(f"{self.event_type} events require 'new'")
        return self

    @property
    def bookmark_id(self) -> UUID:
        """Id of the bookmark the event refers to."""
        record = self.new if self.new is not None else self.old
        return record.id

    @property
    def user_id(self) -> UUID:
        """Owner of the bookmark the event refers to."""
        record = self.new if self.new is not None else self.old
        return record.user_id
