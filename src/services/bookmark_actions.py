"""
Mutation gateway for bookmarks.

Each operation checks authentication, validates input, performs an
owner-scoped write, commits, publishes the matching change event to the
owner's feed and reports the outcome as an ActionResult. Nothing raised below
this layer reaches the caller: domain errors become typed failures and
unexpected exceptions become a generic persistence failure.
"""
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import AuthProvider
from models.bookmark import Bookmark
from models.user import User
from schemas.bookmark import BookmarkResponse, BookmarkUpdate
from schemas.change_event import BookmarkChangeEvent, ChangeEventType
from schemas.results import ActionResult
from schemas.validators import (
    is_valid_title,
    is_valid_url,
    normalize_collection,
    validate_collection_length,
    validate_title_length,
    validate_url_length,
)
from services import bookmark_service
from services.change_feed import ChangeFeed
from services.exceptions import (
    BookmarkActionError,
    PersistenceError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TITLE_REQUIRED = "Title is required"
URL_REQUIRED = "URL is required"
URL_INVALID = "Please enter a valid URL (e.g., https://example.com)"
ID_REQUIRED = "Bookmark ID is required"
ID_INVALID = "Bookmark ID is not valid"
NOT_FOUND = "Bookmark not found"


def _check_length(field: str, value: str | None, validator: Callable[[str | None], str | None]) -> None:
    try:
        validator(value)
    except ValueError as e:
        raise ValidationError(field, str(e)) from e


def parse_bookmark_id(bookmark_id: UUID | str | None) -> UUID:
    """
    Coerce a client-supplied id into a UUID.

    Raises:
        ValidationError: If the id is missing or not a UUID.
    """
    if isinstance(bookmark_id, UUID):
        return bookmark_id
    if bookmark_id is None or not str(bookmark_id).strip():
        raise ValidationError("id", ID_REQUIRED)
    try:
        return UUID(str(bookmark_id).strip())
    except ValueError as e:
        raise ValidationError("id", ID_INVALID) from e


def _existing_bookmark_id(bookmark_id: UUID | str | None) -> UUID:
    """
    Coerce the id of a record that must already exist.

    An id that cannot be parsed cannot name a record, so it fails like any
    other missing bookmark.

    Raises:
        PersistenceError: If the id is missing or not a UUID.
    """
    try:
        return parse_bookmark_id(bookmark_id)
    except ValidationError as e:
        raise PersistenceError(NOT_FOUND) from e


def _to_response(bookmark: Bookmark) -> BookmarkResponse:
    return BookmarkResponse.model_validate(bookmark)


class BookmarkActions:
    """
    Authenticated, owner-scoped bookmark operations.

    Args:
        db: Session for this unit of work.
        auth: Source of the current user.
        change_feed: Feed that receives one event per committed write.
    """

    def __init__(self, db: AsyncSession, auth: AuthProvider, change_feed: ChangeFeed) -> None:
        self._db = db
        self._auth = auth
        self._feed = change_feed

    # --- Reads ---

    async def list_bookmarks(
        self,
        favorites_only: bool = False,
        collection: str | None = None,
    ) -> ActionResult[list[BookmarkResponse]]:
        """Authoritative snapshot of the caller's bookmarks, newest first."""

        async def op() -> list[BookmarkResponse]:
            user = await self._require_user()
            bookmarks = await bookmark_service.list_bookmarks(
                self._db,
                user.id,
                favorites_only=favorites_only,
                collection=normalize_collection(collection),
            )
            return [_to_response(b) for b in bookmarks]

        return await self._run("list", op)

    async def get_bookmark(self, bookmark_id: UUID | str) -> ActionResult[BookmarkResponse]:
        """Fetch one of the caller's bookmarks."""

        async def op() -> BookmarkResponse:
            user = await self._require_user()
            parsed_id = parse_bookmark_id(bookmark_id)
            bookmark = await bookmark_service.get_bookmark(self._db, user.id, parsed_id)
            if bookmark is None:
                raise PersistenceError(NOT_FOUND)
            return _to_response(bookmark)

        return await self._run("get", op)

    # --- Writes ---

    async def create(self, title: str | None, url: str | None) -> ActionResult[None]:
        """
        Create a bookmark from a title and url.

        The new record is not returned; sessions pick it up from the INSERT
        event on their change feed. Not idempotent: every call inserts a row.
        """

        async def op() -> None:
            if not is_valid_title(title):
                raise ValidationError("title", TITLE_REQUIRED)
            if url is None or not url.strip():
                raise ValidationError("url", URL_REQUIRED)
            if not is_valid_url(url):
                raise ValidationError("url", URL_INVALID)
            clean_title = title.strip()
            clean_url = url.strip()
            _check_length("title", clean_title, validate_title_length)
            _check_length("url", clean_url, validate_url_length)

            user = await self._require_user("You must be logged in to create bookmarks")
            bookmark = await bookmark_service.create_bookmark(
                self._db, user.id, title=clean_title, url=clean_url,
            )
            record = _to_response(bookmark)
            await self._commit_and_publish(
                user.id, BookmarkChangeEvent(event_type=ChangeEventType.INSERT, new=record),
            )
            logger.info("bookmark_created", extra={"bookmark_id": str(record.id)})

        return await self._run("create", op)

    async def delete(self, bookmark_id: UUID | str | None) -> ActionResult[None]:
        """
        Permanently delete one of the caller's bookmarks.

        A missing id and an id owned by someone else fail the same way.
        """

        async def op() -> None:
            parsed_id = parse_bookmark_id(bookmark_id)
            user = await self._require_user("You must be logged in to delete bookmarks")
            deleted = await bookmark_service.delete_bookmark(self._db, user.id, parsed_id)
            if deleted is None:
                raise PersistenceError(NOT_FOUND)
            record = _to_response(deleted)
            await self._commit_and_publish(
                user.id, BookmarkChangeEvent(event_type=ChangeEventType.DELETE, old=record),
            )

        return await self._run("delete", op)

    async def toggle_favorite(
        self,
        bookmark_id: UUID | str,
        is_favorite: bool,
    ) -> ActionResult[BookmarkResponse]:
        """Set the favorite flag to ``is_favorite`` and return the updated record."""

        async def op() -> BookmarkResponse:
            user = await self._require_user()
            parsed_id = _existing_bookmark_id(bookmark_id)
            bookmark = await bookmark_service.set_favorite(
                self._db, user.id, parsed_id, is_favorite,
            )
            if bookmark is None:
                raise PersistenceError(NOT_FOUND)
            return await self._finish_update(user, bookmark)

        return await self._run("toggle_favorite", op)

    async def update_collection(
        self,
        bookmark_id: UUID | str,
        collection: str | None,
    ) -> ActionResult[BookmarkResponse]:
        """Assign a collection label (None or blank unassigns) and return the updated record."""

        async def op() -> BookmarkResponse:
            user = await self._require_user()
            parsed_id = _existing_bookmark_id(bookmark_id)
            label = normalize_collection(collection)
            _check_length("collection", label, validate_collection_length)
            bookmark = await bookmark_service.set_collection(self._db, user.id, parsed_id, label)
            if bookmark is None:
                raise PersistenceError(NOT_FOUND)
            return await self._finish_update(user, bookmark)

        return await self._run("update_collection", op)

    async def update(
        self,
        bookmark_id: UUID | str,
        data: BookmarkUpdate,
    ) -> ActionResult[BookmarkResponse]:
        """
        Update any of title, url and collection.

        Only fields set on ``data`` are touched. Title and url are trimmed; a
        provided url must be absolute and a provided title non-blank.
        """

        async def op() -> BookmarkResponse:
            user = await self._require_user()
            parsed_id = _existing_bookmark_id(bookmark_id)
            changes = self._normalize_update(data)
            bookmark = await bookmark_service.update_bookmark(
                self._db, user.id, parsed_id, changes,
            )
            if bookmark is None:
                raise PersistenceError(NOT_FOUND)
            if not changes.model_fields_set:
                return _to_response(bookmark)
            return await self._finish_update(user, bookmark)

        return await self._run("update", op)

    # --- Helpers ---

    @staticmethod
    def _normalize_update(data: BookmarkUpdate) -> BookmarkUpdate:
        updates = data.model_dump(exclude_unset=True)
        if "title" in updates:
            if not is_valid_title(updates["title"]):
                raise ValidationError("title", TITLE_REQUIRED)
            updates["title"] = updates["title"].strip()
        if "url" in updates:
            if not is_valid_url(updates["url"]):
                raise ValidationError("url", URL_INVALID)
            updates["url"] = updates["url"].strip()
        if "collection" in updates:
            updates["collection"] = normalize_collection(updates["collection"])
        return BookmarkUpdate.model_validate(updates)

    async def _require_user(self, message: str | None = None) -> User:
        user = await self._auth.get_current_user()
        if user is None:
            raise UnauthorizedError(message) if message else UnauthorizedError()
        return user

    async def _finish_update(self, user: User, bookmark: Bookmark) -> BookmarkResponse:
        record = _to_response(bookmark)
        await self._commit_and_publish(
            user.id, BookmarkChangeEvent(event_type=ChangeEventType.UPDATE, new=record),
        )
        return record

    async def _commit_and_publish(self, user_id: UUID, event: BookmarkChangeEvent) -> None:
        await self._db.commit()
        await self._feed.publish(user_id, event)

    async def _run(self, operation: str, op: Callable[[], Awaitable[T]]) -> ActionResult[T]:
        """Execute an operation and fold every outcome into an ActionResult."""
        try:
            return ActionResult.ok(await op())
        except ValidationError as e:
            return ActionResult.fail("validation", e.message, field=e.field)
        except UnauthorizedError as e:
            return ActionResult.fail("unauthorized", e.message)
        except BookmarkActionError as e:
            # Raised before any write is flushed; nothing to roll back
            logger.error("Bookmark %s failed: %s", operation, e.message)
            return ActionResult.fail("persistence", e.message)
        except Exception:
            await self._safe_rollback()
            logger.exception("Unexpected error during bookmark %s", operation)
            return ActionResult.fail(
                "persistence", "An unexpected error occurred. Please try again.",
            )

    async def _safe_rollback(self) -> None:
        try:
            await self._db.rollback()
        except Exception:
            logger.exception("Rollback failed")
