"""
Service layer for owner-scoped bookmark persistence.

Every query and write here is filtered by ``user_id`` in addition to the id,
so a guessed id belonging to another user behaves exactly like a missing one.
Functions flush but never commit; the caller owns the unit of work.
"""
import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.bookmark import Bookmark
from schemas.bookmark import BookmarkUpdate

logger = logging.getLogger(__name__)


async def create_bookmark(
    db: AsyncSession,
    user_id: UUID,
    title: str,
    url: str,
) -> Bookmark:
    """
    Insert a new bookmark for a user.

    Inputs are stored as given; callers validate and trim first. Every call
    creates a distinct row (no URL de-duplication).

    Note:
        Does not commit. Caller handles commit.
    """
    bookmark = Bookmark(user_id=user_id, title=title, url=url, is_favorite=False)
    db.add(bookmark)
    await db.flush()
    await db.refresh(bookmark)
    return bookmark


async def get_bookmark(
    db: AsyncSession,
    user_id: UUID,
    bookmark_id: UUID,
) -> Bookmark | None:
    """
    Get a bookmark by ID, scoped to user.

    Returns:
        The bookmark if it exists and belongs to the user, None otherwise.
    """
    result = await db.execute(
        select(Bookmark).where(
            Bookmark.id == bookmark_id,
            Bookmark.user_id == user_id,
        ),
    )
    return result.scalar_one_or_none()


async def list_bookmarks(
    db: AsyncSession,
    user_id: UUID,
    favorites_only: bool = False,
    collection: str | None = None,
) -> list[Bookmark]:
    """
    Load a user's bookmarks, newest first.

    Args:
        db: Database session.
        user_id: Owner to scope the query to.
        favorites_only: Only return bookmarks flagged as favorite.
        collection: Only return bookmarks with this collection label.

    Returns:
        Bookmarks ordered by created_at descending, id descending as tiebreaker.
    """
    query = select(Bookmark).where(Bookmark.user_id == user_id)
    if favorites_only:
        query = query.where(Bookmark.is_favorite.is_(True))
    if collection is not None:
        query = query.where(Bookmark.collection == collection)
    query = query.order_by(Bookmark.created_at.desc(), Bookmark.id.desc())

    result = await db.execute(query)
    return list(result.scalars().all())


async def update_bookmark(
    db: AsyncSession,
    user_id: UUID,
    bookmark_id: UUID,
    data: BookmarkUpdate,
) -> Bookmark | None:
    """
    Apply the fields present in ``data`` to a bookmark. Returns None if not found or wrong user.

    An update with no fields set returns the bookmark unchanged (updated_at
    does not move).

    Note: Does not commit. Caller handles commit.
    """
    bookmark = await get_bookmark(db, user_id, bookmark_id)
    if bookmark is None:
        return None

    update_data = data.model_dump(exclude_unset=True)
    if not update_data:
        return bookmark

    for field, value in update_data.items():
        setattr(bookmark, field, value)
    bookmark.touch()

    await db.flush()
    await db.refresh(bookmark)
    return bookmark


async def set_favorite(
    db: AsyncSession,
    user_id: UUID,
    bookmark_id: UUID,
    is_favorite: bool,
) -> Bookmark | None:
    """
    Set the favorite flag to an explicit value. Returns None if not found or wrong user.

    Setting the flag to its current value is a no-op write, which keeps
    retries idempotent.
    """
    bookmark = await get_bookmark(db, user_id, bookmark_id)
    if bookmark is None:
        return None

    if bookmark.is_favorite != is_favorite:
        bookmark.is_favorite = is_favorite
        bookmark.touch()
        await db.flush()
        await db.refresh(bookmark)
    return bookmark


async def set_collection(
    db: AsyncSession,
    user_id: UUID,
    bookmark_id: UUID,
    collection: str | None,
) -> Bookmark | None:
    """Assign a collection label (None unassigns). Returns None if not found or wrong user."""
    bookmark = await get_bookmark(db, user_id, bookmark_id)
    if bookmark is None:
        return None

    if bookmark.collection != collection:
        bookmark.collection = collection
        bookmark.touch()
        await db.flush()
        await db.refresh(bookmark)
    return bookmark


async def delete_bookmark(
    db: AsyncSession,
    user_id: UUID,
    bookmark_id: UUID,
) -> Bookmark | None:
    """
    Permanently delete a bookmark.

    Returns:
        The deleted bookmark (detached, for change notifications), or None if
        it did not exist or belongs to another user.
    """
    bookmark = await get_bookmark(db, user_id, bookmark_id)
    if bookmark is None:
        return None

    await db.delete(bookmark)
    await db.flush()
    logger.debug("bookmark_deleted", extra={"bookmark_id": str(bookmark_id)})
    return bookmark
