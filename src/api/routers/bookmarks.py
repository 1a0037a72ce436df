"""Bookmark endpoints backed by the mutation gateway."""
from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import StreamingResponse

from api.dependencies import (
    get_bookmark_actions,
    get_change_feed,
    get_current_user_id,
    get_settings,
)
from api.errors import unwrap
from api.sse import change_event_stream
from core.config import Settings
from schemas.bookmark import (
    BookmarkCreate,
    BookmarkListResponse,
    BookmarkResponse,
    BookmarkStats,
    BookmarkUpdate,
    CollectionGroup,
    CollectionsResponse,
    CollectionUpdate,
    FavoriteUpdate,
)
from services.bookmark_actions import BookmarkActions
from services.change_feed import ChangeFeed
from sync.grouping import compute_stats, group_by_collection

router = APIRouter(prefix="/bookmarks", tags=["bookmarks"])


@router.post("/", status_code=201)
async def create_bookmark(
    data: BookmarkCreate,
    actions: BookmarkActions = Depends(get_bookmark_actions),
) -> Response:
    """
    Create a new bookmark.

    The response has no body: the new record reaches clients through the
    INSERT event on their change stream.
    """
    unwrap(await actions.create(data.title, data.url))
    return Response(status_code=201)


@router.get("/", response_model=BookmarkListResponse)
async def list_bookmarks(
    favorites_only: bool = Query(default=False, description="Only return favorites"),
    collection: str | None = Query(default=None, description="Only return this collection"),
    actions: BookmarkActions = Depends(get_bookmark_actions),
) -> BookmarkListResponse:
    """Authoritative snapshot of the current user's bookmarks, newest first."""
    items = unwrap(
        await actions.list_bookmarks(favorites_only=favorites_only, collection=collection),
    )
    return BookmarkListResponse(items=items, total=len(items))


@router.get("/collections", response_model=CollectionsResponse)
async def list_collections(
    actions: BookmarkActions = Depends(get_bookmark_actions),
) -> CollectionsResponse:
    """Current user's bookmarks grouped by collection, "Unorganized" last."""
    items = unwrap(await actions.list_bookmarks())
    return CollectionsResponse(
        groups=[
            CollectionGroup(name=group.name, count=group.count, items=list(group.bookmarks))
            for group in group_by_collection(items)
        ],
    )


@router.get("/stats", response_model=BookmarkStats)
async def get_stats(
    actions: BookmarkActions = Depends(get_bookmark_actions),
) -> BookmarkStats:
    """Total, recent (last 7 days) and favorite counts."""
    items = unwrap(await actions.list_bookmarks())
    stats = compute_stats(items, datetime.now(UTC))
    return BookmarkStats(total=stats.total, recent=stats.recent, favorites=stats.favorites)


@router.get("/changes")
async def stream_changes(
    request: Request,
    user_id: UUID = Depends(get_current_user_id),
    change_feed: ChangeFeed = Depends(get_change_feed),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    """
    Stream the current user's change events as Server-Sent Events.

    Each event is sent as ``event: change`` with the JSON payload
    ``{event_type, new, old}``. Comment lines keep idle connections open.
    The user is resolved up front, so no database session stays open while
    the stream runs.
    """
    return StreamingResponse(
        change_event_stream(
            change_feed,
            user_id,
            settings.sse_keepalive_seconds,
            request.is_disconnected,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@router.get("/{bookmark_id}", response_model=BookmarkResponse)
async def get_bookmark(
    bookmark_id: UUID,
    actions: BookmarkActions = Depends(get_bookmark_actions),
) -> BookmarkResponse:
    """Get a single bookmark by ID."""
    return unwrap(await actions.get_bookmark(bookmark_id))


@router.patch("/{bookmark_id}", response_model=BookmarkResponse)
async def update_bookmark(
    bookmark_id: UUID,
    data: BookmarkUpdate,
    actions: BookmarkActions = Depends(get_bookmark_actions),
) -> BookmarkResponse:
    """Update title, url and/or collection. Omitted fields are left unchanged."""
    return unwrap(await actions.update(bookmark_id, data))


@router.put("/{bookmark_id}/favorite", response_model=BookmarkResponse)
async def set_favorite(
    bookmark_id: UUID,
    data: FavoriteUpdate,
    actions: BookmarkActions = Depends(get_bookmark_actions),
) -> BookmarkResponse:
    """Set the favorite flag to an explicit value."""
    return unwrap(await actions.toggle_favorite(bookmark_id, data.is_favorite))


@router.put("/{bookmark_id}/collection", response_model=BookmarkResponse)
async def set_collection(
    bookmark_id: UUID,
    data: CollectionUpdate,
    actions: BookmarkActions = Depends(get_bookmark_actions),
) -> BookmarkResponse:
    """Assign a collection, or clear it with null."""
    return unwrap(await actions.update_collection(bookmark_id, data.collection))


@router.delete("/{bookmark_id}", status_code=204)
async def delete_bookmark(
    bookmark_id: UUID,
    actions: BookmarkActions = Depends(get_bookmark_actions),
) -> Response:
    """Permanently delete a bookmark."""
    unwrap(await actions.delete(bookmark_id))
    return Response(status_code=204)
