"""
Client-side bookmark synchronization.

BookmarkView keeps one ordered, in-memory list of a user's bookmarks and
reconciles three sources of change into it:

- authoritative snapshots (``load`` / ``reload``), which replace the list
  wholesale, newest first;
- change-feed events (``apply_event``), which patch it incrementally;
- optimistic local edits (``delete`` / ``toggle_favorite``), which are shown
  immediately and reverted if the gateway reports a failure.

Everything runs on one event loop, so the list needs no locking. Updates never
reorder the list; only loads sort it and only inserts prepend.
"""
import logging
from collections.abc import Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal, Protocol, TypeVar
from uuid import UUID

from schemas.bookmark import BookmarkResponse, BookmarkUpdate
from schemas.change_event import BookmarkChangeEvent, ChangeEventType
from schemas.results import ActionResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MutationGateway(Protocol):
    """Operations the view needs from the backend (in-process or over HTTP)."""

    async def list_bookmarks(
        self,
        favorites_only: bool = False,
        collection: str | None = None,
    ) -> ActionResult[list[BookmarkResponse]]:
        """Fetch an authoritative snapshot."""
        ...

    async def create(self, title: str | None, url: str | None) -> ActionResult[None]:
        """Create a bookmark."""
        ...

    async def delete(self, bookmark_id: UUID | str | None) -> ActionResult[None]:
        """Delete a bookmark."""
        ...

    async def toggle_favorite(
        self, bookmark_id: UUID | str, is_favorite: bool,
    ) -> ActionResult[BookmarkResponse]:
        """Set the favorite flag."""
        ...

    async def update_collection(
        self, bookmark_id: UUID | str, collection: str | None,
    ) -> ActionResult[BookmarkResponse]:
        """Assign or clear the collection label."""
        ...

    async def update(
        self, bookmark_id: UUID | str, data: BookmarkUpdate,
    ) -> ActionResult[BookmarkResponse]:
        """Update title, url and/or collection."""
        ...


class ChangeTransport(Protocol):
    """Live change subscription scoped to one user."""

    async def subscribe(
        self, user_id: UUID, on_event: Callable[[BookmarkChangeEvent], None],
    ) -> Any:
        """Start delivering events; returns a handle for unsubscribe()."""
        ...

    async def unsubscribe(self, handle: Any) -> None:
        """Stop delivering events for a handle."""
        ...


class ViewChangeReason(StrEnum):
    """Why listeners are being notified."""

    LOADED = "loaded"
    INSERTED = "inserted"
    UPDATED = "updated"
    DELETED = "deleted"
    REVERTED = "reverted"
    ERROR = "error"


@dataclass(frozen=True)
class ViewChange:
    """Notification delivered to view listeners after every change."""

    reason: ViewChangeReason
    items: tuple[BookmarkResponse, ...]
    bookmark_id: UUID | None = None
    error: ActionResult | None = None


ViewListener = Callable[[ViewChange], None]


@dataclass(eq=False)
class _PendingChange:
    """An optimistic edit waiting for its gateway response."""

    kind: Literal["delete", "favorite"]
    original: BookmarkResponse
    index: int
    tentative_favorite: bool | None = None
    # Set when a feed event (or a fresh snapshot) already reflects the edit
    confirmed: bool = field(default=False)


class BookmarkView:
    """
    Ordered local view of one user's bookmarks.

    Args:
        gateway: Backend operations (BookmarkActions in-process, or an HTTP client).
        transport: Change subscription used by mount()/unmount(). Optional for
            views driven purely by explicit events.
        user_id: Owner whose feed to subscribe to.
        favorites_only: Snapshot filter passed to reload().
        collection: Snapshot filter passed to reload().
    """

    def __init__(
        self,
        gateway: MutationGateway,
        transport: ChangeTransport | None = None,
        user_id: UUID | None = None,
        favorites_only: bool = False,
        collection: str | None = None,
    ) -> None:
        self._gateway = gateway
        self._transport = transport
        self._user_id = user_id
        self._favorites_only = favorites_only
        self._collection = collection
        self._items: list[BookmarkResponse] = []
        self._pending: dict[UUID, list[_PendingChange]] = {}
        self._listeners: list[ViewListener] = []
        self._handle: Any = None
        # Bumped on unmount; operations started under an older generation
        # must not touch the list when they complete.
        self._generation = 0

    # --- Read access ---

    @property
    def items(self) -> tuple[BookmarkResponse, ...]:
        """Current bookmarks in display order."""
        return tuple(self._items)

    @property
    def is_mounted(self) -> bool:
        """Whether a live subscription is active."""
        return self._handle is not None

    def get(self, bookmark_id: UUID) -> BookmarkResponse | None:
        """Look up a bookmark in the view by id."""
        _, bookmark = self._find(bookmark_id)
        return bookmark

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[BookmarkResponse]:
        return iter(tuple(self._items))

    def __contains__(self, bookmark_id: object) -> bool:
        return any(b.id == bookmark_id for b in self._items)

    # --- Observers ---

    def add_listener(self, listener: ViewListener) -> None:
        """Register a callback invoked after every change to the view."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ViewListener) -> None:
        """Unregister a callback; unknown callbacks are ignored."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    # --- Lifecycle ---

    async def mount(self, reload: bool = True) -> None:
        """
        Subscribe to the user's change feed, then (by default) load a snapshot.

        Subscribing first means no committed change can fall between the
        snapshot and the first delivered event.
        """
        if self._transport is None or self._user_id is None:
            raise RuntimeError("BookmarkView.mount() requires a transport and a user_id")
        if self._handle is not None:
            return
        self._handle = await self._transport.subscribe(self._user_id, self.apply_event)
        logger.info("bookmark_view_mounted", extra={"user_id": str(self._user_id)})
        if reload:
            await self.reload()

    async def unmount(self) -> None:
        """
        Tear down the subscription.

        In-flight gateway calls keep running, but their results are no longer
        applied to this view.
        """
        self._generation += 1
        self._pending.clear()
        handle, self._handle = self._handle, None
        if handle is not None and self._transport is not None:
            await self._transport.unsubscribe(handle)
            logger.info("bookmark_view_unmounted", extra={"user_id": str(self._user_id)})

    # --- Snapshots ---

    def load(self, snapshot: Iterable[BookmarkResponse]) -> None:
        """
        Replace the view with an authoritative snapshot, newest first.

        Optimistic edits still in flight are treated as settled: the snapshot
        is newer than their tentative state, so a late failure will not revert.
        """
        self._items = sorted(snapshot, key=lambda b: (b.created_at, b.id), reverse=True)
        for changes in self._pending.values():
            for change in changes:
                change.confirmed = True
        self._notify(ViewChangeReason.LOADED)

    async def reload(self) -> ActionResult[list[BookmarkResponse]]:
        """Fetch a fresh snapshot from the gateway and load it."""
        generation = self._generation
        result = await self._call(
            "reload",
            lambda: self._gateway.list_bookmarks(
                favorites_only=self._favorites_only, collection=self._collection,
            ),
        )
        if generation != self._generation:
            return result
        if result.success:
            self.load(result.data or [])
        else:
            self._notify(ViewChangeReason.ERROR, error=result)
        return result

    # --- Feed events ---

    def apply_event(self, event: BookmarkChangeEvent) -> bool:
        """
        Patch the view with one change-feed event.

        - INSERT prepends (or replaces in place if the id is already shown).
        - UPDATE replaces in place; a no-op when the id is not in the view.
        - DELETE removes; a no-op when the id is not in the view.

        Returns:
            True if the view changed.
        """
        self._reconcile_pending(event)
        bookmark_id = event.bookmark_id
        index, _ = self._find(bookmark_id)

        if event.event_type == ChangeEventType.INSERT:
            if index is None:
                self._items.insert(0, event.new)
                self._notify(ViewChangeReason.INSERTED, bookmark_id)
            else:
                self._items[index] = event.new
                self._notify(ViewChangeReason.UPDATED, bookmark_id)
            return True

        if index is None:
            logger.debug(
                "change_event_not_in_view",
                extra={"event_type": event.event_type, "bookmark_id": str(bookmark_id)},
            )
            return False

        if event.event_type == ChangeEventType.UPDATE:
            self._items[index] = event.new
            self._notify(ViewChangeReason.UPDATED, bookmark_id)
        else:
            del self._items[index]
            self._notify(ViewChangeReason.DELETED, bookmark_id)
        return True

    # --- Optimistic edits ---

    async def delete(self, bookmark_id: UUID) -> ActionResult[None]:
        """
        Remove a bookmark from the view immediately, then delete it on the backend.

        On failure the bookmark is put back at its previous position, unless a
        feed event already confirmed the delete or the id has reappeared.
        Updates the feed reports while the delete is pending are carried into
        the restored record.
        """
        index, current = self._find(bookmark_id)
        if current is None:
            return await self._call("delete", lambda: self._gateway.delete(bookmark_id))

        generation = self._generation
        pending = _PendingChange(kind="delete", original=current, index=index)
        self._add_pending(bookmark_id, pending)
        del self._items[index]
        self._notify(ViewChangeReason.DELETED, bookmark_id)

        result = await self._call("delete", lambda: self._gateway.delete(bookmark_id))
        self._remove_pending(bookmark_id, pending)
        if generation != self._generation or result.success:
            return result

        if not pending.confirmed and bookmark_id not in self:
            self._items.insert(min(pending.index, len(self._items)), pending.original)
            self._notify(ViewChangeReason.REVERTED, bookmark_id)
        self._notify(ViewChangeReason.ERROR, bookmark_id, error=result)
        return result

    async def toggle_favorite(self, bookmark_id: UUID) -> ActionResult[BookmarkResponse]:
        """
        Flip a bookmark's favorite flag immediately, then persist the new value.

        On failure the flag is flipped back, unless a feed event already
        confirmed the new value or the flag has changed again since.
        """
        index, current = self._find(bookmark_id)
        if current is None:
            return ActionResult.fail("validation", "Bookmark is not in this view", field="id")

        generation = self._generation
        target = not current.is_favorite
        pending = _PendingChange(
            kind="favorite", original=current, index=index, tentative_favorite=target,
        )
        self._add_pending(bookmark_id, pending)
        self._items[index] = current.model_copy(update={"is_favorite": target})
        self._notify(ViewChangeReason.UPDATED, bookmark_id)

        result = await self._call(
            "toggle_favorite", lambda: self._gateway.toggle_favorite(bookmark_id, target),
        )
        self._remove_pending(bookmark_id, pending)
        if generation != self._generation or result.success:
            return result

        index, now = self._find(bookmark_id)
        if not pending.confirmed and now is not None and now.is_favorite == target:
            self._items[index] = now.model_copy(
                update={"is_favorite": pending.original.is_favorite},
            )
            self._notify(ViewChangeReason.REVERTED, bookmark_id)
        self._notify(ViewChangeReason.ERROR, bookmark_id, error=result)
        return result

    # --- Confirmed (non-optimistic) edits ---

    async def create(self, title: str, url: str) -> ActionResult[None]:
        """Create a bookmark; it appears in the view when its INSERT event arrives."""
        generation = self._generation
        result = await self._call("create", lambda: self._gateway.create(title, url))
        if not result.success and generation == self._generation:
            self._notify(ViewChangeReason.ERROR, error=result)
        return result

    async def update(self, bookmark_id: UUID, data: BookmarkUpdate) -> ActionResult[BookmarkResponse]:
        """Update a bookmark and patch the view from the returned record."""
        return await self._update_from(
            "update", bookmark_id, lambda: self._gateway.update(bookmark_id, data),
        )

    async def update_collection(
        self, bookmark_id: UUID, collection: str | None,
    ) -> ActionResult[BookmarkResponse]:
        """Assign or clear a collection and patch the view from the returned record."""
        return await self._update_from(
            "update_collection",
            bookmark_id,
            lambda: self._gateway.update_collection(bookmark_id, collection),
        )

    # --- Internals ---

    async def _update_from(
        self,
        operation: str,
        bookmark_id: UUID,
        call: Callable[[], Awaitable[ActionResult[BookmarkResponse]]],
    ) -> ActionResult[BookmarkResponse]:
        generation = self._generation
        result = await self._call(operation, call)
        if generation != self._generation:
            return result
        if not result.success:
            self._notify(ViewChangeReason.ERROR, bookmark_id, error=result)
            return result

        index, current = self._find(bookmark_id)
        record = result.data
        # An event may already have delivered an even newer version
        if current is not None and record is not None and record.updated_at >= current.updated_at:
            self._items[index] = record
            self._notify(ViewChangeReason.UPDATED, bookmark_id)
        return result

    async def _call(
        self,
        operation: str,
        call: Callable[[], Awaitable[ActionResult[T]]],
    ) -> ActionResult[T]:
        """Invoke the gateway, turning a raised exception into a failed result."""
        try:
            return await call()
        except Exception:
            logger.exception("Gateway %s raised instead of returning a result", operation)
            return ActionResult.fail(
                "persistence", "An unexpected error occurred. Please try again.",
            )

    def _find(self, bookmark_id: UUID) -> tuple[int | None, BookmarkResponse | None]:
        for index, bookmark in enumerate(self._items):
            if bookmark.id == bookmark_id:
                return index, bookmark
        return None, None

    def _add_pending(self, bookmark_id: UUID, change: _PendingChange) -> None:
        self._pending.setdefault(bookmark_id, []).append(change)

    def _remove_pending(self, bookmark_id: UUID, change: _PendingChange) -> None:
        changes = self._pending.get(bookmark_id)
        if not changes:
            return
        if change in changes:
            changes.remove(change)
        if not changes:
            del self._pending[bookmark_id]

    def _reconcile_pending(self, event: BookmarkChangeEvent) -> None:
        """Confirm pending edits the event reflects and refresh what a revert restores."""
        for change in self._pending.get(event.bookmark_id, []):
            if change.kind == "delete" and event.event_type == ChangeEventType.DELETE:
                change.confirmed = True
            elif change.kind == "delete" and event.event_type == ChangeEventType.UPDATE:
                change.original = event.new
            elif (
                change.kind == "favorite"
                and event.event_type == ChangeEventType.UPDATE
                and event.new.is_favorite == change.tentative_favorite
            ):
                change.confirmed = True

    def _notify(
        self,
        reason: ViewChangeReason,
        bookmark_id: UUID | None = None,
        error: ActionResult | None = None,
    ) -> None:
        change = ViewChange(
            reason=reason, items=tuple(self._items), bookmark_id=bookmark_id, error=error,
        )
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Bookmark view listener failed")
