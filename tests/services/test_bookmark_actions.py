"""Tests for the bookmark mutation gateway."""
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from uuid6 import uuid7

from core.auth import StaticAuthProvider
from models.bookmark import Bookmark
from models.user import User
from schemas.bookmark import BookmarkUpdate
from schemas.change_event import BookmarkChangeEvent, ChangeEventType
from services.bookmark_actions import (
    NOT_FOUND,
    TITLE_REQUIRED,
    URL_INVALID,
    URL_REQUIRED,
    BookmarkActions,
    parse_bookmark_id,
)
from services.change_feed import InMemoryChangeFeed
from services.exceptions import ValidationError


@pytest.fixture
async def events(change_feed: InMemoryChangeFeed, test_user: User) -> list[BookmarkChangeEvent]:
    """Events published to the test user's feed."""
    received: list[BookmarkChangeEvent] = []
    await change_feed.subscribe(test_user.id, received.append)
    return received


@pytest.fixture
def actions(
    db_session: AsyncSession, test_user: User, change_feed: InMemoryChangeFeed,
) -> BookmarkActions:
    """Gateway acting as the test user."""
    return BookmarkActions(db_session, StaticAuthProvider(test_user), change_feed)


@pytest.fixture
def anonymous_actions(
    db_session: AsyncSession, change_feed: InMemoryChangeFeed,
) -> BookmarkActions:
    """Gateway with no active session."""
    return BookmarkActions(db_session, StaticAuthProvider(None), change_feed)


async def _all_bookmarks(db_session: AsyncSession) -> list[Bookmark]:
    result = await db_session.execute(select(Bookmark))
    return list(result.scalars().all())


async def _create(actions: BookmarkActions, title: str = "Example", url: str = "https://example.com") -> Bookmark:
    result = await actions.create(title, url)
    assert result.success, result.error
    listed = await actions.list_bookmarks()
    return listed.data[0]


# =============================================================================
# create
# =============================================================================


async def test__create__success_stores_trimmed_values(
    actions: BookmarkActions,
    db_session: AsyncSession,
    events: list[BookmarkChangeEvent],
) -> None:
    result = await actions.create("  Example  ", "  https://example.com  ")

    assert result.success is True
    assert result.data is None
    rows = await _all_bookmarks(db_session)
    assert len(rows) == 1
    assert rows[0].title == "Example"
    assert rows[0].url == "https://example.com"

    assert len(events) == 1
    assert events[0].event_type == ChangeEventType.INSERT
    assert events[0].new.id == rows[0].id


async def test__create__empty_title_fails_without_write(
    actions: BookmarkActions,
    db_session: AsyncSession,
    events: list[BookmarkChangeEvent],
) -> None:
    result = await actions.create("", "https://example.com")

    assert result.success is False
    assert result.error_kind == "validation"
    assert result.field == "title"
    assert result.error == TITLE_REQUIRED
    assert await _all_bookmarks(db_session) == []
    assert events == []


async def test__create__missing_url(actions: BookmarkActions) -> None:
    result = await actions.create("Example", "   ")

    assert result.error_kind == "validation"
    assert result.field == "url"
    assert result.error == URL_REQUIRED


async def test__create__invalid_url(actions: BookmarkActions, db_session: AsyncSession) -> None:
    result = await actions.create("Example", "not-a-url")

    assert result.success is False
    assert result.error_kind == "validation"
    assert result.field == "url"
    assert result.error == URL_INVALID
    assert await _all_bookmarks(db_session) == []


async def test__create__validates_before_authenticating(anonymous_actions: BookmarkActions) -> None:
    """Input errors are reported even without a session; valid input then hits auth."""
    invalid = await anonymous_actions.create("", "https://example.com")
    assert invalid.error_kind == "validation"

    valid = await anonymous_actions.create("Example", "https://example.com")
    assert valid.success is False
    assert valid.error_kind == "unauthorized"


async def test__create__title_too_long(actions: BookmarkActions) -> None:
    result = await actions.create("a" * 501, "https://example.com")

    assert result.error_kind == "validation"
    assert result.field == "title"
    assert "maximum length" in result.error


async def test__create__unexpected_error_becomes_persistence_failure(
    actions: BookmarkActions,
) -> None:
    with patch(
        "services.bookmark_actions.bookmark_service.create_bookmark",
        new_callable=AsyncMock,
        side_effect=RuntimeError("connection reset"),
    ):
        result = await actions.create("Example", "https://example.com")

    assert result.success is False
    assert result.error_kind == "persistence"
    assert "connection reset" not in result.error


# =============================================================================
# delete
# =============================================================================


async def test__delete__success_publishes_delete_event(
    actions: BookmarkActions,
    db_session: AsyncSession,
    events: list[BookmarkChangeEvent],
) -> None:
    bookmark = await _create(actions)

    result = await actions.delete(bookmark.id)

    assert result.success is True
    assert await _all_bookmarks(db_session) == []
    assert [e.event_type for e in events] == [ChangeEventType.INSERT, ChangeEventType.DELETE]
    assert events[-1].old.id == bookmark.id


async def test__delete__accepts_string_id(actions: BookmarkActions) -> None:
    bookmark = await _create(actions)

    result = await actions.delete(str(bookmark.id))

    assert result.success is True


@pytest.mark.parametrize("bookmark_id", [None, "", "   "])
async def test__delete__missing_id(actions: BookmarkActions, bookmark_id: str | None) -> None:
    result = await actions.delete(bookmark_id)

    assert result.error_kind == "validation"
    assert result.field == "id"


async def test__delete__id_checked_before_auth(anonymous_actions: BookmarkActions) -> None:
    missing = await anonymous_actions.delete(None)
    assert missing.error_kind == "validation"

    unauthorized = await anonymous_actions.delete(uuid7())
    assert unauthorized.error_kind == "unauthorized"


async def test__delete__non_owner_fails_and_leaves_data(
    actions: BookmarkActions,
    db_session: AsyncSession,
    other_user: User,
    change_feed: InMemoryChangeFeed,
) -> None:
    bookmark = await _create(actions)
    intruder = BookmarkActions(db_session, StaticAuthProvider(other_user), change_feed)

    result = await intruder.delete(bookmark.id)

    assert result.success is False
    assert result.error_kind == "persistence"
    assert result.error == NOT_FOUND
    assert len(await _all_bookmarks(db_session)) == 1


async def test__delete__unknown_id_matches_non_owner_failure(actions: BookmarkActions) -> None:
    result = await actions.delete(uuid7())

    assert result.error_kind == "persistence"
    assert result.error == NOT_FOUND


# =============================================================================
# toggle_favorite / update_collection / update
# =============================================================================


async def test__toggle_favorite__twice_restores_original(
    actions: BookmarkActions, events: list[BookmarkChangeEvent],
) -> None:
    bookmark = await _create(actions)

    on = await actions.toggle_favorite(bookmark.id, True)
    assert on.success is True
    assert on.data.is_favorite is True

    off = await actions.toggle_favorite(bookmark.id, False)
    assert off.data.is_favorite is False

    updates = [e for e in events if e.event_type == ChangeEventType.UPDATE]
    assert [e.new.is_favorite for e in updates] == [True, False]


async def test__toggle_favorite__requires_session(
    anonymous_actions: BookmarkActions,
) -> None:
    result = await anonymous_actions.toggle_favorite(uuid7(), True)

    assert result.error_kind == "unauthorized"


async def test__toggle_favorite__non_owner(
    actions: BookmarkActions,
    db_session: AsyncSession,
    other_user: User,
    change_feed: InMemoryChangeFeed,
) -> None:
    bookmark = await _create(actions)
    intruder = BookmarkActions(db_session, StaticAuthProvider(other_user), change_feed)

    result = await intruder.toggle_favorite(bookmark.id, True)

    assert result.error == NOT_FOUND
    refreshed = await actions.get_bookmark(bookmark.id)
    assert refreshed.data.is_favorite is False


@pytest.mark.parametrize("bookmark_id", ["not-a-uuid", "", None])
async def test__toggle_favorite__malformed_id_is_not_found(
    actions: BookmarkActions, bookmark_id: str | None,
) -> None:
    result = await actions.toggle_favorite(bookmark_id, True)

    assert result.success is False
    assert result.error_kind == "persistence"
    assert result.error == NOT_FOUND
    assert result.field is None


@pytest.mark.parametrize("bookmark_id", ["not-a-uuid", "", None])
async def test__update_collection__malformed_id_is_not_found(
    actions: BookmarkActions, bookmark_id: str | None,
) -> None:
    result = await actions.update_collection(bookmark_id, "Reading")

    assert result.error_kind == "persistence"
    assert result.error == NOT_FOUND
    assert result.field is None


@pytest.mark.parametrize("bookmark_id", ["not-a-uuid", "", None])
async def test__update__malformed_id_is_not_found(
    actions: BookmarkActions, bookmark_id: str | None,
) -> None:
    result = await actions.update(bookmark_id, BookmarkUpdate(title="Renamed"))

    assert result.error_kind == "persistence"
    assert result.error == NOT_FOUND
    assert result.field is None


async def test__update_collection__trims_and_clears(actions: BookmarkActions) -> None:
    bookmark = await _create(actions)

    assigned = await actions.update_collection(bookmark.id, "  Reading  ")
    assert assigned.data.collection == "Reading"

    cleared = await actions.update_collection(bookmark.id, "   ")
    assert cleared.data.collection is None


async def test__update__trims_and_advances_updated_at(
    actions: BookmarkActions, events: list[BookmarkChangeEvent],
) -> None:
    bookmark = await _create(actions)

    result = await actions.update(
        bookmark.id, BookmarkUpdate(title="  Renamed  ", url=" https://renamed.example "),
    )

    assert result.success is True
    assert result.data.title == "Renamed"
    assert result.data.url == "https://renamed.example"
    assert result.data.updated_at > bookmark.updated_at
    assert result.data.created_at == bookmark.created_at
    assert events[-1].event_type == ChangeEventType.UPDATE


async def test__update__invalid_url(actions: BookmarkActions) -> None:
    bookmark = await _create(actions)

    result = await actions.update(bookmark.id, BookmarkUpdate(url="example.com"))

    assert result.error_kind == "validation"
    assert result.field == "url"


async def test__update__blank_title(actions: BookmarkActions) -> None:
    bookmark = await _create(actions)

    result = await actions.update(bookmark.id, BookmarkUpdate(title="   "))

    assert result.error_kind == "validation"
    assert result.field == "title"


async def test__update__no_fields_returns_unchanged_without_event(
    actions: BookmarkActions, events: list[BookmarkChangeEvent],
) -> None:
    bookmark = await _create(actions)
    published = len(events)

    result = await actions.update(bookmark.id, BookmarkUpdate())

    assert result.success is True
    assert result.data == bookmark
    assert len(events) == published


# =============================================================================
# reads
# =============================================================================


async def test__list_bookmarks__requires_session(anonymous_actions: BookmarkActions) -> None:
    result = await anonymous_actions.list_bookmarks()

    assert result.error_kind == "unauthorized"


async def test__list_bookmarks__newest_first(actions: BookmarkActions) -> None:
    await actions.create("First", "https://1.example")
    await actions.create("Second", "https://2.example")

    result = await actions.list_bookmarks()

    assert [b.title for b in result.data] == ["Second", "First"]


async def test__get_bookmark__invalid_id(actions: BookmarkActions) -> None:
    result = await actions.get_bookmark("not-a-uuid")

    assert result.error_kind == "validation"
    assert result.field == "id"


def test__parse_bookmark_id__rejects_garbage() -> None:
    with pytest.raises(ValidationError) as exc_info:
        parse_bookmark_id("nope")
    assert exc_info.value.field == "id"
