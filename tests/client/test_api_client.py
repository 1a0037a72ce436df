"""Tests for the HTTP gateway client."""
import json
from collections.abc import AsyncGenerator, Generator
from datetime import UTC, datetime

import httpx
import pytest
import respx
from httpx import AsyncClient, Response
from uuid6 import uuid7

from client.api_client import UNREACHABLE, BookmarksApiClient
from schemas.bookmark import BookmarkUpdate
from services.change_feed import InMemoryChangeFeed
from sync.bookmark_view import BookmarkView

BASE_URL = "http://api.test"


def record(**overrides: object) -> dict:
    now = datetime.now(UTC).isoformat()
    data = {
        "id": str(uuid7()),
        "user_id": str(uuid7()),
        "title": "Example",
        "url": "https://example.com",
        "is_favorite": False,
        "collection": None,
        "created_at": now,
        "updated_at": now,
    }
    data.update(overrides)
    return data


@pytest.fixture
def mock_api() -> Generator[respx.MockRouter]:
    """Context manager for mocking API responses."""
    with respx.mock(base_url=BASE_URL) as respx_mock:
        yield respx_mock


@pytest.fixture
async def api() -> AsyncGenerator[BookmarksApiClient]:
    async with httpx.AsyncClient(base_url=BASE_URL) as http:
        yield BookmarksApiClient(http, token="secret-token")


async def test__list_bookmarks__parses_items_and_sends_token(
    mock_api: respx.MockRouter, api: BookmarksApiClient,
) -> None:
    items = [record(title="A"), record(title="B")]
    route = mock_api.get(path="/bookmarks/").mock(
        return_value=Response(200, json={"items": items, "total": 2}),
    )

    result = await api.list_bookmarks(favorites_only=True, collection="Work")

    assert result.success is True
    assert [b.title for b in result.data] == ["A", "B"]
    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer secret-token"
    assert request.headers["X-Request-Source"] == "bookmark-sync"
    assert request.url.params["favorites_only"] == "true"
    assert request.url.params["collection"] == "Work"


async def test__create__maps_field_validation_error(
    mock_api: respx.MockRouter, api: BookmarksApiClient,
) -> None:
    mock_api.post(path="/bookmarks/").mock(
        return_value=Response(422, json={"detail": "Title is required", "field": "title"}),
    )

    result = await api.create("", "https://example.com")

    assert result.success is False
    assert result.error_kind == "validation"
    assert result.error == "Title is required"
    assert result.field == "title"


async def test__create__maps_request_validation_error(
    mock_api: respx.MockRouter, api: BookmarksApiClient,
) -> None:
    mock_api.post(path="/bookmarks/").mock(
        return_value=Response(
            422,
            json={"detail": [{"loc": ["body", "title"], "msg": "Value error, Title exceeds maximum length"}]},
        ),
    )

    result = await api.create("a" * 600, "https://example.com")

    assert result.error_kind == "validation"
    assert result.field == "title"


async def test__delete__maps_unauthorized_and_not_found(
    mock_api: respx.MockRouter, api: BookmarksApiClient,
) -> None:
    bookmark_id = uuid7()
    mock_api.delete(path=f"/bookmarks/{bookmark_id}").mock(
        side_effect=[
            Response(401, json={"detail": "You must be logged in to delete bookmarks"}),
            Response(404, json={"detail": "Bookmark not found"}),
        ],
    )

    unauthorized = await api.delete(bookmark_id)
    not_found = await api.delete(bookmark_id)

    assert unauthorized.error_kind == "unauthorized"
    assert not_found.error_kind == "persistence"
    assert not_found.error == "Bookmark not found"


async def test__delete__missing_id_fails_locally(
    mock_api: respx.MockRouter, api: BookmarksApiClient,
) -> None:
    result = await api.delete(None)

    assert result.field == "id"
    assert mock_api.calls.call_count == 0


async def test__toggle_favorite__sends_target_value(
    mock_api: respx.MockRouter, api: BookmarksApiClient,
) -> None:
    bookmark_id = uuid7()
    route = mock_api.put(path=f"/bookmarks/{bookmark_id}/favorite").mock(
        return_value=Response(200, json=record(id=str(bookmark_id), is_favorite=True)),
    )

    result = await api.toggle_favorite(bookmark_id, True)

    assert result.data.is_favorite is True
    assert json.loads(route.calls.last.request.content) == {"is_favorite": True}


async def test__update__sends_only_set_fields(
    mock_api: respx.MockRouter, api: BookmarksApiClient,
) -> None:
    bookmark_id = uuid7()
    route = mock_api.patch(path=f"/bookmarks/{bookmark_id}").mock(
        return_value=Response(200, json=record(id=str(bookmark_id))),
    )

    await api.update(bookmark_id, BookmarkUpdate(collection=None))

    assert json.loads(route.calls.last.request.content) == {"collection": None}


async def test__server_error__is_persistence_failure(
    mock_api: respx.MockRouter, api: BookmarksApiClient,
) -> None:
    mock_api.get(path="/bookmarks/").mock(return_value=Response(500, text="Internal Server Error"))

    result = await api.list_bookmarks()

    assert result.error_kind == "persistence"


async def test__network_error__is_persistence_failure(
    mock_api: respx.MockRouter, api: BookmarksApiClient,
) -> None:
    bookmark_id = uuid7()
    mock_api.put(path=f"/bookmarks/{bookmark_id}/collection").mock(
        side_effect=httpx.ConnectError("connection refused"),
    )

    result = await api.update_collection(bookmark_id, "Work")

    assert result.success is False
    assert result.error_kind == "persistence"
    assert result.error == UNREACHABLE


# =============================================================================
# End to end: view -> HTTP client -> API -> feed -> view
# =============================================================================


async def test__view_over_http__create_toggle_delete(
    client: AsyncClient, change_feed: InMemoryChangeFeed,
) -> None:
    api = BookmarksApiClient(client)
    user_id = await api.get_current_user_id()
    view = BookmarkView(api, transport=change_feed, user_id=user_id)
    await view.mount()
    assert len(view) == 0

    created = await view.create("Example", "https://example.com")
    assert created.success is True
    assert [b.title for b in view] == ["Example"]
    bookmark_id = view.items[0].id

    toggled = await view.toggle_favorite(bookmark_id)
    assert toggled.success is True
    assert view.get(bookmark_id).is_favorite is True

    invalid = await view.create("Example", "not-a-url")
    assert invalid.field == "url"
    assert len(view) == 1

    deleted = await view.delete(bookmark_id)
    assert deleted.success is True
    assert len(view) == 0

    await view.unmount()
    assert change_feed.subscriber_count(user_id) == 0
