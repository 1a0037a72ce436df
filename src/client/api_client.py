"""HTTP gateway client for the Bookmarks API."""
import logging
from collections.abc import Callable
from typing import Any, TypeVar
from uuid import UUID

import httpx

from schemas.bookmark import BookmarkResponse, BookmarkUpdate
from schemas.results import ActionResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNREACHABLE = "Could not reach the server. Please try again."
UNEXPECTED = "An unexpected error occurred. Please try again."


def _get_headers(token: str | None) -> dict[str, str]:
    """Get common headers for API requests."""
    headers = {"X-Request-Source": "bookmark-sync"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _error_message(response: httpx.Response, default: str) -> tuple[str, str | None]:
    """Pull ``detail`` and ``field`` out of an error body."""
    try:
        body = response.json()
    except ValueError:
        return default, None
    if not isinstance(body, dict):
        return default, None
    detail = body.get("detail")
    if isinstance(detail, str):
        return detail, body.get("field")
    if isinstance(detail, list) and detail:
        # Request validation error raised by FastAPI itself
        first = detail[0]
        location = first.get("loc", [])
        return first.get("msg", default), str(location[-1]) if location else None
    return default, None


def to_action_result(
    response: httpx.Response,
    parse: Callable[[Any], T] | None = None,
) -> ActionResult[T]:
    """Map an HTTP response onto the gateway's ActionResult contract."""
    if response.is_success:
        if parse is None:
            return ActionResult.ok()
        return ActionResult.ok(parse(response.json()))

    message, field = _error_message(response, UNEXPECTED)
    if response.status_code == 422:
        return ActionResult.fail("validation", message, field=field)
    if response.status_code == 401:
        return ActionResult.fail("unauthorized", message)
    logger.error(
        "Bookmarks API request failed: %s %s -> %s",
        response.request.method, response.request.url.path, response.status_code,
    )
    return ActionResult.fail("persistence", message)


class BookmarksApiClient:
    """
    Mutation gateway over HTTP.

    Exposes the same operations as the in-process gateway so a BookmarkView
    can run against a remote API. Transport errors never raise; they come back
    as persistence failures.

    Args:
        client: httpx client configured with the API base URL.
        token: Bearer token; omit in DEV_MODE.
    """

    def __init__(self, client: httpx.AsyncClient, token: str | None = None) -> None:
        self._client = client
        self._token = token

    async def get_current_user_id(self) -> UUID:
        """Id of the authenticated user, used to scope the change stream."""
        response = await self._client.get("/users/me", headers=_get_headers(self._token))
        response.raise_for_status()
        return UUID(response.json()["id"])

    async def list_bookmarks(
        self,
        favorites_only: bool = False,
        collection: str | None = None,
    ) -> ActionResult[list[BookmarkResponse]]:
        """Fetch an authoritative snapshot."""
        params: dict[str, Any] = {"favorites_only": favorites_only}
        if collection is not None:
            params["collection"] = collection
        return await self._request(
            "GET", "/bookmarks/", params=params,
            parse=lambda body: [BookmarkResponse.model_validate(b) for b in body["items"]],
        )

    async def get_bookmark(self, bookmark_id: UUID | str) -> ActionResult[BookmarkResponse]:
        """Fetch one bookmark."""
        return await self._request(
            "GET", f"/bookmarks/{bookmark_id}", parse=BookmarkResponse.model_validate,
        )

    async def create(self, title: str | None, url: str | None) -> ActionResult[None]:
        """Create a bookmark."""
        return await self._request(
            "POST", "/bookmarks/", json={"title": title or "", "url": url or ""},
        )

    async def delete(self, bookmark_id: UUID | str | None) -> ActionResult[None]:
        """Delete a bookmark."""
        if bookmark_id is None or not str(bookmark_id).strip():
            return ActionResult.fail("validation", "Bookmark ID is required", field="id")
        return await self._request("DELETE", f"/bookmarks/{bookmark_id}")

    async def toggle_favorite(
        self, bookmark_id: UUID | str, is_favorite: bool,
    ) -> ActionResult[BookmarkResponse]:
        """Set the favorite flag."""
        return await self._request(
            "PUT", f"/bookmarks/{bookmark_id}/favorite",
            json={"is_favorite": is_favorite},
            parse=BookmarkResponse.model_validate,
        )

    async def update_collection(
        self, bookmark_id: UUID | str, collection: str | None,
    ) -> ActionResult[BookmarkResponse]:
        """Assign or clear the collection label."""
        return await self._request(
            "PUT", f"/bookmarks/{bookmark_id}/collection",
            json={"collection": collection},
            parse=BookmarkResponse.model_validate,
        )

    async def update(
        self, bookmark_id: UUID | str, data: BookmarkUpdate,
    ) -> ActionResult[BookmarkResponse]:
        """Update title, url and/or collection (only fields set on ``data``)."""
        return await self._request(
            "PATCH", f"/bookmarks/{bookmark_id}",
            json=data.model_dump(exclude_unset=True),
            parse=BookmarkResponse.model_validate,
        )

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        parse: Callable[[Any], T] | None = None,
    ) -> ActionResult[T]:
        try:
            response = await self._client.request(
                method, path, params=params, json=json, headers=_get_headers(self._token),
            )
        except httpx.HTTPError as e:
            logger.warning("Bookmarks API %s %s failed: %s", method, path, e)
            return ActionResult.fail("persistence", UNREACHABLE)
        return to_action_result(response, parse)
