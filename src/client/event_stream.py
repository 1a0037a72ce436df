"""Change subscription transport over the API's Server-Sent Events stream."""
import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import UUID

import httpx
from pydantic import ValidationError

from schemas.change_event import BookmarkChangeEvent

logger = logging.getLogger(__name__)

CHANGES_PATH = "/bookmarks/changes"


class ChangeStreamError(Exception):
    """Raised when the change stream cannot be opened."""


@dataclass
class SSESubscription:
    """Handle for one open change stream."""

    user_id: UUID
    task: asyncio.Task = field(repr=False)


@dataclass
class _SSEMessage:
    event: str = "message"
    data: list[str] = field(default_factory=list)


def parse_sse_lines(lines: list[str]) -> list[tuple[str, str]]:
    """
    Split raw SSE lines into ``(event, data)`` pairs.

    Comment lines (leading ``:``) are dropped. A trailing message without its
    terminating blank line is not returned.
    """
    messages: list[tuple[str, str]] = []
    current = _SSEMessage()
    for line in lines:
        if not line:
            if current.data:
                messages.append((current.event, "\n".join(current.data)))
            current = _SSEMessage()
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        value = value.removeprefix(" ")
        if name == "event":
            current.event = value
        elif name == "data":
            current.data.append(value)
    return messages


class SSEChangeTransport:
    """
    Subscribe to ``GET /bookmarks/changes`` and feed events to a callback.

    subscribe() returns once the server confirms the subscription is live, so
    a snapshot loaded afterwards cannot miss a change. There is no automatic
    reconnect: if the stream drops, the owner unmounts, remounts and reloads.

    Args:
        client: httpx client configured with the API base URL.
        token: Bearer token; omit in DEV_MODE.
        connect_timeout: Seconds to wait for the stream to open.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        token: str | None = None,
        connect_timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._token = token
        self._connect_timeout = connect_timeout

    async def subscribe(
        self,
        user_id: UUID,
        on_event: Callable[[BookmarkChangeEvent], None],
    ) -> SSESubscription:
        """Open the stream and start delivering events to ``on_event``."""
        ready: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        task = asyncio.create_task(self._listen(user_id, on_event, ready))
        try:
            await asyncio.wait_for(asyncio.shield(ready), timeout=self._connect_timeout)
        except BaseException:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            raise
        logger.info("change_stream_subscribed", extra={"user_id": str(user_id)})
        return SSESubscription(user_id=user_id, task=task)

    async def unsubscribe(self, handle: SSESubscription) -> None:
        """Close the stream."""
        handle.task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await handle.task
        logger.info("change_stream_unsubscribed", extra={"user_id": str(handle.user_id)})

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _listen(
        self,
        user_id: UUID,
        on_event: Callable[[BookmarkChangeEvent], None],
        ready: asyncio.Future[None],
    ) -> None:
        try:
            async with self._client.stream(
                "GET",
                CHANGES_PATH,
                headers=self._headers(),
                timeout=httpx.Timeout(self._connect_timeout, read=None),
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise ChangeStreamError(
                        f"Change stream rejected with status {response.status_code}",
                    )
                pending: list[str] = []
                async for line in response.aiter_lines():
                    if not ready.done():
                        # First line is the server's "connected" comment
                        ready.set_result(None)
                    pending.append(line)
                    if line:
                        continue
                    for event_name, data in parse_sse_lines(pending):
                        self._dispatch(event_name, data, on_event)
                    pending.clear()
            if not ready.done():
                raise ChangeStreamError("Change stream closed before it was established")
            logger.warning("change_stream_closed_by_server", extra={"user_id": str(user_id)})
        except (httpx.HTTPError, ChangeStreamError) as e:
            if not ready.done():
                ready.set_exception(e if isinstance(e, ChangeStreamError) else ChangeStreamError(str(e)))
                return
            logger.warning("change_stream_lost: %s", e, extra={"user_id": str(user_id)})

    @staticmethod
    def _dispatch(
        event_name: str,
        data: str,
        on_event: Callable[[BookmarkChangeEvent], None],
    ) -> None:
        if event_name != "change":
            return
        try:
            event = BookmarkChangeEvent.model_validate_json(data)
        except ValidationError as e:
            logger.warning("Ignoring malformed change event: %s", e)
            return
        try:
            on_event(event)
        except Exception:
            logger.exception("Change stream callback failed")
