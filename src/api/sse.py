"""Server-Sent Events framing for the bookmark change feed."""
import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from uuid import UUID

from schemas.change_event import BookmarkChangeEvent
from services.change_feed import ChangeFeed

logger = logging.getLogger(__name__)

CONNECTED_COMMENT = ": connected\n\n"
KEEPALIVE_COMMENT = ": keep-alive\n\n"
MAX_PENDING_EVENTS = 1000


def format_event(event: BookmarkChangeEvent) -> str:
    """Frame one change event as an SSE message."""
    return f"event: change\ndata: {event.model_dump_json()}\n\n"


async def change_event_stream(
    change_feed: ChangeFeed,
    user_id: UUID,
    keepalive_seconds: float,
    is_disconnected: Callable[[], Awaitable[bool]],
    max_pending: int = MAX_PENDING_EVENTS,
) -> AsyncGenerator[str]:
    """
    Yield SSE frames for one user's change feed until the client goes away.

    The subscription is opened when the stream starts and always released when
    it ends. The first frame is a ``connected`` comment, sent once the
    subscription is live, so clients know from when on no event is missed.

    At most ``max_pending`` events wait for a slow client; further events are
    dropped and logged, and the client recovers with a reload.
    """
    queue: asyncio.Queue[BookmarkChangeEvent] = asyncio.Queue(maxsize=max_pending)

    def enqueue(event: BookmarkChangeEvent) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "change_stream_event_dropped",
                extra={"user_id": str(user_id), "bookmark_id": str(event.bookmark_id)},
            )

    handle = await change_feed.subscribe(user_id, enqueue)
    logger.info("change_stream_opened", extra={"user_id": str(user_id)})
    try:
        yield CONNECTED_COMMENT
        while not await is_disconnected():
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keepalive_seconds)
            except TimeoutError:
                yield KEEPALIVE_COMMENT
                continue
            yield format_event(event)
    finally:
        await change_feed.unsubscribe(handle)
        logger.info("change_stream_closed", extra={"user_id": str(user_id)})
