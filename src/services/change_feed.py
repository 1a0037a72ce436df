"""
Per-user bookmark change feed.

The mutation gateway publishes one event per committed write to the owner's
feed; sessions subscribe with the owner's id and only ever see that user's
events. Delivery is live only: there is no replay, so anything published
while a session is not subscribed is lost until its next full reload.
"""
import asyncio
import contextlib
import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID, uuid4

from pydantic import ValidationError
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from core.redis import RedisClient
from schemas.change_event import BookmarkChangeEvent

logger = logging.getLogger(__name__)

EventCallback = Callable[[BookmarkChangeEvent], None]

CHANNEL_PREFIX = "bookmarks:changes"


def channel_for(user_id: UUID) -> str:
    """Pub/sub channel carrying one user's events."""
    return f"{CHANNEL_PREFIX}:{user_id}"


@dataclass(frozen=True)
class SubscriptionHandle:
    """Opaque handle returned by subscribe(); pass it back to unsubscribe()."""

    user_id: UUID
    token: UUID = field(default_factory=uuid4)


class ChangeFeed(Protocol):
    """Publish/subscribe contract shared by the feed backends."""

    async def subscribe(self, user_id: UUID, on_event: EventCallback) -> SubscriptionHandle:
        """Start delivering ``user_id``'s events to ``on_event``."""
        ...

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Stop a subscription. Unknown handles are ignored."""
        ...

    async def publish(self, user_id: UUID, event: BookmarkChangeEvent) -> None:
        """Deliver ``event`` to every current subscriber of ``user_id``."""
        ...


def _check_owner(user_id: UUID, event: BookmarkChangeEvent) -> None:
    if event.user_id != user_id:
        raise ValueError(
            f"Event for bookmark {event.bookmark_id} is owned by {event.user_id}, "
            f"not {user_id}",
        )


def _deliver(callback: EventCallback, event: BookmarkChangeEvent) -> None:
    """Run one subscriber callback; a failing subscriber must not affect the others."""
    try:
        callback(event)
    except Exception:
        logger.exception(
            "change_feed_callback_failed",
            extra={"event_type": event.event_type, "bookmark_id": str(event.bookmark_id)},
        )


class InMemoryChangeFeed:
    """In-process fan-out. Events reach subscribers in publish order."""

    def __init__(self) -> None:
        self._subscribers: dict[UUID, dict[SubscriptionHandle, EventCallback]] = defaultdict(dict)

    async def subscribe(self, user_id: UUID, on_event: EventCallback) -> SubscriptionHandle:
        """Register a callback for a user's events."""
        handle = SubscriptionHandle(user_id=user_id)
        self._subscribers[user_id][handle] = on_event
        logger.debug("change_feed_subscribed", extra={"user_id": str(user_id)})
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Remove a subscription."""
        callbacks = self._subscribers.get(handle.user_id)
        if not callbacks:
            return
        callbacks.pop(handle, None)
        if not callbacks:
            del self._subscribers[handle.user_id]
        logger.debug("change_feed_unsubscribed", extra={"user_id": str(handle.user_id)})

    async def publish(self, user_id: UUID, event: BookmarkChangeEvent) -> None:
        """Call every subscriber of ``user_id`` with the event."""
        _check_owner(user_id, event)
        # Copy: callbacks may unsubscribe while we iterate
        for callback in list(self._subscribers.get(user_id, {}).values()):
            _deliver(callback, event)

    def subscriber_count(self, user_id: UUID) -> int:
        """Number of live subscriptions for a user."""
        return len(self._subscribers.get(user_id, {}))


@dataclass
class _RedisSubscription:
    pubsub: PubSub
    task: asyncio.Task


class RedisChangeFeed:
    """
    Change feed over Redis pub/sub, one channel per user.

    Lets several API processes share one feed. If Redis is not connected the
    feed falls back to in-process delivery, mirroring how the rest of the
    application degrades without Redis.
    """

    def __init__(self, redis_client: RedisClient, fallback: InMemoryChangeFeed | None = None) -> None:
        self._redis = redis_client
        self._fallback = fallback or InMemoryChangeFeed()
        self._subscriptions: dict[SubscriptionHandle, _RedisSubscription] = {}

    async def subscribe(self, user_id: UUID, on_event: EventCallback) -> SubscriptionHandle:
        """Subscribe to the user's channel and start a listener task."""
        pubsub = self._redis.pubsub()
        if pubsub is None:
            logger.warning("Redis unavailable, change feed subscription is process-local")
            return await self._fallback.subscribe(user_id, on_event)

        try:
            await pubsub.subscribe(channel_for(user_id))
        except RedisError as e:
            logger.warning("Redis SUBSCRIBE failed, using process-local feed: %s", e)
            await pubsub.aclose()
            return await self._fallback.subscribe(user_id, on_event)

        handle = SubscriptionHandle(user_id=user_id)
        task = asyncio.create_task(self._listen(handle, pubsub, on_event))
        self._subscriptions[handle] = _RedisSubscription(pubsub=pubsub, task=task)
        logger.debug("change_feed_subscribed", extra={"user_id": str(user_id), "backend": "redis"})
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Cancel the listener and release the pub/sub connection."""
        subscription = self._subscriptions.pop(handle, None)
        if subscription is None:
            await self._fallback.unsubscribe(handle)
            return

        subscription.task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await subscription.task
        try:
            await subscription.pubsub.unsubscribe(channel_for(handle.user_id))
        except RedisError as e:
            logger.warning("Redis UNSUBSCRIBE failed: %s", e)
        finally:
            await subscription.pubsub.aclose()

    async def publish(self, user_id: UUID, event: BookmarkChangeEvent) -> None:
        """Publish to the user's channel, or deliver in-process without Redis."""
        _check_owner(user_id, event)
        if not self._redis.is_connected:
            await self._fallback.publish(user_id, event)
            return

        published = await self._redis.publish(channel_for(user_id), event.model_dump_json())
        if not published:
            # Live-only feed: subscribers catch up on their next full reload
            logger.warning(
                "change_event_dropped",
                extra={"event_type": event.event_type, "bookmark_id": str(event.bookmark_id)},
            )

    async def _listen(
        self,
        handle: SubscriptionHandle,
        pubsub: PubSub,
        on_event: EventCallback,
    ) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    event = BookmarkChangeEvent.model_validate_json(message["data"])
                except ValidationError as e:
                    logger.warning("Ignoring malformed change event: %s", e)
                    continue
                _deliver(on_event, event)
        except RedisError as e:
            # No automatic reconnect; the subscriber re-subscribes and reloads
            logger.warning(
                "change_feed_connection_lost: %s", e,
                extra={"user_id": str(handle.user_id)},
            )
