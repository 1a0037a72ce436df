"""FastAPI dependencies for injection."""
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import AuthProvider, get_auth_provider, get_current_user, get_current_user_id
from core.config import get_settings
from db.session import get_async_session
from services.bookmark_actions import BookmarkActions
from services.change_feed import ChangeFeed


def get_change_feed(request: Request) -> ChangeFeed:
    """Return the change feed created by the application lifespan."""
    return request.app.state.change_feed


async def get_bookmark_actions(
    db: AsyncSession = Depends(get_async_session),
    auth: AuthProvider = Depends(get_auth_provider),
    change_feed: ChangeFeed = Depends(get_change_feed),
) -> BookmarkActions:
    """Build the mutation gateway for one request."""
    return BookmarkActions(db, auth, change_feed)


__all__ = [
    "get_async_session",
    "get_auth_provider",
    "get_bookmark_actions",
    "get_change_feed",
    "get_current_user",
    "get_current_user_id",
    "get_settings",
]
