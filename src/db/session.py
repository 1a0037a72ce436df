"""Async SQLAlchemy engine and session handling."""
from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from core.config import Settings
from models import Base


class Database:
    """
    Long-lived handle to the persistent store.

    Constructed once at application startup (see api.main.lifespan) and passed
    explicitly to whatever needs a session, instead of living as a module-level
    singleton.
    """

    def __init__(self, settings: Settings) -> None:
        engine_kwargs: dict = {"echo": False, "pool_pre_ping": True}
        if not settings.is_sqlite:
            engine_kwargs["pool_size"] = settings.db_pool_size
            engine_kwargs["max_overflow"] = settings.db_max_overflow

        self.engine: AsyncEngine = create_async_engine(settings.database_url, **engine_kwargs)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def create_all(self) -> None:
        """Create tables directly from metadata (local SQLite / dev databases only)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Close all pooled connections."""
        await self.engine.dispose()


def get_database(request: Request) -> Database:
    """Return the Database created by the application lifespan."""
    return request.app.state.database


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    """
    Return the session factory for work scoped tighter than the request.

    Long-lived responses open, commit and close their own short session
    instead of holding the request session until the response ends.
    """
    return get_database(request).session_factory


async def get_async_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """
    Yield an async database session.

    Uses unit-of-work pattern: services use flush() for refreshing objects,
    commit happens once here at request end. The mutation gateway commits early
    so that change events are only published for persisted writes; the commit
    here is then a no-op. If anything fails, uncommitted changes are rolled back.
    """
    database = get_database(request)
    async with database.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
