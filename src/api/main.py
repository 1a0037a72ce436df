"""FastAPI application entry point."""
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from api.errors import ActionFailedError, action_failed_handler
from api.routers import bookmarks, health, users
from core.config import Settings, get_settings
from core.redis import RedisClient
from db.session import Database
from services.change_feed import ChangeFeed, InMemoryChangeFeed, RedisChangeFeed

logger = logging.getLogger(__name__)


def build_change_feed(settings: Settings, redis_client: RedisClient) -> ChangeFeed:
    """Pick the change feed backend from configuration."""
    if settings.change_feed_backend == "redis":
        return RedisChangeFeed(redis_client)
    return InMemoryChangeFeed()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifespan - startup and shutdown."""
    app_settings = get_settings()

    # Startup: database handle (tables created directly for local SQLite)
    database = Database(app_settings)
    if app_settings.is_sqlite:
        await database.create_all()
    app.state.database = database

    # Startup: Redis, only needed for the redis change feed
    redis_client = RedisClient(
        url=app_settings.redis_url,
        enabled=app_settings.redis_enabled and app_settings.change_feed_backend == "redis",
        pool_size=app_settings.redis_pool_size,
    )
    await redis_client.connect()
    app.state.redis = redis_client

    app.state.change_feed = build_change_feed(app_settings, redis_client)
    logger.info("Change feed backend: %s", app_settings.change_feed_backend)

    yield

    # Shutdown
    await redis_client.close()
    await database.dispose()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        """Process request and add security headers to response."""
        response = await call_next(request)
        # HSTS: enforce HTTPS for 1 year, including subdomains
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response


app_settings = get_settings()

app = FastAPI(
    title="Bookmarks API",
    description="Bookmarks with favorites, collections and a live change stream.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_exception_handler(ActionFailedError, action_failed_handler)

# Security headers middleware (runs after CORS, adds headers to responses)
app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(users.router)
app.include_router(bookmarks.router)
