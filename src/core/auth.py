"""Authentication module for Auth0 JWT validation and the auth provider seam."""
import logging
from typing import Protocol
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import Settings, get_settings
from db.session import get_async_session, get_session_factory
from models.user import User

logger = logging.getLogger(__name__)


# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)

# Cache for JWKS client (reuse across requests)
_jwks_clients: dict[str, PyJWKClient] = {}

DEV_USER_AUTH0_ID = "dev|local-development-user"


class AuthProvider(Protocol):
    """Source of the current session's user; None means no active session."""

    async def get_current_user(self) -> User | None:
        """Return the authenticated user, or None when there is no session."""
        ...


class StaticAuthProvider:
    """Auth provider bound to a fixed user (or to no user at all)."""

    def __init__(self, user: User | None) -> None:
        self._user = user

    async def get_current_user(self) -> User | None:
        """Return the bound user."""
        return self._user


def get_jwks_client(settings: Settings) -> PyJWKClient:
    """Get or create a cached JWKS client for the given settings."""
    if settings.auth0_jwks_url not in _jwks_clients:
        _jwks_clients[settings.auth0_jwks_url] = PyJWKClient(
            settings.auth0_jwks_url,
            cache_jwk_set=True,
            lifespan=3600,  # Cache keys for 1 hour
        )
    return _jwks_clients[settings.auth0_jwks_url]


def decode_jwt(token: str, settings: Settings) -> dict | None:
    """
    Decode and validate a JWT token from Auth0.

    Returns:
        The token claims, or None if the token is invalid, expired, or has the
        wrong audience/issuer. An invalid token is treated as "no session".

    Raises:
        HTTPException: 503 if the signing keys cannot be fetched from Auth0.
    """
    try:
        jwks_client = get_jwks_client(settings)
        signing_key = jwks_client.get_signing_key_from_jwt(token)

        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=settings.auth0_audience,
            issuer=settings.auth0_issuer,
        )
    except jwt.PyJWKClientConnectionError as e:
        # Log full details for debugging (server-side only)
        logger.error("Failed to fetch JWKS from Auth0: %s", e, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not validate credentials",
        )
    except jwt.ExpiredSignatureError:
        logger.info("JWT rejected: token has expired")
        return None
    except jwt.PyJWTError as e:
        logger.warning("JWT validation failed: %s", e)
        return None


async def get_or_create_user(
    db: AsyncSession,
    auth0_id: str,
    email: str | None = None,
) -> User:
    """
    Get existing user or create new one from Auth0 claims.

    Handles race conditions where multiple concurrent requests may try to create
    the same user simultaneously. If an IntegrityError occurs (due to unique
    constraint on auth0_id), the function rolls back and fetches the existing user.

    Note: Uses flush(), not commit. Session generator handles commit at request end.
    """
    result = await db.execute(select(User).where(User.auth0_id == auth0_id))
    user = result.scalar_one_or_none()

    if user is None:
        user = User(auth0_id=auth0_id, email=email)
        db.add(user)
        try:
            await db.flush()
        except IntegrityError:
            # Race condition: another request created the user between our SELECT
            # and INSERT. Rollback and fetch the existing user.
            await db.rollback()
            result = await db.execute(select(User).where(User.auth0_id == auth0_id))
            user = result.scalar_one()

    if email and user.email != email:
        user.email = email
        await db.flush()

    return user


async def get_or_create_dev_user(db: AsyncSession) -> User:
    """Get or create a development user for DEV_MODE."""
    return await get_or_create_user(
        db,
        auth0_id=DEV_USER_AUTH0_ID,
        email="dev@localhost",
    )


async def authenticate_user(
    credentials: HTTPAuthorizationCredentials | None,
    db: AsyncSession,
    settings: Settings,
) -> User | None:
    """
    Resolve the user behind a request, or None when there is no valid session.

    In DEV_MODE, bypasses auth and returns the local development user.
    """
    if settings.dev_mode:
        return await get_or_create_dev_user(db)

    if credentials is None:
        return None

    payload = decode_jwt(credentials.credentials, settings)
    if payload is None:
        return None

    auth0_id = payload.get("sub")
    if not auth0_id:
        logger.warning("JWT rejected: missing sub claim")
        return None

    return await get_or_create_user(db, auth0_id=auth0_id, email=payload.get("email"))


class RequestAuthProvider:
    """
    Auth provider for one HTTP request.

    Authentication runs lazily on first use and the result is memoised, so the
    gateway's per-operation check costs one lookup per request.
    """

    def __init__(
        self,
        credentials: HTTPAuthorizationCredentials | None,
        db: AsyncSession,
        settings: Settings,
    ) -> None:
        self._credentials = credentials
        self._db = db
        self._settings = settings
        self._resolved = False
        self._user: User | None = None

    async def get_current_user(self) -> User | None:
        """Authenticate the request (once) and return its user."""
        if not self._resolved:
            self._user = await authenticate_user(self._credentials, self._db, self._settings)
            self._resolved = True
        return self._user


async def get_auth_provider(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> AuthProvider:
    """Dependency that builds the request-scoped auth provider."""
    return RequestAuthProvider(credentials, db, settings)


async def get_current_user(
    auth: AuthProvider = Depends(get_auth_provider),
) -> User:
    """Dependency that requires an authenticated user (401 otherwise)."""
    user = await auth.get_current_user()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> UUID:
    """
    Dependency for streaming endpoints that only need the user's id.

    Authenticates in a session of its own that is committed (persisting a
    first-login user) and closed before the endpoint runs, so the response
    holds no pooled connection for its lifetime.
    """
    async with session_factory() as db:
        user = await authenticate_user(credentials, db, settings)
        await db.commit()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user.id
