"""Tests for health and user endpoints."""
from httpx import AsyncClient

from core.auth import DEV_USER_AUTH0_ID


async def test_health_check(client: AsyncClient) -> None:
    """Health reports a healthy database and a process-local feed."""
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "healthy",
        "database": "healthy",
        "change_feed": "local",
    }


async def test_security_headers(client: AsyncClient) -> None:
    response = await client.get("/health")

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"


async def test_users_me_dev_mode(client: AsyncClient) -> None:
    """In DEV_MODE the fixed development user is returned."""
    first = await client.get("/users/me")
    second = await client.get("/users/me")

    assert first.status_code == 200
    assert first.json()["auth0_id"] == DEV_USER_AUTH0_ID
    assert first.json()["id"] == second.json()["id"]
