"""Tests for health check endpoints."""

from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

from channelsync.infrastructure.database import get_session
from channelsync.main import app


def test_health_check() -> None:
    """Test health endpoint returns healthy status."""
    response = TestClient(app).get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "channelsync"
    assert "version" in data


async def test_readiness_check(client: httpx.AsyncClient) -> None:
    """Test readiness endpoint returns ready status."""
    response = await client.get("/ready")
    assert response.status_code == 200
    assert response.json() == {"status": "ready"}


@pytest.fixture
def broken_database():
    session = AsyncMock()
    session.execute.side_effect = ConnectionRefusedError("database is down")

    async def override_session():
        yield session

    app.dependency_overrides[get_session] = override_session
    yield
    app.dependency_overrides.clear()


async def test_readiness_without_database(broken_database) -> None:
    """The readiness probe reports 503 when the database is unreachable."""
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/ready")

    assert response.status_code == 503
    assert response.json()["error_code"] == "DATABASE_UNAVAILABLE"


async def test_domain_error_handler() -> None:
    """Domain errors escaping a route keep the API error format."""
    from channelsync.domain import ChannelAccountNotFoundError

    @app.get("/_raise-domain-error")
    async def _raise() -> None:
        raise ChannelAccountNotFoundError("acct-1")

    try:
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/_raise-domain-error")
    finally:
        app.router.routes.pop()

    assert response.status_code == 404
    assert response.json()["error_code"] == "ACCOUNT_NOT_FOUND"
