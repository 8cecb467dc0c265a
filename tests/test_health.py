"""
Tests for health check endpoints.
"""
from types import SimpleNamespace

import pytest
from httpx import AsyncClient
from fastapi import status

from sqlite_operator.main import app


@pytest.fixture
def running_dispatcher():
    """Pretend the dispatcher has started."""
    app.state.dispatcher = SimpleNamespace(running=True)
    yield app.state.dispatcher
    del app.state.dispatcher


@pytest.mark.asyncio
async def test_health_check(test_client: AsyncClient):
    """Test basic health check endpoint."""
    response = await test_client.get("/health/")
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert "environment" in data
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_liveness_probe(test_client: AsyncClient):
    """Test Kubernetes liveness probe."""
    response = await test_client.get("/health/live")
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "alive"
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_readiness_probe_before_dispatcher_starts(test_client: AsyncClient):
    """Not ready until the dispatcher is running."""
    response = await test_client.get("/health/ready")
    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    data = response.json()
    assert data["status"] == "not_ready"
    assert data["dispatcher"] == "stopped"


@pytest.mark.asyncio
async def test_readiness_probe_with_running_dispatcher(test_client: AsyncClient, running_dispatcher):
    response = await test_client.get("/health/ready")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["dispatcher"] == "running"


@pytest.mark.asyncio
async def test_readiness_probe_after_dispatcher_stops(test_client: AsyncClient, running_dispatcher):
    running_dispatcher.running = False
    response = await test_client.get("/health/ready")
    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE


@pytest.mark.asyncio
async def test_startup_probe(test_client: AsyncClient):
    """Test Kubernetes startup probe."""
    response = await test_client.get("/health/startup")
    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    data = response.json()
    assert data["status"] == "starting"
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_startup_probe_with_running_dispatcher(test_client: AsyncClient, running_dispatcher):
    response = await test_client.get("/health/startup")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "started"
