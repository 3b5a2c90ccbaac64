"""Tests for health check endpoints."""

import pytest
from fastapi.testclient import TestClient

from storefront.infrastructure.config import settings
from storefront.main import app


@pytest.fixture
def client() -> TestClient:
    """Create test client."""
    return TestClient(app)


def test_health_check(client: TestClient) -> None:
    """Test health endpoint returns healthy status."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "storefront-api"
    assert data["version"] == settings.api_version
    assert data["storage_backend"] == settings.storage_backend


def test_health_needs_no_credentials(client: TestClient) -> None:
    """Health is public even though admin routes are protected."""
    response = client.get("/health", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 200
