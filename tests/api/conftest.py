"""Shared fixtures for API tests."""

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from storefront.application.invalidation import reset_product_cache
from storefront.infrastructure.config import settings
from storefront.infrastructure.memory import InMemoryStore
from storefront.infrastructure.storage import get_unit_of_work_factory
from storefront.main import app


@pytest.fixture(autouse=True)
def use_store(store: InMemoryStore) -> Iterator[InMemoryStore]:
    """Route every request to the seeded in-memory store."""
    reset_product_cache()
    app.dependency_overrides[get_unit_of_work_factory] = lambda: store.unit_of_work
    yield store
    app.dependency_overrides.clear()


@pytest.fixture
def client() -> TestClient:
    """Create test client without authentication."""
    return TestClient(app)


@pytest.fixture
def shopper_headers() -> dict[str, str]:
    """Headers identifying customer 7."""
    return {"X-User-Id": "7"}


@pytest.fixture
def admin_headers() -> dict[str, str]:
    """Get administrator authentication headers."""
    return {"Authorization": f"Bearer {settings.admin_api_key}"}
