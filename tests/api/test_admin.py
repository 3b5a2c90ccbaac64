"""Tests for administrator return endpoints."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from storefront.domain import Order, OrderStatus
from storefront.infrastructure.memory import InMemoryStore


@pytest.fixture
def pending_return(
    client: TestClient,
    store: InMemoryStore,
    order_factory: Callable[..., Order],
    shopper_headers: dict[str, str],
) -> Order:
    """Delivered order 2 with a pending return of 2 units of item 20."""
    order = store.add_order(
        order_factory(
            order_id=2,
            status=OrderStatus.DELIVERED,
            lines=((20, 101, 3, "1000"), (21, 102, 2, "2000")),
            delivered_at=datetime.now(timezone.utc) - timedelta(days=1),
        )
    )
    response = client.post(
        "/orders/2/returns",
        json={"order_item_id": 20, "quantity": 2, "return_reason": "DEFECT"},
        headers=shopper_headers,
    )
    assert response.status_code == 201
    return order


class TestAdminAuth:
    """Tests for administrator authentication."""

    def test_requires_api_key(self, client: TestClient) -> None:
        response = client.get("/admin/returns")

        assert response.status_code == 401
        assert response.json()["error_code"] == "UNAUTHORIZED"

    def test_wrong_api_key(self, client: TestClient) -> None:
        response = client.get("/admin/returns", headers={"Authorization": "Bearer wrong"})

        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_API_KEY"


class TestPendingReturns:
    """Tests for the pending return queue endpoints."""

    def test_empty_queue(self, client: TestClient, admin_headers: dict[str, str]) -> None:
        response = client.get("/admin/returns", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["items"] == []
        assert data["total"] == 0
        assert data["has_more"] is False

    def test_lists_pending_return(
        self, client: TestClient, admin_headers: dict[str, str], pending_return: Order
    ) -> None:
        """Each entry names the order, item, customer and reason."""
        data = client.get("/admin/returns", headers=admin_headers).json()

        assert data["total"] == 1
        entry = data["items"][0]
        assert entry["order_id"] == 2
        assert entry["order_item_id"] == 20
        assert entry["quantity"] == 2
        assert entry["return_reason"] == "DEFECT"
        assert entry["user_email"] == "kim@example.com"

    def test_count(
        self, client: TestClient, admin_headers: dict[str, str], pending_return: Order
    ) -> None:
        response = client.get("/admin/returns/count", headers=admin_headers)

        assert response.status_code == 200
        assert response.json() == {"count": 1}

    def test_page_size_bounds(self, client: TestClient, admin_headers: dict[str, str]) -> None:
        response = client.get("/admin/returns?page_size=500", headers=admin_headers)
        assert response.status_code == 422


class TestReturnDecisions:
    """Tests for approving and rejecting returns."""

    def test_approve(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
        store: InMemoryStore,
        pending_return: Order,
    ) -> None:
        """Approval compensates the returned units."""
        response = client.post("/admin/orders/2/items/20/return/approve", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["item_status"] == "RETURNED"
        assert data["order_status"] == "DELIVERED"
        assert data["refund_amount"] == "1914.29"
        assert data["point_delta"] == 63
        assert store.products[101].stock_quantity == 12

    def test_approve_without_pending_return(
        self, client: TestClient, admin_headers: dict[str, str], pending_return: Order
    ) -> None:
        response = client.post("/admin/orders/2/items/21/return/approve", headers=admin_headers)

        assert response.status_code == 409
        assert response.json()["error_code"] == "INVALID_STATE"

    def test_reject_shows_reason_to_shopper(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
        shopper_headers: dict[str, str],
        pending_return: Order,
    ) -> None:
        """The shopper sees the reject reason on the reopened item."""
        response = client.post(
            "/admin/orders/2/items/20/return/reject",
            json={"reason": "Item shows signs of use"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["item_status"] == "NORMAL"

        order = client.get("/orders/2", headers=shopper_headers).json()
        assert order["items"][0]["status"] == "NORMAL"
        assert order["items"][0]["reject_reason"] == "Item shows signs of use"
        assert [h["to_status"] for h in order["history"]] == ["RETURN_REQUESTED", "RETURN_REJECTED"]

    def test_reject_blank_reason(
        self, client: TestClient, admin_headers: dict[str, str], pending_return: Order
    ) -> None:
        response = client.post(
            "/admin/orders/2/items/20/return/reject",
            json={"reason": "   "},
            headers=admin_headers,
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "INVALID_STATE"

    def test_unknown_order(self, client: TestClient, admin_headers: dict[str, str]) -> None:
        response = client.post("/admin/orders/999/items/1/return/approve", headers=admin_headers)
        assert response.status_code == 404
