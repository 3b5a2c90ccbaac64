"""Shared fixtures: an in-memory store seeded with one customer's order and ledgers."""

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storefront.application.compensation_service import CompensationService
from storefront.domain import (
    Coupon,
    CouponGrant,
    CustomerAccount,
    Order,
    OrderItem,
    OrderStatus,
    ProductStock,
    Tier,
)
from storefront.infrastructure.memory import InMemoryStore

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
USER_ID = 7
OTHER_USER_ID = 8


class RecordingSink:
    """Stock change sink that remembers what it was told and what the store held then."""

    def __init__(self, store: InMemoryStore | None = None) -> None:
        self.store = store
        self.calls: list[list[int]] = []
        self.stock_at_call: list[dict[int, int]] = []

    async def products_changed(self, product_ids: Sequence[int]) -> None:
        self.calls.append(list(product_ids))
        if self.store is not None:
            self.stock_at_call.append(
                {pid: self.store.products[pid].stock_quantity for pid in product_ids}
            )


# ============================================================================
# Builders
# ============================================================================


def build_order(
    order_id: int = 1,
    user_id: int = USER_ID,
    status: OrderStatus = OrderStatus.PAID,
    lines: Sequence[tuple[int, int, int, str]] = ((10, 101, 3, "1000"), (11, 102, 2, "2000")),
    final_amount: str = "6700",
    shipping_fee: str = "0",
    used_points: int = 300,
    earned_points: int = 80,
    delivered_at: datetime | None = None,
) -> Order:
    """Build an order and walk it through fulfilment up to ``status``.

    ``lines`` are ``(order_item_id, product_id, quantity, unit_price)``.
    """
    order = Order(
        id=order_id,
        user_id=user_id,
        order_number=f"ORD-{order_id:04d}",
        final_amount=Decimal(final_amount),
        shipping_fee=Decimal(shipping_fee),
        used_points=used_points,
        earned_points_snapshot=earned_points,
        ordered_at=NOW - timedelta(days=5),
        items=[
            OrderItem(
                id=item_id,
                order_id=order_id,
                product_id=product_id,
                product_name=f"Product {product_id}",
                original_quantity=quantity,
                unit_price=Decimal(price),
            )
            for item_id, product_id, quantity, price in lines
        ],
    )
    if status == OrderStatus.PENDING:
        return order
    order.mark_paid(NOW - timedelta(days=5))
    if status in (OrderStatus.SHIPPED, OrderStatus.DELIVERED):
        order.mark_shipped(NOW - timedelta(days=4))
    if status == OrderStatus.DELIVERED:
        order.mark_delivered(delivered_at or NOW - timedelta(days=2))
    order.collect_events()
    return order


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def now() -> datetime:
    """Fixed clock used by the service fixture."""
    return NOW


@pytest.fixture
def order_factory() -> Callable[..., Order]:
    """Order builder."""
    return build_order


@pytest.fixture
def store() -> InMemoryStore:
    """Store with two products, three tiers, one customer and a used coupon.

    Order 1 is PAID, bought 3 x 1000 of product 101 and 2 x 2000 of
    product 102, spent 300 points, earned 80, and consumed coupon grant 11.
    """
    store = InMemoryStore(lock_timeout=0.5)
    store.add_product(ProductStock(id=101, name="Mug", stock_quantity=10, sales_count=5))
    store.add_product(ProductStock(id=102, name="Kettle", stock_quantity=4, sales_count=4))
    store.add_tier(Tier(id=1, name="BASIC", level=1, min_spent=Decimal("0")))
    store.add_tier(Tier(id=2, name="SILVER", level=2, min_spent=Decimal("30000")))
    store.add_tier(Tier(id=3, name="GOLD", level=3, min_spent=Decimal("100000")))
    store.add_account(
        CustomerAccount(
            id=USER_ID,
            name="Kim Lee",
            email="kim@example.com",
            tier_id=2,
            total_spent=Decimal("35000"),
            point_balance=1000,
        )
    )
    store.add_account(
        CustomerAccount(id=OTHER_USER_ID, name="Sam Park", email="sam@example.com", tier_id=1)
    )
    store.add_coupon(Coupon(id=1, code="WELCOME10", usage_count=5))
    store.add_grant(
        CouponGrant(
            id=11,
            user_id=USER_ID,
            coupon_id=1,
            is_used=True,
            used_at=NOW - timedelta(days=5),
            order_id=1,
        )
    )
    store.add_order(build_order())
    return store


@pytest.fixture
def sink(store: InMemoryStore) -> RecordingSink:
    """Sink recording post-commit notifications."""
    return RecordingSink(store)


@pytest.fixture
def service(store: InMemoryStore, sink: RecordingSink) -> CompensationService:
    """Compensation service over the seeded store with a fixed clock."""
    return CompensationService(
        uow_factory=store.unit_of_work,
        sink=sink,
        clock=lambda: NOW,
        max_lock_retries=2,
        lock_retry_delay=0.01,
    )
