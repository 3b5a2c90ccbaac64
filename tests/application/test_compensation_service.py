"""Tests for the compensation application service."""

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from storefront.application.compensation_service import CompensationService
from storefront.domain import CouponGrant, Order, OrderItemStatus, OrderStatus
from storefront.domain.exceptions import LedgerConflictError
from storefront.domain.value_objects import InventoryReason, PointChangeType
from storefront.infrastructure.memory import InMemoryCouponLedger, InMemoryStore, InMemoryUnitOfWork


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def opened() -> list[InMemoryUnitOfWork]:
    """Units of work opened by the counting service."""
    return []


@pytest.fixture
def counting_service(
    store: InMemoryStore,
    opened: list[InMemoryUnitOfWork],
    now: datetime,
) -> CompensationService:
    """Service whose unit of work factory records every unit it opens."""

    def factory() -> InMemoryUnitOfWork:
        uow = store.unit_of_work()
        opened.append(uow)
        return uow

    return CompensationService(uow_factory=factory, clock=lambda: now)


@pytest.fixture
def delivered(store: InMemoryStore, order_factory: Callable[..., Order]) -> Order:
    """Order 2, delivered two days ago: 3 x 1000 of 101, 2 x 2000 of 102."""
    return store.add_order(
        order_factory(
            order_id=2,
            status=OrderStatus.DELIVERED,
            lines=((20, 101, 3, "1000"), (21, 102, 2, "2000")),
        )
    )


class FailingSink:
    """Sink that always fails."""

    async def products_changed(self, product_ids: Sequence[int]) -> None:
        raise RuntimeError("cache unavailable")


def snapshot(store: InMemoryStore) -> dict:
    """Observable ledger state of the seeded store."""
    account = store.accounts[7]
    return {
        "stock": {pid: (p.stock_quantity, p.sales_count) for pid, p in store.products.items()},
        "points": account.point_balance,
        "spent": account.total_spent,
        "tier": account.tier_id,
        "grant_used": store.grants[11].is_used,
        "coupon_usage": store.coupons[1].usage_count,
        "order_status": store.orders[1].status,
        "inventory_rows": len(store.inventory_history),
        "point_rows": len(store.point_history),
        "order_rows": len(store.order_history),
    }


# ============================================================================
# Cancel Order Tests
# ============================================================================


class TestCancelOrder:
    """Tests for full order cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_compensates_every_ledger(
        self, service: CompensationService, store: InMemoryStore
    ) -> None:
        """Stock, points, spend, tier and coupon are all compensated."""
        result = await service.cancel_order(1, 7)

        assert result.success is True
        assert result.order_status == "CANCELLED"
        assert result.quantity == 5
        assert result.refund_amount == Decimal("6700")
        assert result.point_delta == 220
        assert result.affected_product_ids == [101, 102]
        assert result.coupon_restored is True

        assert store.products[101].stock_quantity == 13
        assert store.products[101].sales_count == 2
        assert store.products[102].stock_quantity == 6
        assert store.products[102].sales_count == 2

        account = store.accounts[7]
        assert account.point_balance == 1220
        assert account.total_spent == Decimal("28300")
        assert account.tier_id == 1

        assert store.grants[11].is_used is False
        assert store.grants[11].order_id is None
        assert store.coupons[1].usage_count == 4

        order = store.orders[1]
        assert order.status == OrderStatus.CANCELLED
        assert all(item.status == OrderItemStatus.CANCELLED for item in order.items)

    @pytest.mark.asyncio
    async def test_cancel_writes_history_rows(
        self, service: CompensationService, store: InMemoryStore
    ) -> None:
        """One inventory row per product, one point row, one order row per transition."""
        await service.cancel_order(1, 7)

        assert [(row.product_id, row.change_amount) for row in store.inventory_history] == [
            (101, 3),
            (102, 2),
        ]
        assert store.inventory_history[0].before_quantity == 10
        assert store.inventory_history[0].after_quantity == 13
        assert store.inventory_history[0].reference_id == 1

        assert len(store.point_history) == 1
        point_row = store.point_history[0]
        assert point_row.change_type == PointChangeType.REFUND
        assert point_row.amount == 220
        assert point_row.balance_after == 1220

        assert [row.to_status for row in store.order_history] == [
            "CANCELLED",
            "CANCELLED",
            "CANCELLED",
        ]
        assert store.order_history[-1].order_item_id is None
        assert {row.actor for row in store.order_history} == {"user:7"}

    @pytest.mark.asyncio
    async def test_second_cancel_fails_without_side_effects(
        self, service: CompensationService, store: InMemoryStore
    ) -> None:
        """Cancelling twice is refused and changes nothing."""
        await service.cancel_order(1, 7)
        before = snapshot(store)

        result = await service.cancel_order(1, 7)

        assert result.success is False
        assert result.error_code == "CANCEL_FAIL"
        assert snapshot(store) == before

    @pytest.mark.asyncio
    async def test_cancel_shipped_order_fails(
        self,
        service: CompensationService,
        store: InMemoryStore,
        order_factory: Callable[..., Order],
    ) -> None:
        """Orders past shipment cannot be cancelled."""
        store.add_order(
            order_factory(order_id=4, status=OrderStatus.SHIPPED, lines=((40, 101, 1, "1000"),))
        )

        result = await service.cancel_order(4, 7)

        assert result.error_code == "CANCEL_FAIL"
        assert result.error_details["current_status"] == "SHIPPED"

    @pytest.mark.asyncio
    async def test_cancel_someone_elses_order_is_not_found(
        self, service: CompensationService, store: InMemoryStore
    ) -> None:
        """Ownership failures look exactly like missing orders."""
        before = snapshot(store)

        result = await service.cancel_order(1, 8)
        missing = await service.cancel_order(999, 7)

        assert result.error_code == "NOT_FOUND"
        assert missing.error_code == "NOT_FOUND"
        assert snapshot(store) == before

    @pytest.mark.asyncio
    async def test_net_point_delta_floors_balance(
        self,
        service: CompensationService,
        store: InMemoryStore,
        order_factory: Callable[..., Order],
    ) -> None:
        """Balance 100, used 300, earned 500: one -200 adjustment leaves 0."""
        store.accounts[7].point_balance = 100
        store.add_order(
            order_factory(
                order_id=3,
                lines=((30, 101, 1, "1000"),),
                final_amount="700",
                used_points=300,
                earned_points=500,
            )
        )

        result = await service.cancel_order(3, 7)

        assert result.success is True
        assert result.point_delta == -100
        assert store.accounts[7].point_balance == 0
        assert len(store.point_history) == 1
        assert store.point_history[0].change_type == PointChangeType.ADJUST
        assert store.point_history[0].amount == 100
        assert store.point_history[0].balance_after == 0

    @pytest.mark.asyncio
    async def test_zero_point_delta_writes_no_point_row(
        self,
        service: CompensationService,
        store: InMemoryStore,
        order_factory: Callable[..., Order],
    ) -> None:
        """Used and earned points that cancel out leave no point history."""
        store.add_order(
            order_factory(
                order_id=3,
                lines=((30, 101, 1, "1000"),),
                final_amount="900",
                used_points=100,
                earned_points=100,
            )
        )

        result = await service.cancel_order(3, 7)

        assert result.point_delta == 0
        assert store.accounts[7].point_balance == 1000
        assert store.point_history == []

    @pytest.mark.asyncio
    async def test_coupon_restore_is_idempotent(
        self, service: CompensationService, store: InMemoryStore
    ) -> None:
        """An already unused grant is left alone and its coupon is not released again."""
        store.grants[11].is_used = False

        result = await service.cancel_order(1, 7)

        assert result.success is True
        assert result.coupon_restored is False
        assert store.coupons[1].usage_count == 5

    @pytest.mark.asyncio
    async def test_vanished_product_is_skipped(
        self, service: CompensationService, store: InMemoryStore, sink
    ) -> None:
        """A deleted product is skipped; the rest of the cancellation commits."""
        store.remove_product(102)

        result = await service.cancel_order(1, 7)

        assert result.success is True
        assert result.affected_product_ids == [101]
        assert result.skipped_product_ids == [102]
        assert [row.product_id for row in store.inventory_history] == [101]
        assert store.accounts[7].point_balance == 1220
        assert sink.calls == [[101]]

    @pytest.mark.asyncio
    async def test_failure_rolls_back_everything(
        self,
        service: CompensationService,
        store: InMemoryStore,
        sink,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A failing coupon step undoes the stock and point changes made before it."""

        async def broken_restore(self, grant: CouponGrant) -> bool:
            raise LedgerConflictError("coupon ledger out of sync")

        monkeypatch.setattr(InMemoryCouponLedger, "restore", broken_restore)
        before = snapshot(store)

        result = await service.cancel_order(1, 7)

        assert result.success is False
        assert result.error_code == "LEDGER_CONFLICT"
        assert snapshot(store) == before
        assert sink.calls == []

        monkeypatch.undo()
        retried = await service.cancel_order(1, 7)

        assert retried.success is True
        assert store.products[101].stock_quantity == 13
        assert store.accounts[7].point_balance == 1220

    @pytest.mark.asyncio
    async def test_unexpected_error_propagates_after_rollback(
        self,
        service: CompensationService,
        store: InMemoryStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Non-domain errors are not swallowed, and nothing is committed."""

        async def broken_restore(self, grant: CouponGrant) -> bool:
            raise RuntimeError("connection lost")

        monkeypatch.setattr(InMemoryCouponLedger, "restore", broken_restore)
        before = snapshot(store)

        with pytest.raises(RuntimeError):
            await service.cancel_order(1, 7)

        assert snapshot(store) == before

    @pytest.mark.asyncio
    async def test_sales_conflict_aborts(
        self, service: CompensationService, store: InMemoryStore
    ) -> None:
        """Rolling back more sales than were recorded aborts the cancellation."""
        store.products[102].sales_count = 1
        before = snapshot(store)

        result = await service.cancel_order(1, 7)

        assert result.error_code == "LEDGER_CONFLICT"
        assert snapshot(store) == before


# ============================================================================
# Partial Cancel Tests
# ============================================================================


class TestPartialCancel:
    """Tests for partial cancellation."""

    @pytest.mark.asyncio
    async def test_partial_cancel_is_proportional(
        self, service: CompensationService, store: InMemoryStore
    ) -> None:
        """One unit of a 3000/7000 line refunds its share."""
        result = await service.partial_cancel(1, 7, order_item_id=10, quantity=1)

        assert result.success is True
        assert result.order_status == "PAID"
        assert result.item_status == "NORMAL"
        assert result.refund_amount == Decimal("957.14")
        assert result.point_delta == 31
        assert result.affected_product_ids == [101]
        assert result.coupon_restored is False

        assert store.products[101].stock_quantity == 11
        assert store.products[102].stock_quantity == 4
        assert store.accounts[7].total_spent == Decimal("34042.86")
        assert store.accounts[7].tier_id == 2
        assert store.grants[11].is_used is True
        assert store.inventory_history[0].reason == InventoryReason.PARTIAL_CANCEL

        item = store.orders[1].items[0]
        assert item.remaining_quantity == 2
        assert item.cancelled_quantity == 1

    @pytest.mark.asyncio
    async def test_each_transition_is_recorded_once(
        self, service: CompensationService, store: InMemoryStore
    ) -> None:
        """Later operations on the same order do not replay earlier history."""
        await service.partial_cancel(1, 7, order_item_id=10, quantity=1)
        await service.partial_cancel(1, 7, order_item_id=10, quantity=1)

        rows = [(row.order_item_id, row.to_status, row.quantity) for row in store.order_history]
        assert rows == [(10, "NORMAL", 1), (10, "NORMAL", 1)]
        assert store.orders[1].collect_events() == []

    @pytest.mark.asyncio
    async def test_emptying_order_cancels_it(
        self, service: CompensationService, store: InMemoryStore
    ) -> None:
        """Cancelling the last units settles the residual and restores the coupon."""
        first = await service.partial_cancel(1, 7, order_item_id=10, quantity=3)
        last = await service.partial_cancel(1, 7, order_item_id=11, quantity=2)

        assert first.order_status == "PAID"
        assert last.order_status == "CANCELLED"
        assert first.refund_amount + last.refund_amount == Decimal("6700")
        assert first.point_delta + last.point_delta == 220
        assert last.coupon_restored is True
        assert store.accounts[7].point_balance == 1220
        assert store.orders[1].refunded_amount == Decimal("6700")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -1])
    async def test_non_positive_quantity_rejected_before_locking(
        self,
        counting_service: CompensationService,
        opened: list[InMemoryUnitOfWork],
        quantity: int,
    ) -> None:
        """Invalid quantities never open a transaction."""
        result = await counting_service.partial_cancel(1, 7, order_item_id=10, quantity=quantity)

        assert result.error_code == "INVALID_QUANTITY"
        assert opened == []

    @pytest.mark.asyncio
    async def test_quantity_beyond_remaining_rejected(
        self, service: CompensationService, store: InMemoryStore
    ) -> None:
        """Quantity above the remaining units is rejected with nothing changed."""
        before = snapshot(store)

        result = await service.partial_cancel(1, 7, order_item_id=11, quantity=3)

        assert result.error_code == "INVALID_QUANTITY"
        assert snapshot(store) == before

    @pytest.mark.asyncio
    async def test_item_of_another_order_not_found(self, service: CompensationService) -> None:
        """Items are looked up within the order."""
        result = await service.partial_cancel(1, 7, order_item_id=99, quantity=1)
        assert result.error_code == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_partial_cancel_after_shipment_fails(
        self,
        service: CompensationService,
        store: InMemoryStore,
        order_factory: Callable[..., Order],
    ) -> None:
        """Shipped orders refuse partial cancels too."""
        store.add_order(
            order_factory(order_id=4, status=OrderStatus.SHIPPED, lines=((40, 101, 1, "1000"),))
        )

        result = await service.partial_cancel(4, 7, order_item_id=40, quantity=1)

        assert result.error_code == "CANCEL_FAIL"


# ============================================================================
# Return Tests
# ============================================================================


class TestRequestReturn:
    """Tests for return requests."""

    @pytest.mark.asyncio
    async def test_request_changes_no_ledger(
        self, service: CompensationService, store: InMemoryStore, delivered: Order, sink
    ) -> None:
        """A request only marks units pending."""
        before = snapshot(store)

        result = await service.request_return(2, 7, order_item_id=20, quantity=2, reason_code="defect")

        assert result.success is True
        assert result.item_status == "RETURN_REQUESTED"
        assert result.order_status == "DELIVERED"
        item = store.orders[2].items[0]
        assert item.pending_return_quantity == 2
        assert item.return_reason.value == "DEFECT"

        after = snapshot(store)
        assert after["stock"] == before["stock"]
        assert after["points"] == before["points"]
        assert after["inventory_rows"] == 0
        assert [row.to_status for row in store.order_history] == ["RETURN_REQUESTED"]
        assert sink.calls == []

    @pytest.mark.asyncio
    async def test_unknown_reason_rejected_before_locking(
        self,
        counting_service: CompensationService,
        opened: list[InMemoryUnitOfWork],
        delivered: Order,
    ) -> None:
        """Reason codes are validated up front."""
        result = await counting_service.request_return(
            2, 7, order_item_id=20, quantity=1, reason_code="BROKEN"
        )

        assert result.error_code == "INVALID_STATE"
        assert result.error_details["reason"] == "INVALID_RETURN_REASON"
        assert opened == []

    @pytest.mark.asyncio
    async def test_non_positive_quantity_rejected_before_locking(
        self,
        counting_service: CompensationService,
        opened: list[InMemoryUnitOfWork],
        delivered: Order,
    ) -> None:
        """A zero-unit return is a state error reported without locking."""
        result = await counting_service.request_return(
            2, 7, order_item_id=20, quantity=0, reason_code="DEFECT"
        )

        assert result.error_code == "INVALID_STATE"
        assert result.error_details["reason"] == "INVALID_QUANTITY"
        assert opened == []

    @pytest.mark.asyncio
    async def test_return_period_expired(
        self,
        service: CompensationService,
        store: InMemoryStore,
        order_factory: Callable[..., Order],
        now: datetime,
    ) -> None:
        """Requests after fourteen days are refused."""
        store.add_order(
            order_factory(
                order_id=5,
                status=OrderStatus.DELIVERED,
                lines=((50, 101, 1, "1000"),),
                delivered_at=now - timedelta(days=15),
            )
        )

        result = await service.request_return(5, 7, order_item_id=50, quantity=1, reason_code="DEFECT")

        assert result.error_code == "INVALID_STATE"
        assert result.error_details["reason"] == "RETURN_PERIOD_EXPIRED"

    @pytest.mark.asyncio
    async def test_undelivered_order_refuses_returns(self, service: CompensationService) -> None:
        """Paid but undelivered orders cannot be returned."""
        result = await service.request_return(1, 7, order_item_id=10, quantity=1, reason_code="DEFECT")

        assert result.error_code == "INVALID_STATE"
        assert result.error_details["reason"] == "RETURN_NOT_ALLOWED"

    @pytest.mark.asyncio
    async def test_quantity_beyond_remaining(
        self, service: CompensationService, delivered: Order
    ) -> None:
        """Only units still held can be returned."""
        result = await service.request_return(2, 7, order_item_id=21, quantity=3, reason_code="OTHER")
        assert result.error_code == "INVALID_STATE"

    @pytest.mark.asyncio
    async def test_second_request_while_pending(
        self, service: CompensationService, delivered: Order
    ) -> None:
        """A pending request blocks another one on the same item."""
        await service.request_return(2, 7, order_item_id=20, quantity=1, reason_code="DEFECT")
        result = await service.request_return(2, 7, order_item_id=20, quantity=1, reason_code="DEFECT")

        assert result.error_code == "INVALID_STATE"


class TestApproveReturn:
    """Tests for return approval."""

    @pytest.mark.asyncio
    async def test_approve_compensates_returned_units(
        self, service: CompensationService, store: InMemoryStore, delivered: Order, sink
    ) -> None:
        """Approval restocks, refunds and reclaims points for the returned units."""
        await service.request_return(2, 7, order_item_id=20, quantity=2, reason_code="DEFECT")

        result = await service.approve_return(2, 20)

        assert result.success is True
        assert result.item_status == "RETURNED"
        assert result.order_status == "DELIVERED"
        assert result.quantity == 2
        assert result.refund_amount == Decimal("1914.29")
        assert result.point_delta == 63
        assert result.coupon_restored is False

        assert store.products[101].stock_quantity == 12
        assert store.products[101].sales_count == 3
        assert store.accounts[7].point_balance == 1063
        assert store.inventory_history[-1].reason == InventoryReason.RETURN
        assert store.inventory_history[-1].created_by == "admin"

        item = store.orders[2].items[0]
        assert item.returned_quantity == 2
        assert item.remaining_quantity == 1
        assert sink.calls == [[101]]

    @pytest.mark.asyncio
    async def test_approve_without_request(
        self, service: CompensationService, store: InMemoryStore, delivered: Order
    ) -> None:
        """Nothing pending means nothing to approve."""
        result = await service.approve_return(2, 20)

        assert result.error_code == "INVALID_STATE"
        assert store.products[101].stock_quantity == 10

    @pytest.mark.asyncio
    async def test_approve_twice(
        self, service: CompensationService, store: InMemoryStore, delivered: Order
    ) -> None:
        """A returned item is terminal; stock is restored once."""
        await service.request_return(2, 7, order_item_id=20, quantity=1, reason_code="DEFECT")
        await service.approve_return(2, 20)

        result = await service.approve_return(2, 20)

        assert result.error_code == "INVALID_STATE"
        assert store.products[101].stock_quantity == 11

    @pytest.mark.asyncio
    async def test_approve_unknown_order(self, service: CompensationService) -> None:
        result = await service.approve_return(999, 20)
        assert result.error_code == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_returning_everything_restores_coupon(
        self,
        service: CompensationService,
        store: InMemoryStore,
        order_factory: Callable[..., Order],
        now: datetime,
    ) -> None:
        """The coupon comes back once no item holds any units."""
        store.add_order(
            order_factory(
                order_id=5,
                status=OrderStatus.DELIVERED,
                lines=((50, 101, 1, "1000"),),
                final_amount="900",
                used_points=0,
                earned_points=10,
            )
        )
        store.add_grant(
            CouponGrant(id=12, user_id=7, coupon_id=1, is_used=True, used_at=now, order_id=5)
        )
        await service.request_return(5, 7, order_item_id=50, quantity=1, reason_code="WRONG_ITEM")

        result = await service.approve_return(5, 50)

        assert result.coupon_restored is True
        assert result.refund_amount == Decimal("900")
        assert result.point_delta == -10
        assert store.grants[12].is_used is False
        assert store.coupons[1].usage_count == 4
        assert store.orders[5].status == OrderStatus.DELIVERED


class TestRejectReturn:
    """Tests for return rejection."""

    @pytest.mark.asyncio
    async def test_reject_reopens_item(
        self, service: CompensationService, store: InMemoryStore, delivered: Order, sink
    ) -> None:
        """The item returns to NORMAL with the reason kept; no ledger moves."""
        await service.request_return(2, 7, order_item_id=21, quantity=1, reason_code="SIZE_ISSUE")

        result = await service.reject_return(2, 21, "Item shows signs of use")

        assert result.success is True
        assert result.item_status == "NORMAL"
        assert result.quantity == 1
        item = store.orders[2].items[1]
        assert item.reject_reason == "Item shows signs of use"
        assert item.pending_return_quantity == 0
        assert store.inventory_history == []
        assert [row.to_status for row in store.order_history] == [
            "RETURN_REQUESTED",
            "RETURN_REJECTED",
        ]
        assert store.order_history[-1].actor == "admin"
        assert sink.calls == []

    @pytest.mark.asyncio
    async def test_rejected_item_can_be_requested_again(
        self, service: CompensationService, store: InMemoryStore, delivered: Order
    ) -> None:
        """A new request clears the previous reject reason."""
        await service.request_return(2, 7, order_item_id=21, quantity=1, reason_code="SIZE_ISSUE")
        await service.reject_return(2, 21, "Outside policy")

        result = await service.request_return(2, 7, order_item_id=21, quantity=2, reason_code="DEFECT")

        assert result.success is True
        assert store.orders[2].items[1].reject_reason is None

    @pytest.mark.asyncio
    async def test_blank_reason_rejected_before_locking(
        self,
        counting_service: CompensationService,
        opened: list[InMemoryUnitOfWork],
        delivered: Order,
    ) -> None:
        """A reject reason is mandatory."""
        result = await counting_service.reject_return(2, 21, "  ")

        assert result.error_code == "INVALID_STATE"
        assert opened == []

    @pytest.mark.asyncio
    async def test_reject_without_request(
        self, service: CompensationService, delivered: Order
    ) -> None:
        result = await service.reject_return(2, 21, "No request")
        assert result.error_code == "INVALID_STATE"


# ============================================================================
# Post-Commit Notification Tests
# ============================================================================


class TestNotification:
    """Tests for cache invalidation after commit."""

    @pytest.mark.asyncio
    async def test_sink_sees_committed_state(
        self, service: CompensationService, sink
    ) -> None:
        """The sink runs after commit, so it observes the restored stock."""
        await service.cancel_order(1, 7)

        assert sink.calls == [[101, 102]]
        assert sink.stock_at_call == [{101: 13, 102: 6}]

    @pytest.mark.asyncio
    async def test_sink_not_called_on_failure(self, service: CompensationService, sink) -> None:
        await service.cancel_order(1, 8)
        assert sink.calls == []

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_undo_commit(
        self, store: InMemoryStore, now: datetime
    ) -> None:
        """A broken cache leaves the committed cancellation in place."""
        service = CompensationService(store.unit_of_work, sink=FailingSink(), clock=lambda: now)

        result = await service.cancel_order(1, 7)

        assert result.success is True
        assert store.orders[1].status == OrderStatus.CANCELLED
