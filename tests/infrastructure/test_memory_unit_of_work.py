"""Tests for the in-memory unit of work."""

from decimal import Decimal

import pytest

from storefront.domain import OrderItemStatus
from storefront.domain.entities import OrderHistoryEntry
from storefront.domain.exceptions import LedgerConflictError, ResourceNotFoundError
from storefront.infrastructure.memory import InMemoryStore


class TestCommitAndRollback:
    """Tests for transaction boundaries."""

    @pytest.mark.asyncio
    async def test_commit_publishes_working_copies(self, store: InMemoryStore) -> None:
        """Changes become visible only after commit."""
        async with store.unit_of_work() as uow:
            await uow.products.lock(101)
            await uow.products.restore_stock(101, 2)
            assert store.products[101].stock_quantity == 10
            await uow.commit()

        assert store.products[101].stock_quantity == 12
        assert uow.committed is True

    @pytest.mark.asyncio
    async def test_leaving_without_commit_discards(self, store: InMemoryStore) -> None:
        """No commit, no change."""
        async with store.unit_of_work() as uow:
            await uow.customers.adjust_points(7, 500)
            await uow.products.restore_stock(101, 1)

        assert store.accounts[7].point_balance == 1000
        assert store.products[101].stock_quantity == 10

    @pytest.mark.asyncio
    async def test_exception_rolls_back_and_releases(self, store: InMemoryStore) -> None:
        """An error inside the block releases every lock."""
        with pytest.raises(LedgerConflictError):
            async with store.unit_of_work() as uow:
                await uow.orders.lock(1)
                await uow.customers.adjust_spend(7, Decimal("-100"))
                await uow.products.restore_stock(102, 99)

        assert store.accounts[7].total_spent == Decimal("35000")
        assert not store.lock_for("order:1").locked()
        assert not store.lock_for("user:7").locked()

    @pytest.mark.asyncio
    async def test_saved_order_published_on_commit(self, store: InMemoryStore) -> None:
        """Saving stages the aggregate; commit replaces the stored copy."""
        async with store.unit_of_work() as uow:
            order = await uow.orders.lock(1)
            await uow.orders.lock_item(order, 10)
            order.cancel_item(10, 1)
            await uow.orders.save(order)
            assert store.orders[1].items[0].remaining_quantity == 3
            await uow.commit()

        assert store.orders[1].items[0].remaining_quantity == 2

    @pytest.mark.asyncio
    async def test_history_rows_written_on_commit_only(self, store: InMemoryStore) -> None:
        order_rows_before = len(store.order_history)
        async with store.unit_of_work() as uow:
            order = await uow.orders.lock(1)
            order.cancel()
            await uow.orders.save(order)
            for event in order.collect_events():
                await uow.history.record_order(OrderHistoryEntry.from_event(event, "test"))

        assert len(store.order_history) == order_rows_before
        assert store.orders[1].items[0].status == OrderItemStatus.NORMAL


class TestLocks:
    """Tests for lock behaviour."""

    @pytest.mark.asyncio
    async def test_locks_are_reentrant(self, store: InMemoryStore) -> None:
        """Taking the same lock twice in one unit of work does not block."""
        async with store.unit_of_work() as uow:
            await uow.acquire("product:101")
            await uow.acquire("product:101")
            assert uow.held_locks == ["product:101"]

    @pytest.mark.asyncio
    async def test_locks_released_in_bulk(self, store: InMemoryStore) -> None:
        async with store.unit_of_work() as uow:
            await uow.orders.lock(1)
            await uow.products.lock(101)
            await uow.commit()
            assert uow.held_locks == []

        assert not store.lock_for("product:101").locked()

    @pytest.mark.asyncio
    async def test_missing_rows_are_not_locked(self, store: InMemoryStore) -> None:
        """Absent products and orders return None without taking a lock."""
        async with store.unit_of_work() as uow:
            assert await uow.products.lock(999) is None
            assert await uow.orders.lock(999) is None
            assert uow.held_locks == []

    @pytest.mark.asyncio
    async def test_lock_for_user_checks_owner(self, store: InMemoryStore) -> None:
        async with store.unit_of_work() as uow:
            assert await uow.orders.lock_for_user(1, 8) is None
            assert uow.held_locks == []


class TestLedgers:
    """Tests for the in-memory ledgers."""

    @pytest.mark.asyncio
    async def test_restore_stock_on_vanished_product(self, store: InMemoryStore) -> None:
        store.remove_product(101)
        with pytest.raises(ResourceNotFoundError):
            async with store.unit_of_work() as uow:
                await uow.products.restore_stock(101, 1)

    @pytest.mark.asyncio
    async def test_adjust_points_reports_applied_delta(self, store: InMemoryStore) -> None:
        """The applied delta is clipped by the zero floor."""
        async with store.unit_of_work() as uow:
            applied, balance = await uow.customers.adjust_points(7, -1500)
            await uow.commit()

        assert (applied, balance) == (-1000, 0)
        assert store.accounts[7].point_balance == 0

    @pytest.mark.asyncio
    async def test_coupon_restore_once(self, store: InMemoryStore) -> None:
        """Restoring an already unused grant changes nothing."""
        async with store.unit_of_work() as uow:
            grant = await uow.coupons.lock_for_order(1)
            assert await uow.coupons.restore(grant) is True
            await uow.commit()

        async with store.unit_of_work() as uow:
            assert await uow.coupons.lock_for_order(1) is None
            assert await uow.coupons.restore(store.grants[11]) is False
            await uow.commit()

        assert store.coupons[1].usage_count == 4
        assert store.grants[11].order_id is None

    @pytest.mark.asyncio
    async def test_tier_resolution(self, store: InMemoryStore) -> None:
        async with store.unit_of_work() as uow:
            tier = await uow.tiers.resolve(Decimal("100000"))
        assert tier.name == "GOLD"
