"""In-process storage backend.

Backs local runs and the test suite with the same locking discipline as
the database: one ``asyncio.Lock`` per locked key, waited on with a
timeout, held until the unit of work ends. A unit of work mutates
private copies of the records it locked and publishes them only on
commit, so a rollback leaves the store exactly as it found it.
"""

import asyncio
from collections import defaultdict
from copy import deepcopy
from decimal import Decimal

import structlog

from storefront.application.ports import (
    CouponLedger,
    CustomerLedger,
    HistoryWriter,
    OrderRepository,
    PendingReturn,
    ProductStockLedger,
    TierDirectory,
    UnitOfWork,
)
from storefront.domain.entities import (
    Coupon,
    CouponGrant,
    CustomerAccount,
    InventoryHistoryEntry,
    Order,
    OrderHistoryEntry,
    OrderItem,
    PointHistoryEntry,
    ProductStock,
    Tier,
    resolve_tier,
)
from storefront.domain.exceptions import LockTimeoutError, ResourceNotFoundError
from storefront.domain.state_machines import OrderItemStatus

logger = structlog.get_logger()


# ============================================================================
# Store
# ============================================================================


class InMemoryStore:
    """Committed state shared by every unit of work."""

    def __init__(self, lock_timeout: float = 5.0) -> None:
        """Initialize store.

        Args:
            lock_timeout: Seconds to wait for a lock before giving up.
        """
        self.lock_timeout = lock_timeout
        self.orders: dict[int, Order] = {}
        self.products: dict[int, ProductStock] = {}
        self.accounts: dict[int, CustomerAccount] = {}
        self.tiers: dict[int, Tier] = {}
        self.coupons: dict[int, Coupon] = {}
        self.grants: dict[int, CouponGrant] = {}
        self.inventory_history: list[InventoryHistoryEntry] = []
        self.point_history: list[PointHistoryEntry] = []
        self.order_history: list[OrderHistoryEntry] = []
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock_for(self, key: str) -> asyncio.Lock:
        return self._locks[key]

    # -------------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------------

    def add_order(self, order: Order) -> Order:
        order.collect_events()
        self.orders[order.id] = deepcopy(order)
        return order

    def add_product(self, product: ProductStock) -> ProductStock:
        self.products[product.id] = deepcopy(product)
        return product

    def add_account(self, account: CustomerAccount) -> CustomerAccount:
        self.accounts[account.id] = deepcopy(account)
        return account

    def add_tier(self, tier: Tier) -> Tier:
        self.tiers[tier.id] = deepcopy(tier)
        return tier

    def add_coupon(self, coupon: Coupon) -> Coupon:
        self.coupons[coupon.id] = deepcopy(coupon)
        return coupon

    def add_grant(self, grant: CouponGrant) -> CouponGrant:
        self.grants[grant.id] = deepcopy(grant)
        return grant

    def remove_product(self, product_id: int) -> None:
        self.products.pop(product_id, None)

    def unit_of_work(self) -> "InMemoryUnitOfWork":
        """Unit of work factory bound to this store."""
        return InMemoryUnitOfWork(self)


# ============================================================================
# Repositories
# ============================================================================


class InMemoryOrderRepository(OrderRepository):
    def __init__(self, uow: "InMemoryUnitOfWork") -> None:
        self.uow = uow
        self.store = uow.store

    async def lock_for_user(self, order_id: int, user_id: int) -> Order | None:
        order = self.store.orders.get(order_id)
        if order is None or order.user_id != user_id:
            return None
        return await self.lock(order_id)

    async def lock(self, order_id: int) -> Order | None:
        if order_id not in self.store.orders:
            return None
        await self.uow.acquire(f"order:{order_id}")
        # Re-read after the lock is granted
        order = self.store.orders.get(order_id)
        return deepcopy(order) if order else None

    async def lock_item(
        self, order: Order, order_item_id: int, user_id: int | None = None
    ) -> OrderItem | None:
        stored = self.store.orders.get(order.id)
        if stored is None or (user_id is not None and stored.user_id != user_id):
            return None
        if not any(item.id == order_item_id for item in stored.items):
            return None

        await self.uow.acquire(f"order_item:{order_item_id}")
        for stored_item in self.store.orders[order.id].items:
            if stored_item.id != order_item_id:
                continue
            fresh = deepcopy(stored_item)
            for index, item in enumerate(order.items):
                if item.id == order_item_id:
                    order.items[index] = fresh
                    return fresh
        return None

    async def save(self, order: Order) -> None:
        self.uow.stage_order(order)

    async def get_for_user(self, order_id: int, user_id: int) -> Order | None:
        order = self.store.orders.get(order_id)
        if order is None or order.user_id != user_id:
            return None
        return deepcopy(order)

    def _pending(self) -> list[tuple[Order, OrderItem]]:
        pending = [
            (order, item)
            for order in self.store.orders.values()
            for item in order.items
            if item.status == OrderItemStatus.RETURN_REQUESTED
        ]
        pending.sort(key=lambda pair: (pair[1].return_requested_at, pair[1].id))
        return pending

    async def list_pending_returns(
        self, offset: int, limit: int
    ) -> tuple[list[PendingReturn], int]:
        pending = self._pending()
        returns = []
        for order, item in pending[offset : offset + limit]:
            account = self.store.accounts.get(order.user_id)
            returns.append(
                PendingReturn(
                    order_id=order.id,
                    order_number=order.order_number,
                    order_item_id=item.id,
                    product_name=item.product_name,
                    quantity=item.pending_return_quantity,
                    return_reason=item.return_reason.value if item.return_reason else None,
                    return_requested_at=item.return_requested_at,
                    user_name=account.name if account else "",
                    user_email=account.email if account else "",
                )
            )
        return returns, len(pending)

    async def count_pending_returns(self) -> int:
        return len(self._pending())


class InMemoryProductStockLedger(ProductStockLedger):
    def __init__(self, uow: "InMemoryUnitOfWork") -> None:
        self.uow = uow
        self.store = uow.store

    async def lock(self, product_id: int) -> ProductStock | None:
        if product_id not in self.store.products:
            return None
        await self.uow.acquire(f"product:{product_id}")
        product = self.uow.working(self.store.products, product_id)
        return deepcopy(product) if product else None

    async def restore_stock(self, product_id: int, quantity: int) -> tuple[int, int]:
        await self.uow.acquire(f"product:{product_id}")
        product = self.uow.working(self.store.products, product_id)
        if product is None:
            raise ResourceNotFoundError("product", product_id)
        return product.restore(quantity)


class InMemoryCustomerLedger(CustomerLedger):
    def __init__(self, uow: "InMemoryUnitOfWork") -> None:
        self.uow = uow
        self.store = uow.store

    async def lock(self, user_id: int) -> CustomerAccount | None:
        if user_id not in self.store.accounts:
            return None
        await self.uow.acquire(f"user:{user_id}")
        account = self.uow.working(self.store.accounts, user_id)
        return deepcopy(account) if account else None

    async def _account(self, user_id: int) -> CustomerAccount:
        await self.uow.acquire(f"user:{user_id}")
        account = self.uow.working(self.store.accounts, user_id)
        if account is None:
            raise ResourceNotFoundError("user", user_id)
        return account

    async def adjust_points(self, user_id: int, delta: int) -> tuple[int, int]:
        account = await self._account(user_id)
        applied = account.apply_point_delta(delta)
        return applied, account.point_balance

    async def adjust_spend(self, user_id: int, delta: Decimal) -> Decimal:
        account = await self._account(user_id)
        return account.adjust_spend(delta)

    async def set_tier(self, user_id: int, tier_id: int) -> None:
        account = await self._account(user_id)
        account.tier_id = tier_id


class InMemoryTierDirectory(TierDirectory):
    def __init__(self, uow: "InMemoryUnitOfWork") -> None:
        self.store = uow.store

    async def resolve(self, total_spent: Decimal) -> Tier | None:
        return resolve_tier(list(self.store.tiers.values()), total_spent)


class InMemoryCouponLedger(CouponLedger):
    def __init__(self, uow: "InMemoryUnitOfWork") -> None:
        self.uow = uow
        self.store = uow.store

    async def lock_for_order(self, order_id: int) -> CouponGrant | None:
        grant_ids = sorted(
            grant.id for grant in self.store.grants.values() if grant.order_id == order_id
        )
        if not grant_ids:
            return None
        await self.uow.acquire(f"user_coupon:{grant_ids[0]}")
        grant = self.uow.working(self.store.grants, grant_ids[0])
        if grant is None or grant.order_id != order_id:
            return None
        return deepcopy(grant)

    async def restore(self, grant: CouponGrant) -> bool:
        await self.uow.acquire(f"user_coupon:{grant.id}")
        working = self.uow.working(self.store.grants, grant.id)
        if working is None or not working.restore():
            return False
        coupon = self.uow.working(self.store.coupons, working.coupon_id)
        if coupon is not None:
            coupon.release_usage()
        grant.restore()
        return True


class InMemoryHistoryWriter(HistoryWriter):
    def __init__(self, uow: "InMemoryUnitOfWork") -> None:
        self.uow = uow
        self.store = uow.store

    async def record_inventory(self, entry: InventoryHistoryEntry) -> None:
        self.uow.pending_inventory.append(entry)

    async def record_points(self, entry: PointHistoryEntry) -> None:
        self.uow.pending_points.append(entry)

    async def record_order(self, entry: OrderHistoryEntry) -> None:
        self.uow.pending_orders.append(entry)

    async def list_for_order(self, order_id: int) -> list[OrderHistoryEntry]:
        return [deepcopy(e) for e in self.store.order_history if e.order_id == order_id]


# ============================================================================
# Unit of Work
# ============================================================================


class InMemoryUnitOfWork(UnitOfWork):
    """Transaction over an :class:`InMemoryStore`.

    Locks are re-entrant within one unit of work and all released
    together when it ends.
    """

    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self._held: dict[str, asyncio.Lock] = {}
        self._working: dict[int, dict] = {}
        self._staged_orders: dict[int, Order] = {}
        self.pending_inventory: list[InventoryHistoryEntry] = []
        self.pending_points: list[PointHistoryEntry] = []
        self.pending_orders: list[OrderHistoryEntry] = []
        self._committed = False

        self.orders = InMemoryOrderRepository(self)
        self.products = InMemoryProductStockLedger(self)
        self.customers = InMemoryCustomerLedger(self)
        self.tiers = InMemoryTierDirectory(self)
        self.coupons = InMemoryCouponLedger(self)
        self.history = InMemoryHistoryWriter(self)

    @property
    def committed(self) -> bool:
        return self._committed

    @property
    def held_locks(self) -> list[str]:
        """Keys locked by this unit of work, in acquisition order."""
        return list(self._held)

    async def acquire(self, key: str) -> None:
        """Take the lock for ``key`` unless this unit of work already holds it.

        Raises:
            LockTimeoutError: If the lock was not granted within the store's timeout.
        """
        if key in self._held:
            return
        lock = self.store.lock_for(key)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.store.lock_timeout)
        except asyncio.TimeoutError:
            logger.warning("Lock not acquired", resource=key, timeout_s=self.store.lock_timeout)
            raise LockTimeoutError(key) from None
        self._held[key] = lock
        # Let other tasks run between lock steps
        await asyncio.sleep(0)

    def working(self, table: dict, record_id: int):
        """Private copy of a committed record, made on first touch."""
        copies = self._working.setdefault(id(table), {})
        if record_id not in copies:
            record = table.get(record_id)
            copies[record_id] = deepcopy(record) if record is not None else None
        return copies[record_id]

    def stage_order(self, order: Order) -> None:
        staged = deepcopy(order)
        # Stored orders never carry queued events
        staged.collect_events()
        self._staged_orders[order.id] = staged

    async def begin(self) -> None:
        self._committed = False

    async def commit(self) -> None:
        tables = {
            id(self.store.products): self.store.products,
            id(self.store.accounts): self.store.accounts,
            id(self.store.coupons): self.store.coupons,
            id(self.store.grants): self.store.grants,
        }
        for table_id, copies in self._working.items():
            table = tables[table_id]
            for record_id, record in copies.items():
                if record is not None:
                    table[record_id] = record
        for order_id, order in self._staged_orders.items():
            self.store.orders[order_id] = order

        self.store.inventory_history.extend(self.pending_inventory)
        self.store.point_history.extend(self.pending_points)
        self.store.order_history.extend(self.pending_orders)
        self._committed = True
        self._release()

    async def rollback(self) -> None:
        self._working.clear()
        self._staged_orders.clear()
        self.pending_inventory.clear()
        self.pending_points.clear()
        self.pending_orders.clear()
        self._release()

    def _release(self) -> None:
        for lock in reversed(list(self._held.values())):
            lock.release()
        self._held.clear()
