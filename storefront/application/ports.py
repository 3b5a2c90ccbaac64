"""Collaborator contracts used by the application services.

The compensation engine talks only to these abstractions. Two
implementations exist: SQLAlchemy over PostgreSQL row locks
(``storefront.infrastructure.repositories``) and an in-process store
(``storefront.infrastructure.memory``).

Every ``lock*`` method acquires an exclusive lock that is held until the
unit of work commits or rolls back, and returns state read *after* the
lock was granted.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from types import TracebackType
from typing import Protocol, Self

from storefront.domain.entities import (
    CouponGrant,
    CustomerAccount,
    InventoryHistoryEntry,
    Order,
    OrderHistoryEntry,
    OrderItem,
    PointHistoryEntry,
    ProductStock,
    Tier,
)


# ============================================================================
# Read Models
# ============================================================================


@dataclass
class PendingReturn:
    """One line item waiting for an administrator's return decision."""

    order_id: int
    order_number: str
    order_item_id: int
    product_name: str
    quantity: int
    return_reason: str | None
    return_requested_at: datetime | None
    user_name: str
    user_email: str


# ============================================================================
# Repositories
# ============================================================================


class OrderRepository(ABC):
    """Orders and their line items."""

    @abstractmethod
    async def lock_for_user(self, order_id: int, user_id: int) -> Order | None:
        """Lock an order owned by ``user_id`` and load it with its items."""

    @abstractmethod
    async def lock(self, order_id: int) -> Order | None:
        """Lock an order regardless of owner (administrator paths)."""

    @abstractmethod
    async def lock_item(
        self, order: Order, order_item_id: int, user_id: int | None = None
    ) -> OrderItem | None:
        """Lock one line item of an already-locked order and refresh it in place.

        Args:
            order: Order whose lock is already held.
            order_item_id: Item to lock.
            user_id: Owner to match, None for administrator paths.

        Returns:
            The refreshed item from ``order.items``, or None if no such item.
        """

    @abstractmethod
    async def save(self, order: Order) -> None:
        """Persist order and item state."""

    @abstractmethod
    async def get_for_user(self, order_id: int, user_id: int) -> Order | None:
        """Read an order without locking it."""

    @abstractmethod
    async def list_pending_returns(
        self, offset: int, limit: int
    ) -> tuple[list[PendingReturn], int]:
        """Pending return requests, oldest first, with the total count."""

    @abstractmethod
    async def count_pending_returns(self) -> int:
        """Number of line items in RETURN_REQUESTED."""


class ProductStockLedger(ABC):
    """Inventory ledger."""

    @abstractmethod
    async def lock(self, product_id: int) -> ProductStock | None:
        """Lock a product's inventory row; None if the product no longer exists."""

    @abstractmethod
    async def restore_stock(self, product_id: int, quantity: int) -> tuple[int, int]:
        """Atomically add stock and roll back the same units of sales.

        Returns:
            Stock quantity before and after.

        Raises:
            ResourceNotFoundError: If the product vanished.
            LedgerConflictError: If sales would go negative.
        """


class CustomerLedger(ABC):
    """Point balance, cumulative spend and tier of users."""

    @abstractmethod
    async def lock(self, user_id: int) -> CustomerAccount | None:
        """Lock a user's account row."""

    @abstractmethod
    async def adjust_points(self, user_id: int, delta: int) -> tuple[int, int]:
        """Apply one signed point adjustment, flooring the balance at zero.

        Returns:
            The adjustment actually applied and the resulting balance.
        """

    @abstractmethod
    async def adjust_spend(self, user_id: int, delta: Decimal) -> Decimal:
        """Apply a signed change to cumulative spend, floored at zero."""

    @abstractmethod
    async def set_tier(self, user_id: int, tier_id: int) -> None:
        """Record the user's new tier."""


class TierDirectory(ABC):
    """Tier thresholds."""

    @abstractmethod
    async def resolve(self, total_spent: Decimal) -> Tier | None:
        """Highest tier whose ``min_spent`` is covered by ``total_spent``."""


class CouponLedger(ABC):
    """Coupon grants and coupon usage counters."""

    @abstractmethod
    async def lock_for_order(self, order_id: int) -> CouponGrant | None:
        """Lock the coupon grant consumed by an order, if any."""

    @abstractmethod
    async def restore(self, grant: CouponGrant) -> bool:
        """Flip a grant back to unused and release one use of its coupon.

        Returns:
            False when the grant was already unused; nothing is changed then.
        """


class HistoryWriter(ABC):
    """Append-only audit rows."""

    @abstractmethod
    async def record_inventory(self, entry: InventoryHistoryEntry) -> None: ...

    @abstractmethod
    async def record_points(self, entry: PointHistoryEntry) -> None: ...

    @abstractmethod
    async def record_order(self, entry: OrderHistoryEntry) -> None: ...

    @abstractmethod
    async def list_for_order(self, order_id: int) -> list[OrderHistoryEntry]:
        """Order history rows, oldest first."""


# ============================================================================
# Unit of Work
# ============================================================================


class UnitOfWork(ABC):
    """One atomic transaction over every repository.

    Used as an async context manager. Leaving the block without calling
    :meth:`commit` (or by raising) rolls back and releases every lock.
    """

    orders: OrderRepository
    products: ProductStockLedger
    customers: CustomerLedger
    tiers: TierDirectory
    coupons: CouponLedger
    history: HistoryWriter

    async def __aenter__(self) -> Self:
        await self.begin()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if not self.committed:
            await self.rollback()

    @property
    @abstractmethod
    def committed(self) -> bool: ...

    @abstractmethod
    async def begin(self) -> None: ...

    @abstractmethod
    async def commit(self) -> None: ...

    @abstractmethod
    async def rollback(self) -> None: ...


UnitOfWorkFactory = Callable[[], UnitOfWork]


# ============================================================================
# Post-Commit Notification
# ============================================================================


class StockChangeSink(Protocol):
    """Receives the products whose stock changed, after the transaction committed."""

    async def products_changed(self, product_ids: Sequence[int]) -> None: ...
