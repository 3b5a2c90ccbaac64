"""Compensation commands.

A compensating transition first changes the Order aggregate in memory,
then turns what it released into a :class:`CompensationPlan`. The plan
applies its commands in one fixed order, which is also the lock order:

    1. RestoreStock   one per product, ascending product id
    2. AdjustPoints   single signed delta (used refund minus earned reclaim)
    3. AdjustSpend    cumulative spend, floored at zero
    4. ResolveTier    re-resolve tier from the new spend
    5. RestoreCoupon  only once the order holds no remaining units
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import ClassVar

import structlog

from storefront.application.locking import canonical_lock_order
from storefront.application.ports import UnitOfWork
from storefront.domain.entities import InventoryHistoryEntry, Order, PointHistoryEntry
from storefront.domain.exceptions import ResourceNotFoundError
from storefront.domain.value_objects import (
    ZERO,
    CompensationKind,
    InventoryChangeType,
    RefundQuote,
)

logger = structlog.get_logger()


# ============================================================================
# Context
# ============================================================================


@dataclass
class CompensationContext:
    """Transaction-scoped state shared by the commands of one plan.

    Attributes:
        uow: Open unit of work.
        order: Locked order being compensated.
        kind: Which transition is being compensated.
        actor: Who triggered it (user id or "admin").
        affected_product_ids: Products whose stock was actually restored.
        skipped_product_ids: Products that vanished before they could be restocked.
        point_delta_applied: Signed point change after the zero floor.
        coupon_restored: Whether a coupon grant flipped back to unused.
    """

    uow: UnitOfWork
    order: Order
    kind: CompensationKind
    actor: str
    affected_product_ids: set[int] = field(default_factory=set)
    skipped_product_ids: list[int] = field(default_factory=list)
    point_delta_applied: int = 0
    total_spent: Decimal | None = None
    tier_id: int | None = None
    coupon_restored: bool = False


# ============================================================================
# Commands
# ============================================================================


class CompensationCommand(ABC):
    """One ledger adjustment. ``phase`` fixes its place in the plan."""

    phase: ClassVar[int]

    @abstractmethod
    async def apply(self, ctx: CompensationContext) -> None: ...


@dataclass(frozen=True)
class RestoreStock(CompensationCommand):
    """Put units back into stock and roll back the same units of sales.

    With ``best_effort`` a vanished product is logged and skipped;
    otherwise it aborts the whole compensation.
    """

    phase: ClassVar[int] = 1

    product_id: int
    quantity: int
    best_effort: bool = False

    async def apply(self, ctx: CompensationContext) -> None:
        product = await ctx.uow.products.lock(self.product_id)
        if product is None:
            if not self.best_effort:
                raise ResourceNotFoundError("product", self.product_id)
            logger.warning(
                "Product missing, stock not restored",
                order_id=ctx.order.id,
                product_id=self.product_id,
                quantity=self.quantity,
            )
            ctx.skipped_product_ids.append(self.product_id)
            return

        before, after = await ctx.uow.products.restore_stock(self.product_id, self.quantity)
        await ctx.uow.history.record_inventory(
            InventoryHistoryEntry(
                product_id=self.product_id,
                change_type=InventoryChangeType.IN,
                change_amount=self.quantity,
                before_quantity=before,
                after_quantity=after,
                reason=ctx.kind.inventory_reason,
                reference_id=ctx.order.id,
                created_by=ctx.actor,
            )
        )
        ctx.affected_product_ids.add(self.product_id)


@dataclass(frozen=True)
class AdjustPoints(CompensationCommand):
    """Apply the net point delta as one signed adjustment."""

    phase: ClassVar[int] = 2

    user_id: int
    delta: int

    async def apply(self, ctx: CompensationContext) -> None:
        account = await ctx.uow.customers.lock(self.user_id)
        if account is None:
            raise ResourceNotFoundError("user", self.user_id)
        if self.delta == 0:
            return

        applied, balance = await ctx.uow.customers.adjust_points(self.user_id, self.delta)
        ctx.point_delta_applied = applied
        if applied == 0:
            return
        await ctx.uow.history.record_points(
            PointHistoryEntry.for_adjustment(
                user_id=self.user_id,
                applied=applied,
                balance_after=balance,
                kind=ctx.kind,
                order_id=ctx.order.id,
            )
        )


@dataclass(frozen=True)
class AdjustSpend(CompensationCommand):
    phase: ClassVar[int] = 3

    user_id: int
    delta: Decimal

    async def apply(self, ctx: CompensationContext) -> None:
        if self.delta == ZERO:
            return
        ctx.total_spent = await ctx.uow.customers.adjust_spend(self.user_id, self.delta)


@dataclass(frozen=True)
class ResolveTier(CompensationCommand):
    """Move the user to the tier matching their cumulative spend."""

    phase: ClassVar[int] = 4

    user_id: int

    async def apply(self, ctx: CompensationContext) -> None:
        account = await ctx.uow.customers.lock(self.user_id)
        if account is None:
            raise ResourceNotFoundError("user", self.user_id)
        ctx.total_spent = account.total_spent
        ctx.tier_id = account.tier_id

        tier = await ctx.uow.tiers.resolve(account.total_spent)
        if tier is None or tier.id == account.tier_id:
            return
        await ctx.uow.customers.set_tier(self.user_id, tier.id)
        ctx.tier_id = tier.id
        logger.info(
            "Tier changed",
            user_id=self.user_id,
            from_tier_id=account.tier_id,
            to_tier_id=tier.id,
            total_spent=str(account.total_spent),
        )


@dataclass(frozen=True)
class RestoreCoupon(CompensationCommand):
    """Give back the coupon used by the order. A no-op if already unused."""

    phase: ClassVar[int] = 5

    order_id: int

    async def apply(self, ctx: CompensationContext) -> None:
        grant = await ctx.uow.coupons.lock_for_order(self.order_id)
        if grant is None:
            return
        ctx.coupon_restored = await ctx.uow.coupons.restore(grant)
        logger.info(
            "Coupon grant restored" if ctx.coupon_restored else "Coupon grant already unused",
            order_id=self.order_id,
            user_coupon_id=grant.id,
        )


# ============================================================================
# Plan
# ============================================================================


@dataclass
class CompensationPlan:
    """Commands collected for one compensating transition."""

    kind: CompensationKind
    commands: list[CompensationCommand] = field(default_factory=list)

    def add(self, command: CompensationCommand) -> None:
        self.commands.append(command)

    def ordered(self) -> list[CompensationCommand]:
        """Commands in application order: stock by product id, then by phase."""
        stock = canonical_lock_order(c for c in self.commands if isinstance(c, RestoreStock))
        rest = sorted(
            (c for c in self.commands if not isinstance(c, RestoreStock)),
            key=lambda c: c.phase,
        )
        return [*stock, *rest]

    async def apply(self, ctx: CompensationContext) -> None:
        for command in self.ordered():
            await command.apply(ctx)


def build_plan(
    order: Order,
    kind: CompensationKind,
    released: Iterable[tuple[int, int]],
    refund: RefundQuote,
    best_effort_stock: bool = False,
) -> CompensationPlan:
    """Build the plan for an order whose aggregate transition already ran.

    Args:
        order: Order after the transition.
        kind: Transition being compensated.
        released: ``(product_id, quantity)`` pairs going back to stock.
        refund: Money and points owed back.
        best_effort_stock: Skip vanished products instead of aborting.

    Returns:
        Plan ready to apply.
    """
    plan = CompensationPlan(kind=kind)
    for product_id, quantity in released:
        if quantity > 0:
            plan.add(RestoreStock(product_id, quantity, best_effort=best_effort_stock))
    plan.add(AdjustPoints(order.user_id, refund.net_point_delta))
    plan.add(AdjustSpend(order.user_id, -refund.amount))
    plan.add(ResolveTier(order.user_id))
    if order.is_fully_compensated:
        plan.add(RestoreCoupon(order.id))
    return plan
