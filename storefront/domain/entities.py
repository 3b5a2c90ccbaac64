"""Domain entities for the storefront.

The Order aggregate owns its line items and is the only place where
cancellation and return transitions are validated. The ledger records
(product stock, customer account, tier, coupon) sit outside the
aggregate; each exposes the single guarded mutation the compensation
engine is allowed to make on it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from storefront.domain.base import AggregateRoot, Entity, utcnow
from storefront.domain.events import (
    OrderCancelled,
    OrderItemCancelled,
    OrderStatusChanged,
    OrderTransitionEvent,
    ReturnApproved,
    ReturnRejected,
    ReturnRequested,
)
from storefront.domain.exceptions import (
    CancelNotAllowedError,
    InvalidQuantityError,
    InvalidReturnQuantityError,
    InvalidStateError,
    InvariantViolationError,
    LedgerConflictError,
    ResourceNotFoundError,
)
from storefront.domain.state_machines import (
    OrderItemStatus,
    OrderStatus,
    ReturnReason,
    validate_item_transition,
    validate_order_transition,
)
from storefront.domain.value_objects import (
    RATIO_PLACES,
    ZERO,
    CancellationSummary,
    CancelledLine,
    CompensationKind,
    InventoryChangeType,
    InventoryReason,
    PointChangeType,
    RefundQuote,
    floor_points,
    to_money,
)


# ============================================================================
# Order Item Entity
# ============================================================================


@dataclass(kw_only=True, eq=False)
class OrderItem(Entity[int]):
    """A line item of an order.

    The product name and unit price are snapshots taken at checkout and
    never follow the live catalog. Quantities only ever move from
    ``remaining_quantity`` into ``cancelled_quantity`` or
    ``returned_quantity``; items are never deleted.

    Attributes:
        id: Order item identifier.
        order_id: Owning order.
        product_id: Product the units were taken from.
        product_name: Product name at time of order.
        original_quantity: Units bought at checkout.
        unit_price: Price per unit at time of order.
        remaining_quantity: Units the customer still holds.
        cancelled_quantity: Units cancelled before shipment.
        returned_quantity: Units returned after delivery.
        cancelled_amount: Money refunded for cancelled units.
        returned_amount: Money refunded for returned units.
        status: Current item status.
        return_reason: Reason code of the latest return request.
        reject_reason: Administrator's reason for the latest rejection.
        pending_return_quantity: Units under an unresolved return request.
        return_requested_at: When the latest return was requested.
        returned_at: When the return was approved.
    """

    id: int
    order_id: int
    product_id: int
    product_name: str
    original_quantity: int
    unit_price: Decimal
    remaining_quantity: int | None = None
    cancelled_quantity: int = 0
    returned_quantity: int = 0
    cancelled_amount: Decimal = ZERO
    returned_amount: Decimal = ZERO
    status: OrderItemStatus = OrderItemStatus.NORMAL
    return_reason: ReturnReason | None = None
    reject_reason: str | None = None
    pending_return_quantity: int = 0
    return_requested_at: datetime | None = None
    returned_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.original_quantity <= 0:
            raise ValueError(f"Order item {self.id} must have a positive quantity")
        if self.remaining_quantity is None:
            self.remaining_quantity = (
                self.original_quantity - self.cancelled_quantity - self.returned_quantity
            )
        self.check_invariants()

    @property
    def subtotal(self) -> Decimal:
        """Line total at checkout price."""
        return self.unit_price * self.original_quantity

    def check_invariants(self) -> None:
        """Verify the quantity bookkeeping of this item.

        Raises:
            InvariantViolationError: If quantities no longer add up.
        """
        accounted = self.remaining_quantity + self.cancelled_quantity + self.returned_quantity
        if accounted != self.original_quantity or min(
            self.remaining_quantity, self.cancelled_quantity, self.returned_quantity
        ) < 0:
            raise InvariantViolationError(
                f"Order item {self.id} quantities do not add up",
                details={
                    "order_item_id": self.id,
                    "original_quantity": self.original_quantity,
                    "remaining_quantity": self.remaining_quantity,
                    "cancelled_quantity": self.cancelled_quantity,
                    "returned_quantity": self.returned_quantity,
                },
            )
        if not 0 <= self.pending_return_quantity <= self.remaining_quantity:
            raise InvariantViolationError(
                f"Order item {self.id} has more units pending return than it holds",
                details={
                    "order_item_id": self.id,
                    "pending_return_quantity": self.pending_return_quantity,
                    "remaining_quantity": self.remaining_quantity,
                },
            )

    # -------------------------------------------------------------------------
    # State Transitions
    # -------------------------------------------------------------------------

    def cancel(self, quantity: int, amount: Decimal) -> None:
        """Cancel units of this item before shipment.

        The item stays NORMAL until its remaining quantity reaches zero.

        Args:
            quantity: Units to cancel.
            amount: Money refunded for those units.

        Raises:
            InvalidQuantityError: If quantity is not within 1..remaining.
            InvalidStateTransitionError: If the item is not NORMAL.
        """
        if quantity <= 0 or quantity > self.remaining_quantity:
            raise InvalidQuantityError(
                quantity, f"must be between 1 and {self.remaining_quantity}"
            )
        validate_item_transition(self.id, self.status, OrderItemStatus.CANCELLED)

        self.remaining_quantity -= quantity
        self.cancelled_quantity += quantity
        self.cancelled_amount += amount
        if self.remaining_quantity == 0:
            self.status = OrderItemStatus.CANCELLED
        self.check_invariants()

    def request_return(self, quantity: int, reason: ReturnReason, now: datetime) -> None:
        """Put units of this item under a return request.

        Raises:
            InvalidStateTransitionError: If the item is not NORMAL.
            InvalidStateError: If quantity is not positive or exceeds the
                remaining quantity.
        """
        validate_item_transition(self.id, self.status, OrderItemStatus.RETURN_REQUESTED)
        if quantity <= 0:
            raise InvalidReturnQuantityError(quantity)
        if quantity > self.remaining_quantity:
            raise InvalidStateError(
                f"Cannot return {quantity} units of order item {self.id}; "
                f"only {self.remaining_quantity} remain",
                details={
                    "order_item_id": self.id,
                    "quantity": quantity,
                    "remaining_quantity": self.remaining_quantity,
                },
            )

        self.status = OrderItemStatus.RETURN_REQUESTED
        self.pending_return_quantity = quantity
        self.return_reason = reason
        self.reject_reason = None
        self.return_requested_at = now
        self.check_invariants()

    def approve_return(self, amount: Decimal, now: datetime) -> int:
        """Move the pending units into the returned bucket.

        Args:
            amount: Money refunded for the returned units.
            now: Approval time.

        Returns:
            Number of units returned.
        """
        validate_item_transition(self.id, self.status, OrderItemStatus.RETURNED)
        quantity = self.pending_return_quantity

        self.remaining_quantity -= quantity
        self.returned_quantity += quantity
        self.returned_amount += amount
        self.pending_return_quantity = 0
        self.returned_at = now
        self.status = OrderItemStatus.RETURNED
        self.check_invariants()
        return quantity

    def reject_return(self, reason: str) -> int:
        """Reject the pending return and reopen the item.

        The item passes through RETURN_REJECTED and lands back on NORMAL
        with the reject reason kept for the shopper to read.

        Returns:
            Number of units whose return was rejected.
        """
        if not reason or not reason.strip():
            raise InvalidStateError(
                "A reject reason is required",
                details={"order_item_id": self.id},
            )
        validate_item_transition(self.id, self.status, OrderItemStatus.RETURN_REJECTED)
        quantity = self.pending_return_quantity

        self.status = OrderItemStatus.RETURN_REJECTED
        self.pending_return_quantity = 0
        self.reject_reason = reason.strip()
        validate_item_transition(self.id, self.status, OrderItemStatus.NORMAL)
        self.status = OrderItemStatus.NORMAL
        self.check_invariants()
        return quantity


# ============================================================================
# Order Aggregate Root
# ============================================================================


@dataclass(kw_only=True, eq=False)
class Order(AggregateRoot[int]):
    """Order aggregate root.

    Created at checkout (outside this package) and afterwards changed only
    by fulfilment transitions and by the compensation engine. Running
    refund totals cap every proportional refund, so rounding can never
    give back more money or points than the order took.

    Attributes:
        id: Order identifier.
        user_id: Owning user.
        order_number: Human-readable order number.
        status: Current order status.
        items: Line items.
        final_amount: Amount charged at checkout.
        shipping_fee: Shipping part of the final amount.
        used_points: Points spent at checkout.
        earned_points_snapshot: Points earned at checkout; never changes.
        refunded_amount: Money refunded so far.
        refunded_points: Used points given back so far.
        reclaimed_earned_points: Earned points taken back so far.
    """

    id: int
    user_id: int
    order_number: str
    final_amount: Decimal
    status: OrderStatus = OrderStatus.PENDING
    items: list[OrderItem] = field(default_factory=list)
    shipping_fee: Decimal = ZERO
    used_points: int = 0
    earned_points_snapshot: int = 0
    refunded_amount: Decimal = ZERO
    refunded_points: int = 0
    reclaimed_earned_points: int = 0
    ordered_at: datetime = field(default_factory=utcnow)
    paid_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.final_amount < 0:
            raise ValueError(f"Order {self.id} final amount must not be negative")

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    @property
    def total_amount(self) -> Decimal:
        """Sum of item subtotals before discounts."""
        return sum((item.subtotal for item in self.items), ZERO)

    @property
    def remaining_quantity(self) -> int:
        return sum(item.remaining_quantity for item in self.items)

    @property
    def is_fully_compensated(self) -> bool:
        """True once no item holds any remaining units."""
        return self.remaining_quantity == 0

    def is_cancellable(self) -> bool:
        return self.status.is_cancellable()

    def get_item(self, order_item_id: int) -> OrderItem:
        """Get a line item by id.

        Raises:
            ResourceNotFoundError: If the item does not belong to this order.
        """
        for item in self.items:
            if item.id == order_item_id:
                return item
        raise ResourceNotFoundError("order_item", order_item_id)

    def quote_refund(self, item: OrderItem, quantity: int) -> RefundQuote:
        """Proportional refund for ``quantity`` units of ``item``.

        Each pool (amount paid net of shipping, used points, earned points)
        is first split by the item's ``subtotal / total_amount`` share at 10
        places, then scaled by ``quantity / original_quantity``. Money is
        rounded half up to cents once at the end; points are rounded down.
        Each component is capped by what is still unrefunded on the order.

        Args:
            item: Line item being compensated.
            quantity: Units being compensated.

        Returns:
            RefundQuote for those units.
        """
        total = self.total_amount
        if total <= 0:
            return RefundQuote.zero()

        def portion(pool: Decimal | int) -> Decimal:
            share = (pool * item.subtotal / total).quantize(RATIO_PLACES, rounding=ROUND_HALF_UP)
            return share * quantity / item.original_quantity

        paid = max(self.final_amount - self.shipping_fee, ZERO)
        amount = min(to_money(portion(paid)), self.final_amount - self.refunded_amount)
        used = min(
            floor_points(portion(self.used_points)),
            self.used_points - self.refunded_points,
        )
        earned = min(
            floor_points(portion(self.earned_points_snapshot)),
            self.earned_points_snapshot - self.reclaimed_earned_points,
        )
        return RefundQuote(
            amount=max(amount, ZERO),
            used_points_refund=max(used, 0),
            earned_points_reclaim=max(earned, 0),
        )

    def quote_residual(self) -> RefundQuote:
        """Everything not yet refunded on this order, shipping included."""
        return RefundQuote(
            amount=max(self.final_amount - self.refunded_amount, ZERO),
            used_points_refund=max(self.used_points - self.refunded_points, 0),
            earned_points_reclaim=max(
                self.earned_points_snapshot - self.reclaimed_earned_points, 0
            ),
        )

    # -------------------------------------------------------------------------
    # Compensating Transitions
    # -------------------------------------------------------------------------

    def cancel(self, now: datetime | None = None, reason: str | None = None) -> CancellationSummary:
        """Cancel every remaining unit and the order itself.

        Money is allocated to lines proportionally; the last open line
        absorbs the rounding residue so the lines add up to the refund.

        Returns:
            Summary of released lines and the order-level refund.

        Raises:
            CancelNotAllowedError: If the order is past the cancellable stage.
        """
        if not self.is_cancellable():
            raise CancelNotAllowedError(self.id, self.status.value)
        now = now or utcnow()
        self._touch(now)

        refund = self.quote_residual()
        open_items = [item for item in self.items if item.remaining_quantity > 0]
        lines: list[CancelledLine] = []
        allocated = ZERO
        for index, item in enumerate(open_items):
            quantity = item.remaining_quantity
            if index == len(open_items) - 1:
                amount = max(refund.amount - allocated, ZERO)
            else:
                amount = min(self.quote_refund(item, quantity).amount, refund.amount - allocated)
            allocated += amount

            from_status = item.status
            item.cancel(quantity, amount)
            lines.append(
                CancelledLine(
                    order_item_id=item.id,
                    product_id=item.product_id,
                    quantity=quantity,
                    amount=amount,
                )
            )
            self._record_item_event(OrderItemCancelled, item, from_status, quantity,
                                    reason=reason, refund_amount=str(amount))

        self._apply_refund(refund)
        self._mark_cancelled(now, reason)
        return CancellationSummary(lines=tuple(lines), refund=refund)

    def cancel_item(
        self,
        order_item_id: int,
        quantity: int,
        now: datetime | None = None,
    ) -> tuple[OrderItem, RefundQuote]:
        """Cancel part of one line item before shipment.

        When this cancels the last remaining unit of the whole order, the
        refund settles everything still unrefunded and the order becomes
        CANCELLED.

        Returns:
            The changed item and the refund owed for it.

        Raises:
            CancelNotAllowedError: If the order is past the cancellable stage.
            ResourceNotFoundError: If the item is not part of this order.
            InvalidQuantityError: If quantity is not within 1..remaining.
        """
        if not self.is_cancellable():
            raise CancelNotAllowedError(self.id, self.status.value)
        item = self.get_item(order_item_id)
        if quantity <= 0 or quantity > item.remaining_quantity:
            raise InvalidQuantityError(
                quantity, f"must be between 1 and {item.remaining_quantity}"
            )
        now = now or utcnow()

        closes_order = self.remaining_quantity == quantity
        refund = self.quote_residual() if closes_order else self.quote_refund(item, quantity)

        from_status = item.status
        item.cancel(quantity, refund.amount)
        self._apply_refund(refund)
        self._touch(now)
        self._record_item_event(OrderItemCancelled, item, from_status, quantity,
                                refund_amount=str(refund.amount))
        if closes_order:
            self._mark_cancelled(now, "all items cancelled")
        return item, refund

    def request_return(
        self,
        order_item_id: int,
        quantity: int,
        reason: ReturnReason,
        now: datetime | None = None,
        return_period: timedelta | None = None,
    ) -> OrderItem:
        """Open a return request on a delivered line item.

        Raises:
            InvalidStateError: If the order is not delivered, has no delivery
                time, or the return period is over.
            ResourceNotFoundError: If the item is not part of this order.
        """
        now = now or utcnow()
        if not self.status.is_returnable() or self.delivered_at is None:
            raise InvalidStateError(
                f"Order {self.id} does not accept returns in status '{self.status.value}'",
                details={
                    "order_id": self.id,
                    "current_status": self.status.value,
                    "reason": "RETURN_NOT_ALLOWED",
                },
            )
        if return_period is not None and now > self.delivered_at + return_period:
            raise InvalidStateError(
                f"Return period for order {self.id} has expired",
                details={
                    "order_id": self.id,
                    "delivered_at": self.delivered_at.isoformat(),
                    "return_period_days": return_period.days,
                    "reason": "RETURN_PERIOD_EXPIRED",
                },
            )

        item = self.get_item(order_item_id)
        from_status = item.status
        item.request_return(quantity, reason, now)
        self._touch(now)
        self._record_item_event(ReturnRequested, item, from_status, quantity, reason=reason.value)
        return item

    def approve_return(
        self,
        order_item_id: int,
        now: datetime | None = None,
    ) -> tuple[OrderItem, int, RefundQuote]:
        """Approve the pending return of a line item.

        The order status does not change.

        Returns:
            The item, the units returned, and the refund owed.
        """
        now = now or utcnow()
        item = self.get_item(order_item_id)
        validate_item_transition(item.id, item.status, OrderItemStatus.RETURNED)

        refund = self.quote_refund(item, item.pending_return_quantity)
        from_status = item.status
        quantity = item.approve_return(refund.amount, now)
        self._apply_refund(refund)
        self._touch(now)
        self._record_item_event(ReturnApproved, item, from_status, quantity,
                                refund_amount=str(refund.amount))
        return item, quantity, refund

    def reject_return(
        self,
        order_item_id: int,
        reason: str,
        now: datetime | None = None,
    ) -> OrderItem:
        """Reject the pending return of a line item; no money or stock moves."""
        item = self.get_item(order_item_id)
        from_status = item.status
        quantity = item.reject_return(reason)
        self._touch(now)
        self._record_item_event(ReturnRejected, item, from_status, quantity,
                                reason=item.reject_reason,
                                to_status=OrderItemStatus.RETURN_REJECTED)
        return item

    # -------------------------------------------------------------------------
    # Fulfilment Transitions
    # -------------------------------------------------------------------------

    def mark_paid(self, now: datetime | None = None) -> None:
        self.paid_at = now or utcnow()
        self._change_status(OrderStatus.PAID, self.paid_at)

    def mark_shipped(self, now: datetime | None = None) -> None:
        self.shipped_at = now or utcnow()
        self._change_status(OrderStatus.SHIPPED, self.shipped_at)

    def mark_delivered(self, now: datetime | None = None) -> None:
        self.delivered_at = now or utcnow()
        self._change_status(OrderStatus.DELIVERED, self.delivered_at)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _apply_refund(self, refund: RefundQuote) -> None:
        self.refunded_amount += refund.amount
        self.refunded_points += refund.used_points_refund
        self.reclaimed_earned_points += refund.earned_points_reclaim

    def _change_status(self, target: OrderStatus, now: datetime, reason: str | None = None) -> None:
        validate_order_transition(self.id, self.status, target)
        previous = self.status
        self.status = target
        self._touch(now)
        event_class = OrderCancelled if target == OrderStatus.CANCELLED else OrderStatusChanged
        self._record_event(
            event_class(
                aggregate_id=self.id,
                occurred_at=self.updated_at,
                order_id=self.id,
                from_status=previous.value,
                to_status=target.value,
                reason=reason,
            )
        )

    def _mark_cancelled(self, now: datetime, reason: str | None) -> None:
        self.cancelled_at = now
        self._change_status(OrderStatus.CANCELLED, now, reason)

    def _record_item_event(
        self,
        event_class: type[OrderTransitionEvent],
        item: OrderItem,
        from_status: OrderItemStatus,
        quantity: int,
        reason: str | None = None,
        to_status: OrderItemStatus | None = None,
        **extra: Any,
    ) -> None:
        self._record_event(
            event_class(
                aggregate_id=self.id,
                occurred_at=self.updated_at,
                order_id=self.id,
                order_item_id=item.id,
                from_status=from_status.value,
                to_status=(to_status or item.status).value,
                quantity=quantity,
                reason=reason,
                **extra,
            )
        )


# ============================================================================
# Ledger Records
# ============================================================================


@dataclass(kw_only=True, eq=False)
class ProductStock(Entity[int]):
    """Inventory record of one product."""

    id: int
    name: str
    stock_quantity: int
    sales_count: int = 0

    def restore(self, quantity: int) -> tuple[int, int]:
        """Put units back on the shelf and roll back the same units of sales.

        Returns:
            Stock quantity before and after.

        Raises:
            LedgerConflictError: If more units would be rolled back than were sold.
        """
        if quantity <= 0:
            raise InvalidQuantityError(quantity)
        if self.sales_count < quantity:
            raise LedgerConflictError(
                f"Product {self.id} has only {self.sales_count} recorded sales, "
                f"cannot roll back {quantity}",
                details={"product_id": self.id, "sales_count": self.sales_count, "quantity": quantity},
            )
        before = self.stock_quantity
        self.stock_quantity += quantity
        self.sales_count -= quantity
        return before, self.stock_quantity


@dataclass(kw_only=True, eq=False)
class CustomerAccount(Entity[int]):
    """Loyalty side of a user: point balance, cumulative spend and tier."""

    id: int
    name: str
    email: str
    tier_id: int | None = None
    total_spent: Decimal = ZERO
    point_balance: int = 0

    def apply_point_delta(self, delta: int) -> int:
        """Apply one signed point adjustment, flooring the balance at zero.

        Returns:
            The adjustment actually applied.
        """
        new_balance = max(self.point_balance + delta, 0)
        applied = new_balance - self.point_balance
        self.point_balance = new_balance
        return applied

    def adjust_spend(self, delta: Decimal) -> Decimal:
        """Apply a signed change to cumulative spend, floored at zero."""
        self.total_spent = max(self.total_spent + delta, ZERO)
        return self.total_spent


@dataclass(kw_only=True, eq=False)
class Tier(Entity[int]):
    """Membership tier reached once cumulative spend passes ``min_spent``."""

    id: int
    name: str
    level: int
    min_spent: Decimal = ZERO


def resolve_tier(tiers: list[Tier], total_spent: Decimal) -> Tier | None:
    """Pick the highest-level tier whose threshold is covered by ``total_spent``."""
    eligible = [tier for tier in tiers if tier.min_spent <= total_spent]
    if not eligible:
        return None
    return max(eligible, key=lambda tier: tier.level)


@dataclass(kw_only=True, eq=False)
class Coupon(Entity[int]):
    id: int
    code: str
    usage_count: int = 0

    def release_usage(self) -> bool:
        if self.usage_count <= 0:
            return False
        self.usage_count -= 1
        return True


@dataclass(kw_only=True, eq=False)
class CouponGrant(Entity[int]):
    """A coupon issued to one user, optionally consumed by one order."""

    id: int
    user_id: int
    coupon_id: int
    is_used: bool = False
    used_at: datetime | None = None
    order_id: int | None = None
    expires_at: datetime | None = None

    def restore(self) -> bool:
        """Flip the grant back to unused.

        Returns:
            False when the grant was already unused (nothing changed).
        """
        if not self.is_used:
            return False
        self.is_used = False
        self.used_at = None
        self.order_id = None
        return True


# ============================================================================
# History Rows
# ============================================================================


@dataclass
class InventoryHistoryEntry:
    """Append-only row describing one stock movement."""

    product_id: int
    change_type: InventoryChangeType
    change_amount: int
    before_quantity: int
    after_quantity: int
    reason: InventoryReason
    reference_id: int | None = None
    created_by: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class PointHistoryEntry:
    """Append-only row describing one point balance adjustment."""

    user_id: int
    change_type: PointChangeType
    amount: int
    balance_after: int
    reference_type: CompensationKind
    reference_id: int
    description: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def for_adjustment(
        cls,
        user_id: int,
        applied: int,
        balance_after: int,
        kind: CompensationKind,
        order_id: int,
    ) -> "PointHistoryEntry":
        change_type = PointChangeType.REFUND if applied > 0 else PointChangeType.ADJUST
        return cls(
            user_id=user_id,
            change_type=change_type,
            amount=abs(applied),
            balance_after=balance_after,
            reference_type=kind,
            reference_id=order_id,
            description=f"{kind.value.lower().replace('_', ' ')} of order {order_id}",
        )


@dataclass
class OrderHistoryEntry:
    """Audit row for one order or order item transition."""

    order_id: int
    to_status: str
    from_status: str | None = None
    order_item_id: int | None = None
    quantity: int = 0
    reason: str | None = None
    actor: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_event(cls, event: OrderTransitionEvent, actor: str) -> "OrderHistoryEntry":
        payload = event.payload()
        extra = {
            key: value
            for key, value in payload.items()
            if key not in {"order_id", "order_item_id", "from_status", "to_status", "quantity", "reason"}
        }
        return cls(
            order_id=event.order_id,
            order_item_id=event.order_item_id,
            from_status=event.from_status or None,
            to_status=event.to_status,
            quantity=event.quantity,
            reason=event.reason,
            actor=actor,
            metadata={"event_type": event.event_type, **extra},
            created_at=event.occurred_at,
        )
