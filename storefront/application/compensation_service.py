"""Compensation application service.

Orchestrates the compensating transitions of an order:
- Full cancellation before shipment
- Partial cancellation of one line item
- Return request by the shopper
- Return approval or rejection by an administrator

Each operation runs in exactly one unit of work. Locks are taken in the
canonical order (order, item, products by ascending id, user, coupon),
held until commit, and cache invalidation is sent only after the commit.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

import structlog

from storefront.application.commands import CompensationContext, build_plan
from storefront.application.locking import retry_on_lock_timeout
from storefront.application.ports import StockChangeSink, UnitOfWork, UnitOfWorkFactory
from storefront.domain.base import utcnow
from storefront.domain.entities import Order, OrderHistoryEntry, OrderItem
from storefront.domain.exceptions import (
    DomainError,
    InvalidQuantityError,
    InvalidReturnQuantityError,
    InvalidStateError,
    ResourceNotFoundError,
)
from storefront.domain.state_machines import ReturnReason
from storefront.domain.value_objects import ZERO, CompensationKind, RefundQuote

logger = structlog.get_logger()

ADMIN_ACTOR = "admin"


# ============================================================================
# Service Result Types
# ============================================================================


@dataclass
class CompensationResult:
    """Result of a compensating operation.

    Attributes:
        operation: Operation name (cancel_order, partial_cancel, ...).
        order_id: Order the operation targeted.
        order_item_id: Line item, for item-level operations.
        order_status: Order status after the operation.
        item_status: Item status after the operation.
        quantity: Units cancelled, requested or returned.
        refund_amount: Money refunded by this operation.
        point_delta: Signed point change actually applied to the balance.
        affected_product_ids: Products whose stock was restored.
        skipped_product_ids: Products that vanished and were not restocked.
        coupon_restored: Whether a coupon grant was given back.
    """

    operation: str
    order_id: int
    success: bool = True
    order_item_id: int | None = None
    order_status: str | None = None
    item_status: str | None = None
    quantity: int = 0
    refund_amount: Decimal = ZERO
    point_delta: int = 0
    affected_product_ids: list[int] = field(default_factory=list)
    skipped_product_ids: list[int] = field(default_factory=list)
    coupon_restored: bool = False
    error: str | None = None
    error_code: str | None = None
    error_details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(
        cls,
        operation: str,
        order_id: int,
        error: DomainError,
        order_item_id: int | None = None,
    ) -> "CompensationResult":
        return cls(
            operation=operation,
            order_id=order_id,
            order_item_id=order_item_id,
            success=False,
            error=error.message,
            error_code=error.error_code,
            error_details=error.details,
        )


Step = Callable[[UnitOfWork], Awaitable[CompensationResult]]


# ============================================================================
# Compensation Service
# ============================================================================


class CompensationService:
    """Application service for cancellations and returns."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        sink: StockChangeSink | None = None,
        request_id: str | None = None,
        return_period_days: int = 14,
        max_lock_retries: int = 3,
        lock_retry_delay: float = 0.05,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize service.

        Args:
            uow_factory: Opens a new unit of work per attempt.
            sink: Receives affected product ids after commit.
            request_id: Request ID for correlation.
            return_period_days: Days after delivery during which returns are accepted.
            max_lock_retries: Retries of a whole attempt after a lock timeout.
            lock_retry_delay: Seconds before the first retry.
            clock: Source of the current time.
        """
        self.uow_factory = uow_factory
        self.sink = sink
        self.request_id = request_id
        self.return_period = timedelta(days=return_period_days)
        self.max_lock_retries = max_lock_retries
        self.lock_retry_delay = lock_retry_delay
        self.clock = clock

    # -------------------------------------------------------------------------
    # Shopper Operations
    # -------------------------------------------------------------------------

    async def cancel_order(self, order_id: int, user_id: int) -> CompensationResult:
        """Cancel a whole order that has not shipped yet.

        Stock is restored per product in ascending id order; a product that
        no longer exists is skipped and logged. Points, spend, tier and
        coupon are mandatory and abort the whole cancellation on failure.

        Args:
            order_id: Order identifier.
            user_id: Requesting user; must own the order.

        Returns:
            CompensationResult; error codes NOT_FOUND, CANCEL_FAIL.
        """

        async def step(uow: UnitOfWork) -> CompensationResult:
            order = await self._lock_owned_order(uow, order_id, user_id)
            summary = order.cancel(now=self.clock(), reason="cancelled by customer")

            plan = build_plan(
                order,
                CompensationKind.CANCEL,
                [(line.product_id, line.quantity) for line in summary.lines],
                summary.refund,
                best_effort_stock=True,
            )
            ctx = CompensationContext(uow, order, CompensationKind.CANCEL, _user_actor(user_id))
            await plan.apply(ctx)
            await self._persist(uow, order, ctx.actor)
            return self._success(
                "cancel_order",
                order,
                ctx,
                summary.refund,
                quantity=sum(line.quantity for line in summary.lines),
            )

        return await self._execute("cancel_order", order_id, step)

    async def partial_cancel(
        self,
        order_id: int,
        user_id: int,
        order_item_id: int,
        quantity: int,
    ) -> CompensationResult:
        """Cancel some units of one line item before shipment.

        Returns:
            CompensationResult; error codes INVALID_QUANTITY, CANCEL_FAIL, NOT_FOUND.
        """

        def validate() -> None:
            if quantity <= 0:
                raise InvalidQuantityError(quantity)

        async def step(uow: UnitOfWork) -> CompensationResult:
            order = await self._lock_owned_order(uow, order_id, user_id)
            await self._lock_item(uow, order, order_item_id, user_id)
            item, refund = order.cancel_item(order_item_id, quantity, now=self.clock())

            plan = build_plan(
                order,
                CompensationKind.PARTIAL_CANCEL,
                [(item.product_id, quantity)],
                refund,
            )
            ctx = CompensationContext(
                uow, order, CompensationKind.PARTIAL_CANCEL, _user_actor(user_id)
            )
            await plan.apply(ctx)
            await self._persist(uow, order, ctx.actor)
            return self._success("partial_cancel", order, ctx, refund, item=item, quantity=quantity)

        return await self._execute(
            "partial_cancel", order_id, step, order_item_id=order_item_id, validate=validate
        )

    async def request_return(
        self,
        order_id: int,
        user_id: int,
        order_item_id: int,
        quantity: int,
        reason_code: str,
    ) -> CompensationResult:
        """Open a return request on a delivered item. No ledger changes.

        Returns:
            CompensationResult; error codes INVALID_STATE (with
            ``details["reason"]`` naming a bad quantity, reason code, status
            or return window) and NOT_FOUND.
        """
        parsed: list[ReturnReason] = []

        def validate() -> None:
            if quantity <= 0:
                raise InvalidReturnQuantityError(quantity)
            parsed.append(ReturnReason.parse(reason_code))

        async def step(uow: UnitOfWork) -> CompensationResult:
            order = await self._lock_owned_order(uow, order_id, user_id)
            await self._lock_item(uow, order, order_item_id, user_id)
            item = order.request_return(
                order_item_id,
                quantity,
                parsed[0],
                now=self.clock(),
                return_period=self.return_period,
            )
            await self._persist(uow, order, _user_actor(user_id))
            return CompensationResult(
                operation="request_return",
                order_id=order.id,
                order_item_id=item.id,
                order_status=order.status.value,
                item_status=item.status.value,
                quantity=quantity,
            )

        return await self._execute(
            "request_return", order_id, step, order_item_id=order_item_id, validate=validate
        )

    # -------------------------------------------------------------------------
    # Administrator Operations
    # -------------------------------------------------------------------------

    async def approve_return(self, order_id: int, order_item_id: int) -> CompensationResult:
        """Approve a pending return and compensate the returned units.

        The coupon is given back only once every item of the order is
        fully cancelled or returned. The order status stays DELIVERED.

        Returns:
            CompensationResult; error codes INVALID_STATE, NOT_FOUND.
        """

        async def step(uow: UnitOfWork) -> CompensationResult:
            order = await uow.orders.lock(order_id)
            if order is None:
                raise ResourceNotFoundError("order", order_id)
            await self._lock_item(uow, order, order_item_id)
            item, quantity, refund = order.approve_return(order_item_id, now=self.clock())

            plan = build_plan(order, CompensationKind.RETURN, [(item.product_id, quantity)], refund)
            ctx = CompensationContext(uow, order, CompensationKind.RETURN, ADMIN_ACTOR)
            await plan.apply(ctx)
            await self._persist(uow, order, ADMIN_ACTOR)
            return self._success("approve_return", order, ctx, refund, item=item, quantity=quantity)

        return await self._execute("approve_return", order_id, step, order_item_id=order_item_id)

    async def reject_return(
        self,
        order_id: int,
        order_item_id: int,
        reason: str,
    ) -> CompensationResult:
        """Reject a pending return. The item reopens with the reason kept.

        Returns:
            CompensationResult; error codes INVALID_STATE, NOT_FOUND.
        """

        def validate() -> None:
            if not reason or not reason.strip():
                raise InvalidStateError(
                    "A reject reason is required",
                    details={"order_id": order_id, "order_item_id": order_item_id},
                )

        async def step(uow: UnitOfWork) -> CompensationResult:
            order = await uow.orders.lock(order_id)
            if order is None:
                raise ResourceNotFoundError("order", order_id)
            await self._lock_item(uow, order, order_item_id)
            pending = order.get_item(order_item_id).pending_return_quantity
            item = order.reject_return(order_item_id, reason, now=self.clock())
            await self._persist(uow, order, ADMIN_ACTOR)
            return CompensationResult(
                operation="reject_return",
                order_id=order.id,
                order_item_id=item.id,
                order_status=order.status.value,
                item_status=item.status.value,
                quantity=pending,
            )

        return await self._execute(
            "reject_return", order_id, step, order_item_id=order_item_id, validate=validate
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _execute(
        self,
        operation: str,
        order_id: int,
        step: Step,
        order_item_id: int | None = None,
        validate: Callable[[], None] | None = None,
    ) -> CompensationResult:
        """Validate, run ``step`` in a fresh unit of work (retrying lock timeouts), then notify.

        Domain errors become failed results; the unit of work has already
        rolled back by then. Lock timeouts that outlast the retries propagate.
        """

        async def attempt() -> CompensationResult:
            async with self.uow_factory() as uow:
                result = await step(uow)
                await uow.commit()
            return result

        try:
            if validate is not None:
                validate()
            result = await retry_on_lock_timeout(
                attempt,
                max_retries=self.max_lock_retries,
                initial_delay=self.lock_retry_delay,
            )
        except DomainError as e:
            logger.info(
                "Compensation rejected",
                operation=operation,
                order_id=order_id,
                order_item_id=order_item_id,
                error_code=e.error_code,
                error=e.message,
                request_id=self.request_id,
            )
            return CompensationResult.failure(operation, order_id, e, order_item_id)

        logger.info(
            "Compensation committed",
            operation=operation,
            order_id=order_id,
            order_item_id=order_item_id,
            order_status=result.order_status,
            item_status=result.item_status,
            quantity=result.quantity,
            refund_amount=str(result.refund_amount),
            point_delta=result.point_delta,
            affected_product_ids=result.affected_product_ids,
            request_id=self.request_id,
        )
        await self._notify(result.affected_product_ids)
        return result

    async def _notify(self, product_ids: list[int]) -> None:
        """Tell the sink which products changed. Runs after commit, outside every lock.

        A failing sink only leaves caches stale until their TTL; the
        committed compensation stands.
        """
        if not product_ids or self.sink is None:
            return
        try:
            await self.sink.products_changed(product_ids)
        except Exception:
            logger.exception(
                "Stock change notification failed",
                product_ids=product_ids,
                request_id=self.request_id,
            )

    async def _lock_owned_order(self, uow: UnitOfWork, order_id: int, user_id: int) -> Order:
        order = await uow.orders.lock_for_user(order_id, user_id)
        if order is None:
            raise ResourceNotFoundError("order", order_id)
        return order

    async def _lock_item(
        self,
        uow: UnitOfWork,
        order: Order,
        order_item_id: int,
        user_id: int | None = None,
    ) -> OrderItem:
        item = await uow.orders.lock_item(order, order_item_id, user_id)
        if item is None:
            raise ResourceNotFoundError("order_item", order_item_id)
        return item

    async def _persist(self, uow: UnitOfWork, order: Order, actor: str) -> None:
        """Save the aggregate and write one history row per recorded transition."""
        events = order.collect_events()
        await uow.orders.save(order)
        for event in events:
            logger.debug("Order transition recorded", actor=actor, **event.to_dict())
            await uow.history.record_order(OrderHistoryEntry.from_event(event, actor))

    @staticmethod
    def _success(
        operation: str,
        order: Order,
        ctx: CompensationContext,
        refund: RefundQuote,
        item: OrderItem | None = None,
        quantity: int = 0,
    ) -> CompensationResult:
        return CompensationResult(
            operation=operation,
            order_id=order.id,
            order_item_id=item.id if item else None,
            order_status=order.status.value,
            item_status=item.status.value if item else None,
            quantity=quantity,
            refund_amount=refund.amount,
            point_delta=ctx.point_delta_applied,
            affected_product_ids=sorted(ctx.affected_product_ids),
            skipped_product_ids=list(ctx.skipped_product_ids),
            coupon_restored=ctx.coupon_restored,
        )


def _user_actor(user_id: int) -> str:
    return f"user:{user_id}"


# ============================================================================
# Service Factory
# ============================================================================


def get_compensation_service(
    uow_factory: UnitOfWorkFactory,
    sink: StockChangeSink | None = None,
    request_id: str | None = None,
) -> CompensationService:
    """Get compensation service instance configured from settings.

    Args:
        uow_factory: Unit of work factory of the active storage backend.
        sink: Post-commit stock change sink; defaults to product cache eviction.
        request_id: Request ID for correlation.

    Returns:
        CompensationService instance.
    """
    from storefront.application.invalidation import ProductCacheInvalidator, get_product_cache
    from storefront.infrastructure.config import settings

    return CompensationService(
        uow_factory=uow_factory,
        sink=sink or ProductCacheInvalidator(get_product_cache()),
        request_id=request_id,
        return_period_days=settings.return_period_days,
        max_lock_retries=settings.lock_retry_attempts,
        lock_retry_delay=settings.lock_retry_backoff_ms / 1000,
    )
