"""Tests for compensation plans."""

from collections.abc import Callable
from decimal import Decimal

from storefront.application.commands import (
    AdjustPoints,
    AdjustSpend,
    ResolveTier,
    RestoreCoupon,
    RestoreStock,
    build_plan,
)
from storefront.domain import Order
from storefront.domain.value_objects import CompensationKind, RefundQuote


class TestBuildPlan:
    """Tests for plan construction and ordering."""

    def test_stock_commands_sorted_by_product_id(self, order_factory: Callable[..., Order]) -> None:
        """Stock is restored in ascending product id whatever the line order."""
        order = order_factory()
        plan = build_plan(
            order,
            CompensationKind.CANCEL,
            [(305, 1), (101, 2), (204, 1)],
            RefundQuote(Decimal("10"), 5, 1),
        )

        stock = [c.product_id for c in plan.ordered() if isinstance(c, RestoreStock)]
        assert stock == [101, 204, 305]

    def test_phase_order(self, order_factory: Callable[..., Order]) -> None:
        """Stock, then points, spend, tier and finally coupon."""
        order = order_factory()
        order.cancel()
        plan = build_plan(order, CompensationKind.CANCEL, [(102, 2), (101, 3)], RefundQuote.zero())

        kinds = [type(c) for c in plan.ordered()]
        assert kinds == [
            RestoreStock,
            RestoreStock,
            AdjustPoints,
            AdjustSpend,
            ResolveTier,
            RestoreCoupon,
        ]

    def test_coupon_only_when_fully_compensated(self, order_factory: Callable[..., Order]) -> None:
        """A partially compensated order keeps its coupon."""
        order = order_factory()
        order.cancel_item(10, 1)
        plan = build_plan(order, CompensationKind.PARTIAL_CANCEL, [(101, 1)], RefundQuote.zero())

        assert not any(isinstance(c, RestoreCoupon) for c in plan.commands)

    def test_single_signed_point_adjustment(self, order_factory: Callable[..., Order]) -> None:
        """Refund and reclaim collapse into one command."""
        order = order_factory()
        refund = RefundQuote(Decimal("700"), used_points_refund=300, earned_points_reclaim=500)
        plan = build_plan(order, CompensationKind.CANCEL, [], refund)

        points = [c for c in plan.commands if isinstance(c, AdjustPoints)]
        assert points == [AdjustPoints(user_id=7, delta=-200)]
        spend = [c for c in plan.commands if isinstance(c, AdjustSpend)]
        assert spend == [AdjustSpend(user_id=7, delta=Decimal("-700"))]

    def test_zero_quantities_skipped(self, order_factory: Callable[..., Order]) -> None:
        order = order_factory()
        plan = build_plan(order, CompensationKind.RETURN, [(101, 0)], RefundQuote.zero())
        assert not any(isinstance(c, RestoreStock) for c in plan.commands)

    def test_best_effort_flag_propagates(self, order_factory: Callable[..., Order]) -> None:
        """Only full cancellation skips vanished products."""
        order = order_factory()
        plan = build_plan(
            order, CompensationKind.CANCEL, [(101, 1)], RefundQuote.zero(), best_effort_stock=True
        )
        assert plan.commands[0] == RestoreStock(101, 1, best_effort=True)
