"""Value Objects for the domain layer.

Money arithmetic helpers, refund quotes and the small enumerations
used by ledger history rows.
"""

from dataclasses import dataclass
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Self

from storefront.domain.base import ValueObject


# ============================================================================
# Money
# ============================================================================


CENT = Decimal("0.01")
# Precision of the item-share ratio before it is applied to money or points.
RATIO_PLACES = Decimal("1e-10")
ZERO = Decimal("0")


def to_money(value: Decimal | int | str) -> Decimal:
    """Quantize a value to currency precision (2 places, half up).

    Args:
        value: Amount to quantize.

    Returns:
        Decimal rounded to cents.
    """
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def floor_points(value: Decimal) -> int:
    """Round a fractional point amount down to whole points."""
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


# ============================================================================
# Refund Quote
# ============================================================================


@dataclass(frozen=True)
class RefundQuote(ValueObject):
    """Amounts owed back to a customer for one compensating transition.

    Attributes:
        amount: Money refunded (and removed from cumulative spend).
        used_points_refund: Points spent at checkout that go back to the user.
        earned_points_reclaim: Points earned at checkout that are taken back.
    """

    amount: Decimal = ZERO
    used_points_refund: int = 0
    earned_points_reclaim: int = 0

    def __post_init__(self) -> None:
        if self.amount < 0 or self.used_points_refund < 0 or self.earned_points_reclaim < 0:
            raise ValueError(f"Refund quote components must not be negative: {self}")

    @classmethod
    def zero(cls) -> Self:
        return cls()

    @property
    def net_point_delta(self) -> int:
        """Single signed point adjustment combining refund and reclaim."""
        return self.used_points_refund - self.earned_points_reclaim


@dataclass(frozen=True)
class CancelledLine(ValueObject):
    """Units of one line item released by a full order cancellation."""

    order_item_id: int
    product_id: int
    quantity: int
    amount: Decimal


@dataclass(frozen=True)
class CancellationSummary(ValueObject):
    """What a full cancellation released: per-line units and the order-level refund."""

    lines: tuple[CancelledLine, ...]
    refund: RefundQuote

    @property
    def product_ids(self) -> list[int]:
        return sorted({line.product_id for line in self.lines})


# ============================================================================
# Ledger History Codes
# ============================================================================


class InventoryChangeType(str, Enum):
    """Direction of an inventory history row."""

    IN = "IN"
    OUT = "OUT"
    ADJUST = "ADJUST"


class InventoryReason(str, Enum):
    """Why stock came back into the warehouse."""

    RETURN = "RETURN"
    PARTIAL_CANCEL = "PARTIAL_CANCEL"


class PointChangeType(str, Enum):
    """Point history row type. Amounts on the row are always positive."""

    EARN = "EARN"
    USE = "USE"
    REFUND = "REFUND"
    EXPIRE = "EXPIRE"
    ADJUST = "ADJUST"


class CompensationKind(str, Enum):
    """Which compensating transition produced a ledger row."""

    CANCEL = "CANCEL"
    PARTIAL_CANCEL = "PARTIAL_CANCEL"
    RETURN = "RETURN"

    @property
    def inventory_reason(self) -> InventoryReason:
        if self == CompensationKind.PARTIAL_CANCEL:
            return InventoryReason.PARTIAL_CANCEL
        return InventoryReason.RETURN
