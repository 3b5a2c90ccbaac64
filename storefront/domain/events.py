"""Domain events for the order aggregate.

Each event describes one order or order-item transition. The compensation
engine drains them from the aggregate and turns every one into an order
history row inside the same transaction.
"""

from dataclasses import dataclass
from typing import Any, ClassVar

from storefront.domain.base import DomainEvent


# ============================================================================
# Order Transition Events
# ============================================================================


@dataclass(frozen=True)
class OrderTransitionEvent(DomainEvent):
    """Common shape of every order/item transition.

    Attributes:
        order_id: Order that changed.
        order_item_id: Line item that changed, None for order-level changes.
        from_status: Status before the transition.
        to_status: Status after the transition.
        quantity: Units affected, 0 when not applicable.
        reason: Free text or reason code attached to the transition.
    """

    event_type: ClassVar[str] = "order.transition"
    aggregate_type: ClassVar[str] = "Order"

    order_id: int = 0
    order_item_id: int | None = None
    from_status: str = ""
    to_status: str = ""
    quantity: int = 0
    reason: str | None = None

    def payload(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "order_item_id": self.order_item_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "quantity": self.quantity,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class OrderCancelled(OrderTransitionEvent):
    """Event raised when the whole order becomes CANCELLED."""

    event_type: ClassVar[str] = "order.cancelled"


@dataclass(frozen=True)
class OrderItemCancelled(OrderTransitionEvent):
    """Event raised when some or all units of a line item are cancelled."""

    event_type: ClassVar[str] = "order_item.cancelled"

    refund_amount: str = "0"

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "refund_amount": self.refund_amount}


@dataclass(frozen=True)
class ReturnRequested(OrderTransitionEvent):
    """Event raised when a shopper asks to return units of a line item."""

    event_type: ClassVar[str] = "order_item.return_requested"


@dataclass(frozen=True)
class ReturnApproved(OrderTransitionEvent):
    """Event raised when an administrator approves a pending return."""

    event_type: ClassVar[str] = "order_item.return_approved"

    refund_amount: str = "0"

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "refund_amount": self.refund_amount}


@dataclass(frozen=True)
class ReturnRejected(OrderTransitionEvent):
    """Event raised when an administrator rejects a pending return."""

    event_type: ClassVar[str] = "order_item.return_rejected"


@dataclass(frozen=True)
class OrderStatusChanged(OrderTransitionEvent):
    """Event raised by fulfilment transitions (paid, shipped, delivered)."""

    event_type: ClassVar[str] = "order.status_changed"


# ============================================================================
# Event Registry
# ============================================================================


EVENT_REGISTRY: dict[str, type[DomainEvent]] = {
    OrderCancelled.event_type: OrderCancelled,
    OrderItemCancelled.event_type: OrderItemCancelled,
    ReturnRequested.event_type: ReturnRequested,
    ReturnApproved.event_type: ReturnApproved,
    ReturnRejected.event_type: ReturnRejected,
    OrderStatusChanged.event_type: OrderStatusChanged,
}


def get_event_class(event_type: str) -> type[DomainEvent] | None:
    """Get event class by event type string.

    Args:
        event_type: Event type identifier.

    Returns:
        Event class or None if not found.
    """
    return EVENT_REGISTRY.get(event_type)
