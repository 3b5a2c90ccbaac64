"""State machines for domain entities.

Deterministic state machines that define valid state transitions for
orders and their line items. The compensation engine consults them
before any ledger is touched.
"""

from enum import Enum

from storefront.domain.exceptions import InvalidReturnReasonError, InvalidStateTransitionError


# ============================================================================
# Order State Machine
# ============================================================================


class OrderStatus(str, Enum):
    """Order lifecycle states.

    State diagram:
        PENDING ─────────────────────────────► CANCELLED
          │                                       ▲
          │ pay                                   │
          ▼                                       │
        PAID ─────────────────────────────────────┘
          │
          │ ship
          ▼
        SHIPPED
          │
          │ deliver
          ▼
        DELIVERED  (returns are handled per item)
    """

    PENDING = "PENDING"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _ORDER_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["OrderStatus"]:
        """Get list of valid target states.

        Returns:
            List of states that can be transitioned to.
        """
        return sorted(_ORDER_TRANSITIONS.get(self, set()), key=lambda s: s.value)

    def is_cancellable(self) -> bool:
        """Check if order can still be cancelled (not yet shipped).

        Returns:
            True if order can be cancelled.
        """
        return self in {OrderStatus.PENDING, OrderStatus.PAID}

    def is_returnable(self) -> bool:
        """Check if items of the order may be returned."""
        return self == OrderStatus.DELIVERED

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state.

        Returns:
            True if no further transitions are possible.
        """
        return len(_ORDER_TRANSITIONS.get(self, set())) == 0


# Order state transitions (defined outside enum to avoid Enum restrictions)
_ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),  # Returns do not change the order status
    OrderStatus.CANCELLED: set(),  # Terminal state
}


# ============================================================================
# Order Item State Machine
# ============================================================================


class OrderItemStatus(str, Enum):
    """Order line item states.

    State diagram:
        NORMAL ──────────────────────────────► CANCELLED
          │  ▲                (remaining quantity reaches zero)
          │  │
          │  └──────────── RETURN_REJECTED
          │ request_return        ▲
          ▼                       │ reject
        RETURN_REQUESTED ─────────┘
          │
          │ approve
          ▼
        RETURNED

    RETURN_REJECTED is transient: a rejection is recorded and the item
    reverts to NORMAL in the same step so it can be requested again.
    """

    NORMAL = "NORMAL"
    RETURN_REQUESTED = "RETURN_REQUESTED"
    RETURN_REJECTED = "RETURN_REJECTED"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"

    def can_transition_to(self, target: "OrderItemStatus") -> bool:
        """Check if transition to target state is valid."""
        return target in _ORDER_ITEM_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["OrderItemStatus"]:
        """Get list of valid target states."""
        return sorted(_ORDER_ITEM_TRANSITIONS.get(self, set()), key=lambda s: s.value)

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state."""
        return len(_ORDER_ITEM_TRANSITIONS.get(self, set())) == 0


_ORDER_ITEM_TRANSITIONS: dict[OrderItemStatus, set[OrderItemStatus]] = {
    OrderItemStatus.NORMAL: {OrderItemStatus.RETURN_REQUESTED, OrderItemStatus.CANCELLED},
    OrderItemStatus.RETURN_REQUESTED: {OrderItemStatus.RETURNED, OrderItemStatus.RETURN_REJECTED},
    OrderItemStatus.RETURN_REJECTED: {OrderItemStatus.NORMAL},
    OrderItemStatus.RETURNED: set(),  # Terminal state
    OrderItemStatus.CANCELLED: set(),  # Terminal state
}


class ReturnReason(str, Enum):
    """Reason codes a shopper may give when requesting a return."""

    DEFECT = "DEFECT"
    WRONG_ITEM = "WRONG_ITEM"
    CHANGE_OF_MIND = "CHANGE_OF_MIND"
    SIZE_ISSUE = "SIZE_ISSUE"
    OTHER = "OTHER"

    @property
    def label(self) -> str:
        return _RETURN_REASON_LABELS[self]

    @classmethod
    def parse(cls, code: str | None) -> "ReturnReason":
        """Parse a reason code.

        Args:
            code: Reason code as sent by the caller; case-insensitive.

        Returns:
            The matching ReturnReason.

        Raises:
            InvalidReturnReasonError: If the code is empty or unknown.
        """
        normalized = (code or "").strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidReturnReasonError(code or "", [r.value for r in cls]) from None


_RETURN_REASON_LABELS: dict[ReturnReason, str] = {
    ReturnReason.DEFECT: "Defective product",
    ReturnReason.WRONG_ITEM: "Wrong item delivered",
    ReturnReason.CHANGE_OF_MIND: "Changed mind",
    ReturnReason.SIZE_ISSUE: "Size or fit issue",
    ReturnReason.OTHER: "Other",
}


# ============================================================================
# Transition Validators
# ============================================================================


def validate_order_transition(
    order_id: int,
    current_status: OrderStatus,
    target_status: OrderStatus,
) -> None:
    """Validate and raise if order state transition is invalid.

    Args:
        order_id: Order identifier for error message.
        current_status: Current order status.
        target_status: Target order status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="Order",
            entity_id=str(order_id),
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )


def validate_item_transition(
    order_item_id: int,
    current_status: OrderItemStatus,
    target_status: OrderItemStatus,
) -> None:
    """Validate and raise if order item state transition is invalid.

    Args:
        order_item_id: Order item identifier for error message.
        current_status: Current item status.
        target_status: Target item status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="OrderItem",
            entity_id=str(order_item_id),
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )
