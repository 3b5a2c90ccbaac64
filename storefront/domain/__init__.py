"""Domain layer - Entities, value objects, state machines, domain events.

This module exports the core domain building blocks:

- **Entities**: Order aggregate with its OrderItems, and the ledger records
  (ProductStock, CustomerAccount, Tier, Coupon, CouponGrant)
- **Value Objects**: RefundQuote and the history codes
- **State Machines**: OrderStatus, OrderItemStatus, ReturnReason
- **Domain Events**: one event per order/item transition
- **Exceptions**: DomainError hierarchy with stable error codes

Example usage:
    from decimal import Decimal
    from storefront.domain import Order, OrderItem

    order = Order(
        id=1,
        user_id=7,
        order_number="ORD-0001",
        final_amount=Decimal("3000"),
        items=[
            OrderItem(id=10, order_id=1, product_id=3, product_name="Mug",
                      original_quantity=3, unit_price=Decimal("1000")),
        ],
    )
    item, refund = order.cancel_item(10, 1)
    print(refund.amount)  # 1000.00
"""

# Base classes
from storefront.domain.base import AggregateRoot, DomainEvent, Entity, ValueObject

# Entities
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

# Domain Events
from storefront.domain.events import (
    EVENT_REGISTRY,
    OrderCancelled,
    OrderItemCancelled,
    OrderStatusChanged,
    OrderTransitionEvent,
    ReturnApproved,
    ReturnRejected,
    ReturnRequested,
    get_event_class,
)

# Exceptions
from storefront.domain.exceptions import (
    CancelNotAllowedError,
    DomainError,
    InfrastructureError,
    InvalidQuantityError,
    InvalidReturnQuantityError,
    InvalidReturnReasonError,
    InvalidReturnRequestError,
    InvalidStateError,
    InvalidStateTransitionError,
    InvariantViolationError,
    LedgerConflictError,
    LockTimeoutError,
    ResourceNotFoundError,
)

# State Machines
from storefront.domain.state_machines import (
    OrderItemStatus,
    OrderStatus,
    ReturnReason,
)

# Value Objects
from storefront.domain.value_objects import (
    CancellationSummary,
    CancelledLine,
    CompensationKind,
    InventoryChangeType,
    InventoryReason,
    PointChangeType,
    RefundQuote,
)

__all__ = [
    # Base
    "AggregateRoot",
    "DomainEvent",
    "Entity",
    "ValueObject",
    # Entities
    "Coupon",
    "CouponGrant",
    "CustomerAccount",
    "InventoryHistoryEntry",
    "Order",
    "OrderHistoryEntry",
    "OrderItem",
    "PointHistoryEntry",
    "ProductStock",
    "Tier",
    "resolve_tier",
    # Events
    "EVENT_REGISTRY",
    "OrderCancelled",
    "OrderItemCancelled",
    "OrderStatusChanged",
    "OrderTransitionEvent",
    "ReturnApproved",
    "ReturnRejected",
    "ReturnRequested",
    "get_event_class",
    # Exceptions
    "CancelNotAllowedError",
    "DomainError",
    "InfrastructureError",
    "InvalidQuantityError",
    "InvalidReturnQuantityError",
    "InvalidReturnReasonError",
    "InvalidReturnRequestError",
    "InvalidStateError",
    "InvalidStateTransitionError",
    "InvariantViolationError",
    "LedgerConflictError",
    "LockTimeoutError",
    "ResourceNotFoundError",
    # State Machines
    "OrderItemStatus",
    "OrderStatus",
    "ReturnReason",
    # Value Objects
    "CancellationSummary",
    "CancelledLine",
    "CompensationKind",
    "InventoryChangeType",
    "InventoryReason",
    "PointChangeType",
    "RefundQuote",
]
