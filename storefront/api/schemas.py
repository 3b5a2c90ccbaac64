"""API schemas for the storefront API.

Pydantic models for request/response validation and serialization.
Money is a ``Decimal`` and serializes as a string.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ============================================================================
# Common Schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] = Field(
        default_factory=dict, description="Additional error details"
    )
    request_id: str | None = Field(
        default=None, description="Request ID for correlation"
    )


class PaginatedResponse(BaseModel):
    """Base paginated response."""

    total: int = Field(..., description="Total number of items")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Items per page")
    has_more: bool = Field(..., description="Whether there are more pages")


# ============================================================================
# Enums
# ============================================================================


class OrderStatusEnum(str, Enum):
    """Order lifecycle status."""

    PENDING = "PENDING"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class OrderItemStatusEnum(str, Enum):
    """Order item status."""

    NORMAL = "NORMAL"
    RETURN_REQUESTED = "RETURN_REQUESTED"
    RETURNED = "RETURNED"
    RETURN_REJECTED = "RETURN_REJECTED"
    CANCELLED = "CANCELLED"


# ============================================================================
# Request Schemas
# ============================================================================


class PartialCancelRequest(BaseModel):
    """Request to cancel some units of one line item."""

    order_item_id: int = Field(..., description="Line item to cancel from")
    quantity: int = Field(..., description="Units to cancel")


class ReturnRequest(BaseModel):
    """Request to return units of a delivered line item."""

    order_item_id: int = Field(..., description="Line item to return from")
    quantity: int = Field(..., description="Units to return")
    return_reason: str = Field(
        ...,
        description="Reason code: DEFECT, WRONG_ITEM, CHANGE_OF_MIND, SIZE_ISSUE or OTHER",
    )


class RejectReturnRequest(BaseModel):
    """Administrator's rejection of a return request."""

    reason: str = Field(..., description="Why the return was rejected")


# ============================================================================
# Response Schemas
# ============================================================================


class CompensationResponse(BaseModel):
    """Outcome of a cancellation or return operation."""

    operation: str = Field(..., description="Operation performed")
    order_id: int = Field(..., description="Order ID")
    order_item_id: int | None = Field(default=None, description="Line item, if item-level")
    order_status: OrderStatusEnum = Field(..., description="Order status afterwards")
    item_status: OrderItemStatusEnum | None = Field(
        default=None, description="Line item status afterwards"
    )
    quantity: int = Field(..., description="Units affected")
    refund_amount: Decimal = Field(..., description="Money refunded by this operation")
    point_delta: int = Field(..., description="Signed change applied to the point balance")
    affected_product_ids: list[int] = Field(
        default_factory=list, description="Products whose stock was restored"
    )
    skipped_product_ids: list[int] = Field(
        default_factory=list, description="Products no longer available for restocking"
    )
    coupon_restored: bool = Field(default=False, description="Whether the coupon was given back")


class OrderItemSchema(BaseModel):
    """Item in an order."""

    id: int = Field(..., description="Order item ID")
    product_id: int = Field(..., description="Product ID")
    product_name: str = Field(..., description="Product name at time of order")
    unit_price: Decimal = Field(..., description="Unit price at time of order")
    original_quantity: int = Field(..., description="Units ordered")
    remaining_quantity: int = Field(..., description="Units still held")
    cancelled_quantity: int = Field(..., description="Units cancelled")
    returned_quantity: int = Field(..., description="Units returned")
    pending_return_quantity: int = Field(..., description="Units awaiting a return decision")
    status: OrderItemStatusEnum = Field(..., description="Item status")
    return_reason: str | None = Field(default=None, description="Latest return reason code")
    reject_reason: str | None = Field(default=None, description="Latest rejection reason")


class OrderHistorySchema(BaseModel):
    """History entry for audit trail."""

    order_item_id: int | None = Field(default=None, description="Line item, if item-level")
    from_status: str | None = Field(default=None, description="Previous status")
    to_status: str = Field(..., description="New status")
    quantity: int = Field(default=0, description="Units involved")
    reason: str | None = Field(default=None, description="Reason for transition")
    actor: str | None = Field(default=None, description="Who initiated transition")
    metadata: dict[str, Any] | None = Field(default=None, description="Additional data")
    created_at: datetime = Field(..., description="When transition occurred")


class OrderResponse(BaseModel):
    """Order details response."""

    id: int = Field(..., description="Order ID")
    order_number: str = Field(..., description="Order number")
    status: OrderStatusEnum = Field(..., description="Current order status")
    items: list[OrderItemSchema] = Field(..., description="Order items")
    total_amount: Decimal = Field(..., description="Sum of item subtotals")
    final_amount: Decimal = Field(..., description="Amount charged")
    shipping_fee: Decimal = Field(..., description="Shipping part of the amount charged")
    used_points: int = Field(..., description="Points spent at checkout")
    earned_points: int = Field(..., description="Points earned at checkout")
    refunded_amount: Decimal = Field(..., description="Money refunded so far")
    history: list[OrderHistorySchema] = Field(
        default_factory=list, description="Transition history"
    )
    ordered_at: datetime = Field(..., description="When the order was placed")
    delivered_at: datetime | None = Field(default=None, description="When delivered")
    cancelled_at: datetime | None = Field(default=None, description="When cancelled")


class PendingReturnSchema(BaseModel):
    """A return request awaiting an administrator's decision."""

    order_id: int = Field(..., description="Order ID")
    order_number: str = Field(..., description="Order number")
    order_item_id: int = Field(..., description="Order item ID")
    product_name: str = Field(..., description="Product name")
    quantity: int = Field(..., description="Units requested for return")
    return_reason: str | None = Field(default=None, description="Reason code")
    return_requested_at: datetime | None = Field(default=None, description="When requested")
    user_name: str = Field(..., description="Customer name")
    user_email: str = Field(..., description="Customer email")


class PendingReturnsListResponse(PaginatedResponse):
    """Paginated list of pending return requests."""

    items: list[PendingReturnSchema] = Field(..., description="Pending returns")


class PendingReturnsCountResponse(BaseModel):
    """Number of pending return requests."""

    count: int = Field(..., description="Line items awaiting a return decision")
