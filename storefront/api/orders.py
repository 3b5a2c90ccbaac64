"""Order API endpoints for shoppers.

Provides endpoints for order compensation:
- GET /orders/{id} - order details with items and history
- POST /orders/{id}/cancel - cancel a whole order before shipment
- POST /orders/{id}/partial-cancel - cancel units of one line item
- POST /orders/{id}/returns - request a return of a delivered item

The shopper is identified by the ``X-User-Id`` header.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from storefront.api.errors import raise_for_result, status_for
from storefront.api.schemas import (
    CompensationResponse,
    ErrorResponse,
    OrderHistorySchema,
    OrderItemSchema,
    OrderResponse,
    PartialCancelRequest,
    ReturnRequest,
)
from storefront.application.compensation_service import (
    CompensationResult,
    CompensationService,
    get_compensation_service,
)
from storefront.application.order_query_service import (
    OrderQueryService,
    get_order_query_service,
)
from storefront.application.ports import UnitOfWorkFactory
from storefront.domain.entities import Order, OrderHistoryEntry
from storefront.infrastructure.storage import get_unit_of_work_factory

router = APIRouter(prefix="/orders", tags=["Orders"])


# ============================================================================
# Dependencies
# ============================================================================


def get_user_id(
    x_user_id: Annotated[int | None, Header(description="Authenticated shopper")] = None,
) -> int:
    """Get the shopper's user id from the ``X-User-Id`` header."""
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "UNAUTHORIZED",
                "message": "Missing X-User-Id header",
            },
        )
    return x_user_id


def get_service(
    request: Request,
    uow_factory: Annotated[UnitOfWorkFactory, Depends(get_unit_of_work_factory)],
) -> CompensationService:
    """Get compensation service with request ID."""
    request_id = getattr(request.state, "request_id", None)
    return get_compensation_service(uow_factory, request_id=request_id)


def get_query_service(
    request: Request,
    uow_factory: Annotated[UnitOfWorkFactory, Depends(get_unit_of_work_factory)],
) -> OrderQueryService:
    """Get order query service with request ID."""
    request_id = getattr(request.state, "request_id", None)
    return get_order_query_service(uow_factory, request_id=request_id)


# ============================================================================
# Converters
# ============================================================================


def compensation_to_response(result: CompensationResult) -> CompensationResponse:
    """Convert a successful CompensationResult to CompensationResponse."""
    return CompensationResponse(
        operation=result.operation,
        order_id=result.order_id,
        order_item_id=result.order_item_id,
        order_status=result.order_status,
        item_status=result.item_status,
        quantity=result.quantity,
        refund_amount=result.refund_amount,
        point_delta=result.point_delta,
        affected_product_ids=result.affected_product_ids,
        skipped_product_ids=result.skipped_product_ids,
        coupon_restored=result.coupon_restored,
    )


def history_to_schema(entry: OrderHistoryEntry) -> OrderHistorySchema:
    return OrderHistorySchema(
        order_item_id=entry.order_item_id,
        from_status=entry.from_status,
        to_status=entry.to_status,
        quantity=entry.quantity,
        reason=entry.reason,
        actor=entry.actor,
        metadata=entry.metadata,
        created_at=entry.created_at,
    )


def order_to_response(order: Order, history: list[OrderHistoryEntry]) -> OrderResponse:
    """Convert an Order and its history to OrderResponse."""
    items = [
        OrderItemSchema(
            id=item.id,
            product_id=item.product_id,
            product_name=item.product_name,
            unit_price=item.unit_price,
            original_quantity=item.original_quantity,
            remaining_quantity=item.remaining_quantity,
            cancelled_quantity=item.cancelled_quantity,
            returned_quantity=item.returned_quantity,
            pending_return_quantity=item.pending_return_quantity,
            status=item.status.value,
            return_reason=item.return_reason.value if item.return_reason else None,
            reject_reason=item.reject_reason,
        )
        for item in order.items
    ]

    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        status=order.status.value,
        items=items,
        total_amount=order.total_amount,
        final_amount=order.final_amount,
        shipping_fee=order.shipping_fee,
        used_points=order.used_points,
        earned_points=order.earned_points_snapshot,
        refunded_amount=order.refunded_amount,
        history=[history_to_schema(entry) for entry in history],
        ordered_at=order.ordered_at,
        delivered_at=order.delivered_at,
        cancelled_at=order.cancelled_at,
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    responses={
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Get order details",
    description="Get an order with its items, reject reasons and transition history.",
)
async def get_order(
    order_id: int,
    user_id: Annotated[int, Depends(get_user_id)],
    service: Annotated[OrderQueryService, Depends(get_query_service)],
) -> OrderResponse:
    """Get an order by ID.

    Args:
        order_id: Order identifier.
        user_id: Requesting shopper.
        service: Order query service.

    Returns:
        Order details.

    Raises:
        HTTPException: If the order does not exist or belongs to someone else.
    """
    result = await service.get_order(order_id, user_id)

    if not result.success or not result.order:
        raise HTTPException(
            status_code=status_for(result.error_code),
            detail={
                "error_code": result.error_code or "NOT_FOUND",
                "message": result.error or f"Order not found: {order_id}",
            },
        )

    return order_to_response(result.order, result.history)


@router.post(
    "/{order_id}/cancel",
    response_model=CompensationResponse,
    responses={
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Cancel order",
    description="Cancel a whole order. Only PENDING or PAID orders can be cancelled.",
)
async def cancel_order(
    order_id: int,
    user_id: Annotated[int, Depends(get_user_id)],
    service: Annotated[CompensationService, Depends(get_service)],
) -> CompensationResponse:
    """Cancel an order and compensate everything it took.

    Args:
        order_id: Order identifier.
        user_id: Requesting shopper.
        service: Compensation service.

    Returns:
        Compensation outcome.

    Raises:
        HTTPException: If the order is not found or can no longer be cancelled.
    """
    result = await service.cancel_order(order_id, user_id)
    raise_for_result(result)
    return compensation_to_response(result)


@router.post(
    "/{order_id}/partial-cancel",
    response_model=CompensationResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Cancel part of a line item",
)
async def partial_cancel(
    order_id: int,
    request: PartialCancelRequest,
    user_id: Annotated[int, Depends(get_user_id)],
    service: Annotated[CompensationService, Depends(get_service)],
) -> CompensationResponse:
    """Cancel some units of one line item before shipment."""
    result = await service.partial_cancel(
        order_id=order_id,
        user_id=user_id,
        order_item_id=request.order_item_id,
        quantity=request.quantity,
    )
    raise_for_result(result)
    return compensation_to_response(result)


@router.post(
    "/{order_id}/returns",
    response_model=CompensationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Request a return",
    description="Request a return of units of a delivered line item within the return period.",
)
async def request_return(
    order_id: int,
    request: ReturnRequest,
    user_id: Annotated[int, Depends(get_user_id)],
    service: Annotated[CompensationService, Depends(get_service)],
) -> CompensationResponse:
    """Open a return request. Nothing is refunded until an administrator approves it."""
    result = await service.request_return(
        order_id=order_id,
        user_id=user_id,
        order_item_id=request.order_item_id,
        quantity=request.quantity,
        reason_code=request.return_reason,
    )
    raise_for_result(result)
    return compensation_to_response(result)
