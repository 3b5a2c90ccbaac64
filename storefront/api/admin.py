"""Administrator API endpoints.

Provides endpoints for the return desk:
- GET /admin/returns - pending return requests (paginated)
- GET /admin/returns/count - number of pending return requests
- POST /admin/orders/{id}/items/{item_id}/return/approve - approve a return
- POST /admin/orders/{id}/items/{item_id}/return/reject - reject a return

Authentication is enforced by ``AdminKeyMiddleware``.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from storefront.api.errors import raise_for_result
from storefront.api.orders import compensation_to_response, get_query_service, get_service
from storefront.api.schemas import (
    CompensationResponse,
    ErrorResponse,
    PendingReturnSchema,
    PendingReturnsCountResponse,
    PendingReturnsListResponse,
    RejectReturnRequest,
)
from storefront.application.compensation_service import CompensationService
from storefront.application.order_query_service import OrderQueryService

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    responses={401: {"model": ErrorResponse}},
)


@router.get(
    "/returns",
    response_model=PendingReturnsListResponse,
    summary="List pending returns",
)
async def list_pending_returns(
    service: Annotated[OrderQueryService, Depends(get_query_service)],
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page"),
) -> PendingReturnsListResponse:
    """List return requests awaiting a decision, oldest first.

    Args:
        service: Order query service.
        page: Page number (1-based).
        page_size: Items per page.

    Returns:
        Paginated list of pending returns.
    """
    result = await service.list_pending_returns(page=page, page_size=page_size)

    items = [
        PendingReturnSchema(
            order_id=entry.order_id,
            order_number=entry.order_number,
            order_item_id=entry.order_item_id,
            product_name=entry.product_name,
            quantity=entry.quantity,
            return_reason=entry.return_reason,
            return_requested_at=entry.return_requested_at,
            user_name=entry.user_name,
            user_email=entry.user_email,
        )
        for entry in result.returns
    ]

    return PendingReturnsListResponse(
        items=items,
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        has_more=(result.page * result.page_size) < result.total,
    )


@router.get(
    "/returns/count",
    response_model=PendingReturnsCountResponse,
    summary="Count pending returns",
)
async def count_pending_returns(
    service: Annotated[OrderQueryService, Depends(get_query_service)],
) -> PendingReturnsCountResponse:
    return PendingReturnsCountResponse(count=await service.count_pending_returns())


@router.post(
    "/orders/{order_id}/items/{order_item_id}/return/approve",
    response_model=CompensationResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Approve a return",
)
async def approve_return(
    order_id: int,
    order_item_id: int,
    service: Annotated[CompensationService, Depends(get_service)],
) -> CompensationResponse:
    """Approve a pending return and compensate the returned units.

    Args:
        order_id: Order identifier.
        order_item_id: Line item under a return request.
        service: Compensation service.

    Returns:
        Compensation outcome.

    Raises:
        HTTPException: If the order or item is not found, or no return is pending.
    """
    result = await service.approve_return(order_id, order_item_id)
    raise_for_result(result)
    return compensation_to_response(result)


@router.post(
    "/orders/{order_id}/items/{order_item_id}/return/reject",
    response_model=CompensationResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Reject a return",
)
async def reject_return(
    order_id: int,
    order_item_id: int,
    request: RejectReturnRequest,
    service: Annotated[CompensationService, Depends(get_service)],
) -> CompensationResponse:
    """Reject a pending return; the shopper sees the reason on the order."""
    result = await service.reject_return(order_id, order_item_id, request.reason)
    raise_for_result(result)
    return compensation_to_response(result)
