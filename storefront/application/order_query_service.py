"""Order read-side queries.

Shopper order detail (including reject reasons and the transition
history) and the administrator's queue of pending return requests.
Reads take no locks.
"""

from dataclasses import dataclass, field

import structlog

from storefront.application.ports import PendingReturn, UnitOfWorkFactory
from storefront.domain.entities import Order, OrderHistoryEntry

logger = structlog.get_logger()


# ============================================================================
# Service Result Types
# ============================================================================


@dataclass
class GetOrderResult:
    """Result of getting an order."""

    order: Order | None = None
    history: list[OrderHistoryEntry] = field(default_factory=list)
    success: bool = True
    error: str | None = None
    error_code: str | None = None


@dataclass
class ListPendingReturnsResult:
    """Result of listing pending return requests."""

    returns: list[PendingReturn] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 20


# ============================================================================
# Order Query Service
# ============================================================================


class OrderQueryService:
    """Read-only access to orders and return requests."""

    def __init__(self, uow_factory: UnitOfWorkFactory, request_id: str | None = None) -> None:
        self.uow_factory = uow_factory
        self.request_id = request_id

    async def get_order(self, order_id: int, user_id: int) -> GetOrderResult:
        """Get an order owned by ``user_id`` with its history.

        Returns:
            GetOrderResult; NOT_FOUND when absent or owned by someone else.
        """
        async with self.uow_factory() as uow:
            order = await uow.orders.get_for_user(order_id, user_id)
            if order is None:
                return GetOrderResult(
                    success=False,
                    error=f"order {order_id} not found",
                    error_code="NOT_FOUND",
                )
            history = await uow.history.list_for_order(order_id)
        return GetOrderResult(order=order, history=history)

    async def list_pending_returns(
        self, page: int = 1, page_size: int = 20
    ) -> ListPendingReturnsResult:
        """List return requests awaiting a decision, oldest first."""
        async with self.uow_factory() as uow:
            returns, total = await uow.orders.list_pending_returns(
                offset=(page - 1) * page_size,
                limit=page_size,
            )
        logger.debug(
            "Pending returns listed",
            page=page,
            page_size=page_size,
            total=total,
            request_id=self.request_id,
        )
        return ListPendingReturnsResult(
            returns=returns,
            total=total,
            page=page,
            page_size=page_size,
        )

    async def count_pending_returns(self) -> int:
        async with self.uow_factory() as uow:
            return await uow.orders.count_pending_returns()


def get_order_query_service(
    uow_factory: UnitOfWorkFactory,
    request_id: str | None = None,
) -> OrderQueryService:
    """Get order query service instance."""
    return OrderQueryService(uow_factory=uow_factory, request_id=request_id)
