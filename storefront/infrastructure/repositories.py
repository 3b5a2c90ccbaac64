"""SQLAlchemy implementations of the repository ports.

Row locks are PostgreSQL ``SELECT ... FOR UPDATE`` taken inside the unit
of work's transaction; ``populate_existing`` makes every lock reload the
row, so guards always see the state left by the previous lock holder.
Each transaction sets ``lock_timeout`` locally, and lock waits that time
out or deadlock surface as :class:`LockTimeoutError`.
"""

from collections.abc import Callable
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import func, select, text, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy.sql import Executable

from storefront.application.ports import (
    CouponLedger,
    CustomerLedger,
    HistoryWriter,
    OrderRepository,
    PendingReturn,
    ProductStockLedger,
    TierDirectory,
    UnitOfWork,
)
from storefront.domain.entities import (
    CouponGrant,
    CustomerAccount,
    InventoryHistoryEntry,
    Order,
    OrderHistoryEntry,
    OrderItem,
    PointHistoryEntry,
    ProductStock,
    Tier,
)
from storefront.domain.exceptions import (
    LedgerConflictError,
    LockTimeoutError,
    ResourceNotFoundError,
)
from storefront.domain.state_machines import OrderItemStatus, OrderStatus, ReturnReason
from storefront.infrastructure.models import (
    CouponModel,
    OrderHistoryModel,
    OrderItemModel,
    OrderModel,
    PointHistoryModel,
    ProductInventoryHistoryModel,
    ProductModel,
    UserCouponModel,
    UserModel,
    UserTierModel,
)

logger = structlog.get_logger()

# PostgreSQL SQLSTATEs for lock_not_available and deadlock_detected
LOCK_ERROR_CODES = frozenset({"55P03", "40P01"})


def _sqlstate(error: DBAPIError) -> str | None:
    orig = error.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


# ============================================================================
# Mapping
# ============================================================================


def _item_to_domain(model: OrderItemModel) -> OrderItem:
    return OrderItem(
        id=model.id,
        order_id=model.order_id,
        product_id=model.product_id,
        product_name=model.product_name,
        original_quantity=model.quantity,
        unit_price=model.unit_price,
        remaining_quantity=model.remaining_quantity,
        cancelled_quantity=model.cancelled_quantity,
        returned_quantity=model.returned_quantity,
        cancelled_amount=model.cancelled_amount,
        returned_amount=model.returned_amount,
        status=OrderItemStatus(model.status),
        return_reason=ReturnReason(model.return_reason) if model.return_reason else None,
        reject_reason=model.reject_reason,
        pending_return_quantity=model.pending_return_quantity,
        return_requested_at=model.return_requested_at,
        returned_at=model.returned_at,
    )


def _order_to_domain(model: OrderModel) -> Order:
    return Order(
        id=model.id,
        user_id=model.user_id,
        order_number=model.order_number,
        final_amount=model.final_amount,
        status=OrderStatus(model.status),
        items=[_item_to_domain(item) for item in model.items],
        shipping_fee=model.shipping_fee,
        used_points=model.used_points,
        earned_points_snapshot=model.earned_points,
        refunded_amount=model.refunded_amount,
        refunded_points=model.refunded_points,
        reclaimed_earned_points=model.reclaimed_earned_points,
        ordered_at=model.ordered_at,
        paid_at=model.paid_at,
        shipped_at=model.shipped_at,
        delivered_at=model.delivered_at,
        cancelled_at=model.cancelled_at,
        updated_at=model.updated_at,
    )


def _copy_item(model: OrderItemModel, item: OrderItem) -> None:
    model.remaining_quantity = item.remaining_quantity
    model.cancelled_quantity = item.cancelled_quantity
    model.returned_quantity = item.returned_quantity
    model.cancelled_amount = item.cancelled_amount
    model.returned_amount = item.returned_amount
    model.status = item.status.value
    model.return_reason = item.return_reason.value if item.return_reason else None
    model.reject_reason = item.reject_reason
    model.pending_return_quantity = item.pending_return_quantity
    model.return_requested_at = item.return_requested_at
    model.returned_at = item.returned_at


def _account_to_domain(model: UserModel) -> CustomerAccount:
    return CustomerAccount(
        id=model.id,
        name=model.name,
        email=model.email,
        tier_id=model.tier_id,
        total_spent=model.total_spent,
        point_balance=model.point_balance,
    )


def _grant_to_domain(model: UserCouponModel) -> CouponGrant:
    return CouponGrant(
        id=model.id,
        user_id=model.user_id,
        coupon_id=model.coupon_id,
        is_used=model.is_used,
        used_at=model.used_at,
        order_id=model.order_id,
        expires_at=model.expires_at,
    )


# ============================================================================
# Repositories
# ============================================================================


class _SessionRepository:
    """Shared statement execution with lock error translation."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _execute(self, statement: Executable, resource: str) -> Any:
        try:
            return await self.session.execute(statement)
        except DBAPIError as e:
            if _sqlstate(e) in LOCK_ERROR_CODES:
                logger.warning("Lock not acquired", resource=resource, sqlstate=_sqlstate(e))
                raise LockTimeoutError(resource, reason=str(e.orig)) from e
            raise


class SqlAlchemyOrderRepository(_SessionRepository, OrderRepository):
    """Orders and line items; keeps loaded rows to write changes back on save."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)
        self._models: dict[int, OrderModel] = {}

    def _order_query(self):
        return select(OrderModel).options(selectinload(OrderModel.items))

    async def _lock_order(self, statement, order_id: int) -> Order | None:
        statement = statement.with_for_update(of=OrderModel).execution_options(
            populate_existing=True
        )
        result = await self._execute(statement, f"order:{order_id}")
        model = result.scalar_one_or_none()
        if model is None:
            return None
        self._models[model.id] = model
        return _order_to_domain(model)

    async def lock_for_user(self, order_id: int, user_id: int) -> Order | None:
        return await self._lock_order(
            self._order_query().where(OrderModel.id == order_id, OrderModel.user_id == user_id),
            order_id,
        )

    async def lock(self, order_id: int) -> Order | None:
        return await self._lock_order(self._order_query().where(OrderModel.id == order_id), order_id)

    async def lock_item(
        self, order: Order, order_item_id: int, user_id: int | None = None
    ) -> OrderItem | None:
        statement = (
            select(OrderItemModel)
            .join(OrderModel, OrderModel.id == OrderItemModel.order_id)
            .where(OrderItemModel.id == order_item_id, OrderItemModel.order_id == order.id)
        )
        if user_id is not None:
            statement = statement.where(OrderModel.user_id == user_id)
        statement = statement.with_for_update(of=OrderItemModel).execution_options(
            populate_existing=True
        )
        result = await self._execute(statement, f"order_item:{order_item_id}")
        model = result.scalar_one_or_none()
        if model is None:
            return None

        fresh = _item_to_domain(model)
        for index, item in enumerate(order.items):
            if item.id == fresh.id:
                order.items[index] = fresh
                return fresh
        return None

    async def save(self, order: Order) -> None:
        model = self._models.get(order.id)
        if model is None:
            raise ResourceNotFoundError("order", order.id)

        model.status = order.status.value
        model.refunded_amount = order.refunded_amount
        model.refunded_points = order.refunded_points
        model.reclaimed_earned_points = order.reclaimed_earned_points
        model.paid_at = order.paid_at
        model.shipped_at = order.shipped_at
        model.delivered_at = order.delivered_at
        model.cancelled_at = order.cancelled_at
        model.updated_at = order.updated_at

        items = {item.id: item for item in order.items}
        for item_model in model.items:
            if item_model.id in items:
                _copy_item(item_model, items[item_model.id])
        await self.session.flush()

    async def get_for_user(self, order_id: int, user_id: int) -> Order | None:
        result = await self.session.execute(
            self._order_query().where(OrderModel.id == order_id, OrderModel.user_id == user_id)
        )
        model = result.scalar_one_or_none()
        return _order_to_domain(model) if model else None

    async def list_pending_returns(
        self, offset: int, limit: int
    ) -> tuple[list[PendingReturn], int]:
        statement = (
            select(OrderItemModel, OrderModel, UserModel)
            .join(OrderModel, OrderModel.id == OrderItemModel.order_id)
            .join(UserModel, UserModel.id == OrderModel.user_id)
            .where(OrderItemModel.status == OrderItemStatus.RETURN_REQUESTED.value)
            .order_by(OrderItemModel.return_requested_at, OrderItemModel.id)
            .offset(offset)
            .limit(limit)
        )
        rows = (await self.session.execute(statement)).all()
        returns = [
            PendingReturn(
                order_id=order.id,
                order_number=order.order_number,
                order_item_id=item.id,
                product_name=item.product_name,
                quantity=item.pending_return_quantity,
                return_reason=item.return_reason,
                return_requested_at=item.return_requested_at,
                user_name=user.name,
                user_email=user.email,
            )
            for item, order, user in rows
        ]
        return returns, await self.count_pending_returns()

    async def count_pending_returns(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(OrderItemModel)
            .where(OrderItemModel.status == OrderItemStatus.RETURN_REQUESTED.value)
        )
        return result.scalar_one()


class SqlAlchemyProductStockLedger(_SessionRepository, ProductStockLedger):
    async def lock(self, product_id: int) -> ProductStock | None:
        statement = (
            select(ProductModel)
            .where(ProductModel.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        model = (await self._execute(statement, f"product:{product_id}")).scalar_one_or_none()
        if model is None:
            return None
        return ProductStock(
            id=model.id,
            name=model.name,
            stock_quantity=model.stock_quantity,
            sales_count=model.sales_count,
        )

    async def restore_stock(self, product_id: int, quantity: int) -> tuple[int, int]:
        """Guarded in-place update; ``sales_count`` never goes negative."""
        statement = (
            update(ProductModel)
            .where(ProductModel.id == product_id, ProductModel.sales_count >= quantity)
            .values(
                stock_quantity=ProductModel.stock_quantity + quantity,
                sales_count=ProductModel.sales_count - quantity,
            )
            .returning(ProductModel.stock_quantity)
            .execution_options(synchronize_session=False)
        )
        row = (await self._execute(statement, f"product:{product_id}")).first()
        if row is not None:
            after = row[0]
            return after - quantity, after

        product = await self.lock(product_id)
        if product is None:
            raise ResourceNotFoundError("product", product_id)
        raise LedgerConflictError(
            f"Product {product_id} has only {product.sales_count} recorded sales, "
            f"cannot roll back {quantity}",
            details={
                "product_id": product_id,
                "sales_count": product.sales_count,
                "quantity": quantity,
            },
        )


class SqlAlchemyCustomerLedger(_SessionRepository, CustomerLedger):
    """User ledger rows. Adjustments go through the domain entity of the locked row."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)
        self._models: dict[int, UserModel] = {}

    async def lock(self, user_id: int) -> CustomerAccount | None:
        statement = (
            select(UserModel)
            .where(UserModel.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        model = (await self._execute(statement, f"user:{user_id}")).scalar_one_or_none()
        if model is None:
            return None
        self._models[user_id] = model
        return _account_to_domain(model)

    async def _locked(self, user_id: int) -> UserModel:
        model = self._models.get(user_id)
        if model is None:
            if await self.lock(user_id) is None:
                raise ResourceNotFoundError("user", user_id)
            model = self._models[user_id]
        return model

    async def adjust_points(self, user_id: int, delta: int) -> tuple[int, int]:
        model = await self._locked(user_id)
        account = _account_to_domain(model)
        applied = account.apply_point_delta(delta)
        model.point_balance = account.point_balance
        await self.session.flush()
        return applied, account.point_balance

    async def adjust_spend(self, user_id: int, delta: Decimal) -> Decimal:
        model = await self._locked(user_id)
        account = _account_to_domain(model)
        model.total_spent = account.adjust_spend(delta)
        await self.session.flush()
        return account.total_spent

    async def set_tier(self, user_id: int, tier_id: int) -> None:
        model = await self._locked(user_id)
        model.tier_id = tier_id
        await self.session.flush()


class SqlAlchemyTierDirectory(_SessionRepository, TierDirectory):
    async def resolve(self, total_spent: Decimal) -> Tier | None:
        result = await self.session.execute(
            select(UserTierModel)
            .where(UserTierModel.min_spent <= total_spent)
            .order_by(UserTierModel.level.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return Tier(id=model.id, name=model.name, level=model.level, min_spent=model.min_spent)


class SqlAlchemyCouponLedger(_SessionRepository, CouponLedger):
    async def lock_for_order(self, order_id: int) -> CouponGrant | None:
        statement = (
            select(UserCouponModel)
            .where(UserCouponModel.order_id == order_id)
            .order_by(UserCouponModel.id)
            .limit(1)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        model = (await self._execute(statement, f"coupon_for_order:{order_id}")).scalar_one_or_none()
        return _grant_to_domain(model) if model else None

    async def restore(self, grant: CouponGrant) -> bool:
        """Flip the grant only if it is still used; release one coupon use."""
        flipped = await self._execute(
            update(UserCouponModel)
            .where(UserCouponModel.id == grant.id, UserCouponModel.is_used.is_(True))
            .values(is_used=False, used_at=None, order_id=None)
            .returning(UserCouponModel.id)
            .execution_options(synchronize_session=False),
            f"user_coupon:{grant.id}",
        )
        if flipped.first() is None:
            return False

        await self._execute(
            update(CouponModel)
            .where(CouponModel.id == grant.coupon_id, CouponModel.usage_count > 0)
            .values(usage_count=CouponModel.usage_count - 1)
            .execution_options(synchronize_session=False),
            f"coupon:{grant.coupon_id}",
        )
        grant.restore()
        return True


class SqlAlchemyHistoryWriter(_SessionRepository, HistoryWriter):
    async def record_inventory(self, entry: InventoryHistoryEntry) -> None:
        self.session.add(
            ProductInventoryHistoryModel(
                product_id=entry.product_id,
                change_type=entry.change_type.value,
                change_amount=entry.change_amount,
                before_quantity=entry.before_quantity,
                after_quantity=entry.after_quantity,
                reason=entry.reason.value,
                reference_id=entry.reference_id,
                created_by=entry.created_by,
                created_at=entry.created_at,
            )
        )

    async def record_points(self, entry: PointHistoryEntry) -> None:
        self.session.add(
            PointHistoryModel(
                user_id=entry.user_id,
                change_type=entry.change_type.value,
                amount=entry.amount,
                balance_after=entry.balance_after,
                reference_type=entry.reference_type.value,
                reference_id=entry.reference_id,
                description=entry.description,
                created_at=entry.created_at,
            )
        )

    async def record_order(self, entry: OrderHistoryEntry) -> None:
        self.session.add(
            OrderHistoryModel(
                order_id=entry.order_id,
                order_item_id=entry.order_item_id,
                from_status=entry.from_status,
                to_status=entry.to_status,
                quantity=entry.quantity,
                reason=entry.reason,
                actor=entry.actor,
                metadata_=entry.metadata,
                created_at=entry.created_at,
            )
        )

    async def list_for_order(self, order_id: int) -> list[OrderHistoryEntry]:
        result = await self.session.execute(
            select(OrderHistoryModel)
            .where(OrderHistoryModel.order_id == order_id)
            .order_by(OrderHistoryModel.created_at, OrderHistoryModel.id)
        )
        return [
            OrderHistoryEntry(
                order_id=row.order_id,
                order_item_id=row.order_item_id,
                from_status=row.from_status,
                to_status=row.to_status,
                quantity=row.quantity,
                reason=row.reason,
                actor=row.actor,
                metadata=row.metadata_,
                created_at=row.created_at,
            )
            for row in result.scalars()
        ]


# ============================================================================
# Unit of Work
# ============================================================================


class SqlAlchemyUnitOfWork(UnitOfWork):
    """One database transaction; every lock is released at commit or rollback."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | async_sessionmaker[AsyncSession],
        lock_timeout_ms: int = 5000,
    ) -> None:
        self._session_factory = session_factory
        self.lock_timeout_ms = lock_timeout_ms
        self.session: AsyncSession | None = None
        self._committed = False

    @property
    def committed(self) -> bool:
        return self._committed

    async def begin(self) -> None:
        self.session = self._session_factory()
        self._committed = False
        await self.session.execute(
            text("SELECT set_config('lock_timeout', :timeout, true)"),
            {"timeout": f"{self.lock_timeout_ms}ms"},
        )
        self.orders = SqlAlchemyOrderRepository(self.session)
        self.products = SqlAlchemyProductStockLedger(self.session)
        self.customers = SqlAlchemyCustomerLedger(self.session)
        self.tiers = SqlAlchemyTierDirectory(self.session)
        self.coupons = SqlAlchemyCouponLedger(self.session)
        self.history = SqlAlchemyHistoryWriter(self.session)

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except DBAPIError as e:
            if _sqlstate(e) in LOCK_ERROR_CODES:
                raise LockTimeoutError("transaction", reason=str(e.orig)) from e
            raise
        self._committed = True
        await self.session.close()

    async def rollback(self) -> None:
        if self.session is None:
            return
        try:
            await self.session.rollback()
        finally:
            await self.session.close()


def sqlalchemy_unit_of_work_factory(
    session_factory: async_sessionmaker[AsyncSession],
    lock_timeout_ms: int,
) -> Callable[[], SqlAlchemyUnitOfWork]:
    """Build a factory that opens a fresh unit of work per call."""

    def factory() -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork(session_factory, lock_timeout_ms=lock_timeout_ms)

    return factory
