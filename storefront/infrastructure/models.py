"""SQLAlchemy models for database tables.

Provides ORM models for users and tiers, products and their inventory
history, coupons, orders with their line items and history, and point
history.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from storefront.infrastructure.database import Base


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Customer Models
# ============================================================================


class UserTierModel(Base):
    """Membership tier reached at a cumulative spend threshold."""

    __tablename__ = "user_tiers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False, unique=True)
    level = Column(Integer, nullable=False, unique=True)
    min_spent = Column(Numeric(12, 2), nullable=False, default=0)


class UserModel(Base):
    """User account with its loyalty ledger (points, spend, tier)."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("point_balance >= 0", name="ck_users_point_balance_non_negative"),
        CheckConstraint("total_spent >= 0", name="ck_users_total_spent_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    tier_id = Column(Integer, ForeignKey("user_tiers.id"), nullable=True)
    total_spent = Column(Numeric(12, 2), nullable=False, default=0)
    point_balance = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    tier = relationship("UserTierModel")


class PointHistoryModel(Base):
    """Append-only point balance adjustments."""

    __tablename__ = "point_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    change_type = Column(String(20), nullable=False)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    reference_type = Column(String(30), nullable=True)
    reference_id = Column(Integer, nullable=True)
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)


# ============================================================================
# Product Models
# ============================================================================


class ProductModel(Base):
    """Product with its inventory counters."""

    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("sales_count >= 0", name="ck_products_sales_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(500), nullable=False)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    stock_quantity = Column(Integer, nullable=False, default=0)
    sales_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)


class ProductInventoryHistoryModel(Base):
    """Append-only stock movements."""

    __tablename__ = "product_inventory_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    change_type = Column(String(10), nullable=False)
    change_amount = Column(Integer, nullable=False)
    before_quantity = Column(Integer, nullable=False)
    after_quantity = Column(Integer, nullable=False)
    reason = Column(String(30), nullable=False)
    reference_id = Column(Integer, nullable=True, index=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)


# ============================================================================
# Coupon Models
# ============================================================================


class CouponModel(Base):
    """Coupon definition with its usage counter."""

    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint("usage_count >= 0", name="ck_coupons_usage_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), nullable=False, unique=True)
    name = Column(String(255), nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)


class UserCouponModel(Base):
    """A coupon issued to a user; ``order_id`` is set while an order holds it."""

    __tablename__ = "user_coupons"
    __table_args__ = (
        CheckConstraint(
            "is_used = false OR (used_at IS NOT NULL AND order_id IS NOT NULL)",
            name="ck_user_coupons_used_has_order",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=False)
    is_used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)


# ============================================================================
# Order Models
# ============================================================================


class OrderModel(Base):
    """Order model for database persistence.

    Amounts are the checkout snapshot; the ``refunded_*`` and
    ``reclaimed_*`` columns are running totals of compensations.
    """

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("final_amount >= 0", name="ck_orders_final_amount_non_negative"),
        CheckConstraint("refunded_amount <= final_amount", name="ck_orders_refund_within_paid"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    order_number = Column(String(50), nullable=False, unique=True)
    status = Column(String(20), nullable=False, default="PENDING", index=True)

    # Totals
    total_amount = Column(Numeric(12, 2), nullable=False)
    final_amount = Column(Numeric(12, 2), nullable=False)
    shipping_fee = Column(Numeric(12, 2), nullable=False, default=0)
    used_points = Column(Integer, nullable=False, default=0)
    earned_points = Column(Integer, nullable=False, default=0)

    # Compensation running totals
    refunded_amount = Column(Numeric(12, 2), nullable=False, default=0)
    refunded_points = Column(Integer, nullable=False, default=0)
    reclaimed_earned_points = Column(Integer, nullable=False, default=0)

    # Timestamps
    ordered_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    # Relationships
    items = relationship(
        "OrderItemModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.id",
    )
    history = relationship(
        "OrderHistoryModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderHistoryModel.id",
    )
    user = relationship("UserModel")


class OrderItemModel(Base):
    """Order line item.

    ``product_id`` carries no foreign key: products can be deleted while
    orders keep their name and price snapshot.
    """

    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint(
            "quantity = remaining_quantity + cancelled_quantity + returned_quantity",
            name="ck_order_items_quantity_balance",
        ),
        CheckConstraint(
            "pending_return_quantity >= 0 AND pending_return_quantity <= remaining_quantity",
            name="ck_order_items_pending_within_remaining",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = Column(Integer, nullable=False, index=True)
    product_name = Column(String(500), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    remaining_quantity = Column(Integer, nullable=False)
    cancelled_quantity = Column(Integer, nullable=False, default=0)
    returned_quantity = Column(Integer, nullable=False, default=0)
    cancelled_amount = Column(Numeric(12, 2), nullable=False, default=0)
    returned_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="NORMAL", index=True)
    return_reason = Column(String(30), nullable=True)
    reject_reason = Column(Text, nullable=True)
    pending_return_quantity = Column(Integer, nullable=False, default=0)
    return_requested_at = Column(DateTime(timezone=True), nullable=True)
    returned_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    order = relationship("OrderModel", back_populates="items")


class OrderHistoryModel(Base):
    """Order history model for audit trail.

    Tracks every order and order item transition.
    """

    __tablename__ = "order_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    order_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=True)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    reason = Column(Text, nullable=True)
    actor = Column(String(100), nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSONB, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    # Relationships
    order = relationship("OrderModel", back_populates="history")
