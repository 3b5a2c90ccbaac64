"""Create orders, order_items, order_history and user_coupons tables.

Revision ID: 003
Revises: 002
Create Date: 2026-10-02

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '003'
down_revision: Union[str, None] = '002'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create order tables."""
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('order_number', sa.String(50), nullable=False, unique=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING', index=True),
        # Totals
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('final_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('shipping_fee', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('used_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('earned_points', sa.Integer(), nullable=False, server_default='0'),
        # Compensation running totals
        sa.Column('refunded_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('refunded_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reclaimed_earned_points', sa.Integer(), nullable=False, server_default='0'),
        # Timestamps
        sa.Column('ordered_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('final_amount >= 0', name='ck_orders_final_amount_non_negative'),
        sa.CheckConstraint('refunded_amount <= final_amount', name='ck_orders_refund_within_paid'),
    )

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'order_id',
            sa.Integer(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
            index=True,
        ),
        sa.Column('product_id', sa.Integer(), nullable=False, index=True),
        sa.Column('product_name', sa.String(500), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('remaining_quantity', sa.Integer(), nullable=False),
        sa.Column('cancelled_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('returned_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cancelled_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('returned_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='NORMAL', index=True),
        sa.Column('return_reason', sa.String(30), nullable=True),
        sa.Column('reject_reason', sa.Text(), nullable=True),
        sa.Column('pending_return_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('return_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('returned_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            'quantity = remaining_quantity + cancelled_quantity + returned_quantity',
            name='ck_order_items_quantity_balance',
        ),
        sa.CheckConstraint(
            'pending_return_quantity >= 0 AND pending_return_quantity <= remaining_quantity',
            name='ck_order_items_pending_within_remaining',
        ),
    )

    op.create_table(
        'order_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'order_id',
            sa.Integer(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
            index=True,
        ),
        sa.Column('order_item_id', sa.Integer(), sa.ForeignKey('order_items.id'), nullable=True),
        sa.Column('from_status', sa.String(20), nullable=True),
        sa.Column('to_status', sa.String(20), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('actor', sa.String(100), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'user_coupons',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'user_id',
            sa.Integer(),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
            index=True,
        ),
        sa.Column('coupon_id', sa.Integer(), sa.ForeignKey('coupons.id'), nullable=False),
        sa.Column('is_used', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True, index=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            'is_used = false OR (used_at IS NOT NULL AND order_id IS NOT NULL)',
            name='ck_user_coupons_used_has_order',
        ),
    )

    # Pending return queue is read oldest first
    op.create_index(
        'ix_order_items_pending_returns',
        'order_items',
        ['return_requested_at', 'id'],
        postgresql_where=sa.text("status = 'RETURN_REQUESTED'"),
    )


def downgrade() -> None:
    """Drop order tables."""
    op.drop_index('ix_order_items_pending_returns', table_name='order_items')
    op.drop_table('user_coupons')
    op.drop_table('order_history')
    op.drop_table('order_items')
    op.drop_table('orders')
