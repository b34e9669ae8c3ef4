"""
Alembic migration: Create users, catalog, promo code and order tables.

Creates the tables the order engine reads and writes: users, products,
promo_codes, orders, order_items and order_status_history, with the unique
and check constraints that back its concurrency guarantees.

Revision ID: 001
Revises:
Create Date: 2024-03-01 10:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        'id',
        postgresql.UUID(as_uuid=True),
        nullable=False,
        server_default=sa.text('gen_random_uuid()'),
        comment='Unique identifier for the record',
    )


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text('CURRENT_TIMESTAMP'),
        ),
        sa.Column(
            'updated_at',
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text('CURRENT_TIMESTAMP'),
        ),
        sa.Column('deleted_at', sa.TIMESTAMP(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Create order engine tables."""
    op.create_table(
        'users',
        _id_column(),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('role', sa.String(length=11), nullable=False, server_default='customer'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_blocked', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        comment='Storefront user accounts',
    )
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'products',
        _id_column(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=True),
        sa.Column('actual_price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('discounted_price', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_in_stock', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('track_inventory', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('weight', sa.Numeric(precision=10, scale=3), nullable=False, server_default='0'),
        sa.Column('is_blocked', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_products'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        sa.CheckConstraint('actual_price >= 0', name='ck_products_actual_price_non_negative'),
        sa.CheckConstraint(
            'discounted_price IS NULL OR discounted_price >= 0',
            name='ck_products_discounted_price_non_negative',
        ),
        sa.CheckConstraint('weight >= 0', name='ck_products_weight_non_negative'),
        comment='Sellable products',
    )
    op.create_index('ix_products_is_in_stock', 'products', ['is_in_stock'])

    op.create_table(
        'promo_codes',
        _id_column(),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('discount_type', sa.String(length=10), nullable=False),
        sa.Column('discount_value', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('max_discount_amount', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column(
            'min_purchase_amount',
            sa.Numeric(precision=10, scale=2),
            nullable=False,
            server_default='0',
        ),
        sa.Column('start_date', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('end_date', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_promo_codes'),
        sa.UniqueConstraint('code', name='uq_promo_codes_code'),
        sa.CheckConstraint('discount_value > 0', name='ck_promo_codes_discount_value_positive'),
        sa.CheckConstraint(
            'min_purchase_amount >= 0', name='ck_promo_codes_min_purchase_non_negative'
        ),
        sa.CheckConstraint(
            'max_discount_amount IS NULL OR max_discount_amount > 0',
            name='ck_promo_codes_max_discount_positive',
        ),
        sa.CheckConstraint(
            'usage_limit IS NULL OR usage_limit > 0', name='ck_promo_codes_usage_limit_positive'
        ),
        sa.CheckConstraint('usage_count >= 0', name='ck_promo_codes_usage_count_non_negative'),
        sa.CheckConstraint('end_date > start_date', name='ck_promo_codes_valid_date_range'),
        comment='Promo codes for order discounts',
    )
    op.create_index(
        'ix_promo_codes_active_window',
        'promo_codes',
        ['is_active', 'start_date', 'end_date'],
    )

    op.create_table(
        'orders',
        _id_column(),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('buyer_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('subtotal', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('shipping_charge', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('tax_rate_percent', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('final_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('promo_code_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('promo_code_snapshot', postgresql.JSONB(), nullable=True),
        sa.Column('status', sa.String(length=10), nullable=False),
        sa.Column('payment_method', sa.String(length=11), nullable=False),
        sa.Column('payment_status', sa.String(length=18), nullable=False),
        sa.Column(
            'payment_details',
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column('refund_status', sa.String(length=9), nullable=True),
        sa.Column('shipping_address', postgresql.JSONB(), nullable=False),
        sa.Column('delivery_notes', sa.String(length=500), nullable=True),
        sa.Column('gift_wrap', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('estimated_delivery', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('tracking_info', postgresql.JSONB(), nullable=True),
        sa.Column('delivered_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('returned_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('return_reason', sa.String(length=500), nullable=True),
        sa.Column('refunded_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('cancel_details', postgresql.JSONB(), nullable=True),
        sa.Column('refund_details', postgresql.JSONB(), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
        sa.ForeignKeyConstraint(
            ['buyer_id'], ['users.id'], name='fk_orders_buyer_id', ondelete='RESTRICT'
        ),
        sa.ForeignKeyConstraint(
            ['promo_code_id'],
            ['promo_codes.id'],
            name='fk_orders_promo_code_id',
            ondelete='SET NULL',
        ),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        sa.CheckConstraint('subtotal >= 0', name='ck_orders_subtotal_non_negative'),
        sa.CheckConstraint(
            'shipping_charge >= 0', name='ck_orders_shipping_charge_non_negative'
        ),
        sa.CheckConstraint('tax_amount >= 0', name='ck_orders_tax_amount_non_negative'),
        sa.CheckConstraint(
            'discount_amount >= 0 AND discount_amount <= subtotal',
            name='ck_orders_discount_amount_valid',
        ),
        sa.CheckConstraint('final_amount >= 0', name='ck_orders_final_amount_non_negative'),
        comment='Customer orders',
    )
    op.create_index('ix_orders_buyer_created', 'orders', ['buyer_id', 'created_at'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])

    op.create_table(
        'order_items',
        _id_column(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name_snapshot', sa.String(length=255), nullable=False),
        sa.Column('sku_snapshot', sa.String(length=100), nullable=True),
        sa.Column('unit_price_snapshot', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column(
            'weight_snapshot',
            sa.Numeric(precision=10, scale=3),
            nullable=False,
            server_default='0',
        ),
        sa.Column('line_subtotal', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('track_inventory', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('inventory_reserved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint('id', name='pk_order_items'),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'], name='fk_order_items_order_id', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['product_id'],
            ['products.id'],
            name='fk_order_items_product_id',
            ondelete='RESTRICT',
        ),
        sa.UniqueConstraint('order_id', 'position', name='uq_order_items_position'),
        sa.CheckConstraint('quantity >= 1', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint(
            'unit_price_snapshot >= 0', name='ck_order_items_unit_price_non_negative'
        ),
        comment='Order line items with catalog snapshots',
    )
    op.create_index('ix_order_items_product', 'order_items', ['product_id'])

    op.create_table(
        'order_status_history',
        _id_column(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=10), nullable=False),
        sa.Column('note', sa.String(length=500), nullable=True),
        sa.Column('changed_by', sa.String(length=64), nullable=True),
        sa.Column(
            'created_at',
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text('CURRENT_TIMESTAMP'),
        ),
        sa.PrimaryKeyConstraint('id', name='pk_order_status_history'),
        sa.ForeignKeyConstraint(
            ['order_id'],
            ['orders.id'],
            name='fk_order_status_history_order_id',
            ondelete='CASCADE',
        ),
        sa.UniqueConstraint('order_id', 'sequence', name='uq_order_status_history_sequence'),
        comment='Order status change history for audit trail',
    )


def downgrade() -> None:
    """Drop order engine tables in reverse dependency order."""
    op.drop_table('order_status_history')
    op.drop_index('ix_order_items_product', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_payment_status', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_buyer_created', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_promo_codes_active_window', table_name='promo_codes')
    op.drop_table('promo_codes')
    op.drop_index('ix_products_is_in_stock', table_name='products')
    op.drop_table('products')
    op.drop_index('ix_users_role', table_name='users')
    op.drop_table('users')
