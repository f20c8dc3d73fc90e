"""storefront core schema

Revision ID: 5a1f0e7c2b94
Revises: 
Create Date: 2026-10-18 21:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '5a1f0e7c2b94'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, nullable=False, server_default=sa.text('gen_random_uuid()'))


def _audit() -> list[sa.Column]:
    return [
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_date', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('updated_date', sa.TIMESTAMP(timezone=True), nullable=True),
    ]


def _tenant_fk() -> sa.Column:
    return sa.Column('tenant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tbl_tenants.id', ondelete='CASCADE'), nullable=False)


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        'tbl_price_plans',
        _id(),
        sa.Column('code', sa.String(), nullable=False, unique=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False, server_default=sa.text('0')),
        sa.Column('duration_months', sa.Integer(), nullable=False, server_default=sa.text('1')),
        sa.Column('trial_days', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('features', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        *_audit(),
    )

    op.create_table(
        'tbl_tenants',
        _id(),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('slug', sa.Text(), nullable=False, unique=True),
        sa.Column('plan_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tbl_price_plans.id', ondelete='SET NULL'), nullable=True),
        sa.Column('plan_expires_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('data', sa.Text(), nullable=True),
        *_audit(),
    )

    op.create_table(
        'tbl_products',
        _id(),
        _tenant_fk(),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('slug', sa.Text(), nullable=False),
        sa.Column('sku', sa.String(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('sale_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('status', sa.String(length=8), nullable=False, server_default=sa.text("'draft'")),
        *_audit(),
        sa.UniqueConstraint('tenant_id', 'slug', name='uq_products_tenant_slug'),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_products_stock_non_negative'),
        sa.CheckConstraint('sale_price IS NULL OR sale_price < price', name='ck_products_sale_below_price'),
    )
    op.create_index('ix_products_tenant_status', 'tbl_products', ['tenant_id', 'status'])

    op.create_table(
        'tbl_product_variants',
        _id(),
        _tenant_fk(),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tbl_products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('sku', sa.String(), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=True),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default=sa.text('0')),
        *_audit(),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_variants_stock_non_negative'),
    )
    op.create_index('ix_variants_product', 'tbl_product_variants', ['product_id'])

    op.create_table(
        'tbl_coupons',
        _id(),
        _tenant_fk(),
        sa.Column('code', sa.String(), nullable=False),
        sa.Column('discount_type', sa.String(length=10), nullable=False),
        sa.Column('value', sa.Numeric(12, 2), nullable=False),
        sa.Column('min_order_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('starts_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('used_count', sa.Integer(), nullable=False, server_default=sa.text('0')),
        *_audit(),
        sa.UniqueConstraint('tenant_id', 'code', name='uq_coupons_tenant_code'),
        sa.CheckConstraint('value > 0', name='ck_coupons_value_positive'),
    )

    op.create_table(
        'tbl_orders',
        _id(),
        _tenant_fk(),
        sa.Column('order_number', sa.String(), nullable=False),
        sa.Column('status', sa.String(length=10), nullable=False, server_default=sa.text("'pending'")),
        sa.Column('payment_status', sa.String(length=8), nullable=False, server_default=sa.text("'pending'")),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('payment_reference', sa.String(), nullable=True),
        sa.Column('transaction_id', sa.String(), nullable=True),
        sa.Column('customer_name', sa.Text(), nullable=False),
        sa.Column('customer_email', sa.Text(), nullable=False),
        sa.Column('customer_phone', sa.Text(), nullable=True),
        sa.Column('shipping_address', sa.Text(), nullable=False),
        sa.Column('billing_address', sa.Text(), nullable=False),
        sa.Column('subtotal_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False, server_default=sa.text('0')),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('coupon_code', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('tracking_number', sa.String(), nullable=True),
        sa.Column('shipping_carrier', sa.String(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('stock_released', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('refund_requested_at', sa.TIMESTAMP(timezone=True), nullable=True),
        *_audit(),
        sa.UniqueConstraint('tenant_id', 'order_number', name='uq_orders_tenant_number'),
        sa.CheckConstraint(
            "payment_status <> 'refunded' OR status IN ('cancelled', 'refunded')",
            name='ck_orders_refund_requires_cancel',
        ),
    )
    op.create_index('ix_orders_tenant_status', 'tbl_orders', ['tenant_id', 'status'])
    op.create_index('ix_orders_status_payment_created', 'tbl_orders', ['status', 'payment_status', 'created_date'])

    op.create_table(
        'tbl_order_items',
        _id(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tbl_orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tbl_products.id', ondelete='SET NULL'), nullable=True),
        sa.Column('variant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tbl_product_variants.id', ondelete='SET NULL'), nullable=True),
        sa.Column('product_name', sa.Text(), nullable=False),
        sa.Column('sku', sa.String(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(12, 2), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
    )
    op.create_index('ix_order_items_order', 'tbl_order_items', ['order_id', 'position'])

    op.create_table(
        'tbl_order_events',
        _id(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tbl_orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('from_status', sa.String(), nullable=True),
        sa.Column('to_status', sa.String(), nullable=True),
        sa.Column('from_payment_status', sa.String(), nullable=True),
        sa.Column('to_payment_status', sa.String(), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('metadata', sa.Text(), nullable=True),
        *_audit(),
    )
    op.create_index('ix_order_events_order', 'tbl_order_events', ['order_id', 'created_date'])

    op.create_table(
        'tbl_inventory_history',
        _id(),
        _tenant_fk(),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tbl_products.id', ondelete='SET NULL'), nullable=True),
        sa.Column('variant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tbl_product_variants.id', ondelete='SET NULL'), nullable=True),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tbl_orders.id', ondelete='SET NULL'), nullable=True),
        sa.Column('adjustment_type', sa.String(length=8), nullable=False),
        sa.Column('quantity_before', sa.Integer(), nullable=False),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('quantity_change', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_audit(),
    )
    op.create_index('ix_inventory_history_product', 'tbl_inventory_history', ['tenant_id', 'product_id', 'created_date'])

    for table in ('tbl_pages', 'tbl_blogs'):
        op.create_table(
            table,
            _id(),
            _tenant_fk(),
            sa.Column('title', sa.Text(), nullable=False),
            sa.Column('slug', sa.Text(), nullable=False),
            *_audit(),
        )
        op.create_index(f'ix_{table}_tenant_id', table, ['tenant_id'])

    op.create_table(
        'tbl_staff_members',
        _id(),
        _tenant_fk(),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('role', sa.String(), nullable=False, server_default=sa.text("'staff'")),
        *_audit(),
        sa.UniqueConstraint('tenant_id', 'email', name='uq_staff_tenant_email'),
    )

    op.create_table(
        'tbl_customers',
        _id(),
        _tenant_fk(),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        *_audit(),
        sa.UniqueConstraint('tenant_id', 'email', name='uq_customers_tenant_email'),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('tbl_customers')
    op.drop_table('tbl_staff_members')
    for table in ('tbl_blogs', 'tbl_pages'):
        op.drop_index(f'ix_{table}_tenant_id', table_name=table)
        op.drop_table(table)
    op.drop_index('ix_inventory_history_product', table_name='tbl_inventory_history')
    op.drop_table('tbl_inventory_history')
    op.drop_index('ix_order_events_order', table_name='tbl_order_events')
    op.drop_table('tbl_order_events')
    op.drop_index('ix_order_items_order', table_name='tbl_order_items')
    op.drop_table('tbl_order_items')
    op.drop_index('ix_orders_status_payment_created', table_name='tbl_orders')
    op.drop_index('ix_orders_tenant_status', table_name='tbl_orders')
    op.drop_table('tbl_orders')
    op.drop_table('tbl_coupons')
    op.drop_index('ix_variants_product', table_name='tbl_product_variants')
    op.drop_table('tbl_product_variants')
    op.drop_index('ix_products_tenant_status', table_name='tbl_products')
    op.drop_table('tbl_products')
    op.drop_table('tbl_tenants')
    op.drop_table('tbl_price_plans')
