"""Create order core schema

Revision ID: 001_order_core
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

# revision identifiers
revision = '001_order_core'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=True),
    ]


def upgrade():
    """Create catalog, loyalty, inventory, cart and order tables"""

    # ====================
    # CATALOG
    # ====================
    op.create_table(
        'affiliate_levels',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('required_points', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()')),
    )

    op.create_table(
        'clients',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('user_id', sa.String(100), nullable=True),
        sa.Column('username', sa.String(100), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone_number', sa.String(30), nullable=True),
        sa.Column('country', sa.String(2), nullable=True),
        sa.Column('level_id', UUID(as_uuid=True),
                  sa.ForeignKey('affiliate_levels.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('organization_id', 'user_id', name='uq_clients_org_user'),
    )
    op.create_index('ix_clients_org_username', 'clients', ['organization_id', 'username'])

    op.create_table(
        'products',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('sku', sa.String(100), nullable=True),
        sa.Column('product_type', sa.String(20), nullable=False, server_default='simple'),
        sa.Column('regular_price', JSONB, nullable=True),
        sa.Column('sale_price', JSONB, nullable=True),
        sa.Column('cost', JSONB, nullable=True),
        sa.Column('manage_stock', sa.Boolean, server_default=sa.false()),
        sa.Column('allow_backorders', sa.Boolean, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_products_org_sku', 'products', ['organization_id', 'sku'])

    op.create_table(
        'product_variations',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('product_id', UUID(as_uuid=True),
                  sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('sku', sa.String(100), nullable=True),
        sa.Column('attributes', JSONB, nullable=True),
        sa.Column('regular_price', JSONB, nullable=True),
        sa.Column('sale_price', JSONB, nullable=True),
        sa.Column('cost', JSONB, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()')),
    )

    op.create_table(
        'affiliate_products',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('sku', sa.String(100), nullable=True),
        sa.Column('regular_points', JSONB, nullable=True),
        sa.Column('sale_points', JSONB, nullable=True),
        sa.Column('min_level_id', UUID(as_uuid=True),
                  sa.ForeignKey('affiliate_levels.id', ondelete='SET NULL'), nullable=True),
        sa.Column('manage_stock', sa.Boolean, server_default=sa.false()),
        sa.Column('allow_backorders', sa.Boolean, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()')),
    )

    # ====================
    # DROPSHIP MAPPINGS
    # ====================
    op.create_table(
        'shared_product_mappings',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('share_link_id', sa.String(100), nullable=True),
        sa.Column('source_product_id', UUID(as_uuid=True),
                  sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('target_product_id', UUID(as_uuid=True),
                  sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()')),
        sa.UniqueConstraint('source_product_id', 'target_product_id', name='uq_shared_product_edge'),
    )

    op.create_table(
        'shared_variation_mappings',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('source_product_id', UUID(as_uuid=True),
                  sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('target_product_id', UUID(as_uuid=True),
                  sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('source_variation_id', UUID(as_uuid=True),
                  sa.ForeignKey('product_variations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('target_variation_id', UUID(as_uuid=True),
                  sa.ForeignKey('product_variations.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()')),
    )

    # ====================
    # TIER PRICING
    # ====================
    op.create_table(
        'tier_pricings',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('countries', JSONB, server_default='[]'),
        sa.Column('pricing_type', sa.String(20), server_default='wholesale'),
        sa.Column('is_active', sa.Boolean, server_default=sa.true(), index=True),
        *_timestamps(),
    )

    op.create_table(
        'tier_pricing_products',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('tier_pricing_id', UUID(as_uuid=True),
                  sa.ForeignKey('tier_pricings.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('product_id', UUID(as_uuid=True), nullable=False),
        sa.Column('variation_id', UUID(as_uuid=True), nullable=True),
    )

    op.create_table(
        'tier_pricing_steps',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('tier_pricing_id', UUID(as_uuid=True),
                  sa.ForeignKey('tier_pricings.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('from_units', sa.Integer, nullable=False),
        sa.Column('to_units', sa.Integer, nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.CheckConstraint('from_units <= to_units', name='ck_tier_step_range'),
    )

    op.create_table(
        'tier_pricing_clients',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('tier_pricing_id', UUID(as_uuid=True),
                  sa.ForeignKey('tier_pricings.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('client_id', UUID(as_uuid=True),
                  sa.ForeignKey('clients.id', ondelete='CASCADE'), nullable=False),
    )

    # ====================
    # INVENTORY
    # ====================
    op.create_table(
        'warehouses',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('code', sa.String(20), nullable=True),
        sa.Column('countries', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()')),
    )

    op.create_table(
        'warehouse_stock',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), nullable=False),
        sa.Column('warehouse_id', UUID(as_uuid=True),
                  sa.ForeignKey('warehouses.id', ondelete='CASCADE'), nullable=True, index=True),
        sa.Column('product_id', UUID(as_uuid=True),
                  sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=True),
        sa.Column('affiliate_product_id', UUID(as_uuid=True),
                  sa.ForeignKey('affiliate_products.id', ondelete='CASCADE'), nullable=True),
        sa.Column('variation_id', UUID(as_uuid=True),
                  sa.ForeignKey('product_variations.id', ondelete='CASCADE'), nullable=True),
        sa.Column('country', sa.String(2), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False, server_default='0'),
        *_timestamps(),
    )
    op.create_index('ix_warehouse_stock_lookup', 'warehouse_stock',
                    ['organization_id', 'product_id', 'country'])
    op.create_index('ix_warehouse_stock_affiliate', 'warehouse_stock',
                    ['organization_id', 'affiliate_product_id', 'country'])

    # ====================
    # AFFILIATE POINTS LEDGER
    # ====================
    op.create_table(
        'affiliate_point_balances',
        sa.Column('client_id', UUID(as_uuid=True),
                  sa.ForeignKey('clients.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), primary_key=True),
        sa.Column('points_current', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('points_spent', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()')),
    )

    op.create_table(
        'affiliate_point_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('client_id', UUID(as_uuid=True),
                  sa.ForeignKey('clients.id', ondelete='CASCADE'), nullable=False),
        sa.Column('points', sa.Numeric(12, 2), nullable=False),
        sa.Column('action', sa.String(50), nullable=False, index=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('source_client_id', UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), index=True),
    )
    op.create_index('ix_point_logs_client_org', 'affiliate_point_logs', ['client_id', 'organization_id'])

    # ====================
    # CARTS & ORDERS
    # ====================
    op.create_table(
        'carts',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('client_id', UUID(as_uuid=True),
                  sa.ForeignKey('clients.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('country', sa.String(2), nullable=False),
        sa.Column('channel', sa.String(20), server_default='store'),
        sa.Column('status', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('cart_hash', sa.String(64), nullable=True),
        sa.Column('cart_updated_hash', sa.String(64), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'cart_products',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('cart_id', UUID(as_uuid=True),
                  sa.ForeignKey('carts.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('product_id', UUID(as_uuid=True),
                  sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=True),
        sa.Column('affiliate_product_id', UUID(as_uuid=True),
                  sa.ForeignKey('affiliate_products.id', ondelete='CASCADE'), nullable=True),
        sa.Column('variation_id', UUID(as_uuid=True),
                  sa.ForeignKey('product_variations.id', ondelete='CASCADE'), nullable=True),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()')),
        sa.CheckConstraint('(product_id IS NULL) <> (affiliate_product_id IS NULL)', name='ck_cart_line_catalog'),
        sa.CheckConstraint('quantity > 0', name='ck_cart_line_quantity'),
    )

    op.create_table(
        'order_sequences',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column('current_number', sa.Integer, nullable=False, server_default='0'),
        *_timestamps(),
    )

    op.create_table(
        'orders',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('order_key', sa.Integer, nullable=False),
        sa.Column('client_id', UUID(as_uuid=True),
                  sa.ForeignKey('clients.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('cart_id', UUID(as_uuid=True),
                  sa.ForeignKey('carts.id', ondelete='RESTRICT'), nullable=False, unique=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='open'),
        sa.Column('country', sa.String(2), nullable=False),
        sa.Column('cart_hash', sa.String(64), nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), server_default='0'),
        sa.Column('shipping_total', sa.Numeric(12, 2), server_default='0'),
        sa.Column('discount_total', sa.Numeric(12, 2), server_default='0'),
        sa.Column('total_amount', sa.Numeric(12, 2), server_default='0'),
        sa.Column('points_redeemed', sa.Numeric(12, 2), server_default='0'),
        sa.Column('coupon_code', sa.String(50), nullable=True),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.Column('shipping_service', sa.String(100), nullable=True),
        sa.Column('shipping_method', sa.String(255), nullable=True),
        sa.Column('address', sa.Text, nullable=True),
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('order_meta', JSONB, server_default='[]'),
        sa.Column('notified_paid_or_completed', sa.Boolean, server_default=sa.false()),
        sa.Column('parent_order_id', UUID(as_uuid=True),
                  sa.ForeignKey('orders.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('root_order_id', UUID(as_uuid=True), nullable=True, index=True),
        sa.Column('fanout_status', sa.String(20), nullable=False, server_default='none'),
        sa.Column('fanout_error', sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('organization_id', 'order_key', name='uq_orders_org_key'),
    )
    op.create_index('ix_orders_org_status', 'orders', ['organization_id', 'status'])


def downgrade():
    """Drop all order core tables"""
    op.drop_index('ix_orders_org_status', table_name='orders')
    op.drop_table('orders')
    op.drop_table('order_sequences')
    op.drop_table('cart_products')
    op.drop_table('carts')
    op.drop_index('ix_point_logs_client_org', table_name='affiliate_point_logs')
    op.drop_table('affiliate_point_logs')
    op.drop_table('affiliate_point_balances')
    op.drop_index('ix_warehouse_stock_affiliate', table_name='warehouse_stock')
    op.drop_index('ix_warehouse_stock_lookup', table_name='warehouse_stock')
    op.drop_table('warehouse_stock')
    op.drop_table('warehouses')
    op.drop_table('tier_pricing_clients')
    op.drop_table('tier_pricing_steps')
    op.drop_table('tier_pricing_products')
    op.drop_table('tier_pricings')
    op.drop_table('shared_variation_mappings')
    op.drop_table('shared_product_mappings')
    op.drop_table('affiliate_products')
    op.drop_table('product_variations')
    op.drop_index('ix_products_org_sku', table_name='products')
    op.drop_table('products')
    op.drop_index('ix_clients_org_username', table_name='clients')
    op.drop_table('clients')
    op.drop_table('affiliate_levels')
