"""customers, products, orders, line items and stock movements

Revision ID: 0001_init
Revises:
Create Date: 2025-01-06

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('role', sa.String(20), nullable=False),
    )
    op.create_index('ix_customers_email', 'customers', ['email'], unique=True)

    op.create_table(
        'products',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('sku', sa.String(50), nullable=True, unique=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('category', sa.String(100), nullable=False),
        sa.Column('weight', sa.String(30), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('image_url', sa.JSON, nullable=True),
        sa.Column('stock_quantity', sa.Integer, nullable=True),
        sa.Column('in_stock', sa.Boolean, nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_products_stock_non_negative'),
    )
    op.create_index('ix_products_is_active', 'products', ['is_active'])

    op.create_table(
        'customer_orders',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('order_number', sa.String(32), nullable=False),
        sa.Column('customer_id', sa.Integer, sa.ForeignKey('customers.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False),
        sa.Column('shipping_cost', sa.Numeric(10, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('payment_status', sa.String(20), nullable=False),
        sa.Column('shipping_first_name', sa.String(100), nullable=False),
        sa.Column('shipping_last_name', sa.String(100), nullable=False),
        sa.Column('shipping_address', sa.Text, nullable=False),
        sa.Column('shipping_city', sa.String(100), nullable=False),
        sa.Column('shipping_state', sa.String(100), nullable=False),
        sa.Column('shipping_postal_code', sa.String(20), nullable=False),
        sa.Column('shipping_country', sa.String(100), nullable=False),
        sa.Column('contact_email', sa.String(255), nullable=False),
        sa.Column('contact_phone', sa.String(20), nullable=False),
        sa.Column('order_notes', sa.Text, nullable=True),
        sa.Column('carrier', sa.String(50), nullable=True),
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('estimated_delivery', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_customer_orders_order_number', 'customer_orders', ['order_number'], unique=True)
    op.create_index('ix_customer_orders_customer_id', 'customer_orders', ['customer_id'])
    op.create_index('ix_customer_orders_status', 'customer_orders', ['status'])
    op.create_index('ix_customer_orders_payment_status', 'customer_orders', ['payment_status'])
    op.create_index('ix_customer_orders_tracking_number', 'customer_orders', ['tracking_number'])
    op.create_index('ix_customer_orders_created_at', 'customer_orders', ['created_at'])

    op.create_table(
        'order_line_items',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('order_id', sa.Uuid, sa.ForeignKey('customer_orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer, nullable=False),
        sa.Column('product_id', sa.Integer, sa.ForeignKey('products.id', ondelete='SET NULL'), nullable=True),
        sa.Column('product_name', sa.String(200), nullable=False),
        sa.Column('product_description', sa.Text, nullable=True),
        sa.Column('category', sa.String(100), nullable=False),
        sa.Column('weight', sa.String(30), nullable=False),
        sa.Column('image_url', sa.JSON, nullable=True),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(10, 2), nullable=False),
        sa.CheckConstraint('quantity >= 1', name='ck_line_items_quantity_positive'),
        sa.CheckConstraint('unit_price >= 0', name='ck_line_items_unit_price_non_negative'),
    )
    op.create_index('ix_order_line_items_order_id', 'order_line_items', ['order_id'])
    op.create_index('ix_order_line_items_product_id', 'order_line_items', ['product_id'])

    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('product_id', sa.Integer, sa.ForeignKey('products.id'), nullable=False),
        sa.Column('product_name', sa.String(200), nullable=False),
        sa.Column('movement_type', sa.String(20), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('previous_stock', sa.Integer, nullable=False),
        sa.Column('new_stock', sa.Integer, nullable=False),
        sa.Column('reason', sa.String(255), nullable=False),
        sa.Column('reference_id', sa.String(64), nullable=True),
        sa.Column('user_id', sa.Integer, nullable=True),
        sa.Column('user_name', sa.String(200), nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('is_automated', sa.Boolean, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('new_stock = previous_stock + quantity', name='ck_stock_movements_balanced'),
        sa.CheckConstraint('new_stock >= 0', name='ck_stock_movements_non_negative'),
    )
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movements_reference_id', 'stock_movements', ['reference_id'])
    op.create_index('ix_stock_movements_user_id', 'stock_movements', ['user_id'])
    op.create_index('ix_stock_movements_created_at', 'stock_movements', ['created_at'])
    op.create_index('ix_stock_movements_product_created', 'stock_movements', ['product_id', 'created_at'])


def downgrade() -> None:
    op.drop_table('stock_movements')
    op.drop_table('order_line_items')
    op.drop_table('customer_orders')
    op.drop_table('products')
    op.drop_table('customers')
