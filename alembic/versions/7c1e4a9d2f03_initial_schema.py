"""initial schema

Revision ID: 7c1e4a9d2f03
Revises:
Create Date: 2026-10-19 09:12:44.518203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7c1e4a9d2f03'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ORDER_STATUSES = ('pending', 'confirmed', 'preparing', 'ready', 'picked_up', 'delivered', 'cancelled')
PAYMENT_STATUSES = ('pending', 'completed', 'failed')
PAYMENT_METHODS = ('card', 'cash')
TRACKING_PHASES = ('awaiting_agent', 'agent_assigned', 'restaurant_to_customer', 'delivered', 'cancelled')


def _enum(name, values):
    return sa.Enum(*values, name=name, native_enum=False, length=32)


def upgrade() -> None:
    """Upgrade schema."""
    # Check if tables already exist (for databases created by create_all)
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if 'restaurants' not in existing_tables:
        op.create_table('restaurants',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('owner_id', sa.String(), nullable=False),
            sa.Column('name', sa.String(), nullable=False),
            sa.Column('phone', sa.String(), nullable=True),
            sa.Column('address', sa.String(), nullable=True),
            sa.Column('latitude', sa.Float(), nullable=True),
            sa.Column('longitude', sa.Float(), nullable=True),
            sa.Column('delivery_fee', sa.Numeric(10, 2), nullable=False),
            sa.Column('requires_prepayment', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_restaurants_id'), 'restaurants', ['id'], unique=False)
        op.create_index(op.f('ix_restaurants_owner_id'), 'restaurants', ['owner_id'], unique=False)

    if 'addresses' not in existing_tables:
        op.create_table('addresses',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.String(), nullable=False),
            sa.Column('street', sa.String(), nullable=True),
            sa.Column('city', sa.String(), nullable=True),
            sa.Column('postal_code', sa.String(), nullable=True),
            sa.Column('latitude', sa.Float(), nullable=True),
            sa.Column('longitude', sa.Float(), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_addresses_id'), 'addresses', ['id'], unique=False)
        op.create_index(op.f('ix_addresses_user_id'), 'addresses', ['user_id'], unique=False)

    if 'menu_items' not in existing_tables:
        op.create_table('menu_items',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('restaurant_id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(), nullable=False),
            sa.Column('price', sa.Numeric(10, 2), nullable=False),
            sa.Column('preparation_time', sa.Integer(), nullable=True),
            sa.Column('is_available', sa.Boolean(), nullable=False),
            sa.ForeignKeyConstraint(['restaurant_id'], ['restaurants.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_menu_items_id'), 'menu_items', ['id'], unique=False)
        op.create_index(op.f('ix_menu_items_restaurant_id'), 'menu_items', ['restaurant_id'], unique=False)

    if 'ingredients' not in existing_tables:
        op.create_table('ingredients',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('name')
        )
        op.create_index(op.f('ix_ingredients_id'), 'ingredients', ['id'], unique=False)

    if 'carts' not in existing_tables:
        op.create_table('carts',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.String(), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_carts_id'), 'carts', ['id'], unique=False)
        op.create_index(op.f('ix_carts_user_id'), 'carts', ['user_id'], unique=True)

    if 'cart_items' not in existing_tables:
        op.create_table('cart_items',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('cart_id', sa.Integer(), nullable=False),
            sa.Column('menu_item_id', sa.Integer(), nullable=False),
            sa.Column('quantity', sa.Integer(), nullable=False),
            sa.Column('special_instructions', sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(['cart_id'], ['carts.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['menu_item_id'], ['menu_items.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_cart_items_id'), 'cart_items', ['id'], unique=False)
        op.create_index(op.f('ix_cart_items_cart_id'), 'cart_items', ['cart_id'], unique=False)

    if 'cart_item_exclusions' not in existing_tables:
        op.create_table('cart_item_exclusions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('cart_item_id', sa.Integer(), nullable=False),
            sa.Column('ingredient_id', sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(['cart_item_id'], ['cart_items.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['ingredient_id'], ['ingredients.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_cart_item_exclusions_id'), 'cart_item_exclusions', ['id'], unique=False)
        op.create_index(op.f('ix_cart_item_exclusions_cart_item_id'), 'cart_item_exclusions', ['cart_item_id'], unique=False)

    if 'orders' not in existing_tables:
        op.create_table('orders',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('order_number', sa.String(), nullable=False),
            sa.Column('customer_id', sa.String(), nullable=False),
            sa.Column('restaurant_id', sa.Integer(), nullable=False),
            sa.Column('delivery_address_id', sa.Integer(), nullable=False),
            sa.Column('delivery_agent_id', sa.String(), nullable=True),
            sa.Column('status', _enum('orderstatus', ORDER_STATUSES), nullable=False),
            sa.Column('subtotal', sa.Numeric(10, 2), nullable=False),
            sa.Column('tax', sa.Numeric(10, 2), nullable=False),
            sa.Column('delivery_fee', sa.Numeric(10, 2), nullable=False),
            sa.Column('total', sa.Numeric(10, 2), nullable=False),
            sa.Column('payment_method', _enum('paymentmethod', PAYMENT_METHODS), nullable=False),
            sa.Column('payment_status', _enum('paymentstatus', PAYMENT_STATUSES), nullable=False),
            sa.Column('special_instructions', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.Column('estimated_delivery_time', sa.DateTime(timezone=True), nullable=True),
            sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(['restaurant_id'], ['restaurants.id'], ),
            sa.ForeignKeyConstraint(['delivery_address_id'], ['addresses.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('order_number')
        )
        op.create_index(op.f('ix_orders_id'), 'orders', ['id'], unique=False)
        op.create_index(op.f('ix_orders_customer_id'), 'orders', ['customer_id'], unique=False)
        op.create_index(op.f('ix_orders_restaurant_id'), 'orders', ['restaurant_id'], unique=False)
        op.create_index(op.f('ix_orders_delivery_agent_id'), 'orders', ['delivery_agent_id'], unique=False)
        op.create_index(op.f('ix_orders_status'), 'orders', ['status'], unique=False)
        op.create_index(op.f('ix_orders_created_at'), 'orders', ['created_at'], unique=False)
        # Dispatch pool: unassigned preparing/ready orders, newest first
        op.create_index('ix_orders_dispatch_pool', 'orders', ['status', 'delivery_agent_id', 'created_at'], unique=False)

    if 'order_items' not in existing_tables:
        op.create_table('order_items',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('order_id', sa.Integer(), nullable=False),
            sa.Column('position', sa.Integer(), nullable=False),
            sa.Column('menu_item_id', sa.Integer(), nullable=True),
            sa.Column('menu_item_name', sa.String(), nullable=False),
            sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
            sa.Column('quantity', sa.Integer(), nullable=False),
            sa.Column('line_total', sa.Numeric(10, 2), nullable=False),
            sa.Column('preparation_time', sa.Integer(), nullable=True),
            sa.Column('special_instructions', sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_order_items_id'), 'order_items', ['id'], unique=False)
        op.create_index(op.f('ix_order_items_order_id'), 'order_items', ['order_id'], unique=False)

    if 'order_item_exclusions' not in existing_tables:
        op.create_table('order_item_exclusions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('order_item_id', sa.Integer(), nullable=False),
            sa.Column('ingredient_id', sa.Integer(), nullable=False),
            sa.Column('ingredient_name', sa.String(), nullable=True),
            sa.ForeignKeyConstraint(['order_item_id'], ['order_items.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('order_item_id', 'ingredient_id', name='uix_order_item_exclusion')
        )
        op.create_index(op.f('ix_order_item_exclusions_id'), 'order_item_exclusions', ['id'], unique=False)
        op.create_index(op.f('ix_order_item_exclusions_order_item_id'), 'order_item_exclusions', ['order_item_id'], unique=False)

    if 'tracking_records' not in existing_tables:
        op.create_table('tracking_records',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('order_id', sa.Integer(), nullable=False),
            sa.Column('restaurant_latitude', sa.Float(), nullable=False),
            sa.Column('restaurant_longitude', sa.Float(), nullable=False),
            sa.Column('customer_latitude', sa.Float(), nullable=False),
            sa.Column('customer_longitude', sa.Float(), nullable=False),
            sa.Column('current_latitude', sa.Float(), nullable=True),
            sa.Column('current_longitude', sa.Float(), nullable=True),
            sa.Column('distance_remaining', sa.Float(), nullable=True),
            sa.Column('phase', _enum('trackingphase', TRACKING_PHASES), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('order_id')
        )
        op.create_index(op.f('ix_tracking_records_id'), 'tracking_records', ['id'], unique=False)

    if 'payments' not in existing_tables:
        op.create_table('payments',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('order_id', sa.Integer(), nullable=False),
            sa.Column('amount', sa.Numeric(10, 2), nullable=False),
            sa.Column('payment_method', _enum('paymentmethod', PAYMENT_METHODS), nullable=False),
            sa.Column('status', _enum('paymentstatus', PAYMENT_STATUSES), nullable=False),
            sa.Column('reference', sa.String(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_payments_id'), 'payments', ['id'], unique=False)
        op.create_index(op.f('ix_payments_order_id'), 'payments', ['order_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    # Drop tables in reverse order of creation (respecting foreign keys)
    op.drop_index(op.f('ix_payments_order_id'), table_name='payments')
    op.drop_index(op.f('ix_payments_id'), table_name='payments')
    op.drop_table('payments')

    op.drop_index(op.f('ix_tracking_records_id'), table_name='tracking_records')
    op.drop_table('tracking_records')

    op.drop_index(op.f('ix_order_item_exclusions_order_item_id'), table_name='order_item_exclusions')
    op.drop_index(op.f('ix_order_item_exclusions_id'), table_name='order_item_exclusions')
    op.drop_table('order_item_exclusions')

    op.drop_index(op.f('ix_order_items_order_id'), table_name='order_items')
    op.drop_index(op.f('ix_order_items_id'), table_name='order_items')
    op.drop_table('order_items')

    op.drop_index('ix_orders_dispatch_pool', table_name='orders')
    op.drop_index(op.f('ix_orders_created_at'), table_name='orders')
    op.drop_index(op.f('ix_orders_status'), table_name='orders')
    op.drop_index(op.f('ix_orders_delivery_agent_id'), table_name='orders')
    op.drop_index(op.f('ix_orders_restaurant_id'), table_name='orders')
    op.drop_index(op.f('ix_orders_customer_id'), table_name='orders')
    op.drop_index(op.f('ix_orders_id'), table_name='orders')
    op.drop_table('orders')

    op.drop_index(op.f('ix_cart_item_exclusions_cart_item_id'), table_name='cart_item_exclusions')
    op.drop_index(op.f('ix_cart_item_exclusions_id'), table_name='cart_item_exclusions')
    op.drop_table('cart_item_exclusions')

    op.drop_index(op.f('ix_cart_items_cart_id'), table_name='cart_items')
    op.drop_index(op.f('ix_cart_items_id'), table_name='cart_items')
    op.drop_table('cart_items')

    op.drop_index(op.f('ix_carts_user_id'), table_name='carts')
    op.drop_index(op.f('ix_carts_id'), table_name='carts')
    op.drop_table('carts')

    op.drop_index(op.f('ix_ingredients_id'), table_name='ingredients')
    op.drop_table('ingredients')

    op.drop_index(op.f('ix_menu_items_restaurant_id'), table_name='menu_items')
    op.drop_index(op.f('ix_menu_items_id'), table_name='menu_items')
    op.drop_table('menu_items')

    op.drop_index(op.f('ix_addresses_user_id'), table_name='addresses')
    op.drop_index(op.f('ix_addresses_id'), table_name='addresses')
    op.drop_table('addresses')

    op.drop_index(op.f('ix_restaurants_owner_id'), table_name='restaurants')
    op.drop_index(op.f('ix_restaurants_id'), table_name='restaurants')
    op.drop_table('restaurants')
