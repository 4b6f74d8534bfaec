"""
Alembic migration: Initial delivery tracking schema.

Creates the users, orders and order_status_history tables. Enumerations are
stored as constrained strings so new platforms or statuses do not require a
type migration; nested order documents are JSONB.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
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


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
            comment='Timestamp when record was created',
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
            comment='Timestamp when record was last updated',
        ),
    ]


def upgrade() -> None:
    """
    Upgrade database schema to the initial delivery tracking layout.
    """
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False, comment='Unique identifier for the record'),
        sa.Column('name', sa.String(length=100), nullable=False, comment='Display name'),
        sa.Column('email', sa.String(length=255), nullable=False, comment='User email address (unique, lower-cased)'),
        sa.Column('phone', sa.String(length=20), nullable=False, comment='User phone number (unique)'),
        sa.Column('password_hash', sa.String(length=255), nullable=False, comment='Bcrypt hashed password'),
        sa.Column('role', sa.String(length=32), nullable=False, comment='User role for access control'),
        sa.Column('is_active', sa.Boolean(), nullable=False, comment='Account active status'),
        sa.Column('vehicle_type', sa.String(length=16), nullable=True, comment='Partner vehicle type'),
        sa.Column('license_number', sa.String(length=50), nullable=True, comment='Partner driving licence number'),
        sa.Column('vehicle_number', sa.String(length=20), nullable=True, comment='Partner vehicle registration number'),
        sa.Column('is_verified', sa.Boolean(), nullable=False, comment='Partner verified by an administrator'),
        sa.Column('rating_average', sa.Numeric(precision=2, scale=1), nullable=False, comment='Rolling average of customer ratings'),
        sa.Column('rating_count', sa.Integer(), nullable=False, comment='Number of ratings in the rolling average'),
        sa.Column('earnings_total', sa.Numeric(precision=12, scale=2), nullable=False, comment='Lifetime partner earnings'),
        sa.Column('earnings_pending', sa.Numeric(precision=12, scale=2), nullable=False, comment='Partner earnings not yet withdrawn'),
        sa.Column('is_online', sa.Boolean(), nullable=False, comment='Partner currently accepting orders'),
        sa.Column('current_latitude', sa.Float(), nullable=True, comment='Last reported latitude'),
        sa.Column('current_longitude', sa.Float(), nullable=True, comment='Last reported longitude'),
        sa.Column('location_updated_at', sa.DateTime(timezone=True), nullable=True, comment='When the partner location was last reported'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.UniqueConstraint('phone'),
        sa.CheckConstraint(
            "role IN ('customer', 'delivery_partner', 'admin')",
            name='ck_users_role_valid',
        ),
        sa.CheckConstraint('rating_count >= 0', name='ck_users_rating_count_non_negative'),
        sa.CheckConstraint('earnings_pending >= 0', name='ck_users_earnings_pending_non_negative'),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_role_online_verified', 'users', ['role', 'is_online', 'is_verified'])
    op.create_index('ix_users_location', 'users', ['current_latitude', 'current_longitude'])

    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=32), nullable=False, comment='Order identifier (FGO + epoch ms + random suffix)'),
        sa.Column('customer_id', sa.Uuid(), nullable=False, comment='Customer who placed the order'),
        sa.Column('delivery_partner_id', sa.Uuid(), nullable=True, comment='Assigned delivery partner'),
        sa.Column('platform', sa.String(length=32), nullable=False, comment='Originating ordering platform'),
        sa.Column('platform_order_id', sa.String(length=100), nullable=True, comment='Order identifier on the originating platform'),
        sa.Column('restaurant', postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment='Restaurant name, address, phone, coordinates and platform'),
        sa.Column('items', postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment='Ordered line items'),
        sa.Column('subtotal', sa.Numeric(precision=10, scale=2), nullable=False, comment='Items subtotal'),
        sa.Column('delivery_fee', sa.Numeric(precision=10, scale=2), nullable=False, comment='Delivery fee'),
        sa.Column('taxes', sa.Numeric(precision=10, scale=2), nullable=False, comment='Taxes'),
        sa.Column('discount', sa.Numeric(precision=10, scale=2), nullable=False, comment='Discount applied'),
        sa.Column('total', sa.Numeric(precision=10, scale=2), nullable=False, comment='Order total as supplied by the platform'),
        sa.Column('delivery_address', postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment='Delivery address document'),
        sa.Column('special_instructions', sa.Text(), nullable=True, comment='Customer instructions for the order'),
        sa.Column('status', sa.String(length=32), nullable=False, comment='Current order status'),
        sa.Column('payment_method', sa.String(length=16), nullable=False, comment='Payment method'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, comment='Payment status'),
        sa.Column('transaction_id', sa.String(length=100), nullable=True, comment='Gateway transaction identifier'),
        sa.Column('payment_amount', sa.Numeric(precision=10, scale=2), nullable=True, comment='Amount charged'),
        sa.Column('distance_km', sa.Float(), nullable=False, comment='Restaurant to delivery address distance in km'),
        sa.Column('estimated_delivery_time', sa.DateTime(timezone=True), nullable=False, comment='Estimated delivery time, set at creation'),
        sa.Column('actual_delivery_time', sa.DateTime(timezone=True), nullable=True, comment='Actual delivery time, set on delivery'),
        sa.Column('customer_rating', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Customer rating of the delivery partner'),
        sa.Column('partner_rating', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Delivery partner rating of the customer'),
        sa.Column('current_location', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Last reported partner location'),
        sa.Column('route', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb"), comment='Partner location trail while in transit'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['customer_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['delivery_partner_id'], ['users.id'], ondelete='RESTRICT'),
        sa.CheckConstraint('total >= 0', name='ck_orders_total_non_negative'),
        sa.CheckConstraint('distance_km >= 0', name='ck_orders_distance_non_negative'),
        sa.CheckConstraint(
            "status IN ('placed', 'confirmed', 'preparing', 'ready_for_pickup', "
            "'picked_up', 'on_the_way', 'delivered', 'cancelled')",
            name='ck_orders_status_valid',
        ),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'completed', 'failed', 'refunded')",
            name='ck_orders_payment_status_valid',
        ),
    )
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_delivery_partner_id', 'orders', ['delivery_partner_id'])
    op.create_index('ix_orders_platform', 'orders', ['platform'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_partner_status', 'orders', ['delivery_partner_id', 'status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])

    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Uuid(), nullable=False, comment='Unique history entry identifier'),
        sa.Column('order_id', sa.String(length=32), nullable=False, comment='Order this entry belongs to'),
        sa.Column('sequence', sa.Integer(), nullable=False, comment="Position of the entry in the order's history"),
        sa.Column('status', sa.String(length=32), nullable=False, comment='Status entered'),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False, comment='When the status was entered'),
        sa.Column('location', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Where the status change happened'),
        sa.Column('changed_by', sa.Uuid(), nullable=True, comment='User who changed the status'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'])
    op.create_index(
        'ix_order_status_history_order_sequence',
        'order_status_history',
        ['order_id', 'sequence'],
        unique=True,
    )


def downgrade() -> None:
    """
    Downgrade database schema by dropping all delivery tracking tables.
    """
    op.drop_index('ix_order_status_history_order_sequence', table_name='order_status_history')
    op.drop_index('ix_order_status_history_order_id', table_name='order_status_history')
    op.drop_table('order_status_history')

    op.drop_index('ix_orders_created_at', table_name='orders')
    op.drop_index('ix_orders_partner_status', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_platform', table_name='orders')
    op.drop_index('ix_orders_delivery_partner_id', table_name='orders')
    op.drop_index('ix_orders_customer_id', table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_users_location', table_name='users')
    op.drop_index('ix_users_role_online_verified', table_name='users')
    op.drop_index('ix_users_role', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
