"""Initial sync schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18

This migration adds:
1. source_connections for per-tenant endpoint and credentials
2. sync_checkpoints and failed_batches for resumable runs
3. sync_runs for run history
4. shop_orders, shop_products and shop_customers record tables
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')
Money = sa.Numeric(14, 2)


def _record_columns() -> list:
    return [
        sa.Column('tenant_id', sa.String(100), primary_key=True),
        sa.Column('source_id', sa.String(64), primary_key=True),
        sa.Column('payload', JSONType, nullable=False),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=False),
    ]


def _source_timestamps() -> list:
    return [
        sa.Column('source_created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('source_updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'source_connections',
        sa.Column('tenant_id', sa.String(100), primary_key=True),
        sa.Column('endpoint', sa.String(255), nullable=False, comment='Shop domain or base URL of the source API'),
        sa.Column('access_token', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('last_full_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_incremental_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_manual_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_source_connections_status', 'source_connections', ['status'])

    op.create_table(
        'sync_checkpoints',
        sa.Column('tenant_id', sa.String(100), primary_key=True),
        sa.Column('sync_class', sa.String(20), primary_key=True),
        sa.Column('category', sa.String(20), primary_key=True),
        sa.Column('state', JSONType, nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_sync_checkpoints_expires_at', 'sync_checkpoints', ['expires_at'])

    op.create_table(
        'failed_batches',
        sa.Column('tenant_id', sa.String(100), primary_key=True),
        sa.Column('sync_class', sa.String(20), primary_key=True),
        sa.Column('category', sa.String(20), primary_key=True),
        sa.Column('batches', JSONType, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'sync_runs',
        sa.Column('run_id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', sa.String(100), nullable=False),
        sa.Column('sync_class', sa.String(20), nullable=False),
        sa.Column('category', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('items_synced', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pages_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_pages', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_batches', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_sync_runs_tenant_id', 'sync_runs', ['tenant_id'])

    op.create_table(
        'shop_orders',
        *_record_columns(),
        sa.Column('order_number', sa.Integer(), nullable=True),
        sa.Column('total_price', Money, nullable=False, server_default='0'),
        sa.Column('subtotal_price', Money, nullable=False, server_default='0'),
        sa.Column('total_tax', Money, nullable=False, server_default='0'),
        sa.Column('total_discounts', Money, nullable=False, server_default='0'),
        sa.Column('total_shipping', Money, nullable=False, server_default='0'),
        sa.Column('customer_id', sa.String(64), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('financial_status', sa.String(50), nullable=True),
        sa.Column('fulfillment_status', sa.String(50), nullable=True),
        sa.Column('confirmed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        *_source_timestamps(),
    )
    op.create_index('ix_shop_orders_customer_id', 'shop_orders', ['customer_id'])
    op.create_index('ix_shop_orders_source_created_at', 'shop_orders', ['source_created_at'])

    op.create_table(
        'shop_products',
        *_record_columns(),
        sa.Column('title', sa.String(255), nullable=True),
        sa.Column('vendor', sa.String(255), nullable=True),
        sa.Column('product_type', sa.String(255), nullable=True),
        sa.Column('status', sa.String(50), nullable=True),
        *_source_timestamps(),
    )

    op.create_table(
        'shop_customers',
        *_record_columns(),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('orders_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_spent', Money, nullable=False, server_default='0'),
        *_source_timestamps(),
    )


def downgrade() -> None:
    op.drop_table('shop_customers')
    op.drop_table('shop_products')

    op.drop_index('ix_shop_orders_source_created_at', 'shop_orders')
    op.drop_index('ix_shop_orders_customer_id', 'shop_orders')
    op.drop_table('shop_orders')

    op.drop_index('ix_sync_runs_tenant_id', 'sync_runs')
    op.drop_table('sync_runs')

    op.drop_table('failed_batches')

    op.drop_index('ix_sync_checkpoints_expires_at', 'sync_checkpoints')
    op.drop_table('sync_checkpoints')

    op.drop_index('ix_source_connections_status', 'source_connections')
    op.drop_table('source_connections')
