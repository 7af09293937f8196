"""Create processed_orders idempotency ledger.

Each inbound storefront order is claimed here before any marketplace order
is placed, so a redelivered event cannot place a second order.

Revision ID: 002_create_processed_orders
Revises: 001_create_synced_products
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers
revision: str = '002_create_processed_orders'
down_revision: Union[str, None] = '001_create_synced_products'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create order_claim_status enum and processed_orders table."""
    order_claim_status_enum = postgresql.ENUM(
        'PROCESSING', 'COMPLETED', 'FAILED', name='order_claim_status', create_type=True
    )
    order_claim_status_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'processed_orders',
        sa.Column('order_id', sa.String(length=64), primary_key=True),
        sa.Column('order_gid', sa.String(length=255), nullable=True),
        sa.Column(
            'status',
            postgresql.ENUM('PROCESSING', 'COMPLETED', 'FAILED', name='order_claim_status', create_type=False),
            nullable=False,
        ),
        sa.Column('source_order_ids', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='[]'),
        sa.Column('last_error_message', sa.Text(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_processed_orders_status', 'processed_orders', ['status'])


def downgrade() -> None:
    """Drop processed_orders table and its enum."""
    op.drop_table('processed_orders')

    order_claim_status_enum = postgresql.ENUM('PROCESSING', 'COMPLETED', 'FAILED', name='order_claim_status')
    order_claim_status_enum.drop(op.get_bind(), checkfirst=True)
