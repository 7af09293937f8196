"""Create synced_products table

Revision ID: 001_create_synced_products
Revises: 
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_create_synced_products'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create sync_status enum
    sync_status_enum = postgresql.ENUM(
        'PENDING', 'SYNCED', 'SKIPPED_FILTER', 'ERROR', name='sync_status', create_type=True
    )
    sync_status_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'synced_products',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('external_id', sa.String(length=64), nullable=False),
        sa.Column('destination_product_id', sa.String(length=255), nullable=True),
        sa.Column('destination_handle', sa.String(length=255), nullable=True),
        sa.Column('listed_price', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('source_name', sa.String(length=500), nullable=True),
        sa.Column('source_price', sa.Numeric(precision=14, scale=2), nullable=True),
        sa.Column('source_shipping_fee', sa.Numeric(precision=14, scale=2), nullable=True),
        sa.Column('source_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            'sync_status',
            postgresql.ENUM('PENDING', 'SYNCED', 'SKIPPED_FILTER', 'ERROR', name='sync_status', create_type=False),
            nullable=False,
            server_default='PENDING',
        ),
        sa.Column('last_error_message', sa.Text(), nullable=True),
        sa.Column('last_error_stack', sa.Text(), nullable=True),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('success_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_success_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.UniqueConstraint('external_id', name='synced_products_external_id_key'),
        sa.CheckConstraint('attempt_count >= 0', name='check_attempt_count_non_negative'),
        sa.CheckConstraint('success_count >= 0', name='check_success_count_non_negative'),
    )
    op.create_index('ix_synced_products_external_id', 'synced_products', ['external_id'])
    op.create_index('ix_synced_products_destination_product_id', 'synced_products', ['destination_product_id'])
    op.create_index('ix_synced_products_sync_status', 'synced_products', ['sync_status'])


def downgrade() -> None:
    op.drop_table('synced_products')

    sync_status_enum = postgresql.ENUM('PENDING', 'SYNCED', 'SKIPPED_FILTER', 'ERROR', name='sync_status')
    sync_status_enum.drop(op.get_bind(), checkfirst=True)
