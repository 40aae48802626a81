"""Order Book Read Model

Revision ID: 0001_orderbook_read_model
Revises:
Create Date: 2026-10-16

Creates tables owned by the order book indexer:
- orderbook_orders: One row per ledger order with running fill totals
- orderbook_fills: Immutable fills keyed by order_id-fill_sequence
- orderbook_withdrawals: Immutable withdrawals keyed by user-tx_hash
- orderbook_sync_checkpoints: Durable sync cursor per ledger source
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = '0001_orderbook_read_model'
down_revision = None
branch_labels = None
depends_on = None

AMOUNT = sa.String(78)


def _bookkeeping():
    return [
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('indexed_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade():
    # =========================================================================
    # ORDERS
    # =========================================================================

    op.create_table(
        'orderbook_orders',
        *_bookkeeping(),
        sa.Column('order_id', sa.BigInteger(), nullable=False),
        sa.Column('tx_hash', sa.String(66), nullable=False),
        sa.Column('owner', sa.String(42), nullable=False),
        sa.Column('side', sa.String(4), nullable=False),
        sa.Column('total_amount', AMOUNT, nullable=False),
        sa.Column('counter_amount', AMOUNT, nullable=False),
        sa.Column('unit_price', AMOUNT, nullable=False),
        sa.Column('filled', AMOUNT, server_default='0', nullable=False),
        sa.Column('remaining', AMOUNT, nullable=False),
        sa.Column('fee_at_creation', AMOUNT, nullable=False),
        sa.Column('status', sa.String(20), server_default='active', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('source_height', sa.BigInteger(), nullable=False),
        sa.Column('last_event_height', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', name='uq_orderbook_orders_order_id'),
    )
    op.create_index('ix_orderbook_orders_tx_hash', 'orderbook_orders', ['tx_hash'])
    op.create_index('ix_orderbook_orders_owner', 'orderbook_orders', ['owner'])
    op.create_index('idx_orderbook_orders_owner_status', 'orderbook_orders', ['owner', 'status'])
    op.create_index('idx_orderbook_orders_side_status', 'orderbook_orders', ['side', 'status'])
    op.create_index('idx_orderbook_orders_status_created', 'orderbook_orders', ['status', 'created_at'])

    # =========================================================================
    # FILLS
    # =========================================================================

    op.create_table(
        'orderbook_fills',
        *_bookkeeping(),
        sa.Column('fill_key', sa.String(100), nullable=False),
        sa.Column('order_id', sa.BigInteger(), nullable=False),
        sa.Column('fill_sequence', sa.BigInteger(), nullable=False),
        sa.Column('filler', sa.String(42), nullable=False),
        sa.Column('order_owner', sa.String(42), nullable=False),
        sa.Column('side', sa.String(4), nullable=False),
        sa.Column('amount', AMOUNT, nullable=False),
        sa.Column('counterparty_amount', AMOUNT, nullable=False),
        sa.Column('unit_price', AMOUNT, nullable=False),
        sa.Column('tx_hash', sa.String(66), nullable=False),
        sa.Column('block_height', sa.BigInteger(), nullable=False),
        sa.Column('log_index', sa.Integer(), server_default='0', nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('fill_key', name='uq_orderbook_fills_fill_key'),
        sa.UniqueConstraint('order_id', 'fill_sequence', name='uq_orderbook_fills_order_sequence'),
    )
    op.create_index('ix_orderbook_fills_order_id', 'orderbook_fills', ['order_id'])
    op.create_index('ix_orderbook_fills_filler', 'orderbook_fills', ['filler'])
    op.create_index('ix_orderbook_fills_order_owner', 'orderbook_fills', ['order_owner'])
    op.create_index('ix_orderbook_fills_tx_hash', 'orderbook_fills', ['tx_hash'])
    op.create_index('ix_orderbook_fills_block_height', 'orderbook_fills', ['block_height'])
    op.create_index('idx_orderbook_fills_order_height', 'orderbook_fills', ['order_id', 'block_height'])

    # =========================================================================
    # WITHDRAWALS
    # =========================================================================

    op.create_table(
        'orderbook_withdrawals',
        *_bookkeeping(),
        sa.Column('withdrawal_key', sa.String(120), nullable=False),
        sa.Column('user', sa.String(42), nullable=False),
        sa.Column('amount', AMOUNT, nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('tx_hash', sa.String(66), nullable=False),
        sa.Column('block_height', sa.BigInteger(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('withdrawal_key', name='uq_orderbook_withdrawals_key'),
    )
    op.create_index('ix_orderbook_withdrawals_user', 'orderbook_withdrawals', ['user'])
    op.create_index('ix_orderbook_withdrawals_block_height', 'orderbook_withdrawals', ['block_height'])
    op.create_index('idx_orderbook_withdrawals_user_kind', 'orderbook_withdrawals', ['user', 'kind'])

    # =========================================================================
    # SYNC CHECKPOINTS
    # =========================================================================

    op.create_table(
        'orderbook_sync_checkpoints',
        *_bookkeeping(),
        sa.Column('source', sa.String(120), nullable=False),
        sa.Column('last_processed_height', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(20), server_default='syncing', nullable=False),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('details', JSONB(), server_default='{}', nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source', name='uq_orderbook_sync_checkpoints_source'),
    )


def downgrade():
    op.drop_table('orderbook_sync_checkpoints')
    op.drop_table('orderbook_withdrawals')
    op.drop_table('orderbook_fills')
    op.drop_table('orderbook_orders')
