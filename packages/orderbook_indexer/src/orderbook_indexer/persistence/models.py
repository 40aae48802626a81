"""
Read-model tables owned by the order book indexer.

Only the indexer writes to these tables; query layers read from them.
Every entity carries a natural unique key so that re-delivered events
cannot create a second row.

Token amounts are uint256 on the ledger. They are stored as decimal
strings so no backend ever rounds them.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

from orderbook_indexer.contracts.types import CheckpointStatus, OrderStatus

OrderBookBase = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JsonType = JSON().with_variant(JSONB(), "postgresql")

AMOUNT_LENGTH = 78  # digits in 2**256 - 1


class OrderBookModelMixin:
    """Common bookkeeping fields for all read-model rows."""

    id = Column(Integer, primary_key=True, autoincrement=True)
    indexed_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class Order(OrderBookBase, OrderBookModelMixin):
    """
    One order as created on the ledger.

    filled/remaining are maintained from fill events; status is copied from
    the ledger's authoritative new_status. fee_at_creation is a snapshot
    taken once and never recomputed.
    """

    __tablename__ = "orderbook_orders"

    order_id = Column(BigInteger, nullable=False, unique=True)  # Ledger-assigned
    tx_hash = Column(String(66), nullable=False, index=True)
    owner = Column(String(42), nullable=False, index=True)
    side = Column(String(4), nullable=False)  # buy, sell
    total_amount = Column(String(AMOUNT_LENGTH), nullable=False)
    counter_amount = Column(String(AMOUNT_LENGTH), nullable=False)
    unit_price = Column(String(AMOUNT_LENGTH), nullable=False)
    filled = Column(String(AMOUNT_LENGTH), nullable=False, default="0")
    remaining = Column(String(AMOUNT_LENGTH), nullable=False)
    fee_at_creation = Column(String(AMOUNT_LENGTH), nullable=False)
    status = Column(String(20), nullable=False, default=OrderStatus.ACTIVE.value)
    created_at = Column(DateTime(timezone=True), nullable=True)  # Block time of creation
    expires_at = Column(DateTime(timezone=True), nullable=False)
    source_height = Column(BigInteger, nullable=False)
    last_event_height = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index("idx_orderbook_orders_owner_status", "owner", "status"),
        Index("idx_orderbook_orders_side_status", "side", "status"),
        Index("idx_orderbook_orders_status_created", "status", "created_at"),
    )


class OrderFill(OrderBookBase, OrderBookModelMixin):
    """
    One fill against an order. Immutable once written.

    fill_key = "{order_id}-{fill_sequence}" is the idempotency key.
    """

    __tablename__ = "orderbook_fills"

    fill_key = Column(String(100), nullable=False, unique=True)  # Idempotency key
    order_id = Column(BigInteger, nullable=False, index=True)
    fill_sequence = Column(BigInteger, nullable=False)
    filler = Column(String(42), nullable=False, index=True)
    order_owner = Column(String(42), nullable=False, index=True)
    side = Column(String(4), nullable=False)
    amount = Column(String(AMOUNT_LENGTH), nullable=False)
    counterparty_amount = Column(String(AMOUNT_LENGTH), nullable=False)
    unit_price = Column(String(AMOUNT_LENGTH), nullable=False)
    tx_hash = Column(String(66), nullable=False, index=True)
    block_height = Column(BigInteger, nullable=False, index=True)
    log_index = Column(Integer, nullable=False, default=0)
    timestamp = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("order_id", "fill_sequence", name="uq_orderbook_fills_order_sequence"),
        Index("idx_orderbook_fills_order_height", "order_id", "block_height"),
    )


class Withdrawal(OrderBookBase, OrderBookModelMixin):
    """
    One claimed withdrawal. Immutable once written.

    withdrawal_key = "{user}-{tx_hash}" is the idempotency key.
    """

    __tablename__ = "orderbook_withdrawals"

    withdrawal_key = Column(String(120), nullable=False, unique=True)  # Idempotency key
    user = Column(String(42), nullable=False, index=True)
    amount = Column(String(AMOUNT_LENGTH), nullable=False)
    kind = Column(String(20), nullable=False)
    tx_hash = Column(String(66), nullable=False)
    block_height = Column(BigInteger, nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_orderbook_withdrawals_user_kind", "user", "kind"),
    )


class SyncCheckpoint(OrderBookBase, OrderBookModelMixin):
    """
    Durable sync cursor, one row per ledger source.

    last_processed_height is inclusive and never decreases.
    """

    __tablename__ = "orderbook_sync_checkpoints"

    source = Column(String(120), nullable=False, unique=True)
    last_processed_height = Column(BigInteger, nullable=False)
    status = Column(String(20), nullable=False, default=CheckpointStatus.SYNCING.value)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    details = Column(JsonType, nullable=False, default=dict)  # Last sync summary

    @property
    def resume_height(self) -> int:
        """First height that still needs processing."""
        return self.last_processed_height + 1
