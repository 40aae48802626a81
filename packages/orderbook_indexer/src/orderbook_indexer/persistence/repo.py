"""
Repository helpers for the order book read model.

All inserts are insert-if-absent on the entity's natural key: they return
None when the row already exists. Callers own the transaction.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from orderbook_indexer.contracts.types import CheckpointStatus, OrderStatus
from orderbook_indexer.persistence.models import Order, OrderFill, SyncCheckpoint, Withdrawal


def fill_key(order_id: int, fill_sequence: int) -> str:
    return f"{order_id}-{fill_sequence}"


def withdrawal_key(user: str, tx_hash: str) -> str:
    return f"{user.lower()}-{tx_hash.lower()}"


class OrderBookRepository:
    """Repository for indexer-owned tables."""

    def __init__(self, db: Session):
        self.db = db

    # --- Orders ---

    def get_order(self, order_id: int, for_update: bool = False) -> Order | None:
        """Get an order by its ledger id, optionally locking the row."""
        query = self.db.query(Order).filter(Order.order_id == order_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def create_order(
        self,
        order_id: int,
        tx_hash: str,
        owner: str,
        side: str,
        total_amount: int,
        counter_amount: int,
        unit_price: int,
        fee_at_creation: int,
        expires_at: datetime,
        source_height: int,
        created_at: datetime | None = None,
    ) -> Order | None:
        """Create an order (idempotent by order_id)."""
        if self.get_order(order_id) is not None:
            return None  # Already indexed

        order = Order(
            order_id=order_id,
            tx_hash=tx_hash,
            owner=owner,
            side=side,
            total_amount=str(total_amount),
            counter_amount=str(counter_amount),
            unit_price=str(unit_price),
            filled="0",
            remaining=str(total_amount),
            fee_at_creation=str(fee_at_creation),
            status=OrderStatus.ACTIVE.value,
            created_at=created_at,
            expires_at=expires_at,
            source_height=source_height,
            last_event_height=source_height,
        )
        self.db.add(order)
        self.db.flush()
        return order

    def apply_fill_totals(self, order: Order, amount: int, event_height: int) -> tuple[int, int]:
        """
        Add a fill amount to an order's running totals.

        Returns:
            (filled, remaining) after the update
        """
        filled = int(order.filled) + amount
        remaining = int(order.total_amount) - filled
        order.filled = str(filled)
        order.remaining = str(remaining)
        order.last_event_height = max(order.last_event_height, event_height)
        self.db.flush()
        return filled, remaining

    def set_order_status(self, order: Order, status: OrderStatus, event_height: int) -> None:
        order.status = status.value
        order.last_event_height = max(order.last_event_height, event_height)
        self.db.flush()

    def get_orders_for_reconciliation(self, limit: int = 100) -> list[Order]:
        """Non-terminal orders first, then the most recently touched ones."""
        open_orders = (
            self.db.query(Order)
            .filter(Order.status.in_([OrderStatus.ACTIVE.value, OrderStatus.PARTIALLY_FILLED.value]))
            .order_by(Order.order_id)
            .limit(limit)
            .all()
        )
        if len(open_orders) >= limit:
            return open_orders

        seen = {o.order_id for o in open_orders}
        recent = (
            self.db.query(Order)
            .order_by(Order.last_event_height.desc(), Order.order_id.desc())
            .limit(limit)
            .all()
        )
        return open_orders + [o for o in recent if o.order_id not in seen][: limit - len(open_orders)]

    def count_orders_by_status(self) -> dict[str, int]:
        rows = self.db.query(Order.status, func.count(Order.id)).group_by(Order.status).all()
        return {status: count for status, count in rows}

    # --- Fills ---

    def get_fill(self, key: str) -> OrderFill | None:
        return self.db.query(OrderFill).filter(OrderFill.fill_key == key).first()

    def record_fill(
        self,
        order: Order,
        fill_sequence: int,
        filler: str,
        amount: int,
        counterparty_amount: int,
        tx_hash: str,
        block_height: int,
        log_index: int = 0,
        timestamp: datetime | None = None,
    ) -> OrderFill | None:
        """Record a fill (idempotent by fill_key)."""
        key = fill_key(order.order_id, fill_sequence)
        if self.get_fill(key) is not None:
            return None  # Already processed

        fill = OrderFill(
            fill_key=key,
            order_id=order.order_id,
            fill_sequence=fill_sequence,
            filler=filler,
            order_owner=order.owner,
            side=order.side,
            amount=str(amount),
            counterparty_amount=str(counterparty_amount),
            unit_price=order.unit_price,
            tx_hash=tx_hash,
            block_height=block_height,
            log_index=log_index,
            timestamp=timestamp,
        )
        self.db.add(fill)
        self.db.flush()
        return fill

    def get_fills_for_order(self, order_id: int) -> list[OrderFill]:
        return (
            self.db.query(OrderFill)
            .filter(OrderFill.order_id == order_id)
            .order_by(OrderFill.block_height, OrderFill.log_index)
            .all()
        )

    # --- Withdrawals ---

    def record_withdrawal(
        self,
        user: str,
        amount: int,
        kind: str,
        tx_hash: str,
        block_height: int,
        timestamp: datetime | None = None,
    ) -> Withdrawal | None:
        """Record a withdrawal (idempotent by user + tx_hash)."""
        key = withdrawal_key(user, tx_hash)
        existing = self.db.query(Withdrawal).filter(Withdrawal.withdrawal_key == key).first()
        if existing:
            return None

        withdrawal = Withdrawal(
            withdrawal_key=key,
            user=user.lower(),
            amount=str(amount),
            kind=kind,
            tx_hash=tx_hash,
            block_height=block_height,
            timestamp=timestamp,
        )
        self.db.add(withdrawal)
        self.db.flush()
        return withdrawal

    # --- Checkpoints ---

    def get_checkpoint(self, source: str) -> SyncCheckpoint | None:
        return self.db.query(SyncCheckpoint).filter(SyncCheckpoint.source == source).first()

    def create_checkpoint(self, source: str, last_processed_height: int) -> SyncCheckpoint:
        checkpoint = SyncCheckpoint(
            source=source,
            last_processed_height=last_processed_height,
            status=CheckpointStatus.SYNCING.value,
            details={},
        )
        self.db.add(checkpoint)
        self.db.flush()
        return checkpoint

    def advance_checkpoint(self, source: str, height: int, details: dict[str, Any] | None = None) -> bool:
        """
        Move the cursor forward with a conditional UPDATE.

        The WHERE clause makes this a compare-and-swap: a lower or equal
        height never overwrites a higher one.

        Returns:
            True if the row was moved
        """
        values: dict[str, Any] = {
            "last_processed_height": height,
            "last_synced_at": datetime.utcnow(),
            "updated_at": datetime.utcnow(),
        }
        if details is not None:
            values["details"] = details
        result = self.db.execute(
            update(SyncCheckpoint)
            .where(
                SyncCheckpoint.source == source,
                SyncCheckpoint.last_processed_height < height,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def set_checkpoint_status(self, source: str, status: CheckpointStatus, error: str | None = None) -> bool:
        result = self.db.execute(
            update(SyncCheckpoint)
            .where(SyncCheckpoint.source == source)
            .values(status=status.value, last_error=error, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0
