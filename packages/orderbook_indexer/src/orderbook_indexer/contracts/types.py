"""
Enumerations shared by events, read-model rows and status reporting.

Ledger status codes follow the order book contract:
0 ACTIVE, 1 FILLED, 2 PARTIALLY_FILLED, 3 CANCELLED, 4 EXPIRED.
"""

from enum import Enum


class EventKind(str, Enum):
    """Closed set of ledger event kinds the indexer projects."""

    ORDER_CREATED = "OrderCreated"
    ORDER_FILLED = "OrderFilled"
    ORDER_CANCELLED = "OrderCancelled"
    WITHDRAWAL_CLAIMED = "WithdrawalClaimed"

    def __str__(self) -> str:
        return self.value


class OrderSide(str, Enum):
    """Order side. Ledger encodes buy as 0 and sell as 1."""

    BUY = "buy"
    SELL = "sell"

    @classmethod
    def from_ledger(cls, code: int) -> "OrderSide":
        return cls.BUY if int(code) == 0 else cls.SELL


class OrderStatus(str, Enum):
    """Order lifecycle status as stored in the read model."""

    ACTIVE = "active"
    FILLED = "filled"
    PARTIALLY_FILLED = "partially_filled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @classmethod
    def from_ledger(cls, code: int) -> "OrderStatus":
        try:
            return _LEDGER_STATUS[int(code)]
        except (KeyError, ValueError):
            raise ValueError(f"Unknown ledger order status code: {code}")

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.FILLED, OrderStatus.CANCELLED)


_LEDGER_STATUS = {
    0: OrderStatus.ACTIVE,
    1: OrderStatus.FILLED,
    2: OrderStatus.PARTIALLY_FILLED,
    3: OrderStatus.CANCELLED,
    4: OrderStatus.EXPIRED,
}


class CheckpointStatus(str, Enum):
    """Sync progress status of a checkpoint."""

    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


class ProjectionOutcome(str, Enum):
    """What a single projection did to the read model."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    ORDERING_VIOLATION = "ordering_violation"
    IGNORED = "ignored"
