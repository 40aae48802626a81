"""
Indexer-owned persistence: read-model tables and repository.

These tables are OWNED by the indexer. Query layers only read from them.
"""

from orderbook_indexer.persistence.models import (
    Order,
    OrderBookBase,
    OrderFill,
    SyncCheckpoint,
    Withdrawal,
)
from orderbook_indexer.persistence.repo import OrderBookRepository, fill_key, withdrawal_key

__all__ = [
    "Order",
    "OrderBookBase",
    "OrderFill",
    "SyncCheckpoint",
    "Withdrawal",
    "OrderBookRepository",
    "fill_key",
    "withdrawal_key",
]
