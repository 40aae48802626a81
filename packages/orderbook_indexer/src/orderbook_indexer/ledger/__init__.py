"""Ledger access - client interface, live subscription and web3 implementation."""

from orderbook_indexer.ledger.base import (
    ALL_EVENT_KINDS,
    DeliveredUnit,
    LedgerClient,
    OrderDetail,
    PollingSubscription,
    Subscription,
)

__all__ = [
    "ALL_EVENT_KINDS",
    "DeliveredUnit",
    "LedgerClient",
    "OrderDetail",
    "PollingSubscription",
    "Subscription",
]
