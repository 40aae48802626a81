"""Event contracts - ledger event wrapper, payloads and shared enums."""

from orderbook_indexer.contracts.events import (
    PAYLOAD_MODELS,
    LedgerEvent,
    OrderCancelledPayload,
    OrderCreatedPayload,
    OrderFilledPayload,
    WithdrawalClaimedPayload,
)
from orderbook_indexer.contracts.types import (
    CheckpointStatus,
    EventKind,
    OrderSide,
    OrderStatus,
    ProjectionOutcome,
)

__all__ = [
    "PAYLOAD_MODELS",
    "LedgerEvent",
    "OrderCancelledPayload",
    "OrderCreatedPayload",
    "OrderFilledPayload",
    "WithdrawalClaimedPayload",
    "CheckpointStatus",
    "EventKind",
    "OrderSide",
    "OrderStatus",
    "ProjectionOutcome",
]
