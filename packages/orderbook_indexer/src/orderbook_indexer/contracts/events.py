"""
Ledger events - typed wrapper for every event the indexer projects.

A LedgerEvent is a closed tagged variant: `kind` selects which payload
model `payload` holds. Both the live listener and historical sync produce
LedgerEvents; the projector consumes them without caring about the source.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Union

from pydantic import BaseModel, Field, field_validator

from orderbook_indexer.contracts.types import EventKind, OrderSide, OrderStatus


def _lower_address(value: str) -> str:
    return value.lower() if isinstance(value, str) else value


class OrderCreatedPayload(BaseModel):
    """Payload for OrderCreated."""

    order_id: int = Field(..., ge=0)
    owner: str = Field(..., description="Order creator address")
    side: OrderSide
    total_amount: int = Field(..., ge=0, description="Base token amount of the order")
    counter_amount: int = Field(..., ge=0, description="Quote amount locked by the order")
    unit_price: int = Field(..., ge=0)
    expires_at: datetime
    fee_at_creation: int | None = Field(None, ge=0, description="Fee snapshot, if emitted")

    @field_validator("owner")
    @classmethod
    def normalize_owner(cls, value: str) -> str:
        return _lower_address(value)


class OrderFilledPayload(BaseModel):
    """Payload for OrderFilled. new_status is authoritative."""

    order_id: int = Field(..., ge=0)
    fill_sequence: int = Field(..., ge=0)
    filler: str
    amount: int = Field(..., ge=0)
    counterparty_amount: int = Field(..., ge=0)
    new_status: OrderStatus

    @field_validator("filler")
    @classmethod
    def normalize_filler(cls, value: str) -> str:
        return _lower_address(value)


class OrderCancelledPayload(BaseModel):
    """Payload for OrderCancelled."""

    order_id: int = Field(..., ge=0)
    owner: str
    counter_refund: int = Field(0, ge=0)
    amount_refund: int = Field(0, ge=0)

    @field_validator("owner")
    @classmethod
    def normalize_owner(cls, value: str) -> str:
        return _lower_address(value)


class WithdrawalClaimedPayload(BaseModel):
    """Payload for WithdrawalClaimed."""

    user: str
    amount: int = Field(..., ge=0)

    @field_validator("user")
    @classmethod
    def normalize_user(cls, value: str) -> str:
        return _lower_address(value)


EventPayload = Union[
    OrderCreatedPayload,
    OrderFilledPayload,
    OrderCancelledPayload,
    WithdrawalClaimedPayload,
]

PAYLOAD_MODELS: dict[EventKind, type[BaseModel]] = {
    EventKind.ORDER_CREATED: OrderCreatedPayload,
    EventKind.ORDER_FILLED: OrderFilledPayload,
    EventKind.ORDER_CANCELLED: OrderCancelledPayload,
    EventKind.WITHDRAWAL_CLAIMED: WithdrawalClaimedPayload,
}


@dataclass(frozen=True)
class LedgerEvent:
    """
    One immutable ledger event.

    Attributes:
        kind: Event kind tag
        payload: Typed payload matching `kind`
        block_height: Height of the block that emitted the event
        tx_hash: Transaction hash
        log_index: Position of the log inside the block (emission order)
        block_timestamp: Block time, when the source provides it
    """

    kind: EventKind
    payload: EventPayload
    block_height: int
    tx_hash: str
    log_index: int = 0
    block_timestamp: datetime | None = None

    @classmethod
    def create(
        cls,
        kind: EventKind | str,
        payload: dict[str, Any] | BaseModel,
        block_height: int,
        tx_hash: str,
        log_index: int = 0,
        block_timestamp: datetime | None = None,
    ) -> "LedgerEvent":
        """Build an event, validating the payload against the model for `kind`."""
        kind = EventKind(kind)
        model = PAYLOAD_MODELS[kind]
        if not isinstance(payload, model):
            data = payload.model_dump() if isinstance(payload, BaseModel) else payload
            payload = model.model_validate(data)
        return cls(
            kind=kind,
            payload=payload,
            block_height=int(block_height),
            tx_hash=tx_hash.lower(),
            log_index=int(log_index),
            block_timestamp=block_timestamp,
        )

    @property
    def order_id(self) -> int | None:
        """Order the event refers to (None for withdrawals)."""
        return getattr(self.payload, "order_id", None)

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.block_height, self.log_index)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "kind": self.kind.value,
            "payload": self.payload.model_dump(mode="json"),
            "block_height": self.block_height,
            "tx_hash": self.tx_hash,
            "log_index": self.log_index,
            "block_timestamp": self.block_timestamp.isoformat() if self.block_timestamp else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LedgerEvent":
        """Create a LedgerEvent from a dictionary produced by to_dict()."""
        ts = data.get("block_timestamp")
        return cls.create(
            kind=data["kind"],
            payload=data["payload"],
            block_height=data["block_height"],
            tx_hash=data["tx_hash"],
            log_index=data.get("log_index", 0),
            block_timestamp=datetime.fromisoformat(ts) if isinstance(ts, str) else ts,
        )
