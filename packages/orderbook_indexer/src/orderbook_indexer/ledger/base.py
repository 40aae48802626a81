"""
Ledger Client Base

Abstract interface to the ledger (the order book contract's event log and
read queries). Implementations: web3 JSON-RPC client; tests use a scripted
in-memory client.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime

from orderbook_indexer.contracts.events import LedgerEvent
from orderbook_indexer.contracts.types import EventKind, OrderSide, OrderStatus

logger = logging.getLogger(__name__)

ALL_EVENT_KINDS: tuple[EventKind, ...] = tuple(EventKind)


@dataclass(frozen=True)
class OrderDetail:
    """Order state as read directly from the ledger."""

    order_id: int
    owner: str
    side: OrderSide
    total_amount: int
    counter_amount: int
    unit_price: int
    filled: int
    remaining: int
    created_at: datetime | None
    expires_at: datetime | None
    status: OrderStatus
    fee_at_creation: int


@dataclass(frozen=True)
class DeliveredUnit:
    """
    Events for one contiguous height window, in emission order.

    Once every event in the unit is applied, end_height is safe to
    checkpoint.
    """

    from_height: int
    end_height: int
    events: list[LedgerEvent] = field(default_factory=list)


class Subscription(ABC):
    """Live event stream. Iterate for units; close() to unsubscribe."""

    @abstractmethod
    def __iter__(self) -> Iterator[DeliveredUnit]:
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...


class LedgerClient(ABC):
    """
    Abstract interface to the ledger.

    Every method may raise TransientTransportError on network/RPC failure.
    """

    @abstractmethod
    def get_height(self) -> int:
        """Current (finalized enough to index) ledger height."""

    @abstractmethod
    def query_events(self, kind: EventKind, from_height: int, to_height: int) -> list[LedgerEvent]:
        """Events of one kind in [from_height, to_height], inclusive."""

    @abstractmethod
    def query_detail(self, order_id: int) -> OrderDetail:
        """Read an order's current state from the ledger."""

    def subscribe(
        self,
        kinds: Iterable[EventKind] = ALL_EVENT_KINDS,
        from_height: int = 0,
        poll_interval: float = 15.0,
        max_window: int = 1000,
    ) -> Subscription:
        """Subscribe to live events starting at from_height."""
        return PollingSubscription(self, kinds, from_height, poll_interval, max_window)


class PollingSubscription(Subscription):
    """
    Subscription built on get_height() + query_events().

    Each iteration step covers at most max_window heights. Waiting between
    polls is done on an Event so close() interrupts it immediately.
    """

    def __init__(
        self,
        client: LedgerClient,
        kinds: Iterable[EventKind],
        from_height: int,
        poll_interval: float,
        max_window: int,
    ):
        self.client = client
        self.kinds = tuple(kinds)
        self.next_height = from_height
        self.poll_interval = poll_interval
        self.max_window = max_window
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        self._closed.set()

    def __iter__(self) -> Iterator[DeliveredUnit]:
        while not self._closed.is_set():
            head = self.client.get_height()

            if head >= self.next_height:
                end = min(head, self.next_height + self.max_window - 1)
                events: list[LedgerEvent] = []
                for kind in self.kinds:
                    events.extend(self.client.query_events(kind, self.next_height, end))
                events.sort(key=lambda e: e.sort_key)

                unit = DeliveredUnit(from_height=self.next_height, end_height=end, events=events)
                self.next_height = end + 1
                yield unit

                if end < head:
                    continue  # Still behind head, poll again right away

            if self._closed.wait(self.poll_interval):
                break
