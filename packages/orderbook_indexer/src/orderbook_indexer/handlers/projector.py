"""
Projector - maps ledger events to read-model mutations.

Every projection runs in its own transaction and is idempotent on the
entity's natural key, so the live listener and historical sync can both
feed the same Projector and overlap safely.
"""

import logging
import threading
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from basecore.db import session_scope
from orderbook_indexer import metrics
from orderbook_indexer.contracts.events import LedgerEvent
from orderbook_indexer.contracts.types import EventKind, OrderStatus, ProjectionOutcome
from orderbook_indexer.errors import DuplicateEvent, OrderingViolation, PersistenceError, UnknownEventKind
from orderbook_indexer.ledger.base import LedgerClient
from orderbook_indexer.persistence.repo import OrderBookRepository, fill_key, withdrawal_key

logger = logging.getLogger(__name__)


@dataclass
class ProjectionResult:
    """Outcome of projecting one event."""

    kind: EventKind
    key: str
    outcome: ProjectionOutcome
    details: dict[str, Any] = field(default_factory=dict)
    block_height: int | None = None
    tx_hash: str | None = None

    @property
    def applied(self) -> bool:
        return self.outcome == ProjectionOutcome.APPLIED

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "key": self.key,
            "outcome": self.outcome.value,
            "block_height": self.block_height,
            "tx_hash": self.tx_hash,
            "details": self.details,
        }


class ProjectorStats:
    """Thread-safe running totals, shared by the live and backfill paths."""

    def __init__(self):
        self._lock = threading.Lock()
        self.applied: Counter[str] = Counter()
        self.duplicates: Counter[str] = Counter()
        self.ordering_violations = 0
        self.ignored = 0

    def record(self, result: ProjectionResult) -> None:
        with self._lock:
            if result.outcome == ProjectionOutcome.APPLIED:
                self.applied[result.kind.value] += 1
            elif result.outcome == ProjectionOutcome.DUPLICATE:
                self.duplicates[result.kind.value] += 1
            elif result.outcome == ProjectionOutcome.ORDERING_VIOLATION:
                self.ordering_violations += 1
            else:
                self.ignored += 1

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "applied": dict(self.applied),
                "duplicates": dict(self.duplicates),
                "ordering_violations": self.ordering_violations,
                "ignored": self.ignored,
            }


def event_key(event: LedgerEvent) -> str:
    """Natural idempotency key of the entity an event creates or mutates."""
    p = event.payload
    if event.kind == EventKind.ORDER_FILLED:
        return fill_key(p.order_id, p.fill_sequence)
    if event.kind == EventKind.WITHDRAWAL_CLAIMED:
        return withdrawal_key(p.user, event.tx_hash)
    return str(p.order_id)


class Projector:
    """
    Applies ledger events to the read model.

    Dispatch is an explicit table keyed by EventKind. Handlers signal skips
    by raising DuplicateEvent or OrderingViolation; both roll back the
    (empty) transaction and are reported as outcomes, never as failures.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        ledger: LedgerClient | None = None,
        withdrawal_kind: str = "native",
    ):
        """
        Initialize the projector.

        Args:
            session_factory: SQLAlchemy sessionmaker for the read model
            ledger: Used to enrich OrderCreated with the fee snapshot
            withdrawal_kind: Asset kind recorded on withdrawals
        """
        self.session_factory = session_factory
        self.ledger = ledger
        self.withdrawal_kind = withdrawal_kind
        self.stats = ProjectorStats()
        self._handlers: dict[EventKind, Callable[[OrderBookRepository, LedgerEvent], ProjectionResult]] = {
            EventKind.ORDER_CREATED: self._on_order_created,
            EventKind.ORDER_FILLED: self._on_order_filled,
            EventKind.ORDER_CANCELLED: self._on_order_cancelled,
            EventKind.WITHDRAWAL_CLAIMED: self._on_withdrawal_claimed,
        }

    @property
    def kinds(self) -> tuple[EventKind, ...]:
        """Event kinds this projector can apply."""
        return tuple(self._handlers)

    def apply(self, event: LedgerEvent, path: str = "live") -> ProjectionResult:
        """
        Project one event in its own transaction.

        Args:
            event: Ledger event
            path: Label for metrics ("live" or "backfill")

        Returns:
            ProjectionResult describing what happened

        Raises:
            UnknownEventKind: No handler for event.kind
            PersistenceError: The read-model store failed
            TransientTransportError: Fee enrichment read failed
        """
        handler = self._handlers.get(event.kind)
        if handler is None:
            raise UnknownEventKind(str(event.kind))

        key = event_key(event)
        try:
            event = self._with_fee_snapshot(event)
            with session_scope(self.session_factory) as db:
                result = handler(OrderBookRepository(db), event)
        except DuplicateEvent:
            result = self._result(event, key, ProjectionOutcome.DUPLICATE)
        except OrderingViolation as e:
            logger.warning(
                f"Ordering violation: {e}, skipping event",
                extra={
                    "order_id": e.order_id,
                    "event_kind": e.event_kind,
                    "block_height": event.block_height,
                    "tx_hash": event.tx_hash,
                },
            )
            metrics.ORDERING_VIOLATIONS.labels(kind=event.kind.value).inc()
            result = self._result(event, key, ProjectionOutcome.ORDERING_VIOLATION, {"order_id": e.order_id})
        except IntegrityError:
            # Same key inserted concurrently by the other path
            logger.debug(f"Concurrent insert for {event.kind.value} {key}, treating as duplicate")
            result = self._result(event, key, ProjectionOutcome.DUPLICATE, {"reason": "concurrent_insert"})
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to project {event.kind.value} {key}: {e}",
                details={"kind": event.kind.value, "key": key, "block_height": event.block_height},
            ) from e

        self.stats.record(result)
        if result.outcome == ProjectionOutcome.APPLIED:
            metrics.EVENTS_APPLIED.labels(kind=event.kind.value, path=path).inc()
        elif result.outcome == ProjectionOutcome.DUPLICATE:
            metrics.DUPLICATES.labels(kind=event.kind.value, path=path).inc()
            logger.debug(f"Duplicate {event.kind.value} {key}, skipped")
        return result

    def _result(
        self,
        event: LedgerEvent,
        key: str,
        outcome: ProjectionOutcome,
        details: dict[str, Any] | None = None,
    ) -> ProjectionResult:
        return ProjectionResult(
            kind=event.kind,
            key=key,
            outcome=outcome,
            details=details or {},
            block_height=event.block_height,
            tx_hash=event.tx_hash,
        )

    def _with_fee_snapshot(self, event: LedgerEvent) -> LedgerEvent:
        """
        Fill in a missing OrderCreated fee snapshot with one ledger read.

        Runs before the projection transaction opens, so no DB transaction
        is held across the RPC. Orders already indexed are left to the
        handler's duplicate check without a read.
        """
        if event.kind != EventKind.ORDER_CREATED or event.payload.fee_at_creation is not None:
            return event
        if self.ledger is None:
            return event

        order_id = event.payload.order_id
        with session_scope(self.session_factory) as db:
            if OrderBookRepository(db).get_order(order_id) is not None:
                return event

        fee = self.ledger.query_detail(order_id).fee_at_creation
        return replace(event, payload=event.payload.model_copy(update={"fee_at_creation": fee}))

    # --- Handlers ---

    def _on_order_created(self, repo: OrderBookRepository, event: LedgerEvent) -> ProjectionResult:
        p = event.payload
        if repo.get_order(p.order_id) is not None:
            raise DuplicateEvent(str(p.order_id))

        fee = p.fee_at_creation
        if fee is None:
            logger.warning(f"No ledger client to read fee for order #{p.order_id}, recording 0")
            fee = 0
        order = repo.create_order(
            order_id=p.order_id,
            tx_hash=event.tx_hash,
            owner=p.owner,
            side=p.side.value,
            total_amount=p.total_amount,
            counter_amount=p.counter_amount,
            unit_price=p.unit_price,
            fee_at_creation=fee,
            expires_at=p.expires_at,
            source_height=event.block_height,
            created_at=event.block_timestamp,
        )
        if order is None:
            raise DuplicateEvent(str(p.order_id))

        logger.info(
            f"Order #{p.order_id} created",
            extra={"order_id": p.order_id, "owner": p.owner, "side": p.side.value, "block_height": event.block_height},
        )
        return self._result(
            event,
            str(p.order_id),
            ProjectionOutcome.APPLIED,
            {
                "order_id": p.order_id,
                "owner": p.owner,
                "side": p.side.value,
                "total_amount": str(p.total_amount),
                "unit_price": str(p.unit_price),
                "fee_at_creation": str(fee),
            },
        )

    def _on_order_filled(self, repo: OrderBookRepository, event: LedgerEvent) -> ProjectionResult:
        p = event.payload
        key = fill_key(p.order_id, p.fill_sequence)

        order = repo.get_order(p.order_id, for_update=True)
        if order is None:
            raise OrderingViolation(p.order_id, event.kind.value)
        if repo.get_fill(key) is not None:
            raise DuplicateEvent(key)

        repo.record_fill(
            order,
            fill_sequence=p.fill_sequence,
            filler=p.filler,
            amount=p.amount,
            counterparty_amount=p.counterparty_amount,
            tx_hash=event.tx_hash,
            block_height=event.block_height,
            log_index=event.log_index,
            timestamp=event.block_timestamp,
        )
        filled, remaining = repo.apply_fill_totals(order, p.amount, event.block_height)
        if remaining < 0:
            logger.warning(
                f"Order #{p.order_id} overfilled: filled={filled} total={order.total_amount}",
                extra={"order_id": p.order_id, "fill_key": key},
            )

        current = OrderStatus(order.status)
        if current.is_terminal and p.new_status != current:
            logger.warning(
                f"Refusing status change {current.value} -> {p.new_status.value} for terminal order #{p.order_id}",
                extra={"order_id": p.order_id, "fill_key": key, "block_height": event.block_height},
            )
            status = current
        else:
            repo.set_order_status(order, p.new_status, event.block_height)
            status = p.new_status

        logger.info(
            f"Order #{p.order_id} filled {p.amount} (fill {p.fill_sequence}), status {status.value}",
            extra={"order_id": p.order_id, "fill_key": key, "filled": str(filled), "remaining": str(remaining)},
        )
        return self._result(
            event,
            key,
            ProjectionOutcome.APPLIED,
            {
                "order_id": p.order_id,
                "fill_sequence": p.fill_sequence,
                "owner": order.owner,
                "filler": p.filler,
                "amount": str(p.amount),
                "counterparty_amount": str(p.counterparty_amount),
                "filled": str(filled),
                "remaining": str(remaining),
                "status": status.value,
            },
        )

    def _on_order_cancelled(self, repo: OrderBookRepository, event: LedgerEvent) -> ProjectionResult:
        p = event.payload
        key = str(p.order_id)

        order = repo.get_order(p.order_id, for_update=True)
        if order is None:
            raise OrderingViolation(p.order_id, event.kind.value)

        current = OrderStatus(order.status)
        if current == OrderStatus.CANCELLED:
            raise DuplicateEvent(key)
        if current.is_terminal:
            logger.warning(
                f"Ignoring cancel for order #{p.order_id} already {current.value}",
                extra={"order_id": p.order_id, "block_height": event.block_height},
            )
            return self._result(event, key, ProjectionOutcome.IGNORED, {"order_id": p.order_id, "status": current.value})

        repo.set_order_status(order, OrderStatus.CANCELLED, event.block_height)
        logger.info(f"Order #{p.order_id} cancelled", extra={"order_id": p.order_id, "owner": p.owner})
        return self._result(
            event,
            key,
            ProjectionOutcome.APPLIED,
            {
                "order_id": p.order_id,
                "owner": p.owner,
                "counter_refund": str(p.counter_refund),
                "amount_refund": str(p.amount_refund),
            },
        )

    def _on_withdrawal_claimed(self, repo: OrderBookRepository, event: LedgerEvent) -> ProjectionResult:
        p = event.payload
        key = withdrawal_key(p.user, event.tx_hash)

        withdrawal = repo.record_withdrawal(
            user=p.user,
            amount=p.amount,
            kind=self.withdrawal_kind,
            tx_hash=event.tx_hash,
            block_height=event.block_height,
            timestamp=event.block_timestamp,
        )
        if withdrawal is None:
            raise DuplicateEvent(key)

        logger.info(f"Withdrawal of {p.amount} claimed by {p.user}", extra={"user": p.user, "tx_hash": event.tx_hash})
        return self._result(
            event,
            key,
            ProjectionOutcome.APPLIED,
            {"user": p.user, "amount": str(p.amount), "kind": self.withdrawal_kind},
        )
