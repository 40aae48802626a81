"""
Reconciliation - read-model vs ledger comparison.

Diagnostic only: samples orders, reads their live state from the ledger and
reports any difference in filled, remaining or status. Nothing is written
back to the read model.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from basecore.db import session_scope
from orderbook_indexer import metrics
from orderbook_indexer.errors import PersistenceError, TransientTransportError
from orderbook_indexer.ledger.base import LedgerClient
from orderbook_indexer.persistence.repo import OrderBookRepository

logger = logging.getLogger(__name__)

COMPARED_FIELDS = ("filled", "remaining", "status")


@dataclass(frozen=True)
class OrderSnapshot:
    """Detached copy of the read-model fields under comparison."""

    order_id: int
    filled: int
    remaining: int
    status: str


@dataclass(frozen=True)
class Divergence:
    order_id: int
    field: str
    indexed: Any
    ledger: Any

    def to_dict(self) -> dict[str, Any]:
        return {"order_id": self.order_id, "field": self.field, "indexed": str(self.indexed), "ledger": str(self.ledger)}


@dataclass(frozen=True)
class TotalsDivergence:
    """Aggregate over all checked orders that differs between the two sides."""

    field: str
    indexed: int
    ledger: int

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "indexed": str(self.indexed), "ledger": str(self.ledger)}


@dataclass
class ReconciliationReport:
    checked: int = 0
    unreachable: list[int] = field(default_factory=list)
    divergences: list[Divergence] = field(default_factory=list)
    total_divergences: list[TotalsDivergence] = field(default_factory=list)
    totals: dict[str, dict[str, int]] = field(
        default_factory=lambda: {"indexed": {"filled": 0, "remaining": 0}, "ledger": {"filled": 0, "remaining": 0}}
    )
    status_counts: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.divergences and not self.total_divergences

    @property
    def diverged_orders(self) -> set[int]:
        return {d.order_id for d in self.divergences}

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "ok": self.ok,
            "unreachable": self.unreachable,
            "divergences": [d.to_dict() for d in self.divergences],
            "total_divergences": [d.to_dict() for d in self.total_divergences],
            "totals": {side: {k: str(v) for k, v in t.items()} for side, t in self.totals.items()},
            "status_counts": self.status_counts,
        }


class Reconciler:
    """Compares indexed orders with ledger detail reads."""

    def __init__(self, session_factory: sessionmaker, ledger: LedgerClient):
        self.session_factory = session_factory
        self.ledger = ledger

    def _load(self, limit: int) -> tuple[list[OrderSnapshot], dict[str, int]]:
        try:
            with session_scope(self.session_factory) as db:
                repo = OrderBookRepository(db)
                orders = [
                    OrderSnapshot(
                        order_id=o.order_id,
                        filled=int(o.filled),
                        remaining=int(o.remaining),
                        status=o.status,
                    )
                    for o in repo.get_orders_for_reconciliation(limit)
                ]
                return orders, repo.count_orders_by_status()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load orders for reconciliation: {e}") from e

    def run(self, limit: int = 100) -> ReconciliationReport:
        """
        Check up to `limit` orders (open ones first, then most recent).

        Orders the ledger cannot be reached for are listed as unreachable,
        not as divergences.
        """
        orders, status_counts = self._load(limit)
        report = ReconciliationReport(status_counts=status_counts)

        for order in orders:
            try:
                detail = self.ledger.query_detail(order.order_id)
            except TransientTransportError as e:
                logger.warning(f"Could not read order #{order.order_id} from ledger: {e}")
                report.unreachable.append(order.order_id)
                continue

            report.checked += 1
            report.totals["indexed"]["filled"] += order.filled
            report.totals["indexed"]["remaining"] += order.remaining
            report.totals["ledger"]["filled"] += detail.filled
            report.totals["ledger"]["remaining"] += detail.remaining

            ledger_values = {"filled": detail.filled, "remaining": detail.remaining, "status": detail.status.value}
            for name in COMPARED_FIELDS:
                indexed = getattr(order, name)
                if indexed != ledger_values[name]:
                    report.divergences.append(Divergence(order.order_id, name, indexed, ledger_values[name]))
                    metrics.RECONCILIATION_DIVERGENCES.labels(field=name).inc()
                    logger.error(
                        f"Order #{order.order_id} diverged on {name}: indexed={indexed} ledger={ledger_values[name]}",
                        extra={"order_id": order.order_id, "field": name},
                    )

        for name in ("filled", "remaining"):
            indexed, ledger = report.totals["indexed"][name], report.totals["ledger"][name]
            if indexed != ledger:
                report.total_divergences.append(TotalsDivergence(name, indexed, ledger))
                metrics.RECONCILIATION_DIVERGENCES.labels(field=f"total_{name}").inc()
                logger.error(
                    f"Total {name} diverged over {report.checked} orders: indexed={indexed} ledger={ledger}",
                    extra={"field": name, "checked": report.checked},
                )

        logger.info(
            f"Reconciliation checked {report.checked} orders, {len(report.diverged_orders)} diverged",
            extra={"checked": report.checked, "unreachable": len(report.unreachable)},
        )
        return report
