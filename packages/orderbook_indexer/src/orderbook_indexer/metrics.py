"""
Prometheus metrics for the indexer.

Counters live in a dedicated registry so several service instances in one
process (tests, CLI) never collide on the global default registry.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

REGISTRY = CollectorRegistry(auto_describe=True)

EVENTS_APPLIED = Counter(
    "orderbook_events_applied_total",
    "Ledger events projected into the read model",
    ["kind", "path"],
    registry=REGISTRY,
)

DUPLICATES = Counter(
    "orderbook_duplicate_events_total",
    "Ledger events skipped because their idempotency key was already present",
    ["kind", "path"],
    registry=REGISTRY,
)

ORDERING_VIOLATIONS = Counter(
    "orderbook_ordering_violations_total",
    "Events that referenced an order missing from the read model",
    ["kind"],
    registry=REGISTRY,
)

RECONNECTS = Counter(
    "orderbook_listener_reconnects_total",
    "Live listener reconnect attempts",
    ["source"],
    registry=REGISTRY,
)

RECONCILIATION_DIVERGENCES = Counter(
    "orderbook_reconciliation_divergences_total",
    "Orders whose read-model state differs from the ledger",
    ["field"],
    registry=REGISTRY,
)

CHECKPOINT_HEIGHT = Gauge(
    "orderbook_checkpoint_height",
    "Last processed ledger height per source",
    ["source"],
    registry=REGISTRY,
)


def render_latest() -> bytes:
    """Serialize the indexer registry in the Prometheus text format."""
    return generate_latest(REGISTRY)
