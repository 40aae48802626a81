"""Event handlers - projection of ledger events into the read model."""

from orderbook_indexer.handlers.projector import Projector, ProjectionResult, ProjectorStats, event_key

__all__ = ["Projector", "ProjectionResult", "ProjectorStats", "event_key"]
