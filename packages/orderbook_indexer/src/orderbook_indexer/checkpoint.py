"""
Checkpoint Store - durable sync cursor per ledger source.

The cursor only moves forward. advance() is serialized per source inside the
process and is also a conditional UPDATE in the database, so a stale caller
can never move it backwards.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from basecore.db import session_scope
from orderbook_indexer.contracts.types import CheckpointStatus
from orderbook_indexer.errors import PersistenceError
from orderbook_indexer.persistence.models import SyncCheckpoint
from orderbook_indexer.persistence.repo import OrderBookRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Checkpoint:
    """Detached snapshot of a checkpoint row."""

    source: str
    last_processed_height: int
    status: CheckpointStatus
    last_synced_at: datetime | None = None
    last_error: str | None = None

    @property
    def resume_height(self) -> int:
        """First height that still needs processing."""
        return self.last_processed_height + 1

    @classmethod
    def from_row(cls, row: SyncCheckpoint) -> "Checkpoint":
        return cls(
            source=row.source,
            last_processed_height=row.last_processed_height,
            status=CheckpointStatus(row.status),
            last_synced_at=row.last_synced_at,
            last_error=row.last_error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "last_processed_height": self.last_processed_height,
            "resume_height": self.resume_height,
            "status": self.status.value,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
            "last_error": self.last_error,
        }


class CheckpointStore:
    """
    Durable cursor tracking the last processed ledger height per source.

    A fresh checkpoint starts at genesis_height - 1 so the first height
    to process is genesis_height.
    """

    def __init__(self, session_factory: sessionmaker, genesis_height: int = 0):
        self.session_factory = session_factory
        self.genesis_height = genesis_height
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, source: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(source, threading.Lock())

    def get(self, source: str) -> Checkpoint | None:
        """Get the checkpoint for a source, or None if it was never created."""
        try:
            with session_scope(self.session_factory) as db:
                row = OrderBookRepository(db).get_checkpoint(source)
                return Checkpoint.from_row(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read checkpoint for {source}: {e}") from e

    def get_or_create(self, source: str) -> Checkpoint:
        """Get the checkpoint for a source, creating it at genesis on first run."""
        with self._lock_for(source):
            try:
                with session_scope(self.session_factory) as db:
                    repo = OrderBookRepository(db)
                    row = repo.get_checkpoint(source)
                    if row is None:
                        row = repo.create_checkpoint(source, self.genesis_height - 1)
                        logger.info(
                            f"Created checkpoint for {source} at genesis {self.genesis_height}",
                            extra={"source": source, "genesis_height": self.genesis_height},
                        )
                    return Checkpoint.from_row(row)
            except IntegrityError:
                # Another process created it first
                existing = self.get(source)
                if existing is None:
                    raise
                return existing
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to load checkpoint for {source}: {e}") from e

    def advance(self, source: str, height: int, details: dict[str, Any] | None = None) -> bool:
        """
        Advance the cursor to `height`.

        No-op if height <= current height.

        Returns:
            True if the cursor moved
        """
        with self._lock_for(source):
            try:
                with session_scope(self.session_factory) as db:
                    moved = OrderBookRepository(db).advance_checkpoint(source, height, details)
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to advance checkpoint for {source} to {height}: {e}") from e

        if moved:
            logger.debug(f"Checkpoint {source} advanced to {height}", extra={"source": source, "height": height})
        return moved

    def mark_status(self, source: str, status: CheckpointStatus, error: str | None = None) -> None:
        """Record sync status (and the last error, if any) for a source."""
        with self._lock_for(source):
            try:
                with session_scope(self.session_factory) as db:
                    OrderBookRepository(db).set_checkpoint_status(source, status, error)
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to mark checkpoint {source} as {status.value}: {e}") from e
