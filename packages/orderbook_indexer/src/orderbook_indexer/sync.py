"""
Historical Sync - batched backfill over a height range.

Batches are processed strictly in sequence. A batch is fetched for every
event kind, sorted into emission order and projected; only then is the
checkpoint advanced to the batch end. A failed batch is retried as a whole,
which is safe because projection is idempotent.
"""

import logging
import threading
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal, TypeVar

from orderbook_indexer import metrics
from orderbook_indexer.checkpoint import Checkpoint, CheckpointStore
from orderbook_indexer.config import IndexerConfig
from orderbook_indexer.contracts.events import LedgerEvent
from orderbook_indexer.contracts.types import CheckpointStatus, ProjectionOutcome
from orderbook_indexer.errors import PersistenceError, SyncFailed, TransientTransportError
from orderbook_indexer.handlers.projector import Projector, ProjectionResult
from orderbook_indexer.ledger.base import LedgerClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SyncSummary:
    """What one run() covered and did."""

    source: str
    from_height: int
    to_height: int
    batches: int = 0
    applied: Counter = field(default_factory=Counter)
    duplicates: int = 0
    ordering_violations: int = 0
    ignored: int = 0
    stopped: bool = False

    @property
    def total_applied(self) -> int:
        return sum(self.applied.values())

    def record(self, result: ProjectionResult) -> None:
        if result.outcome == ProjectionOutcome.APPLIED:
            self.applied[result.kind.value] += 1
        elif result.outcome == ProjectionOutcome.DUPLICATE:
            self.duplicates += 1
        elif result.outcome == ProjectionOutcome.ORDERING_VIOLATION:
            self.ordering_violations += 1
        else:
            self.ignored += 1

    def merge(self, other: "SyncSummary") -> None:
        self.applied.update(other.applied)
        self.duplicates += other.duplicates
        self.ordering_violations += other.ordering_violations
        self.ignored += other.ignored

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "from_height": self.from_height,
            "to_height": self.to_height,
            "batches": self.batches,
            "applied": dict(self.applied),
            "duplicates": self.duplicates,
            "ordering_violations": self.ordering_violations,
            "ignored": self.ignored,
            "stopped": self.stopped,
        }


class HistoricalSync:
    """Backfill for one ledger source, sharing the live path's Projector."""

    def __init__(
        self,
        config: IndexerConfig,
        ledger: LedgerClient,
        projector: Projector,
        checkpoints: CheckpointStore,
    ):
        self.config = config
        self.ledger = ledger
        self.projector = projector
        self.checkpoints = checkpoints
        self.source = config.source
        self._stop = threading.Event()
        self.last_summary: SyncSummary | None = None
        self.last_error: BaseException | None = None

    def stop(self) -> None:
        """Request a stop; honored between batches and between events."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def run(self, from_height: int | None = None, to_height: int | Literal["latest"] = "latest") -> SyncSummary:
        """
        Backfill [from_height, to_height], inclusive.

        Args:
            from_height: First height (defaults to genesis); raised to the
                checkpoint's resume height when that is further along
            to_height: Last height, or "latest" to resolve the ledger head once

        Returns:
            SyncSummary for the run

        Raises:
            SyncFailed: A batch exhausted its retries; checkpoint is marked failed
            Exception: Anything unexpected (e.g. an undecodable event) is
                re-raised after the checkpoint is marked failed
        """
        self._stop.clear()
        checkpoint = self.checkpoints.get_or_create(self.source)
        try:
            summary = self._sync(checkpoint, from_height, to_height)
        except SyncFailed:
            raise
        except Exception as e:
            logger.error(f"Sync {self.source} aborted: {e}", extra={"source": self.source}, exc_info=True)
            self._mark_failed(f"{type(e).__name__}: {e}")
            raise
        self.last_summary = summary
        return summary

    def _sync(
        self,
        checkpoint: Checkpoint,
        from_height: int | None,
        to_height: int | Literal["latest"],
    ) -> SyncSummary:
        if to_height == "latest":
            end = self._with_retries(self.ledger.get_height, checkpoint.resume_height, checkpoint.resume_height)
            if end is None:
                return SyncSummary(self.source, checkpoint.resume_height, checkpoint.resume_height, stopped=True)
        else:
            end = int(to_height)

        requested = self.config.genesis_height if from_height is None else from_height
        start = max(requested, checkpoint.resume_height)
        summary = SyncSummary(source=self.source, from_height=start, to_height=end)

        if start > end:
            logger.info(
                f"Sync {self.source}: nothing to do (resume {checkpoint.resume_height}, target {end})",
                extra={"source": self.source},
            )
            self.checkpoints.mark_status(self.source, CheckpointStatus.COMPLETED)
            return summary

        logger.info(
            f"Sync {self.source}: heights {start}-{end} in batches of {self.config.batch_size}",
            extra={"source": self.source, "from_height": start, "to_height": end},
        )
        self.checkpoints.mark_status(self.source, CheckpointStatus.SYNCING)

        cursor = checkpoint.resume_height
        for batch_start in range(start, end + 1, self.config.batch_size):
            if self._stop.is_set():
                summary.stopped = True
                break

            batch_end = min(batch_start + self.config.batch_size - 1, end)
            batch = self._with_retries(lambda: self._run_batch(batch_start, batch_end), batch_start, batch_end)
            if batch is None:
                summary.stopped = True
                break

            summary.merge(batch)
            summary.batches += 1

            # Only a batch contiguous with the cursor may move it
            if batch_start <= cursor:
                self.checkpoints.advance(
                    self.source,
                    batch_end,
                    details={"last_batch": [batch_start, batch_end], "applied": batch.total_applied},
                )
                metrics.CHECKPOINT_HEIGHT.labels(source=self.source).set(batch_end)
                cursor = max(cursor, batch_end + 1)
            else:
                logger.debug(f"Batch {batch_start}-{batch_end} not contiguous with resume {cursor}, checkpoint kept")

            logger.info(
                f"Sync {self.source}: batch {batch_start}-{batch_end} done, {batch.total_applied} applied",
                extra={"source": self.source, "batch_start": batch_start, "batch_end": batch_end},
            )

        if summary.stopped:
            logger.info(f"Sync {self.source} stopped before height {end}", extra=summary.to_dict())
        else:
            self.checkpoints.mark_status(self.source, CheckpointStatus.COMPLETED)
            logger.info(f"Sync {self.source} completed through height {end}", extra=summary.to_dict())
        return summary

    def run_in_thread(
        self,
        from_height: int | None = None,
        to_height: int | Literal["latest"] = "latest",
    ) -> threading.Thread:
        """Run on a background thread; the outcome lands in last_summary / last_error."""

        def target() -> None:
            try:
                self.run(from_height, to_height)
            except Exception as e:
                self.last_error = e
                logger.error(f"Background sync {self.source} failed: {e}", exc_info=True)

        self.last_error = None
        thread = threading.Thread(target=target, name=f"sync-{self.source}", daemon=True)
        thread.start()
        return thread

    def _fetch(self, from_height: int, to_height: int) -> list[LedgerEvent]:
        events: list[LedgerEvent] = []
        for kind in self.projector.kinds:
            events.extend(self.ledger.query_events(kind, from_height, to_height))
        events.sort(key=lambda e: e.sort_key)
        return events

    def _run_batch(self, from_height: int, to_height: int) -> SyncSummary | None:
        """Apply one batch. Returns None if a stop request interrupted it."""
        batch = SyncSummary(source=self.source, from_height=from_height, to_height=to_height)
        for event in self._fetch(from_height, to_height):
            if self._stop.is_set():
                return None
            batch.record(self.projector.apply(event, path="backfill"))
        return batch

    def _with_retries(self, fn: Callable[[], T], from_height: int, to_height: int) -> T | None:
        """
        Call fn, retrying transient failures up to batch_max_retries times.

        Returns:
            fn's result, or None if stopped while waiting to retry
        """
        attempt = 0
        while True:
            try:
                return fn()
            except (TransientTransportError, PersistenceError) as e:
                attempt += 1
                if attempt > self.config.batch_max_retries:
                    logger.error(
                        f"Sync {self.source}: heights {from_height}-{to_height} failed after {attempt} attempts: {e}",
                        extra={"source": self.source, "from_height": from_height, "to_height": to_height},
                    )
                    self._mark_failed(str(e))
                    raise SyncFailed(from_height, to_height, e) from e

                logger.warning(
                    f"Sync {self.source}: heights {from_height}-{to_height} attempt {attempt} failed ({e}), "
                    f"retrying in {self.config.retry_delay}s",
                    extra={"source": self.source, "attempt": attempt},
                )
                if self._stop.wait(self.config.retry_delay):
                    return None

    def _mark_failed(self, error: str) -> None:
        try:
            self.checkpoints.mark_status(self.source, CheckpointStatus.FAILED, error=error)
        except PersistenceError as e:
            logger.error(f"Could not mark checkpoint {self.source} failed: {e}")
