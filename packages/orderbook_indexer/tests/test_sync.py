"""
Tests for historical sync (backfill).
"""

import threading

import pytest

from fakes import FakeLedgerClient, cancelled, created, fetch, filled, make_session_factory, wait_for, withdrawal, OWNER
from orderbook_indexer.checkpoint import CheckpointStore
from orderbook_indexer.contracts.types import CheckpointStatus, EventKind, OrderStatus
from orderbook_indexer.errors import PersistenceError, SyncFailed
from orderbook_indexer.handlers.projector import Projector
from orderbook_indexer.listener import EventListener
from orderbook_indexer.persistence.models import Order, OrderFill, Withdrawal
from orderbook_indexer.sync import HistoricalSync


def ledger_history(start: int = 0) -> list:
    """Orders created every 50 heights, each filled twice and one cancelled."""
    events = []
    for i, height in enumerate(range(start, start + 400, 50), start=1):
        events.append(created(i, height=height, total=1000))
        events.append(filled(i, 1, 300, height=height + 10))
        events.append(filled(i, 2, 700, height=height + 20, new_status=OrderStatus.FILLED))
    events.append(created(100, height=start + 5, log_index=1))
    events.append(cancelled(100, height=start + 390))
    events.append(withdrawal(OWNER, 123, height=start + 399))
    return events


def read_model(session_factory) -> dict:
    orders = {o.order_id: (o.filled, o.remaining, o.status) for o in fetch(session_factory, Order)}
    fills = sorted(f.fill_key for f in fetch(session_factory, OrderFill))
    withdrawals = sorted(w.withdrawal_key for w in fetch(session_factory, Withdrawal))
    return {"orders": orders, "fills": fills, "withdrawals": withdrawals}


class FlakyProjector(Projector):
    """Fails once on the first event at or above fail_at."""

    def __init__(self, *args, fail_at: int, checkpoints: CheckpointStore, source: str, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_at = fail_at
        self.checkpoints = checkpoints
        self.source = source
        self.failed = False
        self.checkpoint_during_failure = None

    def apply(self, event, path="live"):
        if not self.failed and event.block_height >= self.fail_at:
            self.failed = True
            self.checkpoint_during_failure = self.checkpoints.get(self.source)
            raise PersistenceError("deadlock detected")
        return super().apply(event, path)


@pytest.fixture
def sync(config, ledger, projector, checkpoints):
    return HistoricalSync(config, ledger, projector, checkpoints)


class TestHistoricalSync:
    """Tests for HistoricalSync."""

    def test_full_backfill(self, sync, ledger, checkpoints, config, session_factory):
        ledger.add(*ledger_history())

        summary = sync.run(to_height=499)

        assert summary.batches == 5
        assert summary.from_height == 0
        assert summary.to_height == 499
        assert summary.ordering_violations == 0
        assert summary.applied["OrderCreated"] == 9
        assert summary.applied["OrderFilled"] == 16
        cp = checkpoints.get(config.source)
        assert cp.last_processed_height == 499
        assert cp.status == CheckpointStatus.COMPLETED
        assert read_model(session_factory)["orders"][1] == ("1000", "0", "filled")
        assert read_model(session_factory)["orders"][100][2] == "cancelled"

    def test_batches_are_inclusive_and_contiguous(self, sync, ledger):
        ledger.height = 250

        sync.run()

        windows = sorted({(f, t) for _, f, t in ledger.query_calls})
        assert windows == [(0, 99), (100, 199), (200, 250)]

    def test_latest_resolved_once(self, sync, ledger):
        ledger.height = 150

        summary = sync.run(to_height="latest")

        assert summary.to_height == 150
        assert ledger.height_calls == 1

    def test_events_applied_in_emission_order(self, sync, ledger):
        """Test a fill in the same block as its order is not a violation."""
        ledger.add(filled(1, 1, 10, height=5, log_index=2), created(1, height=5, log_index=1))

        summary = sync.run(to_height=10)

        assert summary.ordering_violations == 0

    def test_resume_from_checkpoint(self, sync, ledger, checkpoints, config, session_factory):
        """Test a second run continues where the first stopped."""
        ledger.add(*ledger_history())
        sync.run(to_height=199)
        assert checkpoints.get(config.source).last_processed_height == 199
        ledger.query_calls.clear()

        summary = sync.run(from_height=0, to_height=499)

        assert summary.from_height == 200
        assert min(f for _, f, _ in ledger.query_calls) == 200
        assert checkpoints.get(config.source).last_processed_height == 499
        assert summary.duplicates == 0

    def test_replay_is_idempotent(self, sync, ledger, session_factory, checkpoints, config):
        """Test replaying an already-synced range changes nothing."""
        ledger.add(*ledger_history())
        sync.run(to_height=499)
        before = read_model(session_factory)

        # Fresh cursor forces a full replay against the populated store
        other = HistoricalSync(config, ledger, sync.projector, CheckpointStore(session_factory, genesis_height=0))
        other.source = "replay"
        summary = other.run(to_height=499)

        assert read_model(session_factory) == before
        assert summary.total_applied == 0
        assert summary.duplicates > 0

    def test_nothing_to_do(self, sync, ledger, checkpoints, config):
        sync.run(to_height=100)

        summary = sync.run(to_height=50)

        assert summary.batches == 0
        assert checkpoints.get(config.source).last_processed_height == 100

    def test_retry_after_transport_failure(self, sync, ledger, checkpoints, config):
        ledger.add(*ledger_history())
        ledger.fail_queries = 2

        sync.run(to_height=499)

        assert checkpoints.get(config.source).last_processed_height == 499

    def test_retries_exhausted(self, sync, ledger, checkpoints, config):
        """Test the checkpoint keeps the prior boundary and is marked failed."""
        ledger.add(*ledger_history())
        sync.run(to_height=199)
        ledger.fail_queries = 100

        with pytest.raises(SyncFailed) as exc_info:
            sync.run(to_height=499)

        assert exc_info.value.from_height == 200
        assert exc_info.value.to_height == 299
        cp = checkpoints.get(config.source)
        assert cp.last_processed_height == 199
        assert cp.status == CheckpointStatus.FAILED
        assert "timed out" in cp.last_error

    def test_unexpected_error_marks_checkpoint_failed(self, sync, ledger, checkpoints, config):
        """Test a non-transient error is re-raised with the checkpoint marked failed."""
        ledger.add(*ledger_history())
        sync.run(to_height=199)

        def undecodable(kind, from_height, to_height):
            raise ValueError("unknown ledger status code 9")

        ledger.query_events = undecodable

        with pytest.raises(ValueError):
            sync.run(to_height=499)

        cp = checkpoints.get(config.source)
        assert cp.last_processed_height == 199
        assert cp.status == CheckpointStatus.FAILED
        assert cp.last_error == "ValueError: unknown ledger status code 9"

    def test_non_contiguous_range_does_not_move_checkpoint(self, sync, ledger, checkpoints, config):
        """Test backfilling ahead of the cursor never skips the gap."""
        ledger.add(*ledger_history())

        summary = sync.run(from_height=300, to_height=499)

        assert summary.batches == 2
        assert checkpoints.get(config.source).last_processed_height == -1

    def test_stop_between_events(self, config, ledger, checkpoints, session_factory):
        ledger.add(*ledger_history())

        class StoppingProjector(Projector):
            def apply(self, event, path="live"):
                result = super().apply(event, path)
                sync.stop()
                return result

        sync = HistoricalSync(config, ledger, StoppingProjector(session_factory, ledger=ledger), checkpoints)
        summary = sync.run(to_height=499)

        assert summary.stopped is True
        assert summary.batches == 0
        cp = checkpoints.get(config.source)
        assert cp.last_processed_height == -1
        assert cp.status == CheckpointStatus.SYNCING


class TestInterruptedBackfill:
    """Backfill of 100..499 in batches of 100 with one persistence failure at 300."""

    def test_failed_batch_keeps_prior_boundary(self, tmp_path, config):
        config = config.model_copy(update={"genesis_height": 100})
        ledger = FakeLedgerClient()
        ledger.add(*ledger_history(start=100))

        session_factory = make_session_factory(tmp_path / "interrupted.db")
        checkpoints = CheckpointStore(session_factory, genesis_height=100)
        projector = FlakyProjector(
            session_factory, ledger=ledger, fail_at=300, checkpoints=checkpoints, source=config.source
        )
        summary = HistoricalSync(config, ledger, projector, checkpoints).run(from_height=100, to_height=499)

        during = projector.checkpoint_during_failure
        assert during.last_processed_height == 299
        assert during.resume_height == 300
        assert summary.batches == 4
        assert checkpoints.get(config.source).last_processed_height == 499

        # Same history, no failure
        clean_factory = make_session_factory(tmp_path / "clean.db")
        clean_checkpoints = CheckpointStore(clean_factory, genesis_height=0)
        HistoricalSync(
            config.model_copy(update={"genesis_height": 0}),
            ledger,
            Projector(clean_factory, ledger=ledger),
            clean_checkpoints,
        ).run(from_height=0, to_height=499)

        assert read_model(session_factory) == read_model(clean_factory)


class TestBackgroundSync:
    def test_run_in_thread(self, sync, ledger):
        ledger.add(*ledger_history())

        thread = sync.run_in_thread(to_height=499)
        thread.join(timeout=10)

        assert not thread.is_alive()
        assert sync.last_error is None
        assert sync.last_summary.to_height == 499

    def test_run_in_thread_records_failure(self, sync, ledger):
        ledger.fail_heights = 100

        thread = sync.run_in_thread()
        thread.join(timeout=10)

        assert isinstance(sync.last_error, SyncFailed)


def test_summary_kinds_match_event_kinds(sync, ledger):
    ledger.add(*ledger_history())
    summary = sync.run(to_height=499)

    assert set(summary.applied) <= {k.value for k in EventKind}


class RecordingCheckpointStore(CheckpointStore):
    """Records the stored height after every advance() call."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.heights: list[int] = []
        self._record_lock = threading.Lock()

    def advance(self, source, height, details=None):
        moved = super().advance(source, height, details)
        with self._record_lock:
            self.heights.append(self.get(source).last_processed_height)
        return moved


class TestOverlappingPaths:
    """Listener and backfill running at the same time over the same heights."""

    def test_overlap_applies_each_fill_once(self, tmp_path, config):
        config = config.model_copy(update={"max_reconnect_attempts": 5, "batch_max_retries": 5})
        ledger = FakeLedgerClient()
        ledger.add(*ledger_history())
        session_factory = make_session_factory(tmp_path / "overlap.db")
        checkpoints = RecordingCheckpointStore(session_factory, genesis_height=0)
        projector = Projector(session_factory, ledger=ledger)

        listener = EventListener(config, ledger, projector, checkpoints)
        sync = HistoricalSync(config, ledger, projector, checkpoints)
        try:
            thread = sync.run_in_thread(from_height=0, to_height=399)
            listener.start()
            thread.join(timeout=30)
            assert wait_for(lambda: checkpoints.get(config.source).last_processed_height == 399, timeout=30)
        finally:
            listener.stop(timeout=5)

        assert not thread.is_alive()
        assert sync.last_error is None
        assert listener.fatal_error is None

        fills = fetch(session_factory, OrderFill)
        assert len(fills) == 16
        assert len({f.fill_key for f in fills}) == 16
        stats = projector.stats.snapshot()
        assert stats["applied"]["OrderFilled"] == 16
        assert stats["applied"]["OrderCreated"] == 9
        assert stats["ordering_violations"] == 0

        orders = read_model(session_factory)["orders"]
        assert all(filled_amount == "1000" for filled_amount, _, _ in (orders[i] for i in range(1, 9)))
        assert checkpoints.heights == sorted(checkpoints.heights)

        # Same history applied by a single path
        clean_factory = make_session_factory(tmp_path / "single.db")
        HistoricalSync(
            config,
            ledger,
            Projector(clean_factory, ledger=ledger),
            CheckpointStore(clean_factory, genesis_height=0),
        ).run(to_height=399)
        assert read_model(session_factory) == read_model(clean_factory)
