"""
Tests for the checkpoint store.
"""

import threading

import pytest
from sqlalchemy.exc import OperationalError

from orderbook_indexer.checkpoint import CheckpointStore
from orderbook_indexer.contracts.types import CheckpointStatus
from orderbook_indexer.errors import PersistenceError
from orderbook_indexer.persistence.repo import OrderBookRepository

SOURCE = "testnet:0xabc"


class TestCheckpointStore:
    """Tests for CheckpointStore."""

    def test_missing_checkpoint(self, checkpoints):
        assert checkpoints.get(SOURCE) is None

    def test_new_checkpoint_resumes_at_genesis(self, session_factory):
        """Test a fresh source starts one below genesis."""
        store = CheckpointStore(session_factory, genesis_height=100)

        cp = store.get_or_create(SOURCE)

        assert cp.last_processed_height == 99
        assert cp.resume_height == 100
        assert cp.status == CheckpointStatus.SYNCING

    def test_get_or_create_is_stable(self, checkpoints):
        checkpoints.get_or_create(SOURCE)
        checkpoints.advance(SOURCE, 10)

        assert checkpoints.get_or_create(SOURCE).last_processed_height == 10

    def test_advance_moves_forward(self, checkpoints):
        checkpoints.get_or_create(SOURCE)

        assert checkpoints.advance(SOURCE, 50) is True
        cp = checkpoints.get(SOURCE)
        assert cp.last_processed_height == 50
        assert cp.resume_height == 51
        assert cp.last_synced_at is not None

    def test_advance_never_moves_backwards(self, checkpoints):
        """Test lower or equal heights are no-ops."""
        checkpoints.get_or_create(SOURCE)
        checkpoints.advance(SOURCE, 50)

        assert checkpoints.advance(SOURCE, 20) is False
        assert checkpoints.advance(SOURCE, 50) is False
        assert checkpoints.get(SOURCE).last_processed_height == 50

    def test_concurrent_advances_keep_maximum(self, checkpoints):
        """Test racing writers leave the highest height."""
        checkpoints.get_or_create(SOURCE)
        heights = list(range(1, 41))
        threads = [threading.Thread(target=checkpoints.advance, args=(SOURCE, h)) for h in reversed(heights)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert checkpoints.get(SOURCE).last_processed_height == 40

    def test_sources_are_independent(self, checkpoints):
        checkpoints.get_or_create(SOURCE)
        checkpoints.get_or_create("mainnet:0xdef")
        checkpoints.advance(SOURCE, 7)

        assert checkpoints.get("mainnet:0xdef").last_processed_height == -1

    def test_mark_status_records_error(self, checkpoints):
        checkpoints.get_or_create(SOURCE)

        checkpoints.mark_status(SOURCE, CheckpointStatus.FAILED, error="rpc timeout")
        cp = checkpoints.get(SOURCE)
        assert cp.status == CheckpointStatus.FAILED
        assert cp.last_error == "rpc timeout"

        checkpoints.mark_status(SOURCE, CheckpointStatus.COMPLETED)
        cp = checkpoints.get(SOURCE)
        assert cp.status == CheckpointStatus.COMPLETED
        assert cp.last_error is None

    def test_store_failure_is_wrapped(self, checkpoints, monkeypatch):
        checkpoints.get_or_create(SOURCE)

        def broken(self, source, height, details=None):
            raise OperationalError("UPDATE", {}, Exception("disk I/O error"))

        monkeypatch.setattr(OrderBookRepository, "advance_checkpoint", broken)

        with pytest.raises(PersistenceError):
            checkpoints.advance(SOURCE, 5)

    def test_to_dict(self, checkpoints):
        data = checkpoints.get_or_create(SOURCE).to_dict()

        assert data["source"] == SOURCE
        assert data["resume_height"] == 0
        assert data["status"] == "syncing"
