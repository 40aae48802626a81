"""
Pytest fixtures for order book indexer tests.
"""

import pytest

from fakes import CONTRACT, FakeLedgerClient, make_session_factory
from orderbook_indexer.checkpoint import CheckpointStore
from orderbook_indexer.config import IndexerConfig
from orderbook_indexer.handlers.projector import Projector


@pytest.fixture
def session_factory(tmp_path):
    """Fresh SQLite read model per test."""
    return make_session_factory(tmp_path / "indexer.db")


@pytest.fixture
def ledger():
    return FakeLedgerClient()


@pytest.fixture
def config():
    """Fast timings so retry and reconnect paths run in milliseconds."""
    return IndexerConfig.build(
        poll_interval_ms=10,
        max_reconnect_attempts=2,
        reconnect_delay_ms=10,
        batch_size=100,
        genesis_height=0,
        contract_address=CONTRACT,
        network="testnet",
        batch_max_retries=2,
        retry_delay_ms=0,
    )


@pytest.fixture
def checkpoints(session_factory, config):
    return CheckpointStore(session_factory, genesis_height=config.genesis_height)


@pytest.fixture
def projector(session_factory, ledger):
    return Projector(session_factory, ledger=ledger)
