"""
Tests for indexer configuration.
"""

import pytest

from basecore.settings import Settings
from fakes import CONTRACT
from orderbook_indexer.config import IndexerConfig
from orderbook_indexer.errors import ConfigurationError

REQUIRED = {
    "poll_interval_ms": 15000,
    "max_reconnect_attempts": 5,
    "reconnect_delay_ms": 5000,
    "batch_size": 1000,
    "genesis_height": 0,
}


class TestIndexerConfig:
    """Tests for IndexerConfig validation."""

    def test_valid_config(self):
        config = IndexerConfig.build(**REQUIRED, contract_address=CONTRACT.upper().replace("0X", "0x"))

        assert config.contract_address == CONTRACT
        assert config.source == f"bscTestnet:{CONTRACT}"
        assert config.poll_interval == 15.0
        assert config.reconnect_delay == 5.0

    @pytest.mark.parametrize(
        "field,value",
        [
            ("poll_interval_ms", 0),
            ("max_reconnect_attempts", -1),
            ("reconnect_delay_ms", -5),
            ("batch_size", 0),
            ("genesis_height", -1),
        ],
    )
    def test_invalid_required_values(self, field, value):
        with pytest.raises(ConfigurationError) as exc_info:
            IndexerConfig.build(**{**REQUIRED, field: value})

        assert field in exc_info.value.details
        assert exc_info.value.code == "CONFIG_ERROR"

    def test_missing_required_value(self):
        values = dict(REQUIRED)
        del values["batch_size"]

        with pytest.raises(ConfigurationError) as exc_info:
            IndexerConfig.build(**values)
        assert "batch_size" in exc_info.value.details

    def test_bad_contract_address(self):
        with pytest.raises(ConfigurationError):
            IndexerConfig.build(**REQUIRED, contract_address="0x1234")

    def test_blank_rpc_url(self):
        with pytest.raises(ConfigurationError):
            IndexerConfig.build(**REQUIRED, rpc_url="  ")


class TestFromSettings:
    """Tests for building config from environment settings."""

    def test_defaults(self):
        settings = Settings(INDEXER_CONTRACT_ADDRESS=CONTRACT)

        config = IndexerConfig.from_settings(settings)

        assert config.poll_interval_ms == 15000
        assert config.max_reconnect_attempts == 5
        assert config.reconnect_delay_ms == 5000
        assert config.batch_size == 1000
        assert config.genesis_height == 0
        assert config.withdrawal_kind == "native"

    def test_missing_contract_address(self):
        with pytest.raises(ConfigurationError):
            IndexerConfig.from_settings(Settings(INDEXER_CONTRACT_ADDRESS=""))

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("INDEXER_CONTRACT_ADDRESS", CONTRACT)
        monkeypatch.setenv("INDEXER_BATCH_SIZE", "250")
        monkeypatch.setenv("INDEXER_GENESIS_HEIGHT", "12345")

        config = IndexerConfig.from_settings(Settings())

        assert config.batch_size == 250
        assert config.genesis_height == 12345

    def test_invalid_environment(self, monkeypatch):
        monkeypatch.setenv("INDEXER_CONTRACT_ADDRESS", CONTRACT)
        monkeypatch.setenv("INDEXER_POLL_INTERVAL_MS", "0")

        with pytest.raises(ConfigurationError):
            IndexerConfig.from_settings(Settings())
