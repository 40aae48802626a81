"""
Indexer configuration.

IndexerConfig is validated once at startup; any problem is raised as a
ConfigurationError so the process never starts half-configured.
"""

from pydantic import BaseModel, Field, ValidationError, field_validator

from basecore.settings import Settings, get_settings
from orderbook_indexer.errors import ConfigurationError


class IndexerConfig(BaseModel):
    """Validated configuration for one ledger source."""

    # Required pipeline knobs
    poll_interval_ms: int = Field(..., gt=0)
    max_reconnect_attempts: int = Field(..., ge=0)
    reconnect_delay_ms: int = Field(..., ge=0)
    batch_size: int = Field(..., gt=0)
    genesis_height: int = Field(..., ge=0)

    # Ledger source
    rpc_url: str = "http://localhost:8545"
    contract_address: str = ""
    network: str = "bscTestnet"
    rpc_timeout_seconds: float = Field(30.0, gt=0)

    # Backfill retry policy
    batch_max_retries: int = Field(3, ge=0)
    retry_delay_ms: int = Field(2000, ge=0)

    withdrawal_kind: str = "native"

    notify_stream: str | None = None
    notify_webhook_url: str | None = None

    @field_validator("contract_address")
    @classmethod
    def normalize_contract_address(cls, value: str) -> str:
        value = value.strip().lower()
        if value and (not value.startswith("0x") or len(value) != 42):
            raise ValueError("contract_address must be a 0x-prefixed 20-byte hex address")
        return value

    @field_validator("rpc_url")
    @classmethod
    def rpc_url_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("rpc_url is required and cannot be empty")
        return value

    @property
    def source(self) -> str:
        """Checkpoint source identifier: one per contract per network."""
        return f"{self.network}:{self.contract_address}"

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def reconnect_delay(self) -> float:
        return self.reconnect_delay_ms / 1000

    @property
    def retry_delay(self) -> float:
        return self.retry_delay_ms / 1000

    @classmethod
    def build(cls, **values) -> "IndexerConfig":
        """Validate values, raising ConfigurationError instead of ValidationError."""
        try:
            return cls(**values)
        except ValidationError as e:
            problems = {".".join(str(p) for p in err["loc"]): err["msg"] for err in e.errors()}
            raise ConfigurationError(f"Invalid indexer configuration: {problems}", details=problems)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "IndexerConfig":
        """Build config from environment settings."""
        settings = settings or get_settings()
        config = cls.build(
            poll_interval_ms=settings.INDEXER_POLL_INTERVAL_MS,
            max_reconnect_attempts=settings.INDEXER_MAX_RECONNECT_ATTEMPTS,
            reconnect_delay_ms=settings.INDEXER_RECONNECT_DELAY_MS,
            batch_size=settings.INDEXER_BATCH_SIZE,
            genesis_height=settings.INDEXER_GENESIS_HEIGHT,
            rpc_url=settings.INDEXER_RPC_URL,
            contract_address=settings.INDEXER_CONTRACT_ADDRESS,
            network=settings.INDEXER_NETWORK,
            rpc_timeout_seconds=settings.INDEXER_RPC_TIMEOUT_SECONDS,
            batch_max_retries=settings.INDEXER_BATCH_MAX_RETRIES,
            retry_delay_ms=settings.INDEXER_RETRY_DELAY_MS,
            withdrawal_kind=settings.INDEXER_WITHDRAWAL_KIND,
            notify_stream=settings.INDEXER_NOTIFY_STREAM,
            notify_webhook_url=settings.INDEXER_NOTIFY_WEBHOOK_URL,
        )
        if not config.contract_address:
            raise ConfigurationError(
                "INDEXER_CONTRACT_ADDRESS is required and cannot be empty",
                details={"contract_address": "missing"},
            )
        return config
