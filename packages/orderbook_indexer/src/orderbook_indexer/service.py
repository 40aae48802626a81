"""
Indexer Service - startup wiring for one ledger source.

start() reads the resume height, drains the gap up to the current ledger
height with HistoricalSync and then hands over to the EventListener. Both
share one Projector. Everything is constructed explicitly; there are no
module-level singletons.
"""

import logging
import threading
from enum import Enum
from typing import Any

from sqlalchemy.orm import sessionmaker

from basecore.db import get_sessionmaker
from orderbook_indexer.checkpoint import CheckpointStore
from orderbook_indexer.config import IndexerConfig
from orderbook_indexer.errors import IndexerError
from orderbook_indexer.handlers.projector import Projector
from orderbook_indexer.ledger.base import LedgerClient
from orderbook_indexer.listener import EventListener
from orderbook_indexer.notifications.base import CompositeNotificationHook, NotificationHook
from orderbook_indexer.sync import HistoricalSync

logger = logging.getLogger(__name__)


class ServicePhase(str, Enum):
    IDLE = "idle"
    BACKFILLING = "backfilling"
    LIVE = "live"
    STOPPED = "stopped"
    FAILED = "failed"


class IndexerService:
    """Owns the backfill-then-listen lifecycle for one source."""

    def __init__(
        self,
        config: IndexerConfig,
        ledger: LedgerClient,
        projector: Projector,
        checkpoints: CheckpointStore,
        hook: NotificationHook | None = None,
    ):
        self.config = config
        self.ledger = ledger
        self.projector = projector
        self.checkpoints = checkpoints
        self.hook = hook
        self.backfill = HistoricalSync(config, ledger, projector, checkpoints)
        self.listener = EventListener(config, ledger, projector, checkpoints, hook=hook)

        self._phase = ServicePhase.IDLE
        self._error: BaseException | None = None
        self._stopping = threading.Event()
        self._startup: threading.Thread | None = None

    @property
    def phase(self) -> ServicePhase:
        if self._phase == ServicePhase.LIVE and self.listener.fatal_error is not None:
            return ServicePhase.FAILED
        return self._phase

    @property
    def error(self) -> BaseException | None:
        return self._error or self.listener.fatal_error

    @property
    def healthy(self) -> bool:
        return self.phase not in (ServicePhase.FAILED, ServicePhase.STOPPED)

    def start(self) -> None:
        """Begin backfill on a background thread; the listener follows it."""
        if self._startup is not None and self._startup.is_alive():
            logger.warning("Indexer service already starting")
            return
        self._stopping.clear()
        self._error = None
        self._startup = threading.Thread(target=self._run_startup, name=f"startup-{self.config.source}", daemon=True)
        self._startup.start()

    def _run_startup(self) -> None:
        self._phase = ServicePhase.BACKFILLING
        try:
            summary = self.backfill.run(to_height="latest")
        except IndexerError as e:
            self._error = e
            self._phase = ServicePhase.FAILED
            logger.error(f"Startup backfill failed for {self.config.source}: {e}", exc_info=True)
            return
        except Exception as e:
            self._error = IndexerError(f"Startup crashed: {type(e).__name__}: {e}", code="STARTUP_CRASHED")
            self._phase = ServicePhase.FAILED
            logger.error(f"Startup backfill crashed for {self.config.source}: {e}", exc_info=True)
            return

        if self._stopping.is_set() or summary.stopped:
            self._phase = ServicePhase.STOPPED
            return

        logger.info(
            f"Backfill done through {summary.to_height}, starting live listener",
            extra={"source": self.config.source},
        )
        self.listener.start()
        self._phase = ServicePhase.LIVE

    def stop(self, timeout: float | None = 30.0) -> None:
        """Stop backfill and listener, then release hook resources."""
        logger.info(f"Stopping indexer service for {self.config.source}")
        self._stopping.set()
        self.backfill.stop()
        if self._startup is not None:
            self._startup.join(timeout)
        self.listener.stop(timeout)
        if self.hook is not None:
            self.hook.close()
        if self._phase != ServicePhase.FAILED:
            self._phase = ServicePhase.STOPPED

    def wait(self, timeout: float | None = None) -> bool:
        """
        Block until startup finished and the listener stopped.

        Raises:
            The startup or listener error, if either failed
        """
        if self._startup is not None:
            self._startup.join(timeout)
            if self._startup.is_alive():
                return False
        if self._error is not None:
            raise self._error
        return self.listener.wait(timeout)

    def status(self) -> dict[str, Any]:
        checkpoint = self.checkpoints.get(self.config.source)
        error = self.error
        return {
            "source": self.config.source,
            "phase": self.phase.value,
            "healthy": self.healthy,
            "error": str(error) if error else None,
            "checkpoint": checkpoint.to_dict() if checkpoint else None,
            "backfill": self.backfill.last_summary.to_dict() if self.backfill.last_summary else None,
            "listener": self.listener.status().to_dict(),
            "projector": self.projector.stats.snapshot(),
        }


def build_hook(config: IndexerConfig) -> NotificationHook | None:
    """Notification hooks enabled by configuration."""
    hooks: list[NotificationHook] = []
    if config.notify_stream:
        from basecore.redis import get_redis_client
        from orderbook_indexer.notifications.stream import RedisStreamNotifier

        hooks.append(RedisStreamNotifier(get_redis_client(), stream_name=config.notify_stream, source=config.source))
    if config.notify_webhook_url:
        from orderbook_indexer.notifications.webhook import WebhookNotifier

        hooks.append(WebhookNotifier(config.notify_webhook_url, source=config.source))

    if not hooks:
        return None
    return hooks[0] if len(hooks) == 1 else CompositeNotificationHook(hooks)


def build_service(
    config: IndexerConfig,
    session_factory: sessionmaker | None = None,
    ledger: LedgerClient | None = None,
    hook: NotificationHook | None = None,
) -> IndexerService:
    """
    Construct a fully wired service.

    Args:
        config: Validated indexer config
        session_factory: Defaults to basecore's cached sessionmaker
        ledger: Defaults to a Web3LedgerClient for config.rpc_url
        hook: Defaults to the hooks enabled in config
    """
    if ledger is None:
        from orderbook_indexer.ledger.web3_client import Web3LedgerClient

        ledger = Web3LedgerClient(config.rpc_url, config.contract_address, timeout=config.rpc_timeout_seconds)

    session_factory = session_factory or get_sessionmaker()
    checkpoints = CheckpointStore(session_factory, genesis_height=config.genesis_height)
    projector = Projector(session_factory, ledger=ledger, withdrawal_kind=config.withdrawal_kind)
    return IndexerService(config, ledger, projector, checkpoints, hook=hook if hook is not None else build_hook(config))
