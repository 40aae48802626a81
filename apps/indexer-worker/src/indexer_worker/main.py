"""
Indexer Worker - order book ledger indexer

This worker uses ONLY:
- basecore (DB, settings, logging, redis)
- orderbook_indexer (ledger client, projector, listener, sync)

Startup:
1. Validate configuration (exit 1 if invalid)
2. Backfill from the checkpoint's resume height to the ledger head
3. Hand over to the live listener
4. Serve /health, /status and /metrics until SIGTERM/SIGINT
"""

import logging
import signal
import sys
import threading

import uvicorn

from basecore.logging import setup_logging
from basecore.settings import get_settings
from orderbook_indexer.config import IndexerConfig
from orderbook_indexer.errors import ConfigurationError, IndexerError
from orderbook_indexer.service import IndexerService, build_service
from orderbook_indexer.status_api import create_app

setup_logging()
logger = logging.getLogger(__name__)

# Graceful shutdown
shutdown_requested = threading.Event()


def signal_handler(signum, frame):
    logger.info(f"Received signal {signum}, requesting shutdown...")
    shutdown_requested.set()


def run_status_server(service: IndexerService) -> uvicorn.Server:
    """Serve the status API on a daemon thread."""
    settings = get_settings()
    server = uvicorn.Server(
        uvicorn.Config(
            create_app(service),
            host=settings.INDEXER_STATUS_HOST,
            port=settings.INDEXER_STATUS_PORT,
            log_config=None,
        )
    )
    # Off the main thread uvicorn leaves SIGTERM/SIGINT to signal_handler
    threading.Thread(target=server.run, name="status-api", daemon=True).start()
    return server


def main():
    """Main worker loop."""
    try:
        config = IndexerConfig.from_settings()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}", extra={"details": e.details})
        sys.exit(1)

    logger.info(
        f"Starting indexer worker (source={config.source}, genesis={config.genesis_height}, "
        f"batch={config.batch_size}, poll={config.poll_interval_ms}ms)"
    )

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    service = build_service(config)
    server = run_status_server(service)
    service.start()

    exit_code = 0
    while not shutdown_requested.wait(5.0):
        if not service.healthy:
            logger.error(f"Indexer service stopped: {service.error}")
            exit_code = 1
            break

    service.stop()
    server.should_exit = True

    try:
        service.wait(timeout=1.0)
    except IndexerError as e:
        logger.error(f"Indexer worker exiting with error: {e}")
        exit_code = 1

    logger.info("Indexer worker shutting down gracefully")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
