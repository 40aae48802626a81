"""
Indexer Status API

Small FastAPI app served next to the worker:
- /health: liveness (503 once the service failed or stopped)
- /status: checkpoint, backfill, listener and projector state
- /metrics: Prometheus exposition
"""

import logging

from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST

from orderbook_indexer.errors import PersistenceError
from orderbook_indexer.metrics import render_latest
from orderbook_indexer.service import IndexerService

logger = logging.getLogger(__name__)


def create_app(service: IndexerService) -> FastAPI:
    """Build the status app bound to a running service."""
    app = FastAPI(
        title="Order Book Indexer",
        description="Status and metrics for the order book indexer",
        version="1.0.0",
    )

    @app.get("/health")
    def health():
        """Health check endpoint."""
        body = {"status": "healthy" if service.healthy else "unhealthy", "service": "indexer-worker", "phase": service.phase.value}
        if not service.healthy:
            return JSONResponse(status_code=503, content=body)
        return body

    @app.get("/status")
    def status():
        try:
            return service.status()
        except PersistenceError as e:
            logger.error(f"Status read failed: {e}")
            return JSONResponse(status_code=503, content={"error": str(e), "code": e.code})

    @app.get("/metrics")
    def metrics():
        return Response(content=render_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
