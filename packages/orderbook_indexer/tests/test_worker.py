"""
Tests for the indexer worker entrypoint.
"""

import threading

import uvicorn

from indexer_worker import main as worker
from orderbook_indexer.service import build_service


class TestStatusServer:
    """Tests for run_status_server."""

    def test_serves_on_background_thread(self, config, ledger, session_factory, monkeypatch):
        """Test the status API runs off the main thread with uvicorn left unpatched."""
        ran_on = []
        started = threading.Event()

        def fake_run(self, sockets=None):
            ran_on.append(threading.current_thread())
            started.set()

        monkeypatch.setattr(uvicorn.Server, "run", fake_run)
        service = build_service(config, session_factory=session_factory, ledger=ledger)

        server = worker.run_status_server(service)

        assert started.wait(5)
        assert ran_on[0].name == "status-api"
        assert ran_on[0] is not threading.main_thread()
        assert "install_signal_handlers" not in vars(server)
