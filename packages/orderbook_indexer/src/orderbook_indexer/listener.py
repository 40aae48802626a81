"""
Event Listener - live path.

Subscribes to the ledger from the checkpoint's resume height and projects
each delivered unit on a single thread, so events of one order are applied
in emission order. Transport failures move the listener through a bounded
reconnect cycle:

    STOPPED -> STARTING -> RUNNING -> RECONNECTING -> RUNNING | STOPPED
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any

from orderbook_indexer import metrics
from orderbook_indexer.checkpoint import CheckpointStore
from orderbook_indexer.config import IndexerConfig
from orderbook_indexer.contracts.types import ProjectionOutcome
from orderbook_indexer.errors import IndexerError, PersistenceError, ReconnectExhausted, TransientTransportError
from orderbook_indexer.handlers.projector import Projector
from orderbook_indexer.ledger.base import DeliveredUnit, LedgerClient, Subscription
from orderbook_indexer.notifications.base import NotificationHook, safe_notify

logger = logging.getLogger(__name__)


class ListenerState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class ListenerStatus:
    """Point-in-time view of the listener."""

    state: ListenerState
    next_height: int | None
    attempts: int
    events_processed: int
    ordering_violations: int
    last_error: str | None
    fatal_error: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "next_height": self.next_height,
            "attempts": self.attempts,
            "events_processed": self.events_processed,
            "ordering_violations": self.ordering_violations,
            "last_error": self.last_error,
            "fatal_error": self.fatal_error,
        }


class EventListener:
    """
    Live event listener for one ledger source.

    The checkpoint advances to a unit's end height only after every event
    in the unit was applied, so a restart re-delivers at most one unit.
    """

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
        self.source = config.source

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._done = threading.Event()
        self._done.set()
        self._thread: threading.Thread | None = None
        self._subscription: Subscription | None = None

        self._state = ListenerState.STOPPED
        self._next_height: int | None = None
        self._attempts = 0
        self._events_processed = 0
        self._ordering_violations = 0
        self._last_error: BaseException | None = None
        self._fatal_error: IndexerError | None = None

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def fatal_error(self) -> IndexerError | None:
        return self._fatal_error

    def _set_state(self, state: ListenerState) -> None:
        if state != self._state:
            logger.info(f"Listener {self.source}: {self._state.value} -> {state.value}")
            self._state = state

    def start(self) -> None:
        """Start listening on a background thread."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                logger.warning(f"Listener {self.source} already running")
                return
            self._stop.clear()
            self._done.clear()
            self._next_height = None
            self._attempts = 0
            self._last_error = None
            self._fatal_error = None
            self._set_state(ListenerState.STARTING)
            self._thread = threading.Thread(target=self._run, name=f"listener-{self.source}", daemon=True)
            self._thread.start()

    def stop(self, timeout: float | None = 30.0) -> None:
        """Close the subscription, cancel any backoff wait and join the thread."""
        self._stop.set()
        subscription = self._subscription
        if subscription is not None:
            subscription.close()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(f"Listener {self.source} did not stop within {timeout}s")

    def wait(self, timeout: float | None = None) -> bool:
        """
        Block until the listener stops.

        Returns:
            True if stopped, False on timeout

        Raises:
            ReconnectExhausted (or another fatal IndexerError) if the
            listener stopped on its own
        """
        if not self._done.wait(timeout):
            return False
        if self._fatal_error is not None:
            raise self._fatal_error
        return True

    def status(self) -> ListenerStatus:
        return ListenerStatus(
            state=self._state,
            next_height=self._next_height,
            attempts=self._attempts,
            events_processed=self._events_processed,
            ordering_violations=self._ordering_violations,
            last_error=str(self._last_error) if self._last_error else None,
            fatal_error=str(self._fatal_error) if self._fatal_error else None,
        )

    def _run(self) -> None:
        logger.info(
            f"Starting listener for {self.source}",
            extra={"source": self.source, "poll_interval_ms": self.config.poll_interval_ms},
        )
        try:
            self._listen()
        except IndexerError as e:
            self._fatal_error = e
            logger.error(f"Listener {self.source} failed: {e}", extra={"source": self.source}, exc_info=True)
        except Exception as e:
            self._fatal_error = IndexerError(f"Listener crashed: {e}", code="LISTENER_CRASHED")
            logger.error(f"Listener {self.source} crashed: {e}", extra={"source": self.source}, exc_info=True)
        finally:
            self._subscription = None
            self._set_state(ListenerState.STOPPED)
            self._done.set()
            logger.info(f"Listener {self.source} stopped")

    def _listen(self) -> None:
        while not self._stop.is_set():
            try:
                if self._next_height is None:
                    self._next_height = self.checkpoints.get_or_create(self.source).resume_height

                self._subscription = self.ledger.subscribe(
                    kinds=self.projector.kinds,
                    from_height=self._next_height,
                    poll_interval=self.config.poll_interval,
                    max_window=self.config.batch_size,
                )
                if self._stop.is_set():
                    break
                self._set_state(ListenerState.RUNNING)

                for unit in self._subscription:
                    if not self._process_unit(unit):
                        break
                    self._attempts = 0
                # Subscription ended: closed by stop()
                break

            except (TransientTransportError, PersistenceError) as e:
                if self._stop.is_set():
                    break
                self._last_error = e
                self._attempts += 1
                metrics.RECONNECTS.labels(source=self.source).inc()

                if self._attempts > self.config.max_reconnect_attempts:
                    self._fatal_error = ReconnectExhausted(self.config.max_reconnect_attempts, e)
                    logger.error(
                        f"Listener {self.source} exhausted {self.config.max_reconnect_attempts} reconnect attempts",
                        extra={"source": self.source, "error": str(e)},
                    )
                    break

                self._set_state(ListenerState.RECONNECTING)
                logger.warning(
                    f"Listener {self.source} lost connection ({e}), reconnect "
                    f"{self._attempts}/{self.config.max_reconnect_attempts} in {self.config.reconnect_delay}s",
                    extra={"source": self.source, "attempt": self._attempts, "next_height": self._next_height},
                )
                if self._stop.wait(self.config.reconnect_delay):
                    break
            finally:
                if self._subscription is not None:
                    self._subscription.close()

    def _process_unit(self, unit: DeliveredUnit) -> bool:
        """
        Apply one delivered unit and checkpoint its end height.

        Returns:
            False if a stop request interrupted the unit
        """
        for event in unit.events:
            if self._stop.is_set():
                return False
            result = self.projector.apply(event, path="live")
            self._events_processed += 1
            if result.outcome == ProjectionOutcome.ORDERING_VIOLATION:
                self._ordering_violations += 1
            safe_notify(self.hook, result)

        self.checkpoints.advance(self.source, unit.end_height)
        metrics.CHECKPOINT_HEIGHT.labels(source=self.source).set(unit.end_height)
        self._next_height = unit.end_height + 1
        if unit.events:
            logger.info(
                f"Listener {self.source} applied {len(unit.events)} events up to height {unit.end_height}",
                extra={"source": self.source, "from_height": unit.from_height, "end_height": unit.end_height},
            )
        return not self._stop.is_set()
