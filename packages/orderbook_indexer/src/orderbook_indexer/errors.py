"""
Indexer error taxonomy.

Transient errors carry retryable=True and are recovered locally up to an
explicit bound. Everything that exceeds a bound is raised to the caller.
"""

from typing import Any


class IndexerError(Exception):
    """Base error for the order book indexer."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.retryable = retryable


class ConfigurationError(IndexerError):
    """Invalid or missing configuration. Fatal at startup."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFIG_ERROR", details=details)


class TransientTransportError(IndexerError):
    """Network or RPC failure (including timeouts) talking to the ledger."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, code="TRANSPORT_ERROR", details=details, retryable=True)


class PersistenceError(IndexerError):
    """Read-model store write or read failed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, code="PERSISTENCE_ERROR", details=details, retryable=True)


class OrderingViolation(IndexerError):
    """An event references an order the read model does not know yet."""

    def __init__(self, order_id: int, event_kind: str):
        super().__init__(
            f"Order #{order_id} not found for {event_kind}",
            code="ORDERING_VIOLATION",
            details={"order_id": order_id, "event_kind": event_kind},
        )
        self.order_id = order_id
        self.event_kind = event_kind


class DuplicateEvent(IndexerError):
    """Idempotency key already present. Not an error condition for callers."""

    def __init__(self, key: str):
        super().__init__(f"Duplicate event for key {key}", code="DUPLICATE", details={"key": key})
        self.key = key


class UnknownEventKind(IndexerError):
    """No projection is registered for an event kind."""

    def __init__(self, kind: str):
        super().__init__(f"No projection registered for event kind: {kind}", code="UNKNOWN_KIND")


class ReconnectExhausted(IndexerError):
    """Live listener exceeded its reconnect bound and stopped."""

    def __init__(self, attempts: int, last_error: BaseException | None = None):
        super().__init__(
            f"Listener gave up after {attempts} reconnect attempts: {last_error}",
            code="RECONNECT_EXHAUSTED",
            details={"attempts": attempts, "last_error": str(last_error) if last_error else None},
        )
        self.attempts = attempts
        self.last_error = last_error


class SyncFailed(IndexerError):
    """Historical sync exhausted its retries for a batch."""

    def __init__(self, from_height: int, to_height: int, cause: BaseException):
        super().__init__(
            f"Historical sync failed for heights {from_height}-{to_height}: {cause}",
            code="SYNC_FAILED",
            details={"from_height": from_height, "to_height": to_height, "error": str(cause)},
        )
        self.from_height = from_height
        self.to_height = to_height
        self.cause = cause
