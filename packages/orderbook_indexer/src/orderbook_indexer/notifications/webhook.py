"""
Webhook Notifier

POSTs applied projections as JSON to a configured URL.
"""

import logging

import httpx

from orderbook_indexer.handlers.projector import ProjectionResult
from orderbook_indexer.notifications.base import NotificationHook

logger = logging.getLogger(__name__)


class WebhookError(Exception):
    """Webhook endpoint rejected or did not receive the notification."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class WebhookNotifier(NotificationHook):
    """Synchronous httpx client with a bounded timeout."""

    def __init__(self, url: str, timeout: float = 5.0, source: str | None = None):
        self.url = url
        self.timeout = timeout
        self.source = source
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    def close(self) -> None:
        if self._client and not self._client.is_closed:
            self._client.close()

    def notify(self, result: ProjectionResult) -> None:
        body = {"source": self.source, **result.to_dict()}
        try:
            response = self._get_client().post(self.url, json=body)
        except httpx.RequestError as e:
            raise WebhookError(f"Webhook request failed: {e}") from e

        if response.status_code >= 400:
            raise WebhookError(
                f"Webhook returned {response.status_code} for {result.kind.value} {result.key}",
                status_code=response.status_code,
            )
        logger.debug(f"Webhook accepted {result.kind.value} {result.key}")
