"""
Tests for post-commit notification hooks.
"""

import json
from unittest.mock import MagicMock

import httpx
import pytest

from orderbook_indexer.contracts.types import EventKind, ProjectionOutcome
from orderbook_indexer.handlers.projector import ProjectionResult
from orderbook_indexer.notifications import (
    CompositeNotificationHook,
    NullNotificationHook,
    RedisStreamNotifier,
    WebhookError,
    WebhookNotifier,
    safe_notify,
)


@pytest.fixture
def fill_result():
    return ProjectionResult(
        kind=EventKind.ORDER_FILLED,
        key="7-1",
        outcome=ProjectionOutcome.APPLIED,
        details={"order_id": 7, "amount": "400", "status": "partially_filled"},
        block_height=12,
        tx_hash="0xabc",
    )


class TestRedisStreamNotifier:
    """Tests for the Redis stream notifier."""

    def test_publishes_flat_message(self, fill_result):
        client = MagicMock()
        client.xadd.return_value = "1-0"
        notifier = RedisStreamNotifier(client, source="testnet:0xcc")

        notifier.notify(fill_result)

        stream, fields = client.xadd.call_args.args
        assert stream == "events:orderbook"
        assert fields["event_type"] == "OrderFilled"
        assert fields["key"] == "7-1"
        assert fields["block_height"] == "12"
        assert fields["source"] == "testnet:0xcc"
        assert json.loads(fields["payload"])["amount"] == "400"
        assert all(isinstance(v, str) for v in fields.values())
        assert client.xadd.call_args.kwargs["maxlen"] == 100000


class TestWebhookNotifier:
    """Tests for the webhook notifier."""

    def make_notifier(self, handler) -> WebhookNotifier:
        notifier = WebhookNotifier("https://hooks.example.com/orderbook", source="testnet:0xcc")
        notifier._client = httpx.Client(transport=httpx.MockTransport(handler))
        return notifier

    def test_posts_json(self, fill_result):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(204)

        self.make_notifier(handler).notify(fill_result)

        assert seen[0]["kind"] == "OrderFilled"
        assert seen[0]["source"] == "testnet:0xcc"
        assert seen[0]["details"]["order_id"] == 7

    def test_error_status_raises(self, fill_result):
        notifier = self.make_notifier(lambda request: httpx.Response(500))

        with pytest.raises(WebhookError) as exc_info:
            notifier.notify(fill_result)
        assert exc_info.value.status_code == 500

    def test_connection_error_raises(self, fill_result):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(WebhookError):
            self.make_notifier(handler).notify(fill_result)


class TestSafeNotify:
    """Tests for failure isolation."""

    def test_failure_is_logged_not_raised(self, fill_result, caplog):
        hook = MagicMock()
        hook.notify.side_effect = RuntimeError("boom")

        assert safe_notify(hook, fill_result) is False
        assert "boom" in caplog.text

    def test_only_applied_results_are_sent(self, fill_result):
        hook = MagicMock()
        fill_result.outcome = ProjectionOutcome.DUPLICATE

        assert safe_notify(hook, fill_result) is False
        hook.notify.assert_not_called()

    def test_no_hook(self, fill_result):
        assert safe_notify(None, fill_result) is False
        assert safe_notify(NullNotificationHook(), fill_result) is True

    def test_composite_isolates_hooks(self, fill_result):
        broken = MagicMock()
        broken.notify.side_effect = RuntimeError("down")
        working = MagicMock()

        CompositeNotificationHook([broken, working]).notify(fill_result)

        working.notify.assert_called_once_with(fill_result)
