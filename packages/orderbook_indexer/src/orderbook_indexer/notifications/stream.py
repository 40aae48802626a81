"""
Redis Stream Notifier

Publishes applied projections to a Redis stream so downstream workers
(email, alerts) can react without touching the ledger.
"""

import json
import logging
from datetime import datetime

import redis

from basecore.redis import publish_to_stream
from orderbook_indexer.handlers.projector import ProjectionResult
from orderbook_indexer.notifications.base import NotificationHook

logger = logging.getLogger(__name__)

DEFAULT_STREAM_NAME = "events:orderbook"


class RedisStreamNotifier(NotificationHook):
    """XADD one flat message per applied projection."""

    def __init__(
        self,
        redis_client: redis.Redis,
        stream_name: str = DEFAULT_STREAM_NAME,
        source: str | None = None,
        max_len: int = 100000,
    ):
        self.redis = redis_client
        self.stream_name = stream_name
        self.source = source
        self.max_len = max_len

    def build_message(self, result: ProjectionResult) -> dict[str, str | int | None]:
        return {
            "event_type": result.kind.value,
            "key": result.key,
            "source": self.source,
            "block_height": result.block_height,
            "tx_hash": result.tx_hash,
            "occurred_at": datetime.utcnow().isoformat(),
            "payload": json.dumps(result.details, default=str),
        }

    def notify(self, result: ProjectionResult) -> None:
        msg_id = publish_to_stream(self.redis, self.stream_name, self.build_message(result), max_len=self.max_len)
        logger.debug(
            f"Published {result.kind.value} {result.key} to {self.stream_name}",
            extra={"stream": self.stream_name, "msg_id": msg_id},
        )
