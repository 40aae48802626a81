"""
Logging setup for basecore consumers.

Call setup_logging() once at process start, before creating loggers'
handlers elsewhere. Modules only ever do logging.getLogger(__name__).
"""

import json
import logging
import sys
from datetime import datetime, timezone

from basecore.settings import get_settings

# Attributes every LogRecord carries; anything else came in through extra={...}
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, including fields passed via extra."""

    def format(self, record: logging.LogRecord) -> str:
        data = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                data[key] = value
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name (defaults to LOG_LEVEL setting)
        fmt: "text" or "json" (defaults to LOG_FORMAT setting)
    """
    settings = get_settings()
    level = (level or settings.LOG_LEVEL).upper()
    fmt = fmt or settings.LOG_FORMAT

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    # Chatty third-party loggers
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
