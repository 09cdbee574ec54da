"""JSON log output for document stores.

Stores log through "doccache.memory" and "doccache.redis" and attach their
context with extra={"store": ..., "operation": ..., "doc_id": ..., "count": ...}.
Nothing is configured on import. Applications that want one JSON object per
line call configure_store_logger() once.
"""

import json
import logging
from datetime import UTC, datetime
from typing import IO, Any

STORE_LOGGER = "doccache"

# Context fields stores attach, emitted right after the base fields
STORE_FIELDS = ("store", "operation", "doc_id", "count")

# Attributes every LogRecord carries; anything else came in through extra={}
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render a store log record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (field, getattr(record, field)) for field in STORE_FIELDS if hasattr(record, field)
        )
        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in entry
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_store_logger(
    level: int = logging.INFO, stream: IO[str] | None = None
) -> logging.Logger:
    """Send every store's log records to `stream` as JSON lines.

    Calling it again only changes the level; the JSON handler is installed
    once.

    Args:
        level: Level for the "doccache" logger. Defaults to logging.INFO.
        stream: Output stream. Defaults to stderr.
    """
    logger = logging.getLogger(STORE_LOGGER)
    if not any(isinstance(handler.formatter, JSONFormatter) for handler in logger.handlers):
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger
