"""
Central logging configuration for the order ledger: JSON lines on stdout.
Fields: timestamp, level, logger, function, message, exception (if any),
plus any ``extra={"context": {...}}`` mapping passed by the caller.
Level: default INFO, override via LOG_LEVEL env var.
"""

import logging
import os
import sys
import json
from datetime import datetime, timezone


class JsonFormatter(logging.Formatter):
    """Formatter that renders each log record as one JSON object.

    Decimal and date values found in the optional ``context`` mapping are
    rendered with ``str`` so financial figures keep their exact text.
    """

    def format(self, record):
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context:
            log_record["context"] = context
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str, ensure_ascii=False)


def configure_logging():
    """Attach a stdout JSON handler to the root logger once.

    The level comes from LOG_LEVEL (default INFO); unknown names fall back
    to INFO.
    """
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        level = logging.INFO
    root = logging.getLogger()
    if not root.handlers:
        root.setLevel(level)
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(JsonFormatter())
        root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Return a named logger, configuring JSON output on first use.

    Args:
        name (str): Name of the logger, usually ``__name__``.

    Returns:
        logging.Logger: Logger instance.
    """
    configure_logging()
    return logging.getLogger(name)
