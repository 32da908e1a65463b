"""Worker logging setup: plain text or structured JSON on stdout."""

import json
import logging
import sys
from datetime import datetime

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging.

    Formats log records as JSON with timestamp, level, message, and extra fields
    such as ``job_id``.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(level: str = "INFO", fmt: str = "text") -> logging.Logger:
    """
    Configure the root logger for the worker process.

    Args:
        level: Log level name
        fmt: "text" or "json"

    Returns:
        The root logger
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)

    # Connection pool chatter is noise at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return root
