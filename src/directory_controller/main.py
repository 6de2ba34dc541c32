"""Main entry point for the directory controller.

Logging is set up here, once per process, before any command runs.
Records go to stderr so that command output on stdout stays parseable.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

from .config import LogFormat

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_"):
                log_data[key] = value

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class _ControllerHandler(logging.StreamHandler):
    """Marker type so repeated setup replaces, rather than stacks, handlers."""

    pass


def setup_logging(log_format: LogFormat = LogFormat.JSON, log_level: str = "INFO") -> None:
    """Configure root logging.

    Args:
        log_format: JSON for production, TEXT for interactive use.
        log_level: Root log level name.
    """
    handler = _ControllerHandler(sys.stderr)
    if log_format == LogFormat.JSON:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root_logger = logging.getLogger()
    for existing in [h for h in root_logger.handlers if isinstance(h, _ControllerHandler)]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    # Reduce noise from the HTTP stack
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def run() -> None:
    """Entry point for the dirctl CLI."""
    from .cli import cli

    cli()


if __name__ == "__main__":
    run()
