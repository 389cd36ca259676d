"""
Logging setup for SpendGuard.

All modules log under the ``spendguard`` namespace; decisions, budget
settlements and replay attempts are visible by configuring that one
logger. Payment signatures are never written to the log.
"""

import json
import logging
import sys
from typing import TextIO

LOGGER_NAME = "spendguard"

HUMAN_FORMAT = "[%(asctime)s] %(levelname)s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Install a single handler on the spendguard logger.

    Calling it again replaces the handler, so level changes at runtime
    do not duplicate output.

    Args:
        level: Logging level (e.g., logging.INFO, "DEBUG")
        json_format: Emit JSON lines instead of the human format
        stream: Output stream (default: stdout)

    Returns:
        The configured logger instance.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(HUMAN_FORMAT, datefmt=DATE_FORMAT))

    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Get the spendguard logger, or one of its children (``get_logger("budget")``)."""
    if name:
        return logging.getLogger(f"{LOGGER_NAME}.{name}")
    return logging.getLogger(LOGGER_NAME)
