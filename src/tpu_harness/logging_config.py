"""
Logging Configuration

Configures the ``tpu_harness`` logger hierarchy with either a
human-readable or a JSON formatter. Modules log through
``logging.getLogger(__name__)``; this module only attaches handlers.

Usage:
    from tpu_harness.logging_config import configure_logging

    configure_logging(level="DEBUG", json_format=True)
"""

from __future__ import annotations

import json
import logging
import socket
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TextIO

ROOT_LOGGER = "tpu_harness"

# LogRecord attributes that are not user-supplied ``extra`` fields
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    json_format: bool = False
    include_hostname: bool = False
    max_message_length: int = 10000


class JSONFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message and extras."""

    def __init__(self, config: LogConfig):
        super().__init__()
        self.config = config
        self._hostname = socket.gethostname() if config.include_hostname else None

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if len(message) > self.config.max_message_length:
            message = message[: self.config.max_message_length] + "...[truncated]"

        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
        }
        if self._hostname:
            entry["hostname"] = self._hostname

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """Plain ``time level logger: message`` lines."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s", datefmt="%H:%M:%S")


def configure_logging(level: str = "INFO", json_format: bool = False,
                      stream: TextIO | None = None, config: LogConfig | None = None) -> logging.Logger:
    """
    Attach a single handler to the ``tpu_harness`` logger.

    Calling it again replaces the previous handler.
    """
    config = config or LogConfig(level=level.upper(), json_format=json_format)

    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter(config) if config.json_format else HumanFormatter())
    logger.addHandler(handler)
    logger.setLevel(config.level)
    return logger

