"""
Logging setup for rbac-why.

Diagnostics go to stderr so that printer output on stdout stays
machine-readable (json/yaml/dot). Two formats:
- text: "LEVEL logger: message" for humans
- json: one object per line for log shippers

Usage:
    from rbacwhy.logger import configure_logging

    configure_logging()                     # from RBACWHY_LOG_LEVEL / _FORMAT
    configure_logging(level="debug", fmt="json")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

ROOT_LOGGER = "rbacwhy"

# LogRecord attributes that are not user-supplied extras
_RESERVED = set(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Formats records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def configure_logging(
    level: Optional[str] = None,
    fmt: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configure the rbacwhy logger.

    Replaces any handler installed by a previous call, so it is safe to
    call more than once.

    Args:
        level: debug, info, warning or error (config default if None)
        fmt: json or text (config default if None)
        stream: Where to write (stderr if None)
    """
    from rbacwhy.config import get_config

    config = get_config()
    level = level or config.log_level
    fmt = fmt or config.log_format

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level.upper())

    for handler in list(logger.handlers):
        if getattr(handler, "_rbacwhy", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    handler._rbacwhy = True
    logger.addHandler(handler)

    return logger
