"""
Logging setup for pipeline runs.

Supports text (human-readable) and single-line JSON output. Level and format
come from explicit arguments, else from ``Settings`` (``PERMIT_LEADS_LOG_LEVEL``
and ``PERMIT_LEADS_LOG_FORMAT``).
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from .config import get_settings

TEXT_FORMAT = "[%(asctime)s] %(levelname)s %(name)s - %(message)s"
TEXT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JSONFormatter(logging.Formatter):
    """One JSON object per line: UTC timestamp, level, logger, message."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Install a single stderr handler on the root logger.

    Unknown level names fall back to INFO.
    """
    settings = get_settings()
    resolved_level = _resolve_level(level or settings.log_level or "INFO")
    fmt = (log_format or settings.log_format or "text").lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(resolved_level)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATE_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(resolved_level)
    root.addHandler(handler)


__all__ = ["JSONFormatter", "configure_logging"]
