"""Logging setup shared by the scheduler and worker processes."""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from hostfleet.config import settings

# Attributes present on every LogRecord; anything else came in via `extra=`.
_RESERVED_ATTRS = set(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Format records as single-line JSON documents."""

    def __init__(self, service: str = "hostfleet"):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "service": self.service,
            "message": record.getMessage(),
        }
        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for local development."""

    def __init__(self, service: str = "hostfleet"):
        super().__init__(
            fmt=f"%(asctime)s %(levelname)-8s [{service}] %(name)s: %(message)s",
        )


def setup_logging(service: str = "hostfleet") -> None:
    """Configure the root logger from settings.

    Replaces any handlers installed earlier so repeated calls (tests,
    re-exec'd workers) don't duplicate output.
    """
    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format.lower() == "text":
        handler.setFormatter(TextFormatter(service=service))
    else:
        handler.setFormatter(JSONFormatter(service=service))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())

    # botocore logs every retry at INFO
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
