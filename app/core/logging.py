"""AdAudit - Structured JSON Logging.

One JSON object per line on stdout. Graph access tokens that leak into a
message (e.g. via an httpx error carrying the request URL) are masked.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone

from app.config import settings

EXTRA_FIELDS = (
    "endpoint",
    "entity_id",
    "duration_ms",
    "status_code",
    "ad_id",
    "asset_id",
)

TOKEN_PATTERN = re.compile(r"(access_token=)[^&\s\"']+")


def mask_tokens(text: str) -> str:
    return TOKEN_PATTERN.sub(r"\1***", text)


class JSONFormatter(logging.Formatter):
    """Renders a record as a JSON line with the import context fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": mask_tokens(record.getMessage()),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = mask_tokens(self.formatException(record.exc_info))
        entry.update(
            {key: getattr(record, key) for key in EXTRA_FIELDS if hasattr(record, key)}
        )
        return json.dumps(entry, default=str)


def get_logger(name: str) -> logging.Logger:
    """Return the ``adaudit.<name>`` logger with the JSON stdout handler."""
    logger = logging.getLogger(f"adaudit.{name}")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return logger
