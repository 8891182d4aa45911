"""
Logging configuration

Sync code attaches structured failure details with
``logger.warning(msg, extra={"error_context": e.to_dict()})``; the formatter
below appends them to the line so they survive plain-text log shipping.
"""

import json
import logging
import sys
from core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ErrorContextFormatter(logging.Formatter):
    """Appends a record's ``error_context`` extra as compact JSON."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        error_context = getattr(record, "error_context", None)
        if error_context:
            line = f"{line} | context={json.dumps(error_context, default=str, sort_keys=True)}"
        return line


def setup_logging():
    """Configure application logging"""

    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ErrorContextFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    logging.basicConfig(level=log_level, handlers=[handler])

    # Per-request lines from the HTTP client and SQL echo drown out sync progress
    for noisy in ("httpx", "httpcore", "sqlalchemy.engine", "sqlalchemy.pool", "apscheduler"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at {settings.LOG_LEVEL} level")
