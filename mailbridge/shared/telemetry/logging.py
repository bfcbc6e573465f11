"""Logging configuration for the service."""

import logging
import sys

from mailbridge.core.config import get_settings
from mailbridge.shared.context import get_request_id


class RequestIdFilter(logging.Filter):
    """Stamp each record with the current request id ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


def setup_logging() -> None:
    """Configure process-wide logging to stdout.

    Level is DEBUG when settings.debug is True, otherwise INFO. The
    googleapiclient discovery cache logger is quieted because it warns on
    every Gmail client build.
    """
    settings = get_settings()
    log_level = logging.DEBUG if settings.debug else logging.INFO
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
        handlers=[handler],
    )
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)


def get_logger(name: str) -> logging.Logger:
    """Return a logger for the given module name (usually ``__name__``)."""
    return logging.getLogger(name)
