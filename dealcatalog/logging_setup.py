"""Logging configuration for the catalog API.

Every record carries a ``context`` tag (``-`` outside of any unit of work) so
lines emitted while a bulk upload is processed can be told apart from
ordinary request logging.
"""

import contextvars
import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(context)s] %(message)s"

log_context: contextvars.ContextVar[str] = contextvars.ContextVar("log_context", default="-")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.context = log_context.get()
        return True


def _resolve_level(level_name: str) -> int:
    return getattr(logging, level_name.upper(), logging.INFO)


def _is_catalog_handler(handler: logging.Handler) -> bool:
    return getattr(handler, "catalog_handler", False)


def configure_logging() -> logging.Handler:
    """Install the catalog stream handler on the root logger once; later calls only reset the level."""
    root_logger = logging.getLogger()
    root_logger.setLevel(_resolve_level(os.getenv("LOG_LEVEL", "INFO")))

    for handler in root_logger.handlers:
        if _is_catalog_handler(handler):
            return handler

    handler = logging.StreamHandler()
    handler.catalog_handler = True
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(ContextFilter())
    root_logger.addHandler(handler)
    return handler
