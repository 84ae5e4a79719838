"""Logging setup for the checkout package.

This module provides a logging filter that injects the current request id
into log records using the ContextVar from ``checkout.context``, and a
helper that installs a JSON handler (python-json-logger) on the package
logger. Adding the filter enables per-call correlation in logs without
modifying individual log statements.
"""

import logging
from logging import Filter, LogRecord

from pythonjsonlogger import jsonlogger

from .context import REQUEST_ID_CTX

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"


class RequestIdFilter(Filter):
    """Attach a ``request_id`` attribute to log records.

    If no value is present, a hyphen ("-") is used as a placeholder so
    formatters can reliably reference ``%(request_id)s``.
    """

    def filter(self, record: LogRecord) -> bool:
        """Populate ``record.request_id`` and allow the record to be logged.

        Args:
            record: The log record to enrich.

        Returns:
            bool: Always True to indicate the record should be processed.
        """
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True


def configure_logging(level: str = "INFO", logger_name: str = "checkout") -> logging.Logger:
    """Install a JSON stream handler on the package logger once.

    Args:
        level: Log level name.
        logger_name: Logger to configure; children propagate to it.

    Returns:
        logging.Logger: The configured logger.
    """
    logger = logging.getLogger(logger_name)
    if not any(isinstance(h.formatter, jsonlogger.JsonFormatter) for h in logger.handlers):
        h = logging.StreamHandler()
        h.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
        h.addFilter(RequestIdFilter())
        logger.addHandler(h)
    logger.setLevel(level.upper())
    return logger
