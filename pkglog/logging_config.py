"""
Structured logging configuration for pkglog.

Provides JSON-formatted logs with a trace_id field so every line of one
publish or update can be correlated (trace_id is typically a package id).

Environment Variables:
    PKGLOG_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR) - default: INFO
    PKGLOG_LOG_FORMAT: Log format (json, text) - default: json

Usage:
    from pkglog.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__, trace_id="acme:widgets")
    logger.info("Publishing release", extra={"version": "1.0.0"})
"""

import logging
import os
import sys
from typing import Optional, TextIO

from pythonjsonlogger.json import JsonFormatter

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def setup_logging(
    level: Optional[str] = None,
    fmt: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure the pkglog logger hierarchy.

    Arguments override the PKGLOG_LOG_LEVEL / PKGLOG_LOG_FORMAT environment
    variables. Only the "pkglog" logger is touched so embedding applications
    keep their own root configuration.
    """
    log_level = (level or os.getenv("PKGLOG_LOG_LEVEL", "INFO")).upper()
    log_format = (fmt or os.getenv("PKGLOG_LOG_FORMAT", "json")).lower()
    resolved = LEVELS.get(log_level, logging.INFO)

    pkg_logger = logging.getLogger("pkglog")
    pkg_logger.setLevel(resolved)
    pkg_logger.propagate = False

    for handler in pkg_logger.handlers[:]:
        pkg_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(resolved)
    handler.addFilter(TraceIDFilter())

    if log_format == "json":
        formatter: logging.Formatter = JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s %(trace_id)s",
            rename_fields={
                "asctime": "timestamp",
                "name": "logger",
                "levelname": "level",
            },
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s [trace_id=%(trace_id)s]",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    pkg_logger.addHandler(handler)

    # boto3 is chatty at INFO
    logging.getLogger("botocore").setLevel(logging.WARNING)


def get_logger(name: str, trace_id: Optional[str] = None) -> logging.LoggerAdapter:
    """
    Get a logger with optional trace_id for correlation.

    Args:
        name: Logger name (typically __name__)
        trace_id: Trace ID for correlating logs (typically a package id)

    Returns:
        LoggerAdapter with trace_id in extra fields
    """
    logger = logging.getLogger(name)
    return logging.LoggerAdapter(logger, {"trace_id": trace_id or "N/A"})


class TraceIDFilter(logging.Filter):
    """Ensures every record has a trace_id, even outside a LoggerAdapter."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "trace_id"):
            record.trace_id = "N/A"  # type: ignore
        return True
