"""
Module: logger.py
Description: Structured logging configuration for the mindtrack agent.

Every module logs structured key/value events through structlog. Events
are rendered to JSON and handed to the standard library logger of the
same name, so the host application decides where they go. Importing
mindtrack changes no global logging state: the "mindtrack" logger only
carries a NullHandler until configure_logging() attaches an output.

Key Components:
- JSON rendering with timestamp and level
- configure_logging() to opt in to stdout output at a minimum level
- get_logger() helper function

Dependencies: structlog, logging, datetime
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Optional

import structlog

ROOT_LOGGER_NAME = "mindtrack"

logging.getLogger(ROOT_LOGGER_NAME).addHandler(logging.NullHandler())

_handler: Optional[logging.Handler] = None


def _add_timestamp(logger, method_name, event_dict):
    """
    Add ISO 8601 timestamp to log entries.

    Args:
        logger: Logger instance
        method_name: Log method name (info, error, etc.)
        event_dict: Current log event dictionary

    Returns:
        Updated event dictionary with timestamp
    """
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return event_dict


def _add_log_level(logger, method_name, event_dict):
    """Add log level to event dictionary."""
    event_dict["level"] = method_name.upper()
    return event_dict


_PROCESSORS = [
    structlog.stdlib.filter_by_level,
    _add_timestamp,
    _add_log_level,
    structlog.processors.format_exc_info,
    structlog.processors.JSONRenderer(),
]


def configure_logging(log_level: str = "INFO") -> None:
    """
    Write mindtrack's JSON log lines to stdout at the given minimum level.

    Only the "mindtrack" logger is touched; it stops propagating so lines
    are not printed twice by a handler on the root logger. Safe to call
    more than once; the last call wins.

    Args:
        log_level: Minimum level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    global _handler

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    root = logging.getLogger(ROOT_LOGGER_NAME)
    if _handler is None:
        _handler = logging.StreamHandler(sys.stdout)
        _handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(_handler)
    root.setLevel(level)
    root.propagate = False


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structlog logger bound to the standard library logger `name`.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger instance

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Batch delivered", batch_size=3, via="request")
        {"batch_size": 3, "via": "request", "event": "Batch delivered", "timestamp": "2024-01-15T10:30:00.000000Z", "level": "INFO"}
    """
    return structlog.wrap_logger(
        logging.getLogger(name),
        processors=_PROCESSORS,
        wrapper_class=structlog.stdlib.BoundLogger,
    )
