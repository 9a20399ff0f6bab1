"""
Structured Logging Configuration Module

Provides JSON-formatted structured logging for all ledger operations.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional


ROOT_LOGGER = "bank_ledger"

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "action": getattr(record, 'action', None),
            "resource": getattr(record, 'resource', None),
            "correlation_id": getattr(record, 'correlation_id', None),
            "extra": getattr(record, 'extra', None)
        }

        # Remove None values
        log_entry = {k: v for k, v in log_entry.items() if v is not None}

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", log_format: str = "json",
                  log_file: Optional[str] = None,
                  logger_name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Setup logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: "json" for structured output, "text" for plain lines
        log_file: Path of a log file; stderr when omitted
        logger_name: Name of the logger

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    # Remove existing handlers to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    if log_file:
        handler = logging.FileHandler(log_file)
    else:
        handler = logging.StreamHandler()

    if log_format == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(JSONFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))

    # Prevent propagation to avoid duplicate logs
    logger.propagate = False

    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               action: Optional[str] = None, resource: Optional[str] = None,
               correlation_id: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Log an action with structured data.

    Args:
        logger: Logger instance
        level: Log level (info, warning, error, etc.)
        message: Log message
        action: Action being performed
        resource: Resource being acted upon
        correlation_id: Correlation ID for request tracing
        extra: Additional structured data
    """
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(
        logger.name, levelno, __name__, 0, message, (), None
    )

    if action:
        record.action = action
    if resource:
        record.resource = resource
    if correlation_id:
        record.correlation_id = correlation_id
    if extra:
        record.extra = extra

    logger.handle(record)
