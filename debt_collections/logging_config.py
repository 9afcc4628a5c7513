"""
Structured Logging Configuration Module

JSON log lines for collections operations. Module loggers live under the
``debt_collections`` package logger; ``log_action`` attaches who did what to
which task so the lines can be filtered without parsing messages.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# Record attributes copied into each JSON line when present
STRUCTURED_FIELDS = ("correlation_id", "user_id", "action", "resource", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "debt_collections",
                  log_format: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the package logger with a single handler.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Package logger to configure
        log_format: "json" for JSONFormatter, anything else for plain text
        log_file: Optional file path; logs go to stderr when omitted

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT))

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False
    return logger


def setup_logging_from_config(config) -> logging.Logger:
    """Configure logging from a CollectionsConfig instance"""
    return setup_logging(level=config.log_level, log_format=config.log_format, log_file=config.log_file)


def get_logger(name: str = "debt_collections") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[Dict[str, Any]] = None) -> None:
    """
    Log a task operation with structured fields.

    Args:
        logger: Module logger
        level: Level name (info, warning, error, ...)
        message: Human-readable message
        user_id: Staff id that performed the operation
        action: Operation name, e.g. ``record_payment``
        resource: Target, e.g. ``task:<id>``
        correlation_id: Request id for tracing across services
        extra: Additional structured data
    """
    fields = {
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra,
    }
    logger.log(getattr(logging, level.upper()), message,
               extra={name: value for name, value in fields.items() if value})
