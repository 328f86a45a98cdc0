"""
Structured logging for the payer gateway.

This module provides:
- Structured logging with JSON output
- Correlation ID tracking across partner calls
- Service metadata on every record
"""

import contextlib
import contextvars
import logging
import logging.config
import sys
import time
import traceback
import uuid

import structlog
from pythonjsonlogger import jsonlogger

from .config import LoggingSettings
from .exceptions import ConfigurationError

correlation_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)


class CorrelationIDProcessor:
    """Processor to add the context correlation ID when a record lacks one."""

    def __call__(self, logger, method_name, event_dict):
        if "correlation_id" not in event_dict:
            correlation_id = correlation_id_var.get()
            if correlation_id:
                event_dict["correlation_id"] = correlation_id
        return event_dict


class TimestampProcessor:
    """Processor to add timestamps to log records."""

    def __call__(self, logger, method_name, event_dict):
        event_dict["timestamp"] = time.time()
        return event_dict


class ServiceInfoProcessor:
    """Processor to add service information to log records."""

    def __init__(self, service_name: str, service_version: str):
        self.service_name = service_name
        self.service_version = service_version

    def __call__(self, logger, method_name, event_dict):
        event_dict["service_name"] = self.service_name
        event_dict["service_version"] = self.service_version
        return event_dict


class ExceptionProcessor:
    """Processor to format exceptions in log records."""

    def __call__(self, logger, method_name, event_dict):
        exc_info = event_dict.pop("exc_info", None)
        if exc_info:
            if exc_info is True:
                exc_info = sys.exc_info()
            elif isinstance(exc_info, BaseException):
                exc_info = (type(exc_info), exc_info, exc_info.__traceback__)

            if exc_info[0] is not None:
                event_dict["exception"] = {
                    "type": exc_info[0].__name__,
                    "message": str(exc_info[1]),
                    "traceback": "".join(traceback.format_tb(exc_info[2]))
                    if exc_info[2]
                    else "",
                }
        return event_dict


def setup_logging(settings: LoggingSettings | None = None) -> None:
    """
    Setup structured logging.

    Args:
        settings: LoggingSettings, defaults when omitted
    """
    settings = settings or LoggingSettings()
    level = settings.level.value

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        TimestampProcessor(),
        ServiceInfoProcessor(settings.service_name, settings.service_version),
        CorrelationIDProcessor(),
        ExceptionProcessor(),
    ]

    if settings.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    formatter = "json" if settings.format == "json" else "standard"
    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": jsonlogger.JsonFormatter,
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
            },
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": formatter,
                "stream": sys.stderr,
            },
        },
        "loggers": {
            "": {"handlers": ["console"], "level": level, "propagate": False},
        },
    }

    if settings.log_file:
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": formatter,
            "filename": settings.log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
        }
        logging_config["loggers"][""]["handlers"].append("file")

    try:
        logging.config.dictConfig(logging_config)
    except (ValueError, TypeError, AttributeError, ImportError, OSError) as e:
        raise ConfigurationError(f"Failed to configure logging: {e}")


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, typically for ``__name__``."""
    return structlog.get_logger(name)


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the context correlation ID, generating one when omitted."""
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    correlation_id_var.set(correlation_id)
    return correlation_id


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def new_correlation_id() -> str:
    """A fresh UUID4 correlation ID for one logical request."""
    return str(uuid.uuid4())


@contextlib.contextmanager
def correlation_scope(correlation_id: str):
    """Bind ``correlation_id`` to the context for the duration of the block."""
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)
