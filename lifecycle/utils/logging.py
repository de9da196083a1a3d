"""
Structured logging configuration using structlog.

Every record carries the service name and, inside a request, the request id
bound by the tracing middleware. Scheduled jobs and scripts run outside a
request and bind their own context (job name, run id) the same way.
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

from lifecycle.config import get_settings

SERVICE_NAME = "ticket-lifecycle"

# Third-party loggers that are chatty at INFO (one line per upstream request)
_QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def add_severity(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add severity level for structured logging."""
    event_dict["severity"] = method_name.upper()
    return event_dict


def add_service(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure structured logging for the application.

    JSON lines in production, console output in dev mode.

    Args:
        level: Overrides LOG_LEVEL (scripts pass DEBUG for --verbose)
    """
    settings = get_settings()
    level_name = (level or settings.log_level).upper()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name, logging.INFO),
    )
    if level_name != "DEBUG":
        for name, quiet_level in _QUIET_LOGGERS.items():
            logging.getLogger(name).setLevel(quiet_level)

    if settings.log_format == "json" and not settings.dev_mode:
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=not settings.testing)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            add_severity,
            add_service,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """Structured logger named after the calling module."""
    return structlog.get_logger(name)
