from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import EventDict, WrappedLogger

from redroom.core.config import settings

SERVICE_NAME = "redroom"


def add_service_context(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    """Stamp every line with the service and deployment so shared log sinks can split Red Room output."""
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("env", settings.env.value)
    return event_dict


def configure_logging() -> None:
    """JSON logs carrying request, actor, company and alert ids bound via contextvars."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_service_context,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
