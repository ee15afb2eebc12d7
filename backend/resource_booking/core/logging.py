"""
Structured logging configuration using structlog.

Events are snake_case names with key/value context, e.g.
    logger.info("booking_created", series_id=series.id, instances=3)
UUID, datetime and timedelta values may be passed as-is; they are rendered
to strings before output. Request-scoped fields (request_id, method, path)
live in contextvars and are merged into every event of that request.

LOG_FORMAT selects the renderer: "json", "console", or "auto" (JSON in
production, console elsewhere).
"""

import logging
import sys
from datetime import date, datetime, timedelta
from uuid import UUID

import structlog
from resource_booking.core.config import get_settings

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "sqlalchemy.pool", "asyncio")

_configured = False


def _render_values(logger, method_name, event_dict):
    for key, value in event_dict.items():
        if isinstance(value, UUID):
            event_dict[key] = str(value)
        elif isinstance(value, (datetime, date)):
            event_dict[key] = value.isoformat()
        elif isinstance(value, timedelta):
            event_dict[key] = value.total_seconds()
    return event_dict


def _use_json(settings) -> bool:
    if settings.LOG_FORMAT == "auto":
        return settings.ENVIRONMENT == "production"
    return settings.LOG_FORMAT == "json"


def setup_logging() -> None:
    global _configured
    if _configured:
        return

    settings = get_settings()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _render_values,
        structlog.processors.StackInfoRenderer(),
    ]

    if _use_json(settings):
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=settings.DEBUG)

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    # Exactly one handler on the root logger
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_request_context(**fields) -> None:
    """Start a fresh per-request logging context."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**fields)
