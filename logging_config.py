"""
Structured logging with structlog.

- console or JSON rendering (LOG_FORMAT)
- stdlib logging routed through the same handler so SQLAlchemy / uvicorn /
  alembic output lands in one stream
"""
import logging
import logging.config
import sys

import structlog

import config

_configured = False


def setup_logging() -> None:
    """Idempotent logging configuration."""
    global _configured
    if _configured:
        return

    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    log_format = config.LOG_FORMAT if config.LOG_FORMAT in ("json", "console") else "console"

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": {"format": "%(message)s"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "plain",
                "stream": sys.stdout,
            },
        },
        "root": {"level": level, "handlers": ["console"]},
        "loggers": {
            "uvicorn.access": {"level": "WARNING", "handlers": ["console"], "propagate": False},
            "sqlalchemy.engine": {"level": "WARNING", "handlers": ["console"], "propagate": False},
            "alembic": {"level": "INFO", "handlers": ["console"], "propagate": False},
        },
    })

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer() if log_format == "json" else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )
    _configured = True


def bind_request_context(**values) -> None:
    """Bind key/values (actor, request id...) onto every log line of this request."""
    payload = {k: v for k, v in values.items() if v is not None}
    if payload:
        structlog.contextvars.bind_contextvars(**payload)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
