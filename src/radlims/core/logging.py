"""Structured logging configuration using structlog.

Call configure_logging() once at application startup (before any log calls).
Output format is controlled by RADLIMS_LOG_FORMAT:
  - "console" (default): colored, human-readable development output
  - "json": one JSON object per line, kept with the audit trail

Request handlers bind the acting identity with bind_actor(), so every
workflow log line names who issued the request alongside the sample it
touched.
"""

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from radlims.core.auth.identity import Identity

# Third-party loggers kept at WARNING unless log_level asks for less
_QUIET_LOGGERS = ("uvicorn.access", "aiosqlite", "sqlalchemy.engine", "alembic.runtime")


def configure_logging(log_format: str = "console", log_level: str = "INFO") -> None:
    """Configure structlog and route stdlib records through it.

    Args:
        log_format: "console" for dev-friendly output, "json" for archived logs.
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR).
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: structlog.types.Processor
    if log_format == "json":
        shared_processors.append(structlog.processors.dict_tracebacks)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # uvicorn, sqlalchemy and alembic records share the renderer
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def bind_actor(identity: "Identity") -> None:
    """Attach the acting identity to every log line of the current context."""
    structlog.contextvars.bind_contextvars(
        actor_id=identity.user_id,
        actor_role=identity.role.value,
    )


def clear_log_context() -> None:
    """Drop context bound by a previous request on this task."""
    structlog.contextvars.clear_contextvars()
