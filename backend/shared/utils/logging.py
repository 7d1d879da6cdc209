"""
Structured logging for matchfeed services.

Both structlog loggers and stdlib loggers (uvicorn, httpx) end up in one
``ProcessorFormatter`` on stdout: colored console output in dev, one JSON
object per line elsewhere. Process-wide fields (service, instance) and
per-request fields (request id) travel in structlog contextvars, so any
``logger.info(...)`` made while serving a request carries them.
"""
from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from shared.config import Environment, Settings, get_settings

# Library loggers capped at WARNING; request lines come from RequestLoggingMiddleware.
NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "asyncio")


def _drop_color_message(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    """uvicorn passes a duplicate ANSI-colored message in ``extra``."""
    event_dict.pop("color_message", None)
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        _drop_color_message,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(settings: Settings) -> Processor:
    if settings.environment == Environment.DEV:
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def _install_root_handler(formatter: logging.Formatter, level: int) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def setup_logging(
    service_name: str,
    extra_context: dict[str, Any] | None = None,
    settings: Settings | None = None,
) -> None:
    """
    Route structlog and stdlib logging through one formatter and bind the
    process-wide context.

    Args:
        service_name: The service role (api, scheduler).
        extra_context: Additional static fields bound to every log entry.
        settings: Explicit settings; defaults to the process-wide settings.
    """
    settings = settings or get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    shared = _shared_processors()
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, _renderer(settings)],
        foreign_pre_chain=shared,
    )
    _install_root_handler(formatter, level)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        service=service_name,
        instance_id=settings.instance_id or None,
        environment=settings.environment.value,
        **(extra_context or {}),
    )


@contextmanager
def request_context(**fields: Any) -> Iterator[None]:
    """Bind ``fields`` to every log line emitted inside the block, then restore."""
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named structured logger."""
    return structlog.get_logger(name)
