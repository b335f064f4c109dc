"""Structured logging for the controller.

Everything ends up on stdout through one handler on the root logger:
structlog events from our own modules and stdlib records from httpx and
other libraries share a ``ProcessorFormatter``, so both come out as JSON
in production or coloured console lines in development. Each line
carries the Steam app and namespace the controller manages.
"""

import logging
import sys

import structlog
from structlog.typing import FilteringBoundLogger, Processor

from steam_update_controller.config import Settings, get_settings

# Polled on every cycle; their request lines are noise at INFO
_QUIET_LOGGERS = ("httpx", "httpcore")


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def _renderer(settings: Settings) -> Processor:
    if settings.is_development:
        return structlog.dev.ConsoleRenderer(colors=True)
    return structlog.processors.JSONRenderer()


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structlog and route stdlib logging through it."""
    settings = settings or get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    final_processors: list[Processor] = [
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
    ]
    if not settings.is_development:
        final_processors.append(structlog.processors.format_exc_info)
    final_processors.append(_renderer(settings))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_processors(),
            processors=final_processors,
        )
    )

    logging.basicConfig(format="%(message)s", level=log_level, handlers=[])
    root = logging.getLogger()
    root.setLevel(log_level)
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        steam_app=settings.steam_app,
        steam_app_id=settings.steam_app_id,
        namespace=settings.namespace,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    """Get a logger instance."""
    logger: FilteringBoundLogger = structlog.get_logger(name)
    return logger
