"""
Structured logging for the reconciliation services.

structlog renders through a stdlib handler, so SQLAlchemy, httpx and redis
records come out in the same format as ours. Dev gets a colored console;
every other environment emits one JSON object per line.

Event names are snake_case (``match_aggregation_completed``) with keyword
context; ``service``, ``instance_id`` and, during a pass, ``task`` and
``sport_id`` are bound as context vars.
"""
from __future__ import annotations

import logging
import sys
from typing import Optional

import structlog

from shared.config import Environment, get_settings

_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "sqlalchemy.engine", "redis")


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]


def _renderers(environment: Environment) -> list[structlog.types.Processor]:
    if environment == Environment.DEV:
        return [structlog.dev.ConsoleRenderer(colors=True)]
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def setup_logging(service_name: str, level: Optional[str] = None) -> None:
    """Configure structlog and the root handler for one service process (ingest, lifecycle)."""
    settings = get_settings()
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *_renderers(settings.environment),
            ],
            foreign_pre_chain=pre_chain,
        )
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, (level or settings.log_level).upper(), logging.INFO))
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name, instance_id=settings.instance_id)


def bind_task(task: str, sport_id: int | None = None) -> None:
    """Bind the running task name (and sport) to every subsequent log entry."""
    structlog.contextvars.bind_contextvars(task=task, sport_id=sport_id)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
