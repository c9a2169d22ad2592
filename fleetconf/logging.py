"""Root logger setup shared by the API process and Celery workers.

Modules keep logging through ``logging.getLogger(__name__)``; records are
rendered by structlog, as JSON lines when ``LOG_JSON`` is set.
"""

from __future__ import annotations

import logging
from typing import Any

import structlog

from fleetconf.config import settings

_configured = False

_SHARED_PROCESSORS: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
]


def build_formatter(json_logs: bool | None = None) -> structlog.stdlib.ProcessorFormatter:
    json_logs = settings.log_json if json_logs is None else json_logs
    if json_logs:
        renderers: list[Any] = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=False)]
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_SHARED_PROCESSORS,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
    )


def configure_logging(level: str | None = None) -> None:
    global _configured
    if _configured:
        return
    structlog.configure(
        processors=[*_SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    handler = logging.StreamHandler()
    handler.setFormatter(build_formatter())
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel((level or settings.log_level).upper())
    # httpx logs every device request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True
