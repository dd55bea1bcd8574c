"""Process-wide logging setup.

Modules keep logging through ``logging.getLogger(__name__)``; structlog's
``ProcessorFormatter`` renders those records as console lines or JSON.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from app.config import settings

_CONFIGURED = False

_SHARED_PROCESSORS: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.ExtraAdder(),
    structlog.processors.TimeStamper(fmt="iso", utc=True),
]


def build_formatter(fmt: str | None = None) -> structlog.stdlib.ProcessorFormatter:
    if (fmt or settings.log_format).lower() == "json":
        render: list[Any] = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        render = [structlog.dev.ConsoleRenderer(colors=False)]
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_SHARED_PROCESSORS,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *render],
    )


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(fmt))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, (level or settings.log_level).upper(), logging.INFO))

    # Uvicorn access lines are noisy behind the gateway.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    _CONFIGURED = True
