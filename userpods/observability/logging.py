"""structlog setup for userpods.

Every record is a single JSON object on stderr with an ISO UTC ``ts``, the
level, the emitting ``component`` and, once :func:`setup_logging` has run,
the ``namespace`` the service manages.  Third-party loggers that go through
the standard library (kubernetes_asyncio, aiohttp, uvicorn) are routed to
the same stream and held at WARNING unless userpods itself runs at DEBUG.
"""

from __future__ import annotations

import logging
import sys
from typing import cast

import structlog
from structlog.typing import FilteringBoundLogger

_LIBRARY_LOGGERS = ("kubernetes_asyncio", "aiohttp", "uvicorn", "uvicorn.error")


def _level_number(level: str) -> int:
    return cast(int, logging.getLevelNamesMapping().get(level.upper(), logging.INFO))


def setup_logging(level: str = "info", namespace: str = "") -> None:
    """Configure structlog for JSON output to stderr at ``level``."""
    log_level = _level_number(level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    if namespace:
        structlog.contextvars.bind_contextvars(namespace=namespace)

    library_level = logging.DEBUG if log_level <= logging.DEBUG else logging.WARNING
    logging.basicConfig(stream=sys.stderr, level=library_level, format="%(name)s %(levelname)s %(message)s")
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


def get_logger(component: str) -> FilteringBoundLogger:
    """Return a logger bound to ``component``, e.g. ``"collector.watch"``."""
    return cast(FilteringBoundLogger, structlog.get_logger(component=component))
