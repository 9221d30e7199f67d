"""Structured logging configuration using structlog.

Every line carries the ``component`` of the logger that wrote it. While a
reconcile runs, ``reconcile_context`` also puts the DesiredState key on every
line under ``namespace``, including lines written by planners and stores.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

SERVICE_NAME = "nsreconciler"


def setup_logging(level: str = "info") -> None:
    """Configure structlog for JSON output to stderr."""
    log_level = getattr(logging, level.upper(), logging.INFO)

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


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with the service and a component name."""
    return structlog.get_logger(service=SERVICE_NAME, component=component)  # type: ignore[return-value]


@contextmanager
def reconcile_context(key: str) -> Iterator[None]:
    """Bind ``namespace=<key>`` to every log line written inside the block.

    Context variables are per asyncio task, so concurrent reconciles of
    different keys never see each other's binding.
    """
    with structlog.contextvars.bound_contextvars(namespace=key):
        yield
