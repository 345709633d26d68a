"""structlog setup and per-record log context."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from streamrouter.models.records import StreamRecord


def setup_logging(level: str = "info", fmt: str = "json") -> None:
    """Route structlog to stderr, JSON by default or key=value for ``fmt="console"``."""
    renderer: structlog.types.Processor
    if fmt == "console":
        renderer = structlog.dev.ConsoleRenderer(colors=False)
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with a component name."""
    return structlog.get_logger(component=component)  # type: ignore[no-any-return]


@contextmanager
def record_context(record: StreamRecord) -> Iterator[None]:
    """Bind the record's identity to every log line emitted inside the block."""
    with structlog.contextvars.bound_contextvars(
        event_id=record.event_id,
        event_name=record.event_name.value,
        sequence_number=record.sequence_number,
    ):
        yield
