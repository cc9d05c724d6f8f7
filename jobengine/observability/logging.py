"""
Structured logging for worker processes.

Modules log through ``logging.getLogger(__name__)`` with ``extra`` fields.
structlog renders those records as JSON or console lines, stamped with the
emitting process, the job being executed and the active trace.
"""

import logging
import os
import socket
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from opentelemetry import trace

from jobengine.config import get_settings

# Libraries whose routine output would bury job logs
NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "asyncpg")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Add the active span's trace and span ids, when a span is recording."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def process_context(service_name: str) -> Callable[..., dict[str, Any]]:
    """
    Build a processor that stamps every record with the emitting process.

    Several worker processes usually ship to the same sink, so each line
    names the process that wrote it.

    Args:
        service_name: Name reported as ``service``.

    Returns:
        The processor.
    """
    hostname = socket.gethostname()
    pid = os.getpid()

    def add_process_context(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        event_dict.setdefault("host", hostname)
        event_dict.setdefault("pid", pid)
        return event_dict

    return add_process_context


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure structured logging for the process.

    Args:
        log_level: Overrides the configured level.
        log_format: Overrides the configured format ("json" or "console").
    """
    settings = get_settings()
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    log_format = log_format or settings.log_format

    # Applied to structlog events and to stdlib records alike
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        process_context(settings.otel_service_name),
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    if log_format == "json":
        # One JSON object per line for log shipping
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        # Colours only when a terminal is attached
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

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

    # Route stdlib records through the same renderer
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def job_log_context(**fields: Any) -> Iterator[None]:
    """
    Attach job fields to every record logged inside the block.

    Bindings live in contextvars, so concurrent job tasks never see each
    other's fields. They are dropped when the block exits.

    Args:
        **fields: Key-value pairs such as ``job_id`` and ``queue``.
    """
    with structlog.contextvars.bound_contextvars(**fields):
        yield
