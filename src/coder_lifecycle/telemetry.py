"""Structured logging and tracing setup.

Log records are produced with structlog and rendered through the stdlib
logging bridge, so a run can write human-readable output to stderr and a
JSON copy to a per-operation log file at the same time. When an
OpenTelemetry span is active, trace_id and span_id are injected into every
record for correlation.

Example:
    >>> configure_logging("INFO", log_file=Path("logs/setup/20250101-120000-dev-setup.log"))
    >>> tracer = get_tracer()
    >>> with tracer.start_as_current_span("lifecycle.setup.backend"):
    ...     structlog.get_logger(__name__).info("backend_ready")
"""

from __future__ import annotations

import logging
import sys
import threading
from collections.abc import MutableMapping
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from opentelemetry import trace
from opentelemetry.trace import INVALID_SPAN_ID, INVALID_TRACE_ID

if TYPE_CHECKING:
    from opentelemetry.trace import Tracer

EventDict = MutableMapping[str, Any]

ROOT_LOGGER_NAME = "coder_lifecycle"
TRACER_NAME = "coder_lifecycle"

_tracers: dict[str, Tracer] = {}
_lock = threading.Lock()


def add_trace_context(
    logger: Any,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Inject trace_id/span_id of the active span into the event dict."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.trace_id != INVALID_TRACE_ID and ctx.span_id != INVALID_SPAN_ID:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    log_file: Path | None = None,
) -> None:
    """Configure structlog and the ``coder_lifecycle`` stdlib logger.

    Args:
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR).
        json_output: Render stderr output as JSON instead of console format.
        log_file: Optional file receiving a JSON copy of every record.
    """
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_trace_context,
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    console_renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                console_renderer,
            ],
            foreign_pre_chain=shared_processors,
        )
    )

    handlers: list[logging.Handler] = [console_handler]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.JSONRenderer(),
                ],
                foreign_pre_chain=shared_processors,
            )
        )
        handlers.append(file_handler)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(log_level.upper())
    root.propagate = False


def log_file_path(log_dir: Path, operation: str, environment: str, now: datetime) -> Path:
    """Return ``<log_dir>/<operation>/<YYYYmmdd-HHMMSS>-<env>-<operation>.log``."""
    stamp = now.strftime("%Y%m%d-%H%M%S")
    return log_dir / operation / f"{stamp}-{environment}-{operation}.log"


def get_tracer(name: str = TRACER_NAME) -> Tracer:
    """Return a cached tracer, falling back to a NoOp tracer on failure."""
    if name in _tracers:
        return _tracers[name]

    with _lock:
        if name in _tracers:
            return _tracers[name]
        try:
            tracer = trace.get_tracer(name)
        except Exception:  # noqa: BLE001
            return trace.NoOpTracer()
        _tracers[name] = tracer
        return tracer


def reset_tracer() -> None:
    """Clear cached tracers (test isolation)."""
    with _lock:
        _tracers.clear()


__all__: list[str] = [
    "add_trace_context",
    "configure_logging",
    "get_tracer",
    "log_file_path",
    "reset_tracer",
]
