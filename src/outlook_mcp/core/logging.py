"""Structured logging for the Outlook calendar server.

Call sites keep using ``logging.getLogger(__name__)``; structlog's
ProcessorFormatter renders every stdlib record. The console handler is bound
to stderr because stdout carries the MCP stdio transport. An optional JSON
log file is written under ``log_root``.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

LOG_FILENAME = "outlook-mcp.log"

# Chatty at INFO; pinned to WARNING.
_NOISE_LOGGERS = ("mcp.server.lowlevel.server", "httpx", "httpcore")

_server_context: ContextVar[str | None] = ContextVar("server_name", default=None)


def set_server_context(name: str) -> None:
    """Attach *name* as ``server`` to records logged from this context."""
    _server_context.set(name)


def add_server_context(logger, method_name, event_dict: dict) -> dict:  # noqa: ARG001
    event_dict["server"] = _server_context.get()
    return event_dict


def add_otel_context(logger, method_name, event_dict: dict) -> dict:  # noqa: ARG001
    """Add ``trace_id``/``span_id`` of the current span (zeroes when none)."""
    ctx = trace.get_current_span().get_span_context()
    if ctx and ctx.trace_id:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    else:
        event_dict["trace_id"] = "0" * 32
        event_dict["span_id"] = "0" * 16
    return event_dict


def _pre_chain(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_server_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _formatter(
    renderer: structlog.types.Processor, pre_chain: list[structlog.types.Processor]
) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | None = None,
    server_name: str | None = None,
) -> None:
    """Install stderr (and optionally file) handlers on the root logger.

    Parameters
    ----------
    level:
        Root log level name; unknown names fall back to INFO.
    fmt:
        ``"text"`` for plain console lines, ``"json"`` for JSON lines.
    log_root:
        Directory for ``outlook-mcp.log``, always JSON. Created if missing.
    server_name:
        Stored in the server ContextVar and emitted as ``server``.
    """
    if server_name:
        set_server_context(server_name)

    if fmt == "json":
        pre_chain = _pre_chain("iso")
        renderer = structlog.processors.JSONRenderer()
    else:
        pre_chain = _pre_chain("%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(renderer, pre_chain))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        log_root = Path(log_root)
        log_root.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_root / LOG_FILENAME)
        file_handler.setFormatter(
            _formatter(structlog.processors.JSONRenderer(), _pre_chain("iso"))
        )
        file_handler.setLevel(logging.DEBUG)
        root.addHandler(file_handler)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
