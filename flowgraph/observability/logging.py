"""
Structured logging with run/node context propagation.

Every log record emitted while a flow runs picks up the ids of the run and
the node that produced it, without anyone passing them around:

    GraphScheduler.run() → sets run_id, flow_id once
        ↓ (ContextVar, copied into every asyncio task)
    node task → adds node_id, node_type
        ↓
    executor code → logger.info("...") → record carries all of the above

Two output modes: JSON lines for production, coloured text for development.
"""

import json
import logging
import os
import re
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from typing import Any

# Tasks get a copy of the context at creation, so per-node fields never leak
# between concurrently running nodes.
trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m|\033\[[0-9;]*m")

# Attributes passed through ``extra=`` that the JSON formatter copies verbatim
EXTRA_FIELDS = ("event", "latency_ms", "status", "provider", "model", "edge_id")


def strip_ansi_codes(text: str) -> str:
    """Remove ANSI escape codes from text for clean JSON logging."""
    return ANSI_ESCAPE_PATTERN.sub("", text)


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Each entry has timestamp, level, logger and message, followed by the
    current trace context (run_id, flow_id, node_id, ...) and any known
    ``extra`` fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}

        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
        }
        log_entry.update(context)

        for name in EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is None:
                continue
            log_entry[name] = strip_ansi_codes(value) if isinstance(value, str) else value

        if record.exc_info:
            log_entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Coloured single-line formatter prefixed with the run and node ids."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}
        run_id = context.get("run_id", "")
        flow_id = context.get("flow_id", "")
        node_id = context.get("node_id", "")

        prefix_parts = []
        if run_id:
            prefix_parts.append(f"run:{run_id[-8:]}")
        if flow_id:
            prefix_parts.append(f"flow:{flow_id}")
        if node_id:
            prefix_parts.append(f"node:{node_id}")
        context_prefix = f"[{' | '.join(prefix_parts)}] " if prefix_parts else ""

        color = self.COLORS.get(record.levelname, "")
        level = f"{record.levelname:<8}"

        event = ""
        record_event = getattr(record, "event", None)
        if record_event is not None:
            event = f" [{record_event}]"

        message = f"{color}[{level}]{self.RESET} {context_prefix}{record.getMessage()}{event}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def configure_logging(
    level: str = "INFO",
    format: str = "auto",  # "json", "human", or "auto"
) -> None:
    """
    Configure root logging for an application embedding flowgraph.

    Call once at startup (or from a test fixture).

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: "json", "human", or "auto". Auto picks JSON when
            LOG_FORMAT=json or ENV=production, human-readable otherwise.
    """
    if format == "auto":
        log_format_env = os.getenv("LOG_FORMAT", "").lower()
        env = os.getenv("ENV", "development").lower()
        format = "json" if log_format_env == "json" or env == "production" else "human"

    if format == "json":
        formatter: logging.Formatter = StructuredFormatter()
        _disable_third_party_colors()
    else:
        formatter = HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Route chatty HTTP/provider libraries through the root handler so JSON
    # mode stays machine-parseable end to end.
    if format == "json":
        for logger_name in ("LiteLLM", "httpcore", "httpx", "openai"):
            third_party = logging.getLogger(logger_name)
            third_party.handlers.clear()
            third_party.propagate = True


def _disable_third_party_colors() -> None:
    """Ask third-party libraries not to colourise their output."""
    os.environ["NO_COLOR"] = "1"
    os.environ["FORCE_COLOR"] = "0"


def set_trace_context(**kwargs: Any) -> Token:
    """
    Merge fields into the current trace context.

    The scheduler calls this with ``run_id``/``flow_id`` at run start and
    with ``node_id``/``node_type`` inside each node task. Fields propagate
    to every log record emitted in the same asyncio context.

    Returns a token that ``reset_trace_context`` uses to restore the
    previous context.
    """
    current = trace_context.get() or {}
    return trace_context.set({**current, **kwargs})


def reset_trace_context(token: Token) -> None:
    """Restore the trace context that was current before ``set_trace_context``."""
    trace_context.reset(token)


def get_trace_context() -> dict[str, Any]:
    """Return a copy of the current trace context (empty if unset)."""
    context = trace_context.get() or {}
    return context.copy()


def clear_trace_context() -> None:
    """Drop all trace context. Mostly useful between tests."""
    trace_context.set(None)
