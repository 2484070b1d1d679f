"""structlog-backed logging for the provider.

Every module logs through ``logging.getLogger(__name__)``; ``configure_logging``
routes those records through structlog's ``ProcessorFormatter`` so they gain
the id of the calendar being synced and the current OTel trace ids.

Console output is either ``text`` (coloured, for development) or ``json``.
With a ``log_root`` the process also writes JSON lines to::

    <log_root>/provider/<log_name>.log   provider records
    <log_root>/http/<log_name>.log       httpx / httpcore records
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar, Token
from pathlib import Path
from typing import Any

import structlog
from opentelemetry import trace

from gcal_provider.errors import redact_secrets

_calendar_context: ContextVar[str | None] = ContextVar("calendar_id", default=None)

# Transport libraries log every request URL at INFO.
_NOISE_LOGGERS = ("httpx", "httpcore")

_DIR_PROVIDER = "provider"
_DIR_HTTP = "http"
_DEFAULT_LOG_NAME = "gcal-provider"
_CONSOLE_TIME_FORMAT = "%H:%M:%S"

_ZERO_TRACE_ID = "0" * 32
_ZERO_SPAN_ID = "0" * 16


def set_calendar_context(calendar_id: str | None) -> Token[str | None]:
    """Tag records emitted from the current task with *calendar_id*."""
    return _calendar_context.set(calendar_id)


def reset_calendar_context(token: Token[str | None]) -> None:
    _calendar_context.reset(token)


def get_calendar_context() -> str | None:
    return _calendar_context.get()


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------


def add_calendar_context(_logger: Any, _method_name: str, event_dict: dict) -> dict:
    event_dict["calendar"] = _calendar_context.get()
    return event_dict


def add_otel_context(_logger: Any, _method_name: str, event_dict: dict) -> dict:
    """Add ``trace_id``/``span_id`` of the active span, zeroed outside a span."""
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        event_dict["trace_id"] = trace.format_trace_id(span_context.trace_id)
        event_dict["span_id"] = trace.format_span_id(span_context.span_id)
    else:
        event_dict["trace_id"] = _ZERO_TRACE_ID
        event_dict["span_id"] = _ZERO_SPAN_ID
    return event_dict


class CredentialRedactionFilter(logging.Filter):
    """Rewrites records whose rendered message carries a token or client secret."""

    def filter(self, record: logging.LogRecord) -> bool:
        rendered = record.getMessage()
        scrubbed = redact_secrets(rendered)
        if scrubbed != rendered:
            record.msg = scrubbed
            record.args = ()
        return True


def _shared_processors(timestamp_format: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_format),
        add_calendar_context,
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


def _json_file_handler(path: Path) -> logging.FileHandler:
    handler = logging.FileHandler(path)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        _formatter(structlog.processors.JSONRenderer(), _shared_processors("iso"))
    )
    handler.addFilter(CredentialRedactionFilter())
    return handler


def _attach_log_files(root: logging.Logger, log_root: Path, log_name: str) -> None:
    provider_dir = log_root / _DIR_PROVIDER
    http_dir = log_root / _DIR_HTTP
    provider_dir.mkdir(parents=True, exist_ok=True)
    http_dir.mkdir(parents=True, exist_ok=True)

    root.addHandler(_json_file_handler(provider_dir / f"{log_name}.log"))
    http_handler = _json_file_handler(http_dir / f"{log_name}.log")
    for name in _NOISE_LOGGERS:
        logging.getLogger(name).addHandler(http_handler)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
    log_name: str = _DEFAULT_LOG_NAME,
) -> None:
    """Install the provider's handlers on the root logger.

    Safe to call more than once: existing root handlers are replaced.

    Parameters
    ----------
    level:
        Root level name, e.g. ``"DEBUG"``. Unknown names fall back to INFO.
    fmt:
        ``"json"`` for JSON lines on stderr, anything else for the console
        renderer.
    log_root:
        Directory receiving the JSON log files; ``None`` disables them.
    log_name:
        Stem of both log files.
    """
    if fmt == "json":
        pre_chain = _shared_processors("iso")
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        pre_chain = _shared_processors(_CONSOLE_TIME_FORMAT)
        renderer = structlog.dev.ConsoleRenderer()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(renderer, pre_chain))
    console.addFilter(CredentialRedactionFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root.setLevel(logging.getLevelNamesMapping().get(level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        _attach_log_files(root, Path(log_root), log_name)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
