"""Structured logging for tailmux.

One structlog processor chain renders both structlog loggers and the stdlib
``logging.getLogger(__name__)`` loggers used across the API. Entries carry
the ID of the HTTP request or terminal WebSocket connection that produced
them, and terminal payloads (keystrokes, PTY output) never reach the log.

Usage::

    from tailmux.observability.logging import configure_logging, get_logger

    configure_logging()  # Call once at startup
    logger = get_logger(__name__)
    logger.info("terminal_created", mode="tmux", session="work")
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

import structlog

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
connection_id_ctx: ContextVar[str | None] = ContextVar("connection_id", default=None)

# Event keys that may hold what a user typed or what their shell printed.
TERMINAL_PAYLOAD_KEYS = frozenset({"data", "input", "output"})

_configured = False


@contextmanager
def bind_connection(connection_id: str) -> Iterator[None]:
    """Tag every log entry inside the block with a WebSocket connection ID."""
    token = connection_id_ctx.set(connection_id)
    try:
        yield
    finally:
        connection_id_ctx.reset(token)


def _add_correlation_ids(logger, method_name: str, event_dict: dict) -> dict:
    for key, var in (("request_id", request_id_ctx), ("connection_id", connection_id_ctx)):
        value = var.get()
        if value is not None:
            event_dict[key] = value
    return event_dict


def _redact_terminal_payload(logger, method_name: str, event_dict: dict) -> dict:
    """Replace terminal payloads with their length."""
    for key in TERMINAL_PAYLOAD_KEYS & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, str):
            event_dict[key] = f"<{len(value)} chars>"
    return event_dict


def _pre_chain() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        _add_correlation_ids,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        _redact_terminal_payload,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
) -> None:
    """Configure structlog and route stdlib logging through it.

    Only the first call takes effect.

    Args:
        level: Log level name. Defaults to ``LOG_LEVEL`` or INFO.
        json_output: Emit JSON lines instead of console output. Defaults to
            ``LOG_FORMAT == "json"``.
    """
    global _configured
    if _configured:
        return
    _configured = True

    level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "console") == "json"

    pre_chain = _pre_chain()
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level, logging.INFO))

    # uvicorn logs every WebSocket handshake as an access line.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
