"""Observability for tailmux: structured logging, Prometheus metrics,
and request-ID correlation middleware.

Quick start::

    from tailmux.observability import configure_logging, get_logger
    from tailmux.observability.metrics import metrics_text

    configure_logging()
"""

from .logging import (
    bind_connection,
    configure_logging,
    connection_id_ctx,
    get_logger,
    request_id_ctx,
)
from .metrics import metrics_text

__all__ = [
    "bind_connection",
    "configure_logging",
    "connection_id_ctx",
    "get_logger",
    "metrics_text",
    "request_id_ctx",
]
