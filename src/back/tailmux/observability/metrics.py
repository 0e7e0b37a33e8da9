"""Prometheus metrics for tailmux.

Usage::

    from tailmux.observability.metrics import TERMINAL_SESSIONS_CREATED

    TERMINAL_SESSIONS_CREATED.labels(mode="tmux").inc()
"""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# HTTP request metrics (control surface)
# ---------------------------------------------------------------------------

HTTP_REQUESTS_TOTAL = Counter(
    "http_server_requests_total",
    "Total HTTP requests by method, path pattern, and status code.",
    labelnames=["method", "path", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_server_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Terminal session metrics
# ---------------------------------------------------------------------------

TERMINAL_SESSIONS_ACTIVE = Gauge(
    "tailmux_terminal_sessions_active",
    "Terminal sessions currently registered.",
    registry=REGISTRY,
)

TERMINAL_SESSIONS_CREATED = Counter(
    "tailmux_terminal_sessions_created_total",
    "Terminal sessions created, by mode.",
    labelnames=["mode"],
    registry=REGISTRY,
)

TERMINAL_SESSION_FAILURES = Counter(
    "tailmux_terminal_session_failures_total",
    "Terminal creation failures, by error kind.",
    labelnames=["kind"],
    registry=REGISTRY,
)

TERMINAL_IDLE_EXPIRIES = Counter(
    "tailmux_terminal_idle_expiries_total",
    "Terminal sessions closed for inactivity.",
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# WebSocket connection metrics
# ---------------------------------------------------------------------------

WS_CONNECTIONS_ACTIVE = Gauge(
    "tailmux_ws_connections_active",
    "Open terminal WebSocket connections.",
    registry=REGISTRY,
)

WS_HEARTBEAT_TERMINATIONS = Counter(
    "tailmux_ws_heartbeat_terminations_total",
    "Connections terminated for missing a heartbeat reply.",
    registry=REGISTRY,
)

WS_FRAMES_DROPPED = Counter(
    "tailmux_ws_frames_dropped_total",
    "Malformed inbound frames dropped.",
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
