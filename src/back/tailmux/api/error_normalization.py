"""Error normalization for terminal sessions and the control surface.

Maps terminal failures into stable, client-visible WebSocket close codes
and HTTP statuses without leaking process internals.

Goals:
  1. Every failure kind maps to one known close code and reason.
  2. The error frame carries the specific message; the close reason stays generic.
  3. Errors are logged with full detail server-side for debugging.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    """Failure kinds surfaced to clients."""
    CAPACITY_EXCEEDED = 'capacity_exceeded'
    SPAWN_FAILURE = 'spawn_failure'
    MULTIPLEXER_UNAVAILABLE = 'multiplexer_unavailable'
    IDLE_TIMEOUT = 'idle_timeout'
    RENAME_VALIDATION = 'rename_validation'
    RENAME_EXECUTION = 'rename_execution'
    INTERNAL = 'internal'


# ── Standard WS close codes ──

WS_NORMAL_CLOSURE = 1000
WS_GOING_AWAY = 1001
WS_INTERNAL_ERROR = 1011
WS_TRY_AGAIN_LATER = 1013


@dataclass(frozen=True)
class NormalizedError:
    """A normalized error ready for client consumption.

    Fields:
      kind: Failure kind for programmatic handling
      http_status: HTTP status code for control-surface responses
      ws_close_code: WebSocket close code after the error frame
      close_reason: Short close reason (the error frame carries the detail)
    """
    kind: ErrorKind
    http_status: int
    ws_close_code: int
    close_reason: str


_ERROR_MAP: dict[ErrorKind, NormalizedError] = {
    ErrorKind.CAPACITY_EXCEEDED: NormalizedError(
        kind=ErrorKind.CAPACITY_EXCEEDED,
        http_status=503,
        ws_close_code=WS_TRY_AGAIN_LATER,
        close_reason='Max terminals reached',
    ),
    ErrorKind.SPAWN_FAILURE: NormalizedError(
        kind=ErrorKind.SPAWN_FAILURE,
        http_status=500,
        ws_close_code=WS_INTERNAL_ERROR,
        close_reason='Failed to spawn',
    ),
    ErrorKind.MULTIPLEXER_UNAVAILABLE: NormalizedError(
        kind=ErrorKind.MULTIPLEXER_UNAVAILABLE,
        http_status=400,
        ws_close_code=WS_INTERNAL_ERROR,
        close_reason='tmux unavailable',
    ),
    ErrorKind.IDLE_TIMEOUT: NormalizedError(
        kind=ErrorKind.IDLE_TIMEOUT,
        http_status=408,
        ws_close_code=WS_NORMAL_CLOSURE,
        close_reason='Idle timeout',
    ),
    ErrorKind.RENAME_VALIDATION: NormalizedError(
        kind=ErrorKind.RENAME_VALIDATION,
        http_status=400,
        ws_close_code=WS_INTERNAL_ERROR,
        close_reason='Invalid session name',
    ),
    ErrorKind.RENAME_EXECUTION: NormalizedError(
        kind=ErrorKind.RENAME_EXECUTION,
        http_status=500,
        ws_close_code=WS_INTERNAL_ERROR,
        close_reason='Rename failed',
    ),
    ErrorKind.INTERNAL: NormalizedError(
        kind=ErrorKind.INTERNAL,
        http_status=500,
        ws_close_code=WS_INTERNAL_ERROR,
        close_reason='Internal error',
    ),
}


def normalize_error(
    kind: ErrorKind,
    *,
    internal_detail: str = '',
    session_id: str = '',
) -> NormalizedError:
    """Normalize a failure kind to its close code, reason, and HTTP status.

    Args:
        kind: Failure kind (usually ``TerminalError.kind``)
        internal_detail: Detailed error for server-side logging
        session_id: Session the failure relates to, if any

    Returns:
        NormalizedError for the kind
    """
    normalized = _ERROR_MAP.get(kind)
    if normalized is None:
        logger.warning('Unknown error kind %r (session_id=%s)', kind, session_id)
        normalized = _ERROR_MAP[ErrorKind.INTERNAL]

    if internal_detail:
        logger.info(
            'Normalized %s -> close %d (session_id=%s, detail=%s)',
            kind.value, normalized.ws_close_code, session_id, internal_detail,
        )

    return normalized


def error_response_body(message: str) -> dict:
    """Build a JSON error body for a rejected control-surface request."""
    return {'success': False, 'error': message}
