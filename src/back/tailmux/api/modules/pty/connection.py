"""Per-connection state for the terminal WebSocket.

A ``TerminalConnection`` owns at most one terminal session. It moves
through three states::

    IDLE --create--> ACTIVE --exit/idle/failure/close--> CLOSED
    IDLE --failure/close--> CLOSED

Malformed inbound frames are logged and counted, then dropped without
closing the socket.
"""
from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import Any, Protocol

from ....observability.metrics import WS_FRAMES_DROPPED, WS_HEARTBEAT_TERMINATIONS
from ....protocol import (
    CreateFrame,
    FrameError,
    InputFrame,
    PingFrame,
    ResizeFrame,
    encode,
    error_frame,
    exit_frame,
    output_frame,
    parse_client_frame,
    ping_frame,
    pong_frame,
    ready_frame,
)
from ...error_normalization import WS_GOING_AWAY, WS_NORMAL_CLOSURE, normalize_error
from ...errors import TerminalError
from .service import SessionRegistry

logger = logging.getLogger(__name__)

HEARTBEAT_CLOSE_REASON = 'Heartbeat timeout'


class ConnectionState(Enum):
    IDLE = 'idle'
    ACTIVE = 'active'
    CLOSED = 'closed'


_ALLOWED_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.IDLE: frozenset({ConnectionState.ACTIVE, ConnectionState.CLOSED}),
    ConnectionState.ACTIVE: frozenset({ConnectionState.CLOSED}),
    ConnectionState.CLOSED: frozenset(),
}


class FrameTransport(Protocol):
    """The subset of ``starlette.websockets.WebSocket`` a connection uses."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


class TerminalConnection:
    """One client connection and the terminal session it drives."""

    def __init__(
        self,
        transport: FrameTransport,
        registry: SessionRegistry,
        connection_id: str | None = None,
    ):
        self.transport = transport
        self.registry = registry
        self.connection_id = connection_id or uuid.uuid4().hex[:12]
        self.state = ConnectionState.IDLE
        self.session_id: str | None = None
        # Cleared by each heartbeat ping, set again by the next client frame.
        self.is_alive = True

    def __repr__(self) -> str:
        return (
            f'TerminalConnection({self.connection_id!r}, state={self.state.value}, '
            f'session_id={self.session_id!r})'
        )

    @property
    def closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    def _transition(self, new_state: ConnectionState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(
                f'Illegal connection transition {self.state.value} -> {new_state.value}'
            )
        logger.debug('Connection %s: %s -> %s', self.connection_id, self.state.value, new_state.value)
        self.state = new_state

    # -- inbound --

    async def handle_frame(self, raw: str | bytes) -> None:
        """Dispatch one inbound frame."""
        if self.closed:
            return
        try:
            frame = parse_client_frame(raw)
        except FrameError as e:
            WS_FRAMES_DROPPED.inc()
            logger.warning('Dropping malformed frame on %s: %s', self.connection_id, e)
            return

        # Any well-formed frame proves the peer is alive.
        self.is_alive = True
        if isinstance(frame, CreateFrame):
            await self._handle_create(frame)
        elif isinstance(frame, InputFrame):
            if self.state is ConnectionState.ACTIVE:
                self.registry.input(self.session_id, frame.data)
        elif isinstance(frame, ResizeFrame):
            if self.state is ConnectionState.ACTIVE:
                self.registry.resize(self.session_id, frame.cols, frame.rows)
        elif isinstance(frame, PingFrame):
            await self._send(pong_frame())

    async def _handle_create(self, frame: CreateFrame) -> None:
        if self.state is not ConnectionState.IDLE:
            logger.info('Ignoring create on %s: a session is already attached', self.connection_id)
            return

        cols, rows = frame.geometry
        try:
            session = self.registry.create(
                frame.mode, frame.session_name, cols, rows, connection=self,
            )
        except TerminalError as e:
            await self.notify_failure(e)
            return

        self.session_id = session.session_id
        self._transition(ConnectionState.ACTIVE)
        await self._send(ready_frame())

    # -- outbound (called by the registry and heartbeat) --

    async def send_output(self, data: str) -> None:
        if self.state is ConnectionState.ACTIVE:
            await self._send(output_frame(data))

    async def notify_exit(self, exit_code: int | None) -> None:
        """Report process exit, then close normally."""
        if self.closed:
            return
        self._transition(ConnectionState.CLOSED)
        await self._send(exit_frame(exit_code))
        await self._close(WS_NORMAL_CLOSURE, '')

    async def notify_failure(self, error: TerminalError) -> None:
        """Send exactly one error frame, then close with the kind's code."""
        if self.closed:
            return
        self._transition(ConnectionState.CLOSED)
        normalized = normalize_error(
            error.kind,
            internal_detail=repr(error),
            session_id=error.session_id or '',
        )
        await self._send(error_frame(error.message))
        await self._close(normalized.ws_close_code, normalized.close_reason)

    async def send_heartbeat(self) -> None:
        """Send a heartbeat ping; the next tick terminates us unless a pong arrives."""
        if self.closed:
            return
        self.is_alive = False
        await self._send(ping_frame())

    async def terminate(self) -> None:
        """Drop a connection that missed its heartbeat."""
        WS_HEARTBEAT_TERMINATIONS.inc()
        logger.warning('Connection %s missed a heartbeat, terminating', self.connection_id)
        self.connection_lost()
        await self._close(WS_GOING_AWAY, HEARTBEAT_CLOSE_REASON)

    def connection_lost(self) -> None:
        """Transport is gone: tear down the owned session. Idempotent."""
        if not self.closed:
            self._transition(ConnectionState.CLOSED)
        if self.session_id is not None:
            self.registry.destroy(self.session_id)

    # -- transport --

    async def _send(self, frame: dict[str, Any]) -> bool:
        try:
            await self.transport.send_text(encode(frame))
        except Exception as e:
            logger.debug('Send %s on %s failed: %s', frame['type'], self.connection_id, e)
            return False
        return True

    async def _close(self, code: int, reason: str) -> None:
        try:
            await self.transport.close(code=code, reason=reason)
        except Exception as e:
            logger.debug('Close on %s failed: %s', self.connection_id, e)
