"""Terminal session registry for the tailmux server."""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
import weakref
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from ....observability.metrics import (
    TERMINAL_IDLE_EXPIRIES,
    TERMINAL_SESSION_FAILURES,
    TERMINAL_SESSIONS_ACTIVE,
    TERMINAL_SESSIONS_CREATED,
)
from ....protocol import DEFAULT_COLS, DEFAULT_ROWS, INACTIVITY_MESSAGE, SessionMode
from ...config import APIConfig
from ...errors import (
    CapacityExceededError,
    IdleTimeoutError,
    MultiplexerUnavailableError,
    SpawnFailureError,
    TerminalError,
    TmuxCommandError,
)
from ..tmux.service import TmuxDirectory
from .process import PTYProcess

logger = logging.getLogger(__name__)

ProcessFactory = Callable[[list[str], Path, int, int], PTYProcess]


class SessionPeer(Protocol):
    """The connection side of a session, as seen by the registry."""

    async def send_output(self, data: str) -> None: ...

    async def notify_exit(self, exit_code: int | None) -> None: ...

    async def notify_failure(self, error: TerminalError) -> None: ...


@dataclass
class TerminalSession:
    """A registered terminal: one PTY process bound to one connection."""

    session_id: str
    mode: SessionMode
    session_name: str | None
    process: PTYProcess
    connection_ref: weakref.ref | None = None
    idle_deadline: float | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _idle_handle: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def connection(self) -> SessionPeer | None:
        if self.connection_ref is None:
            return None
        return self.connection_ref()


class _SessionEvents:
    """Routes one process's output and exit back through the registry."""

    def __init__(self, registry: SessionRegistry, session_id: str):
        self._registry = registry
        self._session_id = session_id

    async def on_output(self, data: str) -> None:
        await self._registry._forward_output(self._session_id, data)

    async def on_exit(self, exit_code: int | None) -> None:
        await self._registry._handle_exit(self._session_id, exit_code)


class SessionRegistry:
    """Owns every terminal session.

    Enforces the terminal capacity, owns idle timers, and orchestrates
    teardown. Mutations never span an ``await``, so each operation is
    atomic on the event loop.
    """

    def __init__(
        self,
        config: APIConfig,
        tmux: TmuxDirectory | None = None,
        process_factory: ProcessFactory | None = None,
    ):
        self.config = config
        self.tmux = tmux or TmuxDirectory(binary=config.tmux_binary)
        self._process_factory = process_factory or PTYProcess
        self._sessions: dict[str, TerminalSession] = {}
        self._background: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[TerminalSession]:
        return iter(self.sessions)

    @property
    def sessions(self) -> list[TerminalSession]:
        """Snapshot of the registered sessions."""
        return list(self._sessions.values())

    def get(self, session_id: str) -> TerminalSession | None:
        return self._sessions.get(session_id)

    @property
    def at_capacity(self) -> bool:
        limit = self.config.max_terminals
        return limit > 0 and len(self._sessions) >= limit

    def create(
        self,
        mode: SessionMode,
        session_name: str | None = None,
        cols: int | None = None,
        rows: int | None = None,
        *,
        connection: SessionPeer | None = None,
    ) -> TerminalSession:
        """Spawn a terminal process and register it.

        Args:
            mode: new (plain shell), tmux (create-or-attach) or attach
            session_name: tmux session name; generated for tmux mode when empty
            cols: Initial width (default 80)
            rows: Initial height (default 24)
            connection: Connection that receives output/exit/failure events

        Returns:
            The registered session

        Raises:
            CapacityExceededError: If the terminal limit is reached
            MultiplexerUnavailableError: If tmux is required but missing
            SpawnFailureError: If the process or tmux session cannot start
        """
        mode = SessionMode(mode)
        session_name = (session_name or '').strip() or None
        cols = cols or DEFAULT_COLS
        rows = rows or DEFAULT_ROWS

        if self.at_capacity:
            logger.warning('Terminal limit reached, rejecting new session')
            TERMINAL_SESSION_FAILURES.labels(kind='capacity_exceeded').inc()
            raise CapacityExceededError(
                'Maximum number of terminals reached. '
                'Please close an existing session and try again.',
                operation='create',
            )

        try:
            command, session_name = self._command_for(mode, session_name)
            process = self._process_factory(command, self.config.home_dir, cols, rows)
            process.spawn()
        except TerminalError as e:
            TERMINAL_SESSION_FAILURES.labels(kind=e.kind.value).inc()
            raise

        session_id = str(uuid.uuid4())
        session = TerminalSession(
            session_id=session_id,
            mode=mode,
            session_name=session_name,
            process=process,
            connection_ref=weakref.ref(connection) if connection is not None else None,
        )
        self._sessions[session_id] = session
        process.start(_SessionEvents(self, session_id))
        self._schedule_idle(session)

        TERMINAL_SESSIONS_CREATED.labels(mode=mode.value).inc()
        TERMINAL_SESSIONS_ACTIVE.set(len(self._sessions))
        logger.info(
            'Terminal %s created (mode=%s, session=%s, %dx%d)',
            session_id, mode.value, session_name, cols, rows,
        )
        return session

    def _command_for(self, mode: SessionMode, session_name: str | None) -> tuple[list[str], str | None]:
        if mode is SessionMode.NEW:
            return [self.config.shell], session_name

        if not self.tmux.is_available():
            raise MultiplexerUnavailableError(
                'tmux is not installed on the server.',
                session_name=session_name,
                operation='create',
            )

        if mode is SessionMode.ATTACH:
            if not session_name:
                raise SpawnFailureError(
                    'A tmux session name is required to attach.',
                    operation='attach',
                )
            logger.info('Attaching to tmux session: %s', session_name)
            return self.tmux.attach_command(session_name), session_name

        if not session_name:
            session_name = f'{self.config.session_name_prefix}-{int(time.time() * 1000)}'
        if not self.tmux.has_session(session_name):
            logger.info('Creating new tmux session: %s', session_name)
            try:
                self.tmux.create_session(session_name)
            except TmuxCommandError as e:
                raise SpawnFailureError(
                    e.message, session_name=session_name, operation='new-session',
                ) from e
        return self.tmux.attach_command(session_name), session_name

    def input(self, session_id: str, data: str) -> bool:
        """Write input to a session and push back its idle deadline.

        Returns:
            False if the session does not exist
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.process.write(data)
        self._schedule_idle(session)
        return True

    def resize(self, session_id: str, cols: int, rows: int) -> bool:
        """Resize a session's terminal. Returns False if it does not exist."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.process.resize(cols, rows)
        return True

    def destroy(self, session_id: str, *, detach: bool = True) -> TerminalSession | None:
        """Tear a session down. Idempotent.

        Args:
            session_id: Session to remove
            detach: Detach tmux clients first (tmux/attach sessions only)

        Returns:
            The removed session, or None if it was already gone
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None

        self._cancel_idle(session)
        if detach and session.mode.uses_tmux and session.session_name:
            self.tmux.detach(session.session_name)
        try:
            session.process.kill()
        except Exception:
            logger.exception('Failed to kill terminal %s', session_id)

        TERMINAL_SESSIONS_ACTIVE.set(len(self._sessions))
        logger.info('Terminal %s destroyed', session_id)
        return session

    def rename_tmux_session(self, current_name: str, new_name: str) -> str:
        """Rename a tmux session and update every record that uses it.

        Raises:
            MultiplexerUnavailableError: If tmux is not installed
            RenameValidationError: If a name is missing or disallowed
            RenameExecutionError: If tmux fails to rename
        """
        if not self.tmux.is_available():
            raise MultiplexerUnavailableError(
                'tmux is not installed on the server.', operation='rename',
            )
        applied = self.tmux.rename(current_name, new_name)
        current_name = current_name.strip()
        for session in self._sessions.values():
            if session.session_name == current_name:
                session.session_name = applied
        return applied

    def shutdown(self) -> None:
        """Destroy every session (server shutdown)."""
        for session_id in list(self._sessions):
            self.destroy(session_id)
        for task in list(self._background):
            task.cancel()

    # -- idle expiry --

    def _schedule_idle(self, session: TerminalSession) -> None:
        timeout = self.config.idle_timeout
        if timeout <= 0:
            return
        self._cancel_idle(session)
        loop = asyncio.get_running_loop()
        session.idle_deadline = loop.time() + timeout
        session._idle_handle = loop.call_later(timeout, self._expire_idle, session.session_id)

    def _cancel_idle(self, session: TerminalSession) -> None:
        if session._idle_handle is not None:
            session._idle_handle.cancel()
            session._idle_handle = None
        session.idle_deadline = None

    def _expire_idle(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        logger.info('Terminal %s closing due to inactivity', session_id)
        connection = session.connection
        self.destroy(session_id)
        TERMINAL_IDLE_EXPIRIES.inc()
        if connection is not None:
            error = IdleTimeoutError(
                INACTIVITY_MESSAGE,
                session_id=session_id,
                session_name=session.session_name,
                operation='idle',
            )
            self._spawn(connection.notify_failure(error))

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # -- process events --

    async def _forward_output(self, session_id: str, data: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        connection = session.connection
        if connection is not None:
            await connection.send_output(data)

    async def _handle_exit(self, session_id: str, exit_code: int | None) -> None:
        session = self.destroy(session_id, detach=False)
        if session is None:
            # Idle expiry or connection close already tore it down.
            return
        logger.info('Terminal %s exited with code %s', session_id, exit_code)
        connection = session.connection
        if connection is not None:
            await connection.notify_exit(exit_code)
