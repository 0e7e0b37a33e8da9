"""Client-side terminal tabs with automatic reconnection.

Each tab owns one WebSocket to ``/ws/pty``. tmux-backed tabs (modes
``tmux`` and ``attach``) survive transport drops: the controller retries
with capped exponential backoff and re-sends the same create frame, which
reattaches to the same tmux session. Plain shells die with their
connection and are never retried. An ``exit`` or ``error`` frame from the
server is authoritative and stops any further retries.
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..protocol import (
    DEFAULT_COLS,
    DEFAULT_ROWS,
    FrameError,
    SessionMode,
    create_frame,
    encode,
    input_frame,
    is_inactivity_message,
    parse_server_frame,
    pong_frame,
    resize_frame,
)
from .api_client import RenameFailedError, SessionsClient
from .cache import SessionCache
from .terminal import BufferTerminal, LoggingNotifier, Notice, NoticeLevel, Notifier, TerminalSink

logger = logging.getLogger(__name__)

Connect = Callable[[str], Awaitable[Any]]


class TabState(Enum):
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    RECONNECTING = 'reconnecting'
    EXHAUSTED = 'exhausted'
    DISCONNECTED = 'disconnected'
    CLOSED = 'closed'


@dataclass(frozen=True)
class ReconnectPolicy:
    """Capped exponential backoff: ``min(max_ms, base_ms * 2**attempts)``."""
    base_ms: int = 500
    max_ms: int = 5000
    max_attempts: int = 5

    def delay_ms(self, attempts: int) -> int:
        return min(self.max_ms, self.base_ms * 2 ** attempts)


@dataclass
class Tab:
    """One terminal tab and its connection bookkeeping."""
    tab_id: str
    mode: SessionMode
    session_name: str
    label: str
    terminal: TerminalSink
    cols: int = DEFAULT_COLS
    rows: int = DEFAULT_ROWS
    state: TabState = TabState.CONNECTING
    should_reconnect: bool = False
    attempts: int = 0
    last_close_reason: str | None = None
    notice: Notice | None = field(default=None, repr=False)
    socket: Any = field(default=None, repr=False)
    _task: asyncio.Task | None = field(default=None, repr=False)
    _timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def connected(self) -> bool:
        return self.state is TabState.CONNECTED and self.socket is not None

    @property
    def reconnect_pending(self) -> bool:
        return self._timer is not None


def generate_session_name(prefix: str = 'tailmux') -> str:
    return f'{prefix}-{int(time.time() * 1000)}-{random.randrange(1000)}'


class SessionController:
    """Opens, drives, and reconnects terminal tabs.

    All methods must be called from the event loop that runs the tabs.
    """

    def __init__(
        self,
        ws_url: str,
        sessions: SessionsClient | None = None,
        *,
        cache: SessionCache | None = None,
        connect: Connect | None = None,
        notifier: Notifier | None = None,
        policy: ReconnectPolicy | None = None,
    ):
        self.ws_url = ws_url
        self.sessions = sessions
        if cache is None and sessions is not None:
            cache = SessionCache(sessions.list_sessions)
        self.cache = cache
        self._connect = connect or websockets.connect
        self.notifier = notifier or LoggingNotifier()
        self.policy = policy or ReconnectPolicy()
        self.tabs: dict[str, Tab] = {}

    # -- tab operations --

    def open_tab(
        self,
        mode: SessionMode | str,
        session_name: str = '',
        *,
        terminal: TerminalSink | None = None,
        cols: int = DEFAULT_COLS,
        rows: int = DEFAULT_ROWS,
    ) -> Tab:
        """Open a tab and start connecting.

        tmux tabs without a name get a generated one so that reconnects
        land in the same tmux session.

        Raises:
            ValueError: If mode is attach and no session name is given.
        """
        mode = SessionMode(mode)
        requested = (session_name or '').strip()

        if mode is SessionMode.ATTACH and not requested:
            raise ValueError('A tmux session name is required to attach.')
        if mode is SessionMode.TMUX:
            name = requested or generate_session_name()
            label = requested or name
        elif mode is SessionMode.NEW:
            name = requested
            label = requested or 'shell'
        else:
            name = label = requested

        tab = Tab(
            tab_id=uuid.uuid4().hex[:8],
            mode=mode,
            session_name=name,
            label=label,
            terminal=terminal if terminal is not None else BufferTerminal(),
            cols=cols,
            rows=rows,
            should_reconnect=mode.reconnectable,
        )
        self.tabs[tab.tab_id] = tab
        if mode.uses_tmux:
            self._invalidate_cache()
        self._start_connection(tab)
        return tab

    async def close_tab(self, tab_id: str) -> bool:
        """Close a tab, cancelling any pending reconnect.

        Returns:
            False if the tab does not exist
        """
        tab = self.tabs.pop(tab_id, None)
        if tab is None:
            return False

        tab.should_reconnect = False
        tab.state = TabState.CLOSED
        self._cancel_timer(tab)
        self._dismiss_notice(tab)

        socket, tab.socket = tab.socket, None
        if socket is not None:
            await socket.close()
        task, tab._task = tab._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if tab.mode.uses_tmux:
            self._invalidate_cache()
        logger.info('Closed tab %s (%s)', tab.tab_id, tab.label)
        return True

    async def close_all(self) -> None:
        for tab_id in list(self.tabs):
            await self.close_tab(tab_id)

    async def send_input(self, tab_id: str, data: str) -> bool:
        """Forward keystrokes. Returns False if the tab is not connected."""
        tab = self.tabs.get(tab_id)
        if tab is None or not tab.connected:
            return False
        return await self._send(tab, input_frame(data))

    async def resize(self, tab_id: str, cols: int, rows: int) -> bool:
        """Record the tab's size and forward it when connected.

        The size is kept either way and used by the next create frame.
        """
        tab = self.tabs.get(tab_id)
        if tab is None:
            return False
        tab.cols, tab.rows = cols, rows
        if not tab.connected:
            return False
        return await self._send(tab, resize_frame(cols, rows))

    async def rename_tab_session(self, tab_id: str, new_name: str) -> str | None:
        """Rename the tmux session behind a tab.

        Returns:
            The applied name, or None if the rename was refused (a notice
            explains why).
        """
        tab = self.tabs.get(tab_id)
        if tab is None:
            return None
        if not tab.mode.uses_tmux:
            self.notifier.show('Rename is only available inside tmux tabs.', NoticeLevel.WARNING)
            return None
        if not tab.connected:
            self.notifier.show('Session is not connected yet.', NoticeLevel.ERROR)
            return None
        if not tab.session_name:
            self.notifier.show('Session name is unavailable for this tab.', NoticeLevel.ERROR)
            return None

        new_name = (new_name or '').strip()
        if not new_name:
            self.notifier.show('Session name cannot be empty.', NoticeLevel.WARNING)
            return None
        if new_name == tab.session_name:
            self.notifier.show('Session name unchanged.', NoticeLevel.INFO)
            return None
        if self.sessions is None:
            raise RuntimeError('SessionController has no SessionsClient for renames')

        try:
            applied = await self.sessions.rename(tab.session_name, new_name)
        except RenameFailedError as e:
            self.notifier.show(e.message, NoticeLevel.ERROR, persistent=True)
            return None

        tab.session_name = applied
        tab.label = applied
        self._invalidate_cache()
        self.notifier.show(f'Renamed session to {applied}', NoticeLevel.SUCCESS)
        return applied

    async def list_sessions(self, force: bool = False) -> dict[str, Any]:
        """Session listing through the cache."""
        if self.cache is None:
            raise RuntimeError('SessionController has no session cache')
        return await self.cache.get(force=force)

    # -- connection lifecycle --

    def _start_connection(self, tab: Tab) -> None:
        tab._timer = None
        if tab.state is TabState.CLOSED:
            return
        tab._task = asyncio.get_running_loop().create_task(self._run_connection(tab))

    async def _run_connection(self, tab: Tab) -> None:
        try:
            socket = await self._connect(self.ws_url)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.warning('Could not connect %s: %s', tab.label, e)
            self._handle_close(tab)
            return

        if tab.state is TabState.CLOSED:
            await socket.close()
            return

        tab.socket = socket
        try:
            await self._handle_open(tab)
            async for raw in socket:
                await self._handle_message(tab, raw)
        except ConnectionClosed as e:
            logger.debug('Connection for %s dropped: %s', tab.label, e)
        finally:
            tab.socket = None
        self._handle_close(tab)

    async def _handle_open(self, tab: Tab) -> None:
        logger.info('WebSocket connected for %s', tab.label)
        was_reconnecting = tab.attempts > 0
        tab.attempts = 0
        tab.state = TabState.CONNECTED
        await tab.socket.send(encode(create_frame(tab.mode, tab.session_name, tab.cols, tab.rows)))
        if was_reconnecting:
            self._dismiss_notice(tab)
            self.notifier.show(f'Reconnected to {tab.label}', NoticeLevel.SUCCESS)

    async def _handle_message(self, tab: Tab, raw: str | bytes) -> None:
        try:
            frame = parse_server_frame(raw)
        except FrameError as e:
            logger.warning('Ignoring frame for %s: %s', tab.label, e)
            return

        kind = frame['type']
        if kind == 'output':
            tab.terminal.write(frame.get('data', ''))
        elif kind == 'exit':
            exit_code = frame.get('exitCode')
            self._stop_reconnecting(tab, 'exit')
            tab.terminal.write(f'\r\n\r\n[Process exited with code {exit_code}]\r\n')
            self.notifier.show(f'{tab.label} exited (code {exit_code})', NoticeLevel.INFO)
        elif kind == 'error':
            message = frame.get('message') or 'An unknown error occurred.'
            self._stop_reconnecting(tab, 'error')
            tab.terminal.write(f'\r\n\r\n[Error: {message}]\r\n')
            if is_inactivity_message(message):
                self.notifier.show(message, NoticeLevel.WARNING)
            else:
                self.notifier.show(message, NoticeLevel.ERROR, persistent=True)
            if tab.socket is not None:
                await tab.socket.close()
        elif kind == 'ping':
            await self._send(tab, pong_frame())
        elif kind == 'ready':
            logger.info('Terminal ready: %s', tab.label)

    def _handle_close(self, tab: Tab) -> None:
        if tab.state is TabState.CLOSED or self.tabs.get(tab.tab_id) is not tab:
            return

        logger.info('WebSocket disconnected for %s', tab.label)
        tab.terminal.write('\r\n\r\n[Connection closed]\r\n')

        if tab.should_reconnect and tab.attempts >= self.policy.max_attempts:
            tab.terminal.write(
                '\r\n\r\n[Reconnect attempts exhausted. Please reopen the session manually.]\r\n'
            )
            self._set_notice(tab, f'Reconnect attempts exhausted for {tab.label}', NoticeLevel.ERROR)
            tab.should_reconnect = False
            tab.attempts = 0
            tab.state = TabState.EXHAUSTED
        elif tab.should_reconnect:
            next_attempt = tab.attempts + 1
            self._set_notice(
                tab,
                f'Connection lost. Reconnecting {tab.label} '
                f'({next_attempt}/{self.policy.max_attempts})...',
                NoticeLevel.WARNING,
            )
            delay_ms = self.policy.delay_ms(tab.attempts)
            tab.attempts = next_attempt
            tab.terminal.write(f'\r\n[Reconnecting in {delay_ms / 1000:.1f}s...]\r\n')
            tab.state = TabState.RECONNECTING
            self._schedule_reconnect(tab, delay_ms)
        else:
            self._dismiss_notice(tab)
            if tab.last_close_reason not in ('exit', 'error'):
                self.notifier.show(f'{tab.label} disconnected', NoticeLevel.WARNING)
            tab.attempts = 0
            tab.state = TabState.DISCONNECTED

        tab.last_close_reason = None

    def _stop_reconnecting(self, tab: Tab, reason: str) -> None:
        tab.should_reconnect = False
        tab.last_close_reason = reason
        self._cancel_timer(tab)
        self._dismiss_notice(tab)

    # -- helpers --

    def _schedule_reconnect(self, tab: Tab, delay_ms: int) -> None:
        self._cancel_timer(tab)
        tab._timer = asyncio.get_running_loop().call_later(
            delay_ms / 1000, self._start_connection, tab,
        )

    def _cancel_timer(self, tab: Tab) -> None:
        if tab._timer is not None:
            tab._timer.cancel()
            tab._timer = None

    def _set_notice(self, tab: Tab, message: str, level: NoticeLevel) -> None:
        if tab.notice is not None:
            self.notifier.update(tab.notice, message, level)
        else:
            tab.notice = self.notifier.show(message, level, persistent=True)

    def _dismiss_notice(self, tab: Tab) -> None:
        if tab.notice is not None:
            self.notifier.dismiss(tab.notice)
            tab.notice = None

    def _invalidate_cache(self) -> None:
        if self.cache is not None:
            self.cache.invalidate()

    async def _send(self, tab: Tab, frame: dict[str, Any]) -> bool:
        if tab.socket is None:
            return False
        try:
            await tab.socket.send(encode(frame))
        except ConnectionClosed as e:
            logger.debug('Send %s for %s failed: %s', frame['type'], tab.label, e)
            return False
        return True
