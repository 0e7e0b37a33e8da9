"""Pytest configuration for tailmux tests."""
import json
import subprocess
import sys
from pathlib import Path

# Add src/back to path for src-layout imports
_PROJECT_ROOT = Path(__file__).parent.parent
_SRC_BACK = _PROJECT_ROOT / 'src' / 'back'
if str(_SRC_BACK) not in sys.path:
    sys.path.insert(0, str(_SRC_BACK))

import pytest

from tailmux.api.config import APIConfig
from tailmux.api.errors import SpawnFailureError
from tailmux.api.modules.pty.service import SessionRegistry
from tailmux.api.modules.tmux.service import TmuxDirectory


class FakeProcess:
    """Stands in for PTYProcess; tests drive output and exit by hand."""

    def __init__(self, command, cwd, cols, rows, *, fail_spawn=False):
        self.command = command
        self.cwd = cwd
        self.cols = cols
        self.rows = rows
        self.fail_spawn = fail_spawn
        self.spawned = False
        self.listener = None
        self.writes: list[str] = []
        self.resizes: list[tuple[int, int]] = []
        self.kill_count = 0
        self.alive = False

    def spawn(self):
        if self.fail_spawn:
            raise SpawnFailureError(f'Failed to start {self.command[0]}: not found', operation='spawn')
        self.spawned = True
        self.alive = True

    def start(self, listener):
        self.listener = listener

    def write(self, data):
        self.writes.append(data)

    def resize(self, cols, rows):
        self.resizes.append((cols, rows))

    def kill(self):
        self.kill_count += 1
        self.alive = False

    def is_alive(self):
        return self.alive

    @property
    def pid(self):
        return 4242

    async def emit(self, data):
        await self.listener.on_output(data)

    async def exit(self, code=0):
        self.alive = False
        await self.listener.on_exit(code)


class FakeProcessFactory:
    """Records every process the registry asks for."""

    def __init__(self):
        self.processes: list[FakeProcess] = []
        self.fail_spawn = False

    def __call__(self, command, cwd, cols, rows):
        process = FakeProcess(command, cwd, cols, rows, fail_spawn=self.fail_spawn)
        self.processes.append(process)
        return process

    @property
    def last(self) -> FakeProcess:
        return self.processes[-1]


class FakeTmux(TmuxDirectory):
    """In-memory tmux server behind the real TmuxDirectory logic."""

    def __init__(self, available=True):
        super().__init__('tmux')
        self.available = available
        self.sessions: dict[str, dict] = {}
        self.calls: list[list[str]] = []
        self.failing: set[str] = set()

    def add_session(self, name, windows=1, attached=False, created=1700000000):
        self.sessions[name] = {'windows': windows, 'attached': attached, 'created': created}

    def is_available(self):
        return self.available

    def run_tmux(self, args):
        self.calls.append(list(args))
        command = args[0]

        def result(returncode=0, stdout='', stderr=''):
            return subprocess.CompletedProcess([self.binary] + list(args), returncode, stdout, stderr)

        if command in self.failing:
            return result(1, stderr=f'{command} failed')
        if command == 'has-session':
            return result(0 if args[2] in self.sessions else 1)
        if command == 'new-session':
            self.add_session(args[3])
            return result()
        if command == 'rename-session':
            current, new = args[2], args[3]
            if current not in self.sessions:
                return result(1, stderr=f"can't find session: {current}")
            self.sessions[new] = self.sessions.pop(current)
            return result()
        if command == 'detach-client':
            return result()
        if command == 'list-sessions':
            if not self.sessions:
                return result(1, stderr='no server running on /tmp/tmux-0/default')
            lines = [
                f"{name}|{s['windows']}|{int(s['attached'])}|{s['created']}"
                for name, s in self.sessions.items()
            ]
            return result(stdout='\n'.join(lines) + '\n')
        return result(1, stderr=f'unknown command {command}')

    def commands(self, name):
        return [call for call in self.calls if call[0] == name]


class FakeTransport:
    """Records frames sent over a connection, like starlette's WebSocket."""

    def __init__(self):
        self.sent: list[dict] = []
        self.close_calls: list[tuple[int, str | None]] = []

    async def send_text(self, data):
        if self.close_calls:
            raise RuntimeError('Cannot call "send" once a close message has been sent.')
        self.sent.append(json.loads(data))

    async def close(self, code=1000, reason=None):
        if self.close_calls:
            raise RuntimeError('Unexpected ASGI message "websocket.close".')
        self.close_calls.append((code, reason))

    def types(self):
        return [frame['type'] for frame in self.sent]

    @property
    def closed(self):
        return bool(self.close_calls)


@pytest.fixture
def config(tmp_path):
    """Deterministic config: no heartbeat, no idle timeout, no env leakage."""
    return APIConfig(
        max_terminals=3,
        heartbeat_interval_ms=0,
        idle_timeout_ms=0,
        host='127.0.0.1',
        port=3000,
        shell='bash',
        tmux_binary='tmux',
        home_dir=tmp_path,
        static_dir=None,
        cors_origins=['*'],
    )


@pytest.fixture
def fake_tmux():
    return FakeTmux()


@pytest.fixture
def process_factory():
    return FakeProcessFactory()


@pytest.fixture
def registry(config, fake_tmux, process_factory):
    return SessionRegistry(config, tmux=fake_tmux, process_factory=process_factory)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def make_transport():
    """Factory for additional transports within one test."""
    return FakeTransport
