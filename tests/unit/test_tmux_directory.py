"""Unit tests for tailmux.api.modules.tmux.service."""
import subprocess
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from tailmux.api.errors import RenameExecutionError, RenameValidationError, TmuxCommandError
from tailmux.api.modules.tmux import service as tmux_service
from tailmux.api.modules.tmux.service import TmuxDirectory, parse_session_line


def _completed(args, returncode=0, stdout='', stderr=''):
    return subprocess.CompletedProcess(args, returncode, stdout, stderr)


@pytest.fixture
def tmux_on_path(monkeypatch):
    monkeypatch.setattr(tmux_service.shutil, 'which', lambda name: f'/usr/bin/{name}')


@pytest.fixture
def tmux_missing(monkeypatch):
    monkeypatch.setattr(tmux_service.shutil, 'which', lambda name: None)


class TestParseSessionLine:

    def test_valid(self):
        record = parse_session_line('work|3|1|1700000000')
        assert record.name == 'work'
        assert record.windows == 3
        assert record.attached is True
        assert record.created == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_detached(self):
        assert parse_session_line('work|1|0|1700000000').attached is False

    def test_multiple_attached_clients(self):
        assert parse_session_line('work|1|2|1700000000').attached is True

    @pytest.mark.parametrize('line', ['', 'work', 'work|1|0', 'work|x|0|1700000000', 'work|1|0|soon'])
    def test_malformed(self, line):
        assert parse_session_line(line) is None

    def test_to_dict(self):
        record = parse_session_line('work|2|0|1700000000')
        assert record.to_dict() == {
            'name': 'work',
            'windows': 2,
            'attached': False,
            'created': '2023-11-14T22:13:20Z',
        }


class TestListSessions:

    def test_tmux_missing(self, tmux_missing):
        with patch.object(tmux_service.subprocess, 'run') as run:
            assert TmuxDirectory().list_sessions() == []
        run.assert_not_called()

    def test_no_server_running(self, tmux_on_path):
        with patch.object(tmux_service.subprocess, 'run',
                          return_value=_completed([], 1, stderr='no server running')):
            assert TmuxDirectory().list_sessions() == []

    def test_parses_output_and_skips_garbage(self, tmux_on_path):
        stdout = 'work|1|1|1700000000\n\ngarbage line\nplay|4|0|1700000100\n'
        with patch.object(tmux_service.subprocess, 'run', return_value=_completed([], 0, stdout)) as run:
            sessions = TmuxDirectory().list_sessions()
        assert [s.name for s in sessions] == ['work', 'play']
        args = run.call_args.args[0]
        assert args[:3] == ['tmux', 'list-sessions', '-F']
        assert args[3] == '#{session_name}|#{session_windows}|#{session_attached}|#{session_created}'

    def test_timeout_is_empty(self, tmux_on_path):
        with patch.object(tmux_service.subprocess, 'run',
                          side_effect=subprocess.TimeoutExpired(['tmux'], 10)):
            assert TmuxDirectory().list_sessions() == []


class TestRunTmux:

    def test_oserror_wrapped(self):
        with patch.object(tmux_service.subprocess, 'run', side_effect=FileNotFoundError('tmux')):
            with pytest.raises(TmuxCommandError):
                TmuxDirectory().run_tmux(['has-session', '-t', 'x'])

    def test_uses_configured_binary(self):
        with patch.object(tmux_service.subprocess, 'run', return_value=_completed([])) as run:
            TmuxDirectory(binary='/opt/tmux').run_tmux(['list-sessions'])
        assert run.call_args.args[0] == ['/opt/tmux', 'list-sessions']
        assert run.call_args.kwargs['timeout'] == tmux_service.TMUX_COMMAND_TIMEOUT


class TestSessionCommands:

    def test_has_session(self):
        with patch.object(tmux_service.subprocess, 'run', return_value=_completed([], 0)):
            assert TmuxDirectory().has_session('work') is True
        with patch.object(tmux_service.subprocess, 'run', return_value=_completed([], 1)):
            assert TmuxDirectory().has_session('work') is False

    def test_has_session_when_tmux_unrunnable(self):
        with patch.object(tmux_service.subprocess, 'run', side_effect=OSError('nope')):
            assert TmuxDirectory().has_session('work') is False

    def test_create_session(self):
        with patch.object(tmux_service.subprocess, 'run', return_value=_completed([], 0)) as run:
            TmuxDirectory().create_session('work')
        assert run.call_args.args[0] == ['tmux', 'new-session', '-d', '-s', 'work']

    def test_create_session_failure(self):
        with patch.object(tmux_service.subprocess, 'run',
                          return_value=_completed([], 1, stderr='duplicate session: work')):
            with pytest.raises(TmuxCommandError, match='Failed to create tmux session "work".'):
                TmuxDirectory().create_session('work')

    def test_attach_command(self):
        assert TmuxDirectory().attach_command('work') == ['tmux', 'attach-session', '-t', 'work']


class TestRename:

    def test_success(self):
        with patch.object(tmux_service.subprocess, 'run', return_value=_completed([], 0)) as run:
            assert TmuxDirectory().rename(' work ', ' play ') == 'play'
        assert run.call_args.args[0] == ['tmux', 'rename-session', '-t', 'work', 'play']

    @pytest.mark.parametrize('current, new, message', [
        ('', 'play', 'Current session name is required.'),
        ('   ', 'play', 'Current session name is required.'),
        ('work', '', 'New session name cannot be empty.'),
        ('work', '   ', 'New session name cannot be empty.'),
        ('work', 'has space', 'Session name may only contain letters, numbers, dash, underscore, or dot.'),
        ('work', 'a/b', 'Session name may only contain letters, numbers, dash, underscore, or dot.'),
        ('work', 'café', 'Session name may only contain letters, numbers, dash, underscore, or dot.'),
    ])
    def test_validation(self, current, new, message):
        with patch.object(tmux_service.subprocess, 'run') as run:
            with pytest.raises(RenameValidationError) as exc:
                TmuxDirectory().rename(current, new)
        assert exc.value.message == message
        run.assert_not_called()

    @pytest.mark.parametrize('name', ['dev', 'dev-2', 'dev_2', 'v1.2', 'A.b-C_9'])
    def test_allowed_names(self, name):
        with patch.object(tmux_service.subprocess, 'run', return_value=_completed([], 0)):
            assert TmuxDirectory().rename('work', name) == name

    def test_execution_failure_uses_stderr(self):
        with patch.object(tmux_service.subprocess, 'run',
                          return_value=_completed([], 1, stderr="can't find session: work\n")):
            with pytest.raises(RenameExecutionError) as exc:
                TmuxDirectory().rename('work', 'play')
        assert exc.value.message == "can't find session: work"

    def test_execution_failure_without_stderr(self):
        with patch.object(tmux_service.subprocess, 'run', return_value=_completed([], 1)):
            with pytest.raises(RenameExecutionError, match='Failed to rename tmux session.'):
                TmuxDirectory().rename('work', 'play')


class TestDetach:

    def test_success(self, tmux_on_path):
        with patch.object(tmux_service.subprocess, 'run', return_value=_completed([], 0)) as run:
            assert TmuxDirectory().detach('work') is True
        assert run.call_args.args[0] == ['tmux', 'detach-client', '-t', 'work']

    def test_failure_never_raises(self, tmux_on_path):
        with patch.object(tmux_service.subprocess, 'run', return_value=_completed([], 1, stderr='no clients')):
            assert TmuxDirectory().detach('work') is False
        with patch.object(tmux_service.subprocess, 'run', side_effect=OSError('gone')):
            assert TmuxDirectory().detach('work') is False

    def test_tmux_missing(self, tmux_missing):
        assert TmuxDirectory().detach('work') is False
