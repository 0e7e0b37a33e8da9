"""tmux session directory: query and mutate the tmux server's sessions."""
from __future__ import annotations

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone

from ...errors import RenameExecutionError, RenameValidationError, TmuxCommandError

logger = logging.getLogger(__name__)

TMUX_COMMAND_TIMEOUT = 10
SESSION_NAME_PATTERN = re.compile(r'^[\w\-.]+$', re.ASCII)
_LIST_FORMAT = '#{session_name}|#{session_windows}|#{session_attached}|#{session_created}'


@dataclass(frozen=True)
class TmuxSessionRecord:
    """One session as reported by ``tmux list-sessions``."""
    name: str
    windows: int
    attached: bool
    created: datetime

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'windows': self.windows,
            'attached': self.attached,
            'created': self.created.isoformat().replace('+00:00', 'Z'),
        }


def parse_session_line(line: str) -> TmuxSessionRecord | None:
    """Parse one ``list-sessions`` line, or None if it is malformed."""
    # Session names cannot contain '|' but be lenient and split from the right.
    parts = line.rsplit('|', 3)
    if len(parts) != 4:
        return None
    name, windows, attached, created = parts
    try:
        return TmuxSessionRecord(
            name=name,
            windows=int(windows),
            attached=int(attached) > 0,
            created=datetime.fromtimestamp(int(created), tz=timezone.utc),
        )
    except (ValueError, OverflowError, OSError):
        return None


class TmuxDirectory:
    """Service class for tmux session operations.

    All commands are short synchronous subprocess calls. Read operations
    degrade to empty results when tmux is missing; write operations raise
    typed errors, except ``detach`` which is best effort.
    """

    def __init__(self, binary: str = 'tmux'):
        self.binary = binary

    def is_available(self) -> bool:
        """Check if the tmux binary is on PATH."""
        return shutil.which(self.binary) is not None

    def run_tmux(self, args: list[str]) -> subprocess.CompletedProcess:
        """Run a tmux command.

        Raises:
            TmuxCommandError: If tmux cannot be executed or times out.
        """
        try:
            return subprocess.run(
                [self.binary] + args,
                capture_output=True,
                text=True,
                timeout=TMUX_COMMAND_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise TmuxCommandError(
                f'tmux {args[0]} failed: {e}',
                operation=args[0],
            ) from e

    def list_sessions(self) -> list[TmuxSessionRecord]:
        """List tmux sessions.

        Returns:
            Session records; empty when tmux is missing or no server runs.
        """
        if not self.is_available():
            return []
        try:
            result = self.run_tmux(['list-sessions', '-F', _LIST_FORMAT])
        except TmuxCommandError as e:
            logger.warning('Could not list tmux sessions: %s', e)
            return []
        if result.returncode != 0:
            # "no server running" is the normal empty case
            return []

        sessions = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            record = parse_session_line(line)
            if record is None:
                logger.debug('Skipping unparsable tmux session line: %r', line)
                continue
            sessions.append(record)
        return sessions

    def has_session(self, name: str) -> bool:
        try:
            return self.run_tmux(['has-session', '-t', name]).returncode == 0
        except TmuxCommandError:
            return False

    def create_session(self, name: str) -> None:
        """Create a detached session.

        Raises:
            TmuxCommandError: If tmux refuses to create it.
        """
        result = self.run_tmux(['new-session', '-d', '-s', name])
        if result.returncode != 0:
            stderr = result.stderr.strip()
            logger.error('Failed to create tmux session %s: %s', name, stderr or result.returncode)
            raise TmuxCommandError(
                f'Failed to create tmux session "{name}".',
                session_name=name,
                operation='new-session',
            )

    def attach_command(self, name: str) -> list[str]:
        return [self.binary, 'attach-session', '-t', name]

    def rename(self, current_name: str, new_name: str) -> str:
        """Rename a session.

        Args:
            current_name: Existing session name
            new_name: Requested name (letters, digits, dash, underscore, dot)

        Returns:
            The applied (trimmed) new name

        Raises:
            RenameValidationError: If either name is missing or new_name is disallowed
            RenameExecutionError: If tmux fails to rename
        """
        current_name = (current_name or '').strip()
        new_name = (new_name or '').strip()

        if not current_name:
            raise RenameValidationError('Current session name is required.', operation='rename')
        if not new_name:
            raise RenameValidationError('New session name cannot be empty.', operation='rename')
        if not SESSION_NAME_PATTERN.match(new_name):
            raise RenameValidationError(
                'Session name may only contain letters, numbers, dash, underscore, or dot.',
                session_name=current_name,
                operation='rename',
            )

        try:
            result = self.run_tmux(['rename-session', '-t', current_name, new_name])
        except TmuxCommandError as e:
            raise RenameExecutionError(str(e), session_name=current_name, operation='rename') from e
        if result.returncode != 0:
            stderr = result.stderr.strip()
            logger.error('Failed to rename tmux session %s: %s', current_name, stderr or result.returncode)
            raise RenameExecutionError(
                stderr or 'Failed to rename tmux session.',
                session_name=current_name,
                operation='rename',
            )
        return new_name

    def detach(self, name: str) -> bool:
        """Detach clients from a session. Best effort: never raises.

        Returns:
            True if tmux reported success
        """
        if not name or not self.is_available():
            return False
        try:
            result = self.run_tmux(['detach-client', '-t', name])
        except TmuxCommandError as e:
            logger.error('Failed to detach tmux client: %s', e)
            return False
        if result.returncode != 0:
            logger.error(
                'Failed to detach tmux client: %s',
                result.stderr.strip() or result.returncode,
            )
            return False
        return True
