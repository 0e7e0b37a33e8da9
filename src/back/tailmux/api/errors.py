"""Typed error hierarchy for terminal session operations.

All errors carry structured context (session_id, session_name, operation)
for logging. Messages are safe to surface to the browser; they never
leak stack traces or internal paths.
"""
from __future__ import annotations

from .error_normalization import ErrorKind


class TerminalError(Exception):
    """Base error for all terminal session operations."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        session_id: str | None = None,
        session_name: str | None = None,
        operation: str | None = None,
    ):
        self.session_id = session_id
        self.session_name = session_name
        self.operation = operation
        super().__init__(message)

    @property
    def message(self) -> str:
        return self.args[0]

    def __repr__(self) -> str:
        parts = [f"{type(self).__name__}({self.args[0]!r}"]
        if self.session_id:
            parts.append(f"session_id={self.session_id!r}")
        if self.session_name:
            parts.append(f"session_name={self.session_name!r}")
        if self.operation:
            parts.append(f"operation={self.operation!r}")
        return ", ".join(parts) + ")"


class CapacityExceededError(TerminalError):
    """The registry already holds the configured maximum of terminals."""

    kind = ErrorKind.CAPACITY_EXCEEDED


class SpawnFailureError(TerminalError):
    """The terminal process (or its tmux session) could not be started."""

    kind = ErrorKind.SPAWN_FAILURE


class MultiplexerUnavailableError(TerminalError):
    """A tmux-backed session was requested but tmux is not installed."""

    kind = ErrorKind.MULTIPLEXER_UNAVAILABLE


class IdleTimeoutError(TerminalError):
    """The session received no input within the idle timeout."""

    kind = ErrorKind.IDLE_TIMEOUT


class TmuxCommandError(TerminalError):
    """A tmux control command exited non-zero or could not run."""

    kind = ErrorKind.SPAWN_FAILURE


class RenameValidationError(TerminalError):
    """A rename request carried a missing or disallowed session name."""

    kind = ErrorKind.RENAME_VALIDATION


class RenameExecutionError(TerminalError):
    """tmux refused or failed to rename the session."""

    kind = ErrorKind.RENAME_EXECUTION
