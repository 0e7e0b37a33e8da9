"""FastAPI server for tailmux.

Example:
    from tailmux.api import create_app, APIConfig
    config = APIConfig(max_terminals=4, idle_timeout_ms=600000)
    app = create_app(config)
"""

from .app import create_app
from .config import APIConfig, ConfigValidationError
from .errors import (
    CapacityExceededError,
    IdleTimeoutError,
    MultiplexerUnavailableError,
    RenameExecutionError,
    RenameValidationError,
    SpawnFailureError,
    TerminalError,
    TmuxCommandError,
)
from .modules.pty import HeartbeatMonitor, SessionRegistry
from .modules.tmux import TmuxDirectory

__all__ = [
    'APIConfig',
    'CapacityExceededError',
    'ConfigValidationError',
    'HeartbeatMonitor',
    'IdleTimeoutError',
    'MultiplexerUnavailableError',
    'RenameExecutionError',
    'RenameValidationError',
    'SessionRegistry',
    'SpawnFailureError',
    'TerminalError',
    'TmuxCommandError',
    'TmuxDirectory',
    'create_app',
]
