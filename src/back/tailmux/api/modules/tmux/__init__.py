"""tmux session directory and control routes."""
from .service import TmuxDirectory, TmuxSessionRecord, parse_session_line

__all__ = [
    'TmuxDirectory',
    'TmuxSessionRecord',
    'parse_session_line',
]
