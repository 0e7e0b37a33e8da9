"""Terminal sessions: PTY processes, WebSocket connections, and heartbeat."""
from .connection import ConnectionState, TerminalConnection
from .heartbeat import HeartbeatMonitor
from .process import PTYProcess
from .router import create_pty_router
from .service import SessionRegistry, TerminalSession

__all__ = [
    'ConnectionState',
    'HeartbeatMonitor',
    'PTYProcess',
    'SessionRegistry',
    'TerminalConnection',
    'TerminalSession',
    'create_pty_router',
]
