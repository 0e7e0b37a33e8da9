"""Client side of tailmux: terminal tabs, reconnection, and session listing."""
from .api_client import RenameFailedError, SessionsClient, SessionsClientError, websocket_url
from .cache import SessionCache
from .controller import ReconnectPolicy, SessionController, Tab, TabState
from .terminal import BufferTerminal, LoggingNotifier, Notice, NoticeLevel

__all__ = [
    'BufferTerminal',
    'LoggingNotifier',
    'Notice',
    'NoticeLevel',
    'ReconnectPolicy',
    'RenameFailedError',
    'SessionCache',
    'SessionController',
    'SessionsClient',
    'SessionsClientError',
    'Tab',
    'TabState',
    'websocket_url',
]
