"""Terminal WebSocket router for tailmux."""
from fastapi import APIRouter, WebSocket

from ....observability.logging import bind_connection
from ....observability.metrics import WS_CONNECTIONS_ACTIVE
from .connection import TerminalConnection
from .heartbeat import HeartbeatMonitor
from .service import SessionRegistry


def create_pty_router(registry: SessionRegistry, heartbeat: HeartbeatMonitor) -> APIRouter:
    """Create the terminal WebSocket router.

    Args:
        registry: Session registry that owns every terminal
        heartbeat: Monitor that pings open connections

    Returns:
        FastAPI router with /pty WebSocket endpoint
    """
    router = APIRouter(tags=['pty'])

    @router.websocket('/pty')
    async def pty_websocket(websocket: WebSocket):
        """One terminal per connection, created by the first create frame."""
        await websocket.accept()
        connection = TerminalConnection(websocket, registry)

        with bind_connection(connection.connection_id):
            heartbeat.register(connection)
            heartbeat.ensure_running()
            WS_CONNECTIONS_ACTIVE.inc()
            try:
                while True:
                    message = await websocket.receive()
                    if message['type'] == 'websocket.disconnect':
                        break
                    raw = message.get('text')
                    if raw is None:
                        raw = message.get('bytes')
                    if raw is not None:
                        await connection.handle_frame(raw)
            finally:
                heartbeat.unregister(connection)
                connection.connection_lost()
                WS_CONNECTIONS_ACTIVE.dec()

    return router
