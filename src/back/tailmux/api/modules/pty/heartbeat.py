"""Dead-peer detection for terminal WebSocket connections."""
from __future__ import annotations

import asyncio
import logging

from .connection import TerminalConnection

logger = logging.getLogger(__name__)


class HeartbeatMonitor:
    """Periodically pings every registered connection.

    A connection that has not answered the previous ping by the next tick
    is terminated, so a dead peer is reclaimed within two intervals.
    """

    def __init__(self, interval_ms: int):
        self.interval_ms = interval_ms
        self._connections: set[TerminalConnection] = set()
        self._task: asyncio.Task | None = None

    @property
    def enabled(self) -> bool:
        return self.interval_ms > 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def __len__(self) -> int:
        return len(self._connections)

    def register(self, connection: TerminalConnection) -> None:
        self._connections.add(connection)

    def unregister(self, connection: TerminalConnection) -> None:
        self._connections.discard(connection)

    def ensure_running(self) -> None:
        """Start the heartbeat loop if enabled and not already running."""
        if self.enabled and not self.running:
            self._task = asyncio.get_running_loop().create_task(self._run())
            logger.info('Heartbeat monitor started (interval=%dms)', self.interval_ms)

    async def _run(self) -> None:
        interval = self.interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            await self.tick()

    async def tick(self) -> None:
        """Run one heartbeat round."""
        for connection in list(self._connections):
            try:
                if connection.is_alive:
                    await connection.send_heartbeat()
                else:
                    self._connections.discard(connection)
                    await connection.terminate()
            except Exception:
                logger.exception('Heartbeat failed for %r', connection)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info('Heartbeat monitor stopped')
