"""PTY process adapter: one supervised OS process per terminal session."""
from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
from pathlib import Path
from typing import Any, Protocol

import ptyprocess

from ...errors import SpawnFailureError

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096
MAX_DIMENSION = 500
KILL_GRACE_SECONDS = 1.0


class ProcessListener(Protocol):
    """Receives events from a running PTY process."""

    async def on_output(self, data: str) -> None: ...

    async def on_exit(self, exit_code: int | None) -> None: ...


def clamp_dimension(value: int) -> int:
    return max(1, min(int(value), MAX_DIMENSION))


def terminal_env() -> dict[str, str]:
    """Inherited environment for spawned terminals."""
    env = os.environ.copy()
    # Spawning tmux from inside tmux would refuse to nest.
    env.pop('TMUX', None)
    env['TERM'] = 'xterm-256color'
    return env


class PTYProcess:
    """Wrapper around ptyprocess for pseudo-terminal management.

    Output is read on the default executor and delivered to a
    ``ProcessListener`` on the event loop; ``on_exit`` fires exactly once
    after the output stream reaches EOF.
    """

    def __init__(
        self,
        command: list[str],
        cwd: Path,
        cols: int,
        rows: int,
        env: dict[str, str] | None = None,
    ):
        self.command = command
        self.cwd = cwd
        self.cols = clamp_dimension(cols)
        self.rows = clamp_dimension(rows)
        self.env = env
        self.process: Any = None
        self._read_task: asyncio.Task | None = None
        self._kill_handle: asyncio.TimerHandle | None = None
        self._exited = False

    def spawn(self) -> None:
        """Start the process.

        Raises:
            SpawnFailureError: If the command is missing or cannot be executed.
        """
        try:
            self.process = ptyprocess.PtyProcessUnicode.spawn(
                self.command,
                cwd=str(self.cwd),
                env=self.env if self.env is not None else terminal_env(),
                dimensions=(self.rows, self.cols),
            )
        except Exception as e:
            logger.error('Failed to spawn %s: %s', self.command, e)
            raise SpawnFailureError(
                f'Failed to start {self.command[0]}: {e}',
                operation='spawn',
            ) from e
        # Undecodable output bytes and lone surrogates in input are replaced, never raised.
        self.process.decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        self.process.encoder = codecs.getincrementalencoder('utf-8')(errors='replace')

    def start(self, listener: ProcessListener) -> None:
        """Begin streaming output to the listener."""
        self._read_task = asyncio.get_running_loop().create_task(self._read_loop(listener))

    async def _read_loop(self, listener: ProcessListener) -> None:
        loop = asyncio.get_running_loop()
        process = self.process
        while True:
            try:
                # Read in thread pool to avoid blocking
                data = await loop.run_in_executor(None, process.read, READ_CHUNK_SIZE)
            except EOFError:
                break
            except OSError as e:
                logger.debug('PTY read ended for pid %s: %s', process.pid, e)
                break
            if data:
                try:
                    await listener.on_output(data)
                except Exception:
                    logger.exception('Output listener failed for pid %s', process.pid)

        # From here on only the reaper thread may call waitpid for this child.
        self._exited = True
        exit_code = await loop.run_in_executor(None, self._reap, process)
        self._cancel_kill_timer()
        await listener.on_exit(exit_code)

    @staticmethod
    def _reap(process: Any) -> int | None:
        try:
            process.wait()
        except ptyprocess.PtyProcessError:
            pass
        finally:
            try:
                process.close(force=True)
            except Exception as e:
                logger.debug('PTY close failed for pid %s: %s', process.pid, e)
        if process.exitstatus is not None:
            return process.exitstatus
        if process.signalstatus is not None:
            return 128 + process.signalstatus
        return None

    def write(self, data: str) -> None:
        """Send input to PTY."""
        if not self.is_alive():
            return
        try:
            self.process.write(data)
        except OSError as e:
            logger.debug('Write to pid %s failed: %s', self.process.pid, e)

    def resize(self, cols: int, rows: int) -> None:
        """Resize terminal."""
        self.cols = clamp_dimension(cols)
        self.rows = clamp_dimension(rows)
        if not self.is_alive():
            return
        try:
            self.process.setwinsize(self.rows, self.cols)
        except OSError as e:
            logger.debug('Resize of pid %s failed: %s', self.process.pid, e)

    def kill(self) -> None:
        """Hang up the process, escalating to SIGKILL if it lingers."""
        if not self.is_alive():
            return
        try:
            self.process.kill(signal.SIGHUP)
        except OSError as e:
            logger.debug('SIGHUP failed for pid %s: %s', self.process.pid, e)
            return
        if self._kill_handle is None:
            self._kill_handle = asyncio.get_running_loop().call_later(
                KILL_GRACE_SECONDS, self._force_kill,
            )

    def _force_kill(self) -> None:
        self._kill_handle = None
        if self.is_alive():
            logger.warning('pid %s ignored SIGHUP, sending SIGKILL', self.process.pid)
            try:
                self.process.kill(signal.SIGKILL)
            except OSError as e:
                logger.debug('SIGKILL failed for pid %s: %s', self.process.pid, e)

    def _cancel_kill_timer(self) -> None:
        if self._kill_handle is not None:
            self._kill_handle.cancel()
            self._kill_handle = None

    def is_alive(self) -> bool:
        return self.process is not None and not self._exited and self.process.isalive()

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process else None
