"""HTTP client for the tailmux control surface."""
from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
WS_PATH = '/ws/pty'


class SessionsClientError(Exception):
    """A control-surface request failed."""

    def __init__(self, message: str, *, http_status: int | None = None):
        super().__init__(message)
        self.http_status = http_status

    @property
    def message(self) -> str:
        return self.args[0]


class RenameFailedError(SessionsClientError):
    """The server rejected or failed a tmux rename."""


def websocket_url(base_url: str) -> str:
    """Terminal WebSocket URL for an http(s) server base URL."""
    url = httpx.URL(base_url)
    scheme = 'wss' if url.scheme == 'https' else 'ws'
    return str(url.copy_with(scheme=scheme, path=WS_PATH))


class SessionsClient:
    """Talks to ``/api/sessions`` and ``/api/tmux/rename``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip('/')
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    @property
    def ws_url(self) -> str:
        return websocket_url(self.base_url)

    async def list_sessions(self) -> dict[str, Any]:
        """Fetch the tmux session listing.

        Raises:
            SessionsClientError: On transport failure or a non-2xx response.
        """
        try:
            response = await self._client.get('/api/sessions')
        except httpx.HTTPError as e:
            logger.error('Failed to fetch sessions: %s', e)
            raise SessionsClientError(f'Failed to fetch sessions: {e}') from e
        if response.is_error:
            logger.error('Failed to fetch sessions: HTTP %d', response.status_code)
            raise SessionsClientError(
                f'HTTP {response.status_code}', http_status=response.status_code,
            )
        return response.json()

    async def rename(self, current_name: str, new_name: str) -> str:
        """Rename a tmux session.

        Returns:
            The applied name reported by the server

        Raises:
            RenameFailedError: With the server's error message.
        """
        try:
            response = await self._client.post(
                '/api/tmux/rename',
                json={'currentName': current_name, 'newName': new_name},
            )
        except httpx.HTTPError as e:
            raise RenameFailedError(f'Failed to rename tmux session: {e}') from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.is_error:
            raise RenameFailedError(
                payload.get('error') or 'Failed to rename tmux session.',
                http_status=response.status_code,
            )
        return payload.get('newName', new_name.strip())

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> SessionsClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
