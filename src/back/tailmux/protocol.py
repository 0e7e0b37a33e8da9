"""Wire protocol shared by the tailmux server and client.

Every WebSocket message is one JSON object carrying a ``type`` key.

  Inbound (client -> server):
    - create: {type: "create", mode: "new"|"tmux"|"attach", sessionName, cols, rows}
    - input: {type: "input", data: "..."}
    - resize: {type: "resize", cols: N, rows: N}
    - pong: {type: "pong"} in reply to a heartbeat ping
    - ping: {type: "ping"} client keepalive, answered with pong

  Outbound (server -> client):
    - ready: {type: "ready"} once the terminal process is running
    - output: {type: "output", data: "..."} per PTY output chunk
    - exit: {type: "exit", exitCode: N} when the process terminates
    - error: {type: "error", message: "..."} before a fatal close
    - ping: {type: "ping"} heartbeat check
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

DEFAULT_COLS = 80
DEFAULT_ROWS = 24

INACTIVITY_MESSAGE = 'Session closed due to inactivity.'


class SessionMode(str, Enum):
    """How a terminal session is backed on the server."""
    NEW = 'new'
    TMUX = 'tmux'
    ATTACH = 'attach'

    @property
    def uses_tmux(self) -> bool:
        return self in (SessionMode.TMUX, SessionMode.ATTACH)

    @property
    def reconnectable(self) -> bool:
        # Plain shells die with their connection; tmux sessions outlive it.
        return self.uses_tmux


class FrameError(ValueError):
    """Raised when an inbound frame cannot be decoded or validated."""


class _Frame(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')


class CreateFrame(_Frame):
    type: Literal['create']
    mode: SessionMode = SessionMode.NEW
    session_name: str | None = Field(default=None, alias='sessionName')
    cols: int | None = None
    rows: int | None = None

    @property
    def geometry(self) -> tuple[int, int]:
        """(cols, rows) with zero or missing values replaced by defaults."""
        return (self.cols or DEFAULT_COLS, self.rows or DEFAULT_ROWS)


class InputFrame(_Frame):
    type: Literal['input']
    data: str


class ResizeFrame(_Frame):
    type: Literal['resize']
    cols: int = Field(ge=1)
    rows: int = Field(ge=1)


class PingFrame(_Frame):
    type: Literal['ping']


class PongFrame(_Frame):
    type: Literal['pong']


ClientFrame = Annotated[
    Union[CreateFrame, InputFrame, ResizeFrame, PingFrame, PongFrame],
    Field(discriminator='type'),
]

_CLIENT_FRAME_ADAPTER: TypeAdapter[ClientFrame] = TypeAdapter(ClientFrame)

SERVER_FRAME_TYPES = frozenset({'ready', 'output', 'exit', 'error', 'ping', 'pong'})


def _decode(raw: str | bytes) -> dict[str, Any]:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise FrameError(f'Frame is not valid UTF-8: {e}') from e
    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, ValueError) as e:
        raise FrameError(f'Frame is not valid JSON: {e}') from e
    if not isinstance(message, dict) or 'type' not in message:
        raise FrameError('Frame must be a JSON object with a "type" key')
    return message


def parse_client_frame(raw: str | bytes) -> ClientFrame:
    """Decode and validate one client->server frame.

    Raises:
        FrameError: If the payload is not JSON, has no known ``type``,
            or fails schema validation.
    """
    message = _decode(raw)
    try:
        return _CLIENT_FRAME_ADAPTER.validate_python(message)
    except ValidationError as e:
        raise FrameError(f'Invalid {message.get("type")!r} frame: {e.error_count()} error(s)') from e


def parse_server_frame(raw: str | bytes) -> dict[str, Any]:
    """Decode one server->client frame, rejecting unknown types."""
    message = _decode(raw)
    if message['type'] not in SERVER_FRAME_TYPES:
        raise FrameError(f'Unknown server frame type: {message["type"]!r}')
    return message


def encode(frame: dict[str, Any]) -> str:
    return json.dumps(frame)


# -- builders --

def ready_frame() -> dict[str, Any]:
    return {'type': 'ready'}


def output_frame(data: str) -> dict[str, Any]:
    return {'type': 'output', 'data': data}


def exit_frame(exit_code: int | None) -> dict[str, Any]:
    return {'type': 'exit', 'exitCode': exit_code}


def error_frame(message: str) -> dict[str, Any]:
    return {'type': 'error', 'message': message}


def ping_frame() -> dict[str, Any]:
    return {'type': 'ping'}


def pong_frame() -> dict[str, Any]:
    return {'type': 'pong'}


def create_frame(
    mode: SessionMode,
    session_name: str | None,
    cols: int,
    rows: int,
) -> dict[str, Any]:
    return {
        'type': 'create',
        'mode': mode.value,
        'sessionName': session_name or '',
        'cols': cols,
        'rows': rows,
    }


def input_frame(data: str) -> dict[str, Any]:
    return {'type': 'input', 'data': data}


def resize_frame(cols: int, rows: int) -> dict[str, Any]:
    return {'type': 'resize', 'cols': cols, 'rows': rows}


def is_inactivity_message(message: str) -> bool:
    lowered = message.lower()
    return 'inactive' in lowered or 'inactivity' in lowered
