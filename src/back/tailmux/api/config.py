"""Configuration for the tailmux server."""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_MAX_TERMINALS = 10
DEFAULT_HEARTBEAT_INTERVAL_MS = 30000
DEFAULT_IDLE_TIMEOUT_MS = 0
DEFAULT_PORT = 3000


class ConfigValidationError(ValueError):
    """Raised when configuration values are out of range."""


def _env_int(name: str, default: int) -> int:
    """Read an integer env var, falling back to default when unset or unparsable."""
    raw = os.environ.get(name, '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning('Ignoring non-integer %s=%r, using %d', name, raw, default)
        return default


def _default_cors_origins() -> list[str]:
    """Get default CORS origins, supporting env override."""
    env_origins = os.environ.get('CORS_ORIGINS', '')
    if env_origins:
        return [o.strip() for o in env_origins.split(',') if o.strip()]
    return ['*']


def _default_static_dir() -> Path | None:
    raw = os.environ.get('TAILMUX_STATIC_DIR', '').strip()
    return Path(raw) if raw else None


@dataclass
class APIConfig:
    """Central configuration for the tailmux server.

    This dataclass is passed to the app factory and every router factory,
    enabling dependency injection and avoiding global state.
    """
    # Concurrent terminal limit (0 = unlimited)
    max_terminals: int = field(
        default_factory=lambda: _env_int('MAX_TERMINALS', DEFAULT_MAX_TERMINALS))
    # Heartbeat ping interval in ms (0 = disabled)
    heartbeat_interval_ms: int = field(
        default_factory=lambda: _env_int('WS_HEARTBEAT_INTERVAL', DEFAULT_HEARTBEAT_INTERVAL_MS))
    # Close terminals after this many ms without input (0 = disabled)
    idle_timeout_ms: int = field(
        default_factory=lambda: _env_int('TERMINAL_IDLE_TIMEOUT_MS', DEFAULT_IDLE_TIMEOUT_MS))

    host: str = field(default_factory=lambda: os.environ.get('HOST', '0.0.0.0'))
    port: int = field(default_factory=lambda: _env_int('PORT', DEFAULT_PORT))

    shell: str = field(default_factory=lambda: os.environ.get('TAILMUX_SHELL', 'bash'))
    tmux_binary: str = field(default_factory=lambda: os.environ.get('TAILMUX_TMUX_BINARY', 'tmux'))
    home_dir: Path = field(default_factory=Path.home)

    # Prefix for generated tmux session names, e.g. tailmux-1700000000000
    session_name_prefix: str = 'tailmux'

    static_dir: Path | None = field(default_factory=_default_static_dir)
    cors_origins: list[str] = field(default_factory=_default_cors_origins)

    @property
    def heartbeat_interval(self) -> float:
        """Heartbeat interval in seconds."""
        return self.heartbeat_interval_ms / 1000

    @property
    def idle_timeout(self) -> float:
        """Idle timeout in seconds."""
        return self.idle_timeout_ms / 1000

    def validate_startup(self) -> None:
        """Validate configuration at startup.

        Raises:
            ConfigValidationError: If any value is out of range, listing all problems.
        """
        problems = []
        if self.max_terminals < 0:
            problems.append(f'max_terminals must be >= 0 (got {self.max_terminals})')
        if self.heartbeat_interval_ms < 0:
            problems.append(f'heartbeat_interval_ms must be >= 0 (got {self.heartbeat_interval_ms})')
        if self.idle_timeout_ms < 0:
            problems.append(f'idle_timeout_ms must be >= 0 (got {self.idle_timeout_ms})')
        if not 1 <= self.port <= 65535:
            problems.append(f'port must be between 1 and 65535 (got {self.port})')
        if self.static_dir is not None and not self.static_dir.is_dir():
            problems.append(f'static_dir is not a directory: {self.static_dir}')

        if problems:
            raise ConfigValidationError(
                'Startup validation failed:\n  ' + '\n  '.join(problems)
            )
