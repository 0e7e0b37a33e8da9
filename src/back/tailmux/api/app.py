"""Application factory for the tailmux server."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from ..observability.middleware import (
    AccessMiddleware,
    RequestIdMiddleware,
)
from .config import APIConfig
from .modules.pty.heartbeat import HeartbeatMonitor
from .modules.pty.router import create_pty_router
from .modules.pty.service import SessionRegistry
from .modules.tmux.router import create_tmux_router
from .modules.tmux.service import TmuxDirectory
from .utility_routes import create_utility_router

logger = logging.getLogger(__name__)


def create_app(
    config: APIConfig | None = None,
    registry: SessionRegistry | None = None,
    tmux: TmuxDirectory | None = None,
    heartbeat: HeartbeatMonitor | None = None,
) -> FastAPI:
    """Create a configured FastAPI application.

    Args:
        config: API configuration. Uses defaults from the environment if not provided.
        registry: Session registry. Built from config if not provided.
        tmux: tmux directory used by a registry built here.
        heartbeat: Heartbeat monitor. Built from config if not provided.

    Returns:
        Configured FastAPI application with all routes mounted.

    Raises:
        ConfigValidationError: If the configuration is out of range.
    """
    config = config or APIConfig()
    config.validate_startup()

    if registry is None:
        registry = SessionRegistry(config, tmux=tmux)
    if heartbeat is None:
        heartbeat = HeartbeatMonitor(config.heartbeat_interval_ms)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            'tailmux startup (max_terminals=%d, heartbeat=%dms, idle_timeout=%dms, tmux=%s)',
            config.max_terminals,
            config.heartbeat_interval_ms,
            config.idle_timeout_ms,
            'available' if registry.tmux.is_available() else 'missing',
        )
        yield
        await heartbeat.stop()
        registry.shutdown()
        logger.info('tailmux shutdown complete')

    app = FastAPI(
        title='tailmux',
        description='Browser terminals over WebSocket, backed by PTYs and tmux',
        version='0.1.0',
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )
    # Middleware chain executes in reverse order: request ID is outermost.
    app.add_middleware(AccessMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(create_pty_router(registry, heartbeat), prefix='/ws')
    app.include_router(create_tmux_router(registry), prefix='/api')
    app.include_router(create_utility_router(config, registry))

    app.state.config = config
    app.state.registry = registry
    app.state.heartbeat = heartbeat

    # Static mount goes last so it never shadows API routes.
    if config.static_dir is not None:
        app.mount('/', StaticFiles(directory=config.static_dir, html=True), name='static')

    return app
