"""Utility routes: health and Prometheus metrics.

These routes are always mounted and sit outside the /api prefix.
"""

from fastapi import APIRouter
from starlette.responses import Response

from ..observability.metrics import metrics_text
from .config import APIConfig
from .modules.pty.service import SessionRegistry


def create_utility_router(config: APIConfig, registry: SessionRegistry) -> APIRouter:
    """Create router with health and metrics endpoints.

    Args:
        config: APIConfig instance with the terminal limit.
        registry: Session registry reported by /health.

    Returns:
        APIRouter with utility endpoints mounted.
    """
    router = APIRouter(tags=['observability'])

    @router.get('/health')
    async def health():
        """Health check endpoint."""
        return {
            'status': 'ok',
            'terminals': len(registry),
            'maxTerminals': config.max_terminals,
        }

    @router.get('/metrics')
    async def prometheus_metrics():
        """Prometheus metrics exposition endpoint."""
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    return router
