"""tmux session routes for tailmux."""
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ...error_normalization import error_response_body, normalize_error
from ...errors import TerminalError
from ..pty.service import SessionRegistry
from .schemas import RenameRequest

TMUX_MISSING_MESSAGE = 'tmux is not installed. Install it with your package manager (e.g. apt install tmux).'


def create_tmux_router(registry: SessionRegistry) -> APIRouter:
    """Create tmux session router.

    Args:
        registry: Session registry; renames update its records

    Returns:
        FastAPI router with /sessions and /tmux/rename endpoints
    """
    router = APIRouter(tags=['tmux'])
    tmux = registry.tmux

    @router.get('/sessions')
    def list_sessions():
        """List tmux sessions available for attach.

        Returns:
            dict with tmuxAvailable, sessions, and a message when tmux is missing
        """
        if not tmux.is_available():
            return {
                'tmuxAvailable': False,
                'sessions': [],
                'message': TMUX_MISSING_MESSAGE,
            }
        return {
            'tmuxAvailable': True,
            'sessions': [record.to_dict() for record in tmux.list_sessions()],
        }

    @router.post('/tmux/rename')
    async def rename_session(body: RenameRequest):
        """Rename a tmux session and every terminal attached to it.

        Returns:
            dict with success and the applied newName
        """
        try:
            new_name = registry.rename_tmux_session(body.current_name, body.new_name)
        except TerminalError as e:
            normalized = normalize_error(e.kind, internal_detail=repr(e))
            return JSONResponse(
                status_code=normalized.http_status,
                content=error_response_body(e.message),
            )
        return {'success': True, 'newName': new_name}

    return router
