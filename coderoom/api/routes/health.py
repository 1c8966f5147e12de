# coderoom/api/routes/health.py

from fastapi import APIRouter, Depends

from coderoom.api.routes.utils import get_state
from coderoom.core.state import AppState

router = APIRouter()


@router.get("/health")
async def health(state: AppState = Depends(get_state)):
    """
    Health check endpoint.

    Returns current system status, connection counts, and room counts.
    Used by container health probes and monitoring.
    """
    return {
        "status": "healthy",
        "bus": state.settings.PUB_SUB_SERVICE,
        "connections": len(state.connection_manager.connections),
        "rooms": len(state.room_manager.list_rooms()),
        "active_rooms_with_members": len(state.connection_manager.rooms),
    }
