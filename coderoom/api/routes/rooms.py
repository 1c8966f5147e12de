# coderoom/api/routes/rooms.py

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from coderoom.api.routes.utils import get_state
from coderoom.core.state import AppState
from coderoom.models.models import ChatMessage, RoomSnapshot, RoomSummary

router = APIRouter()

# ============================================================================
# ROOM INSPECTION ENDPOINTS
# ============================================================================
# Rooms are created and destroyed by WebSocket joins and leaves only; these
# endpoints are read-only views of what is currently live.


@router.get("/rooms", response_model=List[RoomSummary])
async def list_rooms(state: AppState = Depends(get_state)):
    """
    List all live rooms.

    Returns:
        List[RoomSummary]: id, language, member and message counts
    """
    return [room.summary() for room in state.room_manager.list_rooms()]


@router.get("/rooms/{room_id}", response_model=RoomSnapshot)
async def get_room(room_id: str, state: AppState = Depends(get_state)):
    """
    Get the current code, language, roster and transcript of a room.

    Raises:
        HTTPException: 404 if the room does not exist (never created, or
        destroyed when its last member left)
    """
    room = state.room_manager.get_room(room_id)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return room.snapshot()


@router.get("/rooms/{room_id}/messages", response_model=List[ChatMessage])
async def get_messages(room_id: str, state: AppState = Depends(get_state)):
    room = state.room_manager.get_room(room_id)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return list(room.messages)
