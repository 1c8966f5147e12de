# coderoom/api/routes/metrics.py
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from coderoom.api.routes.utils import get_state
from coderoom.core.state import AppState

router = APIRouter()


@router.get("/metrics")
async def get_metrics(state: AppState = Depends(get_state)):
    """
    Usage counters for this broker instance.

    Returns:
        dict: uptime, events applied per second, execution counts, and
        current capacity (connections, rooms, members, chat messages)
    """
    uptime_seconds = (datetime.now(timezone.utc) - state.app_start_time).total_seconds()
    stats = state.service.stats()

    if uptime_seconds > 0:
        events_per_second = stats["events_applied"] / uptime_seconds
    else:
        events_per_second = 0

    rooms = state.room_manager.list_rooms()

    return {
        # Statistics
        "uptime_hours": round(uptime_seconds / 3600, 2) if uptime_seconds > 0 else 0,
        "events_applied": stats["events_applied"],
        "events_per_second": round(events_per_second, 2),

        # Execution
        "executions_started": stats["executions_started"],
        "executions_running": stats["executions_running"],

        # Capacity
        "concurrent_connections": len(state.connection_manager.connections),
        "active_rooms": len(rooms),
        "participants": sum(len(room.members) for room in rooms),
        "chat_messages_held": sum(len(room.messages) for room in rooms),
    }
