# coderoom/core/state.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from coderoom.core.config import Settings
from coderoom.services.collaboration import CollaborationService
from coderoom.services.connection_manager import ConnectionManager
from coderoom.services.execution import ExecutionGateway
from coderoom.services.redis_pub_sub import AsyncRedisPubSubService
from coderoom.services.room_manager import RoomManager


@dataclass
class AppState:
    """Everything one broker instance owns. Built once per app."""

    settings: Settings
    room_manager: RoomManager
    connection_manager: ConnectionManager
    gateway: ExecutionGateway
    service: CollaborationService
    redis_service: Optional[AsyncRedisPubSubService] = None
    background_tasks: List[asyncio.Task] = field(default_factory=list)
    app_start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def build_state(settings: Settings, gateway: Optional[ExecutionGateway] = None) -> AppState:
    room_manager = RoomManager(
        default_code=settings.DEFAULT_CODE,
        default_language=settings.DEFAULT_LANGUAGE,
        history_limit=settings.CHAT_HISTORY_LIMIT,
    )
    connection_manager = ConnectionManager()
    gateway = gateway or ExecutionGateway(
        url=settings.EXECUTION_ENGINE_URL,
        timeout=settings.EXECUTION_TIMEOUT,
    )
    service = CollaborationService(room_manager, connection_manager, gateway)

    redis_service = None
    if settings.PUB_SUB_SERVICE == "redis":
        redis_service = AsyncRedisPubSubService(settings.redis_url, connection_manager)

    return AppState(
        settings=settings,
        room_manager=room_manager,
        connection_manager=connection_manager,
        gateway=gateway,
        service=service,
        redis_service=redis_service,
    )
