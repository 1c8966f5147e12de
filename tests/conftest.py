from __future__ import annotations

from typing import List

import pytest

from coderoom.core.config import Settings
from coderoom.models.models import ExecutionResult
from coderoom.services.collaboration import CollaborationService
from coderoom.services.connection_manager import Connection, ConnectionManager
from coderoom.services.execution import ExecutionGateway
from coderoom.services.room_manager import RoomManager


class FakeGateway(ExecutionGateway):
    """Execution gateway answering from a canned result."""

    def __init__(self, result: ExecutionResult | None = None) -> None:
        super().__init__(url="http://engine.invalid/execute")
        self.result = result or ExecutionResult(output="1\n")
        self.calls: List[tuple] = []

    async def execute(self, code: str, language: str, version: str = "*") -> ExecutionResult:
        self.calls.append((code, language, version))
        return self.result


def make_service(gateway: ExecutionGateway | None = None, history_limit: int = 0) -> CollaborationService:
    return CollaborationService(
        RoomManager(history_limit=history_limit),
        ConnectionManager(),
        gateway or FakeGateway(),
    )


def open_connection(service: CollaborationService, connection_id: str) -> Connection:
    return service.connections.register(Connection(connection_id=connection_id))


def drain(connection: Connection) -> List[dict]:
    frames = []
    while not connection.outbox.empty():
        frame = connection.outbox.get_nowait()
        if frame is not None:
            frames.append(frame)
    return frames


def of_type(frames: List[dict], kind: str) -> List[dict]:
    return [f for f in frames if f.get("type") == kind]


@pytest.fixture
def settings(monkeypatch) -> Settings:
    monkeypatch.setenv("PUB_SUB_SERVICE", "local")
    monkeypatch.setenv("HEARTBEAT_INTERVAL", "3600")
    monkeypatch.setenv("HEARTBEAT_TIMEOUT", "7200")
    return Settings()
