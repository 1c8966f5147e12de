from __future__ import annotations

import asyncio
import logging
import time

from conftest import drain, make_service, open_connection
from fastapi.websockets import WebSocketState

from coderoom.services.connection_manager import Connection, ConnectionManager


def test_deliver_local_skips_excluded_connection() -> None:
    async def scenario():
        manager = ConnectionManager()
        a = manager.register(Connection(connection_id="a"))
        b = manager.register(Connection(connection_id="b"))
        manager.subscribe(a, "r")
        manager.subscribe(b, "r")
        count = manager.deliver_local("r", {"type": "codeUpdate", "code": "x"}, exclude="a")
        return count, drain(a), drain(b)

    count, to_a, to_b = asyncio.run(scenario())
    assert count == 1
    assert to_a == []
    assert to_b == [{"type": "codeUpdate", "code": "x"}]


def test_closed_connection_gets_nothing() -> None:
    async def scenario():
        manager = ConnectionManager()
        a = manager.register(Connection(connection_id="a"))
        manager.subscribe(a, "r")
        a.open = False
        return manager.deliver_local("r", {"type": "ping"}), drain(a)

    assert asyncio.run(scenario()) == (0, [])


def test_unsubscribe_drops_empty_rooms() -> None:
    manager = ConnectionManager()
    a = Connection(connection_id="a")
    manager.subscribe(a, "r")
    manager.unsubscribe(a, "r")
    manager.unsubscribe(a, "r")
    assert manager.rooms == {}


def test_stale_connections() -> None:
    manager = ConnectionManager()
    fresh = manager.register(Connection(connection_id="fresh"))
    old = manager.register(Connection(connection_id="old"))
    old.last_seen = time.monotonic() - 120
    fresh.touch()
    assert manager.stale_connections(60) == [old]


def test_heartbeat_pings_and_drops_silent_connections() -> None:
    async def scenario():
        service = make_service()
        alive = open_connection(service, "alive")
        silent = open_connection(service, "silent")
        await service.join(alive, "r", "Alive")
        await service.join(silent, "r", "Silent")
        drain(alive)
        silent.last_seen = time.monotonic() - 600

        task = asyncio.create_task(service.connections.heartbeat(interval=0.01, timeout=300))
        await asyncio.sleep(0.05)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return service, drain(alive)

    service, to_alive = asyncio.run(scenario())
    assert "silent" not in service.connections.connections
    assert service.rooms.get_room("r").roster() == ["Alive"]
    assert {"type": "userJoined", "roomId": "r", "members": ["Alive"]} in to_alive
    assert {"type": "ping"} in to_alive


def test_send_failure_triggers_implicit_leave() -> None:
    class BrokenSocket:
        application_state = WebSocketState.DISCONNECTED

        async def send_json(self, message):
            raise RuntimeError("socket gone")

    async def scenario():
        service = make_service()
        stay = open_connection(service, "stay")
        await service.join(stay, "r", "Stay")

        broken = Connection(websocket=BrokenSocket(), connection_id="broken")
        service.connections.register(broken)
        broken.writer = asyncio.create_task(service.connections._writer(broken))
        await service.join(broken, "r", "Broken")
        drain(stay)

        # Let the writer fail on the snapshot and the lost-connection task run
        for _ in range(10):
            await asyncio.sleep(0)
        await asyncio.sleep(0.01)
        return service, drain(stay)

    service, to_stay = asyncio.run(scenario())
    assert "broken" not in service.connections.connections
    assert to_stay[-1] == {"type": "userJoined", "roomId": "r", "members": ["Stay"]}


def test_lost_connection_cleanup_is_tracked_and_failures_logged(caplog) -> None:
    async def scenario():
        manager = ConnectionManager()
        reported = []

        async def on_lost(connection):
            reported.append(connection.id)
            raise RuntimeError("cleanup exploded")

        manager.on_lost = on_lost
        gone = manager.register(Connection(connection_id="gone"))
        manager._report_lost(gone)
        pending = set(manager._lost_tasks)

        await asyncio.gather(*pending, return_exceptions=True)
        await asyncio.sleep(0)
        return reported, len(pending), manager._lost_tasks

    with caplog.at_level(logging.ERROR, logger="coderoom.services.connection_manager"):
        reported, pending, remaining = asyncio.run(scenario())

    assert reported == ["gone"]
    assert pending == 1
    assert remaining == set()
    assert "Cleanup of lost connection failed" in caplog.text
