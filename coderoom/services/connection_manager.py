# coderoom/services/connection_manager.py

from __future__ import annotations

import asyncio
import enum
import logging
import time
import uuid
from typing import Awaitable, Callable, Dict, Optional, Set

from fastapi import WebSocket
from fastapi.websockets import WebSocketState

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    JOINING = "joining"
    JOINED = "joined"
    LEAVING = "leaving"


# ============================================================================
# CONNECTION
# ============================================================================

class Connection:
    """
    One client's transport channel.

    Outbound frames are never written to the socket directly: they are
    queued on ``outbox`` and a single writer task drains it, so frames reach
    the client in exactly the order they were enqueued.

    Attributes:
        id: Broker-assigned identity, also used as the participant id
        websocket: The underlying socket (None for in-process connections)
        room_id: Room this connection is currently a member of, if any
        display_name: Name used in the current room
        state: Where the connection is in the join/leave lifecycle
        last_seen: Monotonic time of the last inbound frame
    """

    def __init__(self, websocket: Optional[WebSocket] = None, connection_id: Optional[str] = None) -> None:
        self.id = connection_id or uuid.uuid4().hex
        self.websocket = websocket
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.room_id: Optional[str] = None
        self.display_name: Optional[str] = None
        self.state = ConnectionState.DISCONNECTED
        self.last_seen = time.monotonic()
        self.open = True
        self.writer: Optional[asyncio.Task] = None

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def enqueue(self, message: dict) -> bool:
        if not self.open:
            return False
        self.outbox.put_nowait(message)
        return True

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, room={self.room_id!r}, state={self.state.value})"


# ============================================================================
# WEBSOCKET CONNECTION MANAGER
# ============================================================================

class ConnectionManager:
    """
    Manages connections and their room subscriptions.

    Data Structures:
        connections: Maps connection id -> Connection
        rooms: Maps room_id -> Set of connection ids subscribed locally
               Example: {"abc": {"3f2a...", "9b1c..."}}

    Broadcasts go through the bus when one is attached (Redis, for several
    broker instances) and straight to the local outboxes otherwise. Either
    way, ``deliver_local`` is where a broadcast finally lands.

    Lost connections (send failure, heartbeat expiry) are reported through
    ``on_lost`` so the owner can run the implicit leave.
    """

    def __init__(self) -> None:
        self.connections: Dict[str, Connection] = {}
        self.rooms: Dict[str, Set[str]] = {}
        self.bus = None
        self.on_lost: Optional[Callable[[Connection], Awaitable[None]]] = None
        self._lost_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, websocket: WebSocket) -> Connection:
        """
        Accept a new WebSocket connection and start its writer task.

        Note:
            The connection is not in any room yet. The client must send a
            "join" action.
        """
        await websocket.accept()
        connection = self.register(Connection(websocket))
        connection.writer = asyncio.create_task(self._writer(connection))
        return connection

    def register(self, connection: Connection) -> Connection:
        self.connections[connection.id] = connection
        logger.info("✓ Connection %s opened. Total: %d", connection.id, len(self.connections))
        return connection

    async def unregister(self, connection: Connection) -> None:
        """
        Forget a connection and close its socket.

        Safe to call more than once.
        """
        if self.connections.pop(connection.id, None) is None:
            return

        if connection.room_id:
            self.unsubscribe(connection, connection.room_id)

        connection.open = False
        connection.state = ConnectionState.DISCONNECTED
        # Let the writer flush what is already queued, then stop
        connection.outbox.put_nowait(None)
        if connection.writer is not None and connection.writer is not asyncio.current_task():
            try:
                await asyncio.wait_for(connection.writer, timeout=1.0)
            except asyncio.TimeoutError:
                logger.warning("Writer for %s did not drain in time", connection.id)

        websocket = connection.websocket
        if websocket is not None and websocket.application_state == WebSocketState.CONNECTED:
            try:
                await websocket.close()
            except Exception as e:
                logger.debug("Close on %s failed: %s", connection.id, e)

        logger.info("✗ Connection %s closed. Total: %d", connection.id, len(self.connections))

    async def _writer(self, connection: Connection) -> None:
        while True:
            message = await connection.outbox.get()
            if message is None:
                return
            try:
                await connection.websocket.send_json(message)
            except Exception as e:
                logger.error("Send error on %s: %s", connection.id, e)
                connection.open = False
                self._report_lost(connection)
                return

    def _report_lost(self, connection: Connection) -> None:
        if self.on_lost is None or connection.id not in self.connections:
            return
        task = asyncio.create_task(self.on_lost(connection))
        self._lost_tasks.add(task)
        task.add_done_callback(self._lost_done)

    def _lost_done(self, task: asyncio.Task) -> None:
        self._lost_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Cleanup of lost connection failed", exc_info=task.exception())

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, connection: Connection, room_id: str) -> None:
        self.rooms.setdefault(room_id, set()).add(connection.id)

    def unsubscribe(self, connection: Connection, room_id: str) -> None:
        members = self.rooms.get(room_id)
        if members is None:
            return
        members.discard(connection.id)
        # Clean up empty rooms from memory
        if not members:
            del self.rooms[room_id]

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def send(self, connection: Connection, message: dict) -> None:
        """Queue a frame for a single connection."""
        connection.enqueue(message)

    async def broadcast_to_room(
        self,
        room_id: str,
        message: dict,
        exclude: Optional[str] = None,
    ) -> None:
        """
        Broadcast a message to every connection subscribed to a room.

        Args:
            room_id: Target room
            message: Frame to send (JSON serializable)
            exclude: Connection id that must not receive it (the originator
                of a code/chat/typing change already has it locally)
        """
        if self.bus is not None:
            await self.bus.broadcast_to_room(room_id, {"message": message, "exclude": exclude})
            return
        self.deliver_local(room_id, message, exclude)

    def deliver_local(self, room_id: str, message: dict, exclude: Optional[str] = None) -> int:
        """
        Push a frame onto the outbox of every local subscriber of a room.

        Returns:
            Number of connections the frame was queued for
        """
        subscribers = self.rooms.get(room_id)
        if not subscribers:
            logger.debug("[routing] Skipped broadcast: room=%s has 0 subscribers", room_id)
            return 0

        delivered = 0
        for connection_id in list(subscribers):
            if connection_id == exclude:
                continue
            connection = self.connections.get(connection_id)
            if connection is not None and connection.enqueue(message):
                delivered += 1

        logger.debug("📨 %s to room %s: %d clients", message.get("type"), room_id, delivered)
        return delivered

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def stale_connections(self, timeout: float, now: Optional[float] = None) -> list:
        now = time.monotonic() if now is None else now
        return [c for c in self.connections.values() if now - c.last_seen > timeout]

    async def heartbeat(self, interval: float, timeout: float) -> None:
        """
        Ping every connection each ``interval`` seconds and drop the ones
        that have been silent for longer than ``timeout``.

        Any inbound frame counts as a sign of life, so busy clients never
        need to answer the ping explicitly.
        """
        logger.info("💓 Heartbeat every %ss, timeout %ss", interval, timeout)
        while True:
            await asyncio.sleep(interval)
            for connection in self.stale_connections(timeout):
                logger.warning("Connection %s missed heartbeat, dropping", connection.id)
                if self.on_lost is not None:
                    await self.on_lost(connection)
                else:
                    await self.unregister(connection)
            for connection in list(self.connections.values()):
                connection.enqueue({"type": "ping"})
