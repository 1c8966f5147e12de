# coderoom/services/collaboration.py

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Set

from coderoom.models.models import ChatMessage, ExecutionResult, Participant, RoomSnapshot, now_ms
from coderoom.services.connection_manager import (
    Connection,
    ConnectionManager,
    ConnectionState,
)
from coderoom.services.execution import ExecutionGateway
from coderoom.services.room_manager import Room, RoomManager

logger = logging.getLogger(__name__)


# ============================================================================
# COLLABORATION SERVICE
# ============================================================================

class CollaborationService:
    """
    Applies client events to room state and fans the results out.

    Every handler follows the same shape: take the room lock through the
    RoomManager, mutate, enqueue broadcasts, release. Because broadcasts are
    enqueued while the lock is held, every recipient sees a room's events in
    the order they were applied.

    Who receives what:
        - roster updates (userJoined): everyone else in the room
        - codeUpdate / languageUpdate / userTyping / chatMessage: everyone
          except the originator, who already rendered the change locally
        - codeResponse: everyone in the room, requester included

    Events against rooms that do not exist, or from connections that are not
    members of the named room, are dropped without an error.
    """

    def __init__(
        self,
        rooms: RoomManager,
        connections: ConnectionManager,
        gateway: ExecutionGateway,
    ) -> None:
        self.rooms = rooms
        self.connections = connections
        self.gateway = gateway
        self.connections.on_lost = self.disconnect
        self._executions: Set[asyncio.Task] = set()

        self.events_applied = 0
        self.executions_started = 0

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    async def join(self, connection: Connection, room_id: str, display_name: str) -> RoomSnapshot:
        """
        Put a connection into a room and return the room snapshot.

        A connection sits in at most one room: joining another room leaves
        the current one first. Joining the room it is already in only
        re-sends the snapshot.

        Raises:
            ValueError: room_id or display_name is empty (nothing changes)
        """
        if not room_id or not display_name:
            raise ValueError("roomId and displayName are required")

        if connection.room_id == room_id and connection.state == ConnectionState.JOINED:
            async with self.rooms.locked(room_id) as room:
                if room is not None and room.is_member(connection.id):
                    snapshot = room.snapshot()
                    self.connections.send(connection, {"type": "roomJoined", **_dump(snapshot)})
                    return snapshot

        if connection.room_id is not None:
            await self.leave(connection)

        connection.state = ConnectionState.JOINING
        participant = Participant(id=connection.id, display_name=display_name)

        async with self.rooms.join(room_id, participant) as room:
            connection.room_id = room_id
            connection.display_name = display_name
            self.connections.subscribe(connection, room_id)

            snapshot = room.snapshot()
            self.connections.send(connection, {"type": "roomJoined", **_dump(snapshot)})
            await self._broadcast_roster(room, exclude=connection.id)
            connection.state = ConnectionState.JOINED

        self.events_applied += 1
        return snapshot

    async def leave(self, connection: Connection) -> bool:
        """
        Take a connection out of its current room.

        Idempotent: returns False when the connection was not in a room.
        The last member leaving destroys the room and everything in it.
        """
        room_id = connection.room_id
        if room_id is None:
            return False

        connection.state = ConnectionState.LEAVING
        self.connections.unsubscribe(connection, room_id)

        async with self.rooms.leave(room_id, connection.id) as room:
            if room is not None and room.members:
                await self._broadcast_roster(room)

        connection.room_id = None
        connection.display_name = None
        connection.state = ConnectionState.DISCONNECTED
        self.connections.send(connection, {"type": "roomLeft", "roomId": room_id})
        self.events_applied += 1
        return True

    async def disconnect(self, connection: Connection) -> None:
        """
        Transport loss. Same effect as an explicit leave, then the
        connection is forgotten.
        """
        if connection.id not in self.connections.connections:
            return
        # Nobody is left to read roomLeft
        connection.open = False
        await self.leave(connection)
        await self.connections.unregister(connection)

    # ------------------------------------------------------------------
    # Shared state
    # ------------------------------------------------------------------

    async def apply_code_change(self, connection: Connection, room_id: Optional[str], code: str) -> bool:
        """
        Overwrite the room's code. The last change applied wins; there is
        no merging, so an edit applied just before this one is lost.

        Every code change also refreshes the originator's typing signal.
        """
        async with self._member_room(connection, room_id) as room:
            if room is None:
                return False
            room.code = code
            await self.connections.broadcast_to_room(
                room.room_id, {"type": "codeUpdate", "code": code}, exclude=connection.id
            )
            await self._broadcast_typing(room, connection, connection.display_name)
        self.events_applied += 1
        return True

    async def apply_language_change(self, connection: Connection, room_id: Optional[str], language: str) -> bool:
        async with self._member_room(connection, room_id) as room:
            if room is None:
                return False
            room.language = language
            await self.connections.broadcast_to_room(
                room.room_id, {"type": "languageUpdate", "language": language}, exclude=connection.id
            )
        self.events_applied += 1
        return True

    async def signal_typing(self, connection: Connection, room_id: Optional[str], display_name: Optional[str] = None) -> bool:
        """Relay only. Expiry is up to each receiver."""
        async with self._member_room(connection, room_id) as room:
            if room is None:
                return False
            await self._broadcast_typing(room, connection, display_name or connection.display_name)
        self.events_applied += 1
        return True

    async def post_message(
        self,
        connection: Connection,
        room_id: Optional[str],
        text: str,
        sender: Optional[str] = None,
        time: Optional[int] = None,
    ) -> Optional[ChatMessage]:
        async with self._member_room(connection, room_id) as room:
            if room is None:
                return None
            message = ChatMessage(
                sender=sender or connection.display_name,
                text=text,
                time=time if time is not None else now_ms(),
            )
            room.append_message(message)
            await self.connections.broadcast_to_room(
                room.room_id,
                {"type": "chatMessage", **_dump(message)},
                exclude=connection.id,
            )
        self.events_applied += 1
        return message

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, connection: Connection, room_id: Optional[str], code: str, language: str, version: str = "*") -> Optional[asyncio.Task]:
        """
        Start running code for a room in the background.

        The caller does not wait for the result. When the engine answers,
        the output goes to everyone in the room as codeResponse, even if
        the requester has left in the meantime. Results carry no request id;
        concurrent runs simply arrive one after the other.
        """
        target = room_id or connection.room_id
        room = self.rooms.get_room(target) if target else None
        if room is None or not room.is_member(connection.id):
            logger.debug("Ignoring compileCode from %s for room %s", connection.id, target)
            return None

        self.executions_started += 1
        task = asyncio.create_task(self._run(target, code, language, version))
        self._executions.add(task)
        task.add_done_callback(self._executions.discard)
        return task

    async def _run(self, room_id: str, code: str, language: str, version: str) -> None:
        logger.info("▶ Executing %s (%s) for room %s", language, version, room_id)
        try:
            result = await self.gateway.execute(code, language, version)
        except Exception as e:
            logger.exception("Execution for room %s failed", room_id)
            message = f"Execution failed: {e}"
            result = ExecutionResult(output=message, error=message)

        async with self.rooms.locked(room_id) as room:
            if room is None:
                logger.info("Room %s is gone, dropping execution result", room_id)
                return
            try:
                await self.connections.broadcast_to_room(
                    room_id, {"type": "codeResponse", **result.payload()}
                )
            except Exception:
                logger.exception("Could not deliver execution result to room %s", room_id)

    async def wait_for_executions(self) -> None:
        if self._executions:
            await asyncio.gather(*list(self._executions), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._executions):
            task.cancel()
        await self.wait_for_executions()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _member_room(self, connection: Connection, room_id: Optional[str]) -> AsyncIterator[Optional[Room]]:
        """Yield the locked room if the connection is a member of it, None otherwise."""
        room_id = room_id or connection.room_id
        if not room_id:
            yield None
            return

        async with self.rooms.locked(room_id) as room:
            if room is not None and not room.is_member(connection.id):
                logger.debug("No-op event from %s for room %s", connection.id, room_id)
                room = None
            yield room

    async def _broadcast_roster(self, room: Room, exclude: Optional[str] = None) -> None:
        await self.connections.broadcast_to_room(
            room.room_id,
            {"type": "userJoined", "roomId": room.room_id, "members": room.roster()},
            exclude=exclude,
        )

    async def _broadcast_typing(self, room: Room, connection: Connection, display_name: Optional[str]) -> None:
        await self.connections.broadcast_to_room(
            room.room_id,
            {"type": "userTyping", "displayName": display_name},
            exclude=connection.id,
        )

    def stats(self) -> dict:
        return {
            "events_applied": self.events_applied,
            "executions_started": self.executions_started,
            "executions_running": len(self._executions),
        }


def _dump(model) -> dict:
    return model.model_dump(by_alias=True)
