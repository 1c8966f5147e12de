# coderoom/services/room_manager.py

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from coderoom.models.models import (
    ChatMessage,
    Participant,
    RoomSnapshot,
    RoomSummary,
    now_ms,
)

logger = logging.getLogger(__name__)

DEFAULT_CODE = "// start code here"
DEFAULT_LANGUAGE = "javascript"


# ============================================================================
# ROOM
# ============================================================================

class Room:
    """
    Shared session state for one room identifier.

    Every mutation must happen while holding ``lock``; the registry hands the
    room out through ``RoomManager.locked()`` which takes care of that and of
    rooms destroyed while a caller was waiting.

    Attributes:
        room_id: Client-supplied identifier
        code: Current authoritative editor text (last applied write wins)
        language: Current authoritative language tag
        members: participant_id -> Participant, in join order
        messages: Chat transcript, in application order
        closed: Set once the room has been destroyed
    """

    def __init__(
        self,
        room_id: str,
        code: str = DEFAULT_CODE,
        language: str = DEFAULT_LANGUAGE,
        history_limit: int = 0,
    ) -> None:
        self.room_id = room_id
        self.code = code
        self.language = language
        self.members: Dict[str, Participant] = {}
        self.messages: List[ChatMessage] = []
        self.history_limit = history_limit
        self.created_at = now_ms()
        self.closed = False
        self.lock = asyncio.Lock()

    def add_member(self, participant: Participant) -> bool:
        if participant.id in self.members:
            return False
        self.members[participant.id] = participant
        return True

    def remove_member(self, participant_id: str) -> Optional[Participant]:
        return self.members.pop(participant_id, None)

    def is_member(self, participant_id: str) -> bool:
        return participant_id in self.members

    def append_message(self, message: ChatMessage) -> None:
        self.messages.append(message)
        if self.history_limit > 0 and len(self.messages) > self.history_limit:
            del self.messages[: len(self.messages) - self.history_limit]

    def roster(self) -> List[str]:
        """Display names in join order. Duplicates are kept."""
        return [p.display_name for p in self.members.values()]

    def snapshot(self) -> RoomSnapshot:
        return RoomSnapshot(
            room_id=self.room_id,
            code=self.code,
            language=self.language,
            members=self.roster(),
            messages=list(self.messages),
        )

    def summary(self) -> RoomSummary:
        return RoomSummary(
            room_id=self.room_id,
            language=self.language,
            member_count=len(self.members),
            message_count=len(self.messages),
            created_at=self.created_at,
        )


# ============================================================================
# ROOM REGISTRY
# ============================================================================

class RoomManager:
    """
    Owns the mapping room_id -> Room.

    Rooms are created lazily by ``join`` and destroyed by ``leave`` as soon
    as their member set is empty. Nothing survives destruction: a later join
    to the same identifier starts again from the placeholder defaults.

    Locking:
        - ``_registry_lock`` guards the dict itself and is only held for a
          lookup, an insert or a delete, never across an await on a room
        - ``Room.lock`` serializes everything that touches one room
        Rooms never wait on each other. A caller that wins a room lock after
        the room was destroyed sees ``closed`` and starts over.

    Usage:
        rooms = RoomManager()
        async with rooms.join("abc", participant) as room:
            snapshot = room.snapshot()
    """

    def __init__(
        self,
        default_code: str = DEFAULT_CODE,
        default_language: str = DEFAULT_LANGUAGE,
        history_limit: int = 0,
    ) -> None:
        self.rooms: Dict[str, Room] = {}
        self.default_code = default_code
        self.default_language = default_language
        self.history_limit = history_limit
        self._registry_lock = asyncio.Lock()

    def get_room(self, room_id: str) -> Optional[Room]:
        """
        Get a room by ID.

        Returns:
            Room object if it currently exists, None otherwise
        """
        room = self.rooms.get(room_id)
        if room is None or room.closed:
            return None
        return room

    def list_rooms(self) -> List[Room]:
        return [room for room in self.rooms.values() if not room.closed]

    async def _get_or_create(self, room_id: str) -> Room:
        async with self._registry_lock:
            room = self.rooms.get(room_id)
            if room is None or room.closed:
                room = Room(
                    room_id,
                    code=self.default_code,
                    language=self.default_language,
                    history_limit=self.history_limit,
                )
                self.rooms[room_id] = room
                logger.info("✓ Created room '%s'", room_id)
            return room

    async def _destroy(self, room: Room) -> None:
        async with self._registry_lock:
            if self.rooms.get(room.room_id) is room:
                del self.rooms[room.room_id]
                logger.info("✗ Destroyed empty room '%s'", room.room_id)

    @asynccontextmanager
    async def join(self, room_id: str, participant: Participant) -> AsyncIterator[Room]:
        """
        Add a participant to a room, creating the room if needed.

        The room is yielded with its lock held so the caller can build the
        snapshot and broadcast the new roster before any other event for
        this room is applied.

        Args:
            room_id: Room identifier (must be non-empty)
            participant: Participant to add

        Raises:
            ValueError: If room_id or the display name is empty. Nothing is
                mutated in that case.
        """
        if not room_id or not participant.display_name:
            raise ValueError("room_id and display_name are required")

        while True:
            room = await self._get_or_create(room_id)
            async with room.lock:
                # Destroyed while we waited for the lock: the next lookup
                # creates a fresh room
                if room.closed:
                    continue

                room.add_member(participant)
                logger.info(
                    "→ %s joined '%s' (%d members)",
                    participant.display_name,
                    room_id,
                    len(room.members),
                )
                yield room
                return

    @asynccontextmanager
    async def leave(self, room_id: str, participant_id: str) -> AsyncIterator[Optional[Room]]:
        """
        Remove a participant from a room.

        Yields the room (lock held) when the participant was a member, so
        the caller can broadcast the updated roster to the remaining members.
        Yields None when there was nothing to do: leaving twice, leaving a
        room you are not in, or leaving a room that no longer exists.

        If the room becomes empty it is closed before its lock is released
        and dropped from the registry right after.
        """
        async with self._registry_lock:
            room = self.rooms.get(room_id)

        if room is None:
            yield None
            return

        try:
            async with room.lock:
                removed = None if room.closed else room.remove_member(participant_id)
                if removed is None:
                    yield None
                    return

                logger.info(
                    "← %s left '%s' (%d members)",
                    removed.display_name,
                    room_id,
                    len(room.members),
                )
                try:
                    yield room
                finally:
                    if not room.members:
                        room.closed = True
        finally:
            if room.closed:
                await self._destroy(room)

    @asynccontextmanager
    async def locked(self, room_id: str) -> AsyncIterator[Optional[Room]]:
        """
        Yield a room with its lock held, or None if it does not exist.

        A room destroyed while we were waiting for its lock is reported as
        missing too.
        """
        room = self.get_room(room_id)
        if room is None:
            yield None
            return

        async with room.lock:
            yield None if room.closed else room
