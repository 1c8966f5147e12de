# coderoom/client/session.py

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from coderoom.models.models import now_ms
from coderoom.services.room_manager import DEFAULT_CODE, DEFAULT_LANGUAGE

logger = logging.getLogger(__name__)

TYPING_WINDOW = 2.0

Send = Callable[[dict], Awaitable[None]]


# ============================================================================
# TYPING INDICATOR
# ============================================================================

class TypingIndicator:
    """
    "X is typing" with a self-expiring display window.

    Each ``show()`` restarts the window: the previous timer is cancelled
    rather than left to fire, so a stream of signals keeps the indicator up
    and it clears ``window`` seconds after the last one.
    """

    def __init__(self, window: float = TYPING_WINDOW) -> None:
        self.window = window
        self.current: Optional[str] = None
        self._handle: Optional[asyncio.TimerHandle] = None

    def show(self, display_name: str) -> None:
        self.current = display_name
        if self._handle is not None:
            self._handle.cancel()
        self._handle = asyncio.get_running_loop().call_later(self.window, self.clear)

    def clear(self) -> None:
        self.current = None
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    @property
    def active(self) -> bool:
        return self.current is not None


# ============================================================================
# ROOM CLIENT
# ============================================================================

class RoomClient:
    """
    Client side of the room protocol, independent of any real socket.

    ``send`` is whatever pushes a frame to the broker (a WebSocket's
    send_json, a test double collecting frames, ...). Inbound frames are fed
    to ``handle()``.

    The client renders its own code edits and chat posts immediately; the
    broker never echoes them back, so they are not applied twice.
    """

    def __init__(self, send: Send, typing_window: float = TYPING_WINDOW) -> None:
        self._send = send
        self.room_id: Optional[str] = None
        self.display_name: Optional[str] = None
        self.joined = False
        self.code = DEFAULT_CODE
        self.language = DEFAULT_LANGUAGE
        self.version = "*"
        self.members: List[str] = []
        self.messages: List[dict] = []
        self.output = ""
        self.typing = TypingIndicator(typing_window)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def join(self, room_id: str, display_name: str) -> bool:
        """Returns False, without touching the network, if either field is empty."""
        if not room_id or not display_name:
            return False
        self.room_id = room_id
        self.display_name = display_name
        await self._send({"action": "join", "roomId": room_id, "displayName": display_name})
        self.joined = True
        return True

    async def leave(self) -> None:
        await self._send({"action": "leaveRoom"})
        self.joined = False
        self.room_id = None
        self.display_name = None
        self.code = DEFAULT_CODE
        self.language = DEFAULT_LANGUAGE
        self.members = []
        self.messages = []
        self.typing.clear()

    async def change_code(self, code: str) -> None:
        # The broker derives the typing signal from every code change
        self.code = code
        await self._send({"action": "codeChange", "roomId": self.room_id, "code": code})

    async def change_language(self, language: str) -> None:
        self.language = language
        await self._send({"action": "languageChange", "roomId": self.room_id, "language": language})

    async def send_chat(self, text: str) -> Optional[dict]:
        if not text.strip():
            return None
        message = {"sender": self.display_name or "Anon", "text": text, "time": now_ms()}
        await self._send({"action": "chatMessage", "roomId": self.room_id, **message})
        self.messages.append(message)
        return message

    async def run_code(self) -> None:
        await self._send(
            {
                "action": "compileCode",
                "roomId": self.room_id,
                "code": self.code,
                "language": self.language,
                "version": self.version,
            }
        )

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle(self, frame: dict) -> None:
        kind = frame.get("type")

        if kind == "roomJoined":
            self.code = frame["code"]
            self.language = frame["language"]
            self.members = list(frame["members"])
            self.messages = list(frame.get("messages", []))
        elif kind == "userJoined":
            self.members = list(frame["members"])
        elif kind == "codeUpdate":
            self.code = frame["code"]
        elif kind == "languageUpdate":
            self.language = frame["language"]
        elif kind == "userTyping":
            self.typing.show(frame.get("displayName") or "")
        elif kind == "chatMessage":
            self.messages.append({k: frame[k] for k in ("sender", "text", "time")})
        elif kind == "codeResponse":
            self.output = frame.get("output", "")
        elif kind == "ping":
            await self._send({"action": "pong"})
        elif kind == "error":
            logger.warning("Broker error: %s", frame.get("message"))
