# coderoom/api/websocket.py

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from coderoom.core.state import AppState
from coderoom.models.models import (
    ChatMessageRequest,
    CodeChangeRequest,
    CompileRequest,
    JoinRequest,
    LanguageChangeRequest,
    TypingRequest,
)
from coderoom.services.connection_manager import Connection

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# EVENT DISPATCH
# ============================================================================

async def dispatch(state: AppState, connection: Connection, message: dict) -> None:
    """
    Apply one inbound frame.

    Raises:
        ValidationError: payload fields are missing or malformed
        ValueError: unknown action, or a join with an empty room/name
    """
    service = state.service
    action = message.get("action")

    if action == "join":
        request = JoinRequest.model_validate(message)
        await service.join(connection, request.room_id, request.display_name)

    elif action == "leaveRoom":
        await service.leave(connection)

    elif action == "codeChange":
        request = CodeChangeRequest.model_validate(message)
        await service.apply_code_change(connection, request.room_id, request.code)

    elif action == "languageChange":
        request = LanguageChangeRequest.model_validate(message)
        await service.apply_language_change(connection, request.room_id, request.language)

    elif action == "typing":
        request = TypingRequest.model_validate(message)
        await service.signal_typing(connection, request.room_id, request.display_name)

    elif action == "chatMessage":
        request = ChatMessageRequest.model_validate(message)
        await service.post_message(
            connection, request.room_id, request.text, sender=request.sender, time=request.time
        )

    elif action == "compileCode":
        request = CompileRequest.model_validate(message)
        await service.execute(
            connection, request.room_id, request.code, request.language, request.version
        )

    elif action == "pong":
        pass

    else:
        raise ValueError(f"Unknown action: {action}")


# ============================================================================
# WEBSOCKET ENDPOINT
# ============================================================================

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for a collaborative code room.

    Protocol:
    =========

    Client -> Server Actions:
    -------------------------
    Join Room:
        {"action": "join", "roomId": "abc", "displayName": "Alice"}
        Response: {"type": "roomJoined", "roomId": "abc", "code": "...",
                   "language": "javascript", "members": ["Alice"], "messages": []}
        Others:   {"type": "userJoined", "roomId": "abc", "members": [...]}

    Leave Room:
        {"action": "leaveRoom"}
        Response: {"type": "roomLeft", "roomId": "abc"}
        Others:   {"type": "userJoined", "roomId": "abc", "members": [...]}

    Code / Language Change:
        {"action": "codeChange", "roomId": "abc", "code": "let x=1;"}
        {"action": "languageChange", "roomId": "abc", "language": "python"}
        Others:   {"type": "codeUpdate", "code": "..."} + {"type": "userTyping", ...}
                  {"type": "languageUpdate", "language": "..."}

    Typing:
        {"action": "typing", "roomId": "abc", "displayName": "Alice"}
        Others:   {"type": "userTyping", "displayName": "Alice"}

    Chat:
        {"action": "chatMessage", "roomId": "abc", "sender": "Alice", "text": "hi", "time": 1700000000000}
        Others:   {"type": "chatMessage", "sender": "Alice", "text": "hi", "time": 1700000000000}

    Run Code:
        {"action": "compileCode", "roomId": "abc", "code": "...", "language": "python", "version": "*"}
        Everyone: {"type": "codeResponse", "output": "..."}
                  or {"type": "codeResponse", "error": "...", "output": "..."}

    Heartbeat:
        Server sends {"type": "ping"}; any frame (e.g. {"action": "pong"})
        keeps the connection alive.

    Error:
        {"type": "error", "message": "..."}

    Lifecycle:
    ==========
    1. Client connects, gets a broker-assigned connection id
    2. Client sends "join"; it sits in at most one room at a time
    3. On disconnect (or missed heartbeats) it leaves its room implicitly
    """
    state: AppState = websocket.app.state.coderoom
    connection = await state.connection_manager.connect(websocket)

    try:
        while True:
            data = await websocket.receive_text()
            connection.touch()

            try:
                message = json.loads(data)
                if not isinstance(message, dict):
                    raise ValueError("Frame must be a JSON object")
                logger.debug("Websocket input from %s: %s", connection.id, message.get("action"))
                await dispatch(state, connection, message)

            except json.JSONDecodeError:
                connection.enqueue({"type": "error", "message": "Invalid JSON"})
            except ValidationError as e:
                connection.enqueue(
                    {"type": "error", "message": f"Invalid payload: {e.error_count()} error(s)"}
                )
            except ValueError as e:
                connection.enqueue({"type": "error", "message": str(e)})

    except WebSocketDisconnect:
        await state.service.disconnect(connection)
    except Exception as e:
        logger.error("WebSocket error: %s", e)
        await state.service.disconnect(connection)
