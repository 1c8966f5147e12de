# coderoom/models/models.py
from __future__ import annotations

import time
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def now_ms() -> int:
    return int(time.time() * 1000)


class CamelModel(BaseModel):
    """Wire models use camelCase on the socket and snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# ROOM STATE
# ============================================================================

class Participant(CamelModel):
    id: str
    display_name: str
    joined_at: int = Field(default_factory=now_ms)


class ChatMessage(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    sender: str
    text: str
    time: int = Field(default_factory=now_ms)


class RoomSnapshot(CamelModel):
    room_id: str
    code: str
    language: str
    members: List[str]
    messages: List[ChatMessage] = []


class RoomSummary(CamelModel):
    room_id: str
    language: str
    member_count: int
    message_count: int
    created_at: int


# ============================================================================
# INBOUND EVENTS
# ============================================================================

class JoinRequest(CamelModel):
    room_id: str = Field(min_length=1)
    display_name: str = Field(
        min_length=1,
        validation_alias=AliasChoices("displayName", "userName", "display_name"),
    )


class CodeChangeRequest(CamelModel):
    room_id: Optional[str] = None
    code: str


class LanguageChangeRequest(CamelModel):
    room_id: Optional[str] = None
    language: str = Field(min_length=1)


class TypingRequest(CamelModel):
    room_id: Optional[str] = None
    display_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("displayName", "userName", "display_name"),
    )


class ChatMessageRequest(CamelModel):
    """
    Chat post from a client.

    Accepts the flat shape {roomId, sender, text, time} as well as the
    nested {roomId, msg: {user, text, time}} shape some clients send.
    """

    room_id: Optional[str] = None
    sender: Optional[str] = None
    text: str
    time: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_msg(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("msg"), dict):
            nested = data["msg"]
            data = {k: v for k, v in data.items() if k != "msg"}
            data.setdefault("sender", nested.get("sender", nested.get("user")))
            data.setdefault("text", nested.get("text"))
            data.setdefault("time", nested.get("time"))
        return data


class CompileRequest(CamelModel):
    room_id: Optional[str] = None
    code: str
    language: str = Field(min_length=1)
    version: str = "*"


class ExecutionResult(BaseModel):
    """Text produced by the execution engine, or the reason it failed."""

    output: str
    error: Optional[str] = None

    def payload(self) -> dict:
        if self.error is not None:
            return {"error": self.error, "output": self.output}
        return {"output": self.output}
