from __future__ import annotations

import asyncio

from coderoom.client.session import RoomClient, TypingIndicator


class Recorder:
    def __init__(self) -> None:
        self.frames = []

    async def __call__(self, frame: dict) -> None:
        self.frames.append(frame)


def test_join_with_empty_fields_sends_nothing() -> None:
    async def scenario():
        sent = Recorder()
        client = RoomClient(sent)
        results = [await client.join("", "Alice"), await client.join("abc", "")]
        return results, sent.frames, client.joined

    results, frames, joined = asyncio.run(scenario())
    assert results == [False, False]
    assert frames == []
    assert joined is False


def test_code_change_is_rendered_locally_then_sent_once() -> None:
    async def scenario():
        sent = Recorder()
        client = RoomClient(sent)
        await client.join("abc", "Alice")
        await client.change_code("let x=1;")
        return client.code, sent.frames

    code, frames = asyncio.run(scenario())
    assert code == "let x=1;"
    assert frames == [
        {"action": "join", "roomId": "abc", "displayName": "Alice"},
        {"action": "codeChange", "roomId": "abc", "code": "let x=1;"},
    ]


def test_chat_is_appended_optimistically() -> None:
    async def scenario():
        sent = Recorder()
        client = RoomClient(sent)
        await client.join("abc", "Alice")
        blank = await client.send_chat("   ")
        message = await client.send_chat("hello")
        return blank, message, client.messages, sent.frames[-1]

    blank, message, messages, frame = asyncio.run(scenario())
    assert blank is None
    assert messages == [message]
    assert frame["action"] == "chatMessage"
    assert frame["sender"] == "Alice"
    assert frame["text"] == "hello"


def test_inbound_events_update_local_view() -> None:
    async def scenario():
        sent = Recorder()
        client = RoomClient(sent)
        await client.join("abc", "Bob")
        await client.handle(
            {
                "type": "roomJoined",
                "roomId": "abc",
                "code": "x",
                "language": "python",
                "members": ["Alice", "Bob"],
                "messages": [{"sender": "Alice", "text": "hey", "time": 1}],
            }
        )
        await client.handle({"type": "codeUpdate", "code": "y"})
        await client.handle({"type": "languageUpdate", "language": "java"})
        await client.handle({"type": "userJoined", "roomId": "abc", "members": ["Bob"]})
        await client.handle({"type": "chatMessage", "sender": "Alice", "text": "bye", "time": 2})
        await client.handle({"type": "codeResponse", "output": "done\n"})
        await client.handle({"type": "ping"})
        return client, sent.frames[-1]

    client, last_frame = asyncio.run(scenario())
    assert client.code == "y"
    assert client.language == "java"
    assert client.members == ["Bob"]
    assert [m["text"] for m in client.messages] == ["hey", "bye"]
    assert client.output == "done\n"
    assert last_frame == {"action": "pong"}


def test_leave_resets_to_defaults() -> None:
    async def scenario():
        sent = Recorder()
        client = RoomClient(sent)
        await client.join("abc", "Alice")
        await client.change_code("z")
        await client.change_language("python")
        await client.leave()
        return client, sent.frames[-1]

    client, frame = asyncio.run(scenario())
    assert frame == {"action": "leaveRoom"}
    assert client.code == "// start code here"
    assert client.language == "javascript"
    assert client.room_id is None
    assert client.joined is False


def test_run_code_sends_current_state() -> None:
    async def scenario():
        sent = Recorder()
        client = RoomClient(sent)
        await client.join("abc", "Alice")
        await client.change_language("python")
        await client.change_code("print(1)")
        await client.run_code()
        return sent.frames[-1]

    assert asyncio.run(scenario()) == {
        "action": "compileCode",
        "roomId": "abc",
        "code": "print(1)",
        "language": "python",
        "version": "*",
    }


def test_typing_indicator_clears_after_window() -> None:
    async def scenario():
        indicator = TypingIndicator(window=0.1)
        indicator.show("Alice")
        shown = indicator.current
        await asyncio.sleep(0.25)
        return shown, indicator.active

    assert asyncio.run(scenario()) == ("Alice", False)


def test_typing_indicator_refresh_restarts_window() -> None:
    async def scenario():
        indicator = TypingIndicator(window=0.3)
        indicator.show("Alice")
        await asyncio.sleep(0.2)
        indicator.show("Alice")
        await asyncio.sleep(0.2)
        # 0.4s after the first signal, but only 0.2s after the refresh
        still_active = indicator.active
        await asyncio.sleep(0.3)
        return still_active, indicator.active

    assert asyncio.run(scenario()) == (True, False)


def test_typing_indicator_shows_latest_typist() -> None:
    async def scenario():
        indicator = TypingIndicator(window=5)
        indicator.show("Alice")
        indicator.show("Bob")
        current = indicator.current
        indicator.clear()
        return current, indicator.active

    assert asyncio.run(scenario()) == ("Bob", False)
