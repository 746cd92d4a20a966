"""Tests for transcript reconciliation and the client chat session."""

import asyncio
import json

import httpx
import pytest
from pydantic import ValidationError

from chatstream.client.api import ChatAPIClient
from chatstream.client.reconciliation import Transcript, TurnStatus
from chatstream.client.session import ChatSession
from chatstream.core.exceptions import TurnInProgressError
from chatstream.wire import StreamEvent, encode_event


def message(id, role, content, second, conversation_id="c1"):
    return {
        "id": id,
        "conversation_id": conversation_id,
        "role": role,
        "content": content,
        "metadata": None,
        "created_at": f"2026-01-01T10:00:{second:02d}+00:00",
    }


def test_submit_shows_optimistic_message():
    transcript = Transcript("c1")
    turn_id = transcript.submit("Hello")

    entries = transcript.entries(streaming_text="Hi th")
    assert [(e.key, e.role, e.content, e.status) for e in entries] == [
        (turn_id, "user", "Hello", TurnStatus.OPTIMISTIC),
        (f"{turn_id}-reply", "assistant", "Hi th", TurnStatus.OPTIMISTIC),
    ]


def test_confirm_replaces_optimistic_message():
    transcript = Transcript("c1")
    turn_id = transcript.submit("Hello")

    assert transcript.confirm(turn_id, [message("u1", "user", "Hello", 1), message("a1", "assistant", "Hi!", 2)])

    entries = transcript.entries()
    assert [e.key for e in entries] == ["u1", "a1"]
    assert all(e.status == TurnStatus.CONFIRMED for e in entries)
    assert transcript.pending is None
    assert transcript.turn(turn_id).message_ids == ("u1", "a1")


def test_confirm_twice_is_a_no_op():
    transcript = Transcript("c1")
    turn_id = transcript.submit("Hello")
    saved = [message("u1", "user", "Hello", 1), message("a1", "assistant", "Hi!", 2)]

    assert transcript.confirm(turn_id, saved)
    assert not transcript.confirm(turn_id, saved + [message("x1", "assistant", "dup", 3)])

    assert [e.key for e in transcript.entries()] == ["u1", "a1"]


def test_confirm_resorts_by_timestamp():
    transcript = Transcript("c1")
    transcript.load([message("u0", "user", "earlier", 0)])
    turn_id = transcript.submit("Hello")

    # assistant listed first, with a user message at the same instant
    transcript.confirm(turn_id, [message("a1", "assistant", "Hi!", 5), message("u1", "user", "Hello", 5)])

    assert [e.key for e in transcript.entries()] == ["u0", "u1", "a1"]


def test_confirm_ignores_messages_already_loaded():
    transcript = Transcript("c1")
    turn_id = transcript.submit("Hello")
    transcript.load([message("u1", "user", "Hello", 1)])

    transcript.confirm(turn_id, [message("u1", "user", "Hello", 1), message("a1", "assistant", "Hi!", 2)])

    assert [e.key for e in transcript.entries()] == ["u1", "a1"]


def test_fail_removes_optimistic_message():
    transcript = Transcript("c1")
    transcript.load([message("u0", "user", "earlier", 0)])
    turn_id = transcript.submit("Hello")

    assert transcript.fail(turn_id, "AI is down")
    assert not transcript.fail(turn_id)
    assert not transcript.confirm(turn_id, [message("u1", "user", "Hello", 1)])

    assert [e.key for e in transcript.entries()] == ["u0"]
    assert transcript.turn(turn_id).status == TurnStatus.FAILED
    assert transcript.turn(turn_id).error == "AI is down"


def test_one_pending_turn_at_a_time():
    transcript = Transcript("c1")
    transcript.submit("first")
    with pytest.raises(TurnInProgressError):
        transcript.submit("second")


def test_bind_to_new_conversation():
    transcript = Transcript(None)
    turn_id = transcript.submit("Hello")

    transcript.bind("c2")
    transcript.confirm(
        turn_id,
        [message("u1", "user", "Hello", 1, "c2"), message("a1", "assistant", "Hi!", 2, "c2")],
    )

    assert transcript.conversation_id == "c2"
    assert [e.key for e in transcript.entries()] == ["u1", "a1"]


class FakeServer:
    """Enough of the HTTP API for a ChatSession."""

    def __init__(self, include_messages=True, fail=False):
        self.include_messages = include_messages
        self.fail = fail
        self.requests = []
        self.saved = {}

    def __call__(self, request):
        if request.url.path == "/api/stream-turn":
            body = json.loads(request.content)
            self.requests.append(body)
            return httpx.Response(200, content=self._turn(body))
        conversation_id = request.url.path.split("/")[3]
        return httpx.Response(200, json=self.saved.get(conversation_id, []))

    def _turn(self, body):
        conversation_id = body["conversation_id"] or "new-conv"
        n = len(self.saved.get(conversation_id, []))
        user = message(f"u{n}", "user", body["content"], n, conversation_id)
        events = [StreamEvent.start(), StreamEvent.user_message_saved(conversation_id, user)]
        if self.fail:
            events.append(StreamEvent.error("provider down"))
            self.saved.setdefault(conversation_id, []).append(user)
        else:
            ai = message(f"a{n}", "assistant", f"echo {body['content']}", n + 1, conversation_id)
            events += [StreamEvent.chunk(ai["content"]), StreamEvent.complete(ai["content"])]
            self.saved.setdefault(conversation_id, []).extend([user, ai])
            if self.include_messages:
                events.append(StreamEvent.done(conversation_id, user, ai))
            else:
                events.append(StreamEvent.done(conversation_id))
        return "".join(encode_event(e) for e in events).encode()


def session_for(server):
    api = ChatAPIClient(client=httpx.AsyncClient(transport=httpx.MockTransport(server), base_url="http://test"))
    return ChatSession(api)


def test_session_binds_new_conversation():
    server = FakeServer()

    async def go():
        session = session_for(server)
        first = await session.send("Hello")
        second = await session.send("Again")
        return session, first, second

    session, first, second = asyncio.run(go())

    assert first.ok and second.ok
    assert server.requests[0]["conversation_id"] is None
    assert server.requests[1]["conversation_id"] == "new-conv"
    assert session.conversation_id == "new-conv"
    assert [e.content for e in session.entries()] == ["Hello", "echo Hello", "Again", "echo Again"]
    assert not session.busy


def test_session_fetches_messages_when_done_has_none():
    server = FakeServer(include_messages=False)

    async def go():
        session = session_for(server)
        await session.send("Hello")
        return session

    session = asyncio.run(go())
    assert [e.key for e in session.entries()] == ["u0", "a0"]


def test_session_failure_leaves_no_residue():
    server = FakeServer(fail=True)

    async def go():
        session = session_for(server)
        outcome = await session.send("Hello")
        return session, outcome

    session, outcome = asyncio.run(go())

    assert not outcome.ok
    assert outcome.error == "provider down"
    assert session.entries() == []
    # the server did save the user message, so the next turn targets that conversation
    assert session.conversation_id == "new-conv"
    assert not session.busy


def test_session_open_loads_history():
    server = FakeServer()
    server.saved["c7"] = [message("u0", "user", "old", 0, "c7"), message("a0", "assistant", "reply", 1, "c7")]

    async def go():
        session = session_for(server)
        await session.open("c7")
        return session

    session = asyncio.run(go())
    assert session.conversation_id == "c7"
    assert [e.content for e in session.entries()] == ["old", "reply"]


def test_rejected_message_leaves_session_usable():
    server = FakeServer()

    async def go():
        session = session_for(server)
        with pytest.raises(ValidationError):
            await session.send("   ")
        assert not session.busy
        assert session.entries() == []
        outcome = await session.send("Hello")
        return session, outcome

    session, outcome = asyncio.run(go())

    assert outcome.ok
    assert [r["content"] for r in server.requests] == ["Hello"]
    assert [e.content for e in session.entries()] == ["Hello", "echo Hello"]


def test_unexpected_client_error_discards_optimistic_message():
    def handler(request):
        raise RuntimeError("transport blew up")

    async def go():
        api = ChatAPIClient(client=httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test"))
        session = ChatSession(api, conversation_id="c1")
        with pytest.raises(RuntimeError):
            await session.send("Hello")
        return session

    session = asyncio.run(go())

    assert session.transcript.pending is None
    assert session.entries() == []
    assert not session.busy
