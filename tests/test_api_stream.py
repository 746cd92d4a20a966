"""Tests for the streaming turn endpoint."""

from sqlmodel import Session, select

from chatstream.models.conversation import ChatMessage
from chatstream.models.fact import ExtractedFact
from chatstream.services.background.base import Fact
from chatstream.wire import EventDecoder, EventType
from tests.conftest import test_engine, wait_for


def post_turn(client, **body):
    response = client.post("/api/stream-turn", json=body)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    decoder = EventDecoder()
    return decoder.feed(response.content) + decoder.flush()


def test_stream_turn_event_order(client):
    events = post_turn(client, content="Hello")
    types = [e.type for e in events]

    assert types[0] == EventType.START
    assert types.count(EventType.DONE) == 1
    assert types[-1] == EventType.DONE
    assert types.index(EventType.COMPLETE) < types.index(EventType.DONE)
    assert "".join(e.payload["content"] for e in events if e.type == EventType.CHUNK) == "Hello from fake"


def test_stream_turn_persists_messages(client):
    events = post_turn(client, content="save me")
    conv_id = events[-1].payload["conversation_id"]

    with Session(test_engine) as session:
        messages = session.exec(
            select(ChatMessage)
            .where(ChatMessage.conversation_id == conv_id)
            .order_by(ChatMessage.created_at)
        ).all()

    assert [(m.role, m.content) for m in messages] == [
        ("user", "save me"),
        ("assistant", "Hello from fake"),
    ]


def test_stream_turn_reuses_conversation(client):
    first = post_turn(client, content="first")
    conv_id = first[-1].payload["conversation_id"]

    second = post_turn(client, content="second", conversation_id=conv_id)
    assert second[-1].payload["conversation_id"] == conv_id

    response = client.get(f"/api/conversations/{conv_id}/messages")
    assert [m["content"] for m in response.json()] == ["first", "Hello from fake", "second", "Hello from fake"]


def test_stream_turn_with_stale_conversation_id(client):
    events = post_turn(client, content="hi", conversation_id="gone")
    assert events[-1].type == EventType.DONE
    assert events[-1].payload["conversation_id"] != "gone"


def test_provider_error_is_in_band(client, fake_provider):
    fake_provider.fail_after = 1
    events = post_turn(client, content="break please")

    assert events[-1].type == EventType.ERROR
    assert [e.type for e in events].count(EventType.ERROR) == 1


def test_malformed_body_is_rejected(client):
    response = client.post("/api/stream-turn", json={"conversation_id": "abc"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid request data"

    response = client.post("/api/stream-turn", json={"content": 42})
    assert response.status_code == 400

    response = client.post(
        "/api/stream-turn", content="not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400


def test_provider_config_in_body(client, fake_provider):
    events = post_turn(client, content="hi", provider_config={"provider": "google", "model": "fake-pro"})
    selected = next(e for e in events if e.type == EventType.AI_MODEL_SELECTED)
    assert selected.payload["model"] == "fake-pro"
    assert fake_provider.calls[-1][1] == "fake-pro"


def test_background_facts_saved_after_turn(client, extractor):
    extractor.facts = [Fact(kind="memory", summary="Prefers morning workouts", category="preference")]
    events = post_turn(client, content="I like working out in the morning")
    conv_id = events[-1].payload["conversation_id"]

    assert wait_for(lambda: client.app.state.processor.stats.processed == 1)
    assert extractor.jobs[0].user_text == "I like working out in the morning"
    assert extractor.jobs[0].assistant_text == "Hello from fake"

    with Session(test_engine) as session:
        facts = session.exec(select(ExtractedFact).where(ExtractedFact.conversation_id == conv_id)).all()
    assert [f.summary for f in facts] == ["Prefers morning workouts"]


def test_background_failure_is_invisible(client, extractor):
    extractor.error = RuntimeError("extractor crashed")
    events = post_turn(client, content="hello")

    assert events[-1].type == EventType.DONE
    assert wait_for(lambda: client.app.state.processor.stats.failed == 1)
    health = client.get("/api/health").json()
    assert health["background"]["failed"] == 1


def test_list_models(client):
    response = client.get("/api/models")
    assert response.status_code == 200
    assert response.json() == {
        "google": [{"id": "fake-flash", "name": "Fake Flash", "description": ""}]
    }


def test_camel_case_body_is_accepted(client, fake_provider):
    first = post_turn(client, content="first")
    conv_id = first[-1].payload["conversation_id"]

    events = post_turn(
        client,
        content="Again",
        conversationId=conv_id,
        providerConfig={"provider": "google", "model": "fake-pro"},
        automaticModelSelection=False,
    )

    assert events[-1].payload["conversation_id"] == conv_id
    assert fake_provider.calls[-1][1] == "fake-pro"


def test_camel_case_attachments_are_accepted(client):
    events = post_turn(
        client,
        attachments=[{"id": "f1", "fileName": "plate.jpg", "displayName": "Dinner", "fileType": "image/jpeg"}],
    )
    saved = next(e for e in events if e.type == EventType.USER_MESSAGE_SAVED)
    assert saved.payload["message"]["metadata"]["attachments"][0]["display_name"] == "Dinner"
