"""Shared test fixtures."""

import time
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from chatstream.core.exceptions import ProviderError
from chatstream.services.background.base import FactExtractor, FactSet
from chatstream.services.llm.base import BaseLLMProvider, Chunk, Completion, ModelInfo
from chatstream.services.llm.registry import ProviderRegistry
from chatstream.services.persistence import PersistenceGateway

# In-memory SQLite with StaticPool so all connections (including threads) share one DB
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


class FakeProvider(BaseLLMProvider):
    """Streams canned chunks; optionally fails before chunk number `fail_after`."""

    name = "google"
    default_model = "fake-flash"
    models = (ModelInfo("fake-flash", "Fake Flash"),)

    def __init__(self, chunks=("Hello", " from", " fake"), final=None, fail_after=None, name=None):
        if name:
            self.name = name
        self.chunks = list(chunks)
        self.final = final
        self.fail_after = fail_after
        self.calls = []
        self.on_chunk = None

    async def generate(self, messages, model=None):
        self.calls.append((list(messages), model))
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise ProviderError(self.name, "upstream exploded")
            if self.on_chunk:
                self.on_chunk(i)
            yield Chunk(chunk)
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise ProviderError(self.name, "upstream exploded")
        yield Completion(self.final)


class RecordingDispatcher:
    """Stands in for the background processor on the streaming path."""

    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def dispatch(self, assistant_text, user_text, conversation_id, has_attachments=False):
        self.calls.append((assistant_text, user_text, conversation_id, has_attachments))
        if self.error:
            raise self.error


class RecordingExtractor(FactExtractor):
    name = "recording"

    def __init__(self, facts=(), error=None):
        self.facts = list(facts)
        self.error = error
        self.jobs = []

    async def extract(self, job):
        self.jobs.append(job)
        if self.error:
            raise self.error
        return FactSet(list(self.facts))


def wait_for(predicate, timeout=2.0):
    """Poll until a background condition holds."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture(autouse=True)
def setup_test_db():
    """Create all tables before each test, drop after."""
    import chatstream.models  # noqa: F401 - register models
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def gateway():
    return PersistenceGateway(test_engine)


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def registry(fake_provider):
    registry = ProviderRegistry()
    registry.register(fake_provider)
    return registry


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def extractor():
    return RecordingExtractor()


@pytest.fixture
def client(registry, extractor):
    """FastAPI TestClient with all external deps patched."""
    with (
        patch("chatstream.core.database.engine", test_engine),
        patch("chatstream.main.create_default_registry", return_value=registry),
        patch("chatstream.main.create_default_extractors", return_value=[extractor]),
    ):
        from chatstream.main import app

        with TestClient(app) as c:
            yield c
