"""Shared fakes and fixtures. Nothing here touches the network."""

import pytest

from ait.backend import EventKind, StreamEvent
from ait.config import Config
from ait.session import SessionEngine
from ait.storage import ChatStore

START = StreamEvent(EventKind.START)
END = StreamEvent(EventKind.END)


def chunk(text: str) -> StreamEvent:
    return StreamEvent(EventKind.CHUNK, text)


class FakeBackend:
    """Scripted stand-in for OpenAIBackend."""

    cumulative = False

    def __init__(self, events=None, error=None, answer="", models=None, on_open=None):
        self.events = (
            events if events is not None else [START, chunk("Hello"), chunk(" there"), END]
        )
        self.error = error
        self.answer = answer
        self.models = models or []
        self.on_open = on_open
        self.requests: list[dict] = []

    def open_stream(self, request):
        self.requests.append(request)
        if self.on_open:
            self.on_open(request)
        if self.error:
            raise self.error
        return iter(self.events)

    def complete(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return self.answer

    def list_models(self):
        if self.error:
            raise self.error
        return self.models

    def reset_clients(self):
        pass


def finish_turn(engine: SessionEngine, timeout: float = 5):
    """Waits for the worker, then drains its actions like a UI tick."""
    worker = engine.worker
    if worker is not None:
        worker.join(timeout)
        assert not worker.is_alive()
    engine.tick()


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def store(tmp_path):
    chat_store = ChatStore(str(tmp_path / "chats.db"))
    chat_store.create_db()
    return chat_store


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def clipboard():
    return []


@pytest.fixture
def engine(config, store, backend, clipboard):
    return SessionEngine(config, store, backend, clipboard=clipboard.append)
