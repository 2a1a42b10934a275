"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from chatgate.chat.router import presence, rooms
from chatgate.config import reset_config
from chatgate.main import app
from chatgate.messages.store import MessageStore

PASSCODE = "open-sesame"


class FakeWebSocket:
    """Records frames instead of sending them. Set ``fail`` to simulate a dead peer."""

    def __init__(self, fail: bool = False) -> None:
        self.sent = []
        self.accepted = False
        self.fail = fail

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(data)

    def events(self):
        return [frame["event"] for frame in self.sent]

    def last(self, event):
        matches = [frame["data"] for frame in self.sent if frame["event"] == event]
        return matches[-1] if matches else None


@pytest.fixture(autouse=True)
def chat_environment(monkeypatch):
    """Fresh config, in-memory store and empty registries for every test."""
    monkeypatch.setenv("SECRET_CODE", PASSCODE)
    monkeypatch.setenv("STORE_URL", ":memory:")
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    reset_config()
    MessageStore.reset_instance()
    MessageStore.get_instance(db_path=":memory:")
    yield
    rooms.clear()
    presence.clear()
    MessageStore.reset_instance()
    reset_config()


@pytest.fixture
def make_ws():
    """Factory for FakeWebSocket instances."""
    return FakeWebSocket


@pytest.fixture
def store():
    return MessageStore.get_instance()


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app."""
    return TestClient(app)
