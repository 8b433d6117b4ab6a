"""Shared test fixtures and configuration for backend tests."""
import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from retrochat.config import AppSettings, reset_config
from retrochat.main import build_controller, create_app


class FakeWebSocket:
    """Stand-in transport handle that records what the server sends."""

    def __init__(self, name: str = "ws", fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent = []

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("connection reset by peer")
        self.sent.append(json.loads(text))

    def disconnect(self) -> None:
        self.client_state = WebSocketState.DISCONNECTED

    def take(self):
        """Return and clear everything sent so far."""
        sent, self.sent = self.sent, []
        return sent

    def __repr__(self) -> str:
        return f"FakeWebSocket({self.name!r})"


@pytest.fixture(autouse=True)
def _fresh_config():
    """Never let a cached or on-disk config leak between tests."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def settings():
    """Default settings."""
    return AppSettings()


@pytest.fixture
def controller(settings):
    """A ConnectionController wired with fresh in-memory stores."""
    return build_controller(settings)


@pytest.fixture
def make_ws():
    """Factory for FakeWebSocket handles."""
    return FakeWebSocket


@pytest.fixture
def client(settings):
    """TestClient with the lifespan running, so app.state.chat exists."""
    with TestClient(create_app(settings)) as test_client:
        yield test_client
