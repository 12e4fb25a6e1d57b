"""Shared test fixtures and configuration for backend tests."""
from typing import Any, List

import pytest
from fastapi.testclient import TestClient

from app.auth.schemas import RegisterRequest
from app.chat.schemas import RoomCreate, Topic
from app.config import AppSettings
from app.main import create_app
from app.services import build_services
from app.store.database import Database


class FakeWebSocket:
    """Records frames sent by the realtime core instead of writing to a socket."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: List[dict] = []
        self.closed_with = None
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("connection lost")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    def types(self) -> List[str]:
        return [frame["type"] for frame in self.sent]

    def of_type(self, event_type: str) -> List[dict]:
        return [frame for frame in self.sent if frame["type"] == event_type]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def settings():
    return AppSettings(secrets={"jwt": {"secret_key": "test-secret"}})


@pytest.fixture
def db():
    """Throwaway in-memory store."""
    database = Database(":memory:")
    yield database
    database.close()


@pytest.fixture
def services(settings, db):
    return build_services(settings, db)


@pytest.fixture
def register_user(services):
    """Create an account directly through the auth service."""

    def _register(username: str, password: str = "secret123", **fields):
        request = RegisterRequest(
            username=username,
            password=password,
            age=fields.pop("age", 25),
            gender=fields.pop("gender", "prefer-not-to-say"),
            **fields,
        )
        token, user = services.auth.register(request)
        return token, user

    return _register


@pytest.fixture
def create_room(services):
    """Create a room owned by ``creator_id``."""

    def _create(creator_id: str, name: str = "Night Owls", **fields):
        request = RoomCreate(name=name, topic=fields.pop("topic", Topic.GENERAL), **fields)
        return services.rooms.create(request, creator_id)

    return _create


@pytest.fixture
def app(settings, db):
    return create_app(settings, db)


@pytest.fixture
def api_client(app):
    """TestClient for a fresh app with an in-memory store.

    Entered as a context manager so every WebSocket session shares one
    event loop with the HTTP requests.
    """
    with TestClient(app) as client:
        yield client


def signup(client: TestClient, username: str, password: str = "secret123", **fields) -> dict:
    """Register over REST and return the response body."""
    payload = {
        "username": username,
        "password": password,
        "age": 25,
        "gender": "prefer-not-to-say",
    }
    payload.update(fields)
    response = client.post("/api/auth/register", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
