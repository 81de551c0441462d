import pytest
from fastapi.testclient import TestClient

from disaster_sync.server.main import create_app
from disaster_sync.shared.config import settings


@pytest.fixture(autouse=True)
def slow_initial_fetch(monkeypatch):
    """Keep the post-create feed fetch out of the way unless a test wants it."""
    monkeypatch.setattr(settings, "INITIAL_FETCH_DELAY_S", 60.0)


@pytest.fixture
def app():
    return create_app()


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_disaster(client):
    def _make(title="Flood in Lower Manhattan", user="netrunnerX", **fields):
        resp = client.post("/disasters", json={"title": title, **fields}, headers={"x-user-id": user})
        assert resp.status_code == 201
        return resp.json()
    return _make
