import pytest
from fastapi.testclient import TestClient

from backend.app import auth, config
from backend.app.changefeed import ChangeFeed
from backend.app.deps import get_feed, get_local_store
from backend.app.main import app
from backend.app.storage import LocalStore


@pytest.fixture(autouse=True)
def no_env_cloud(monkeypatch):
    monkeypatch.setattr(config, "CLOUD_URL", "")
    monkeypatch.setattr(config, "CLOUD_KEY", "")
    monkeypatch.setattr(config, "OPENAI_KEY", None)


@pytest.fixture
def store(tmp_path):
    s = LocalStore(tmp_path / "data")
    auth.ensure_seed_users(s)
    return s


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def client(store, feed):
    # no context manager: the lifespan hook would touch the real data dir
    app.dependency_overrides[get_local_store] = lambda: store
    app.dependency_overrides[get_feed] = lambda: feed
    yield TestClient(app)
    app.dependency_overrides.clear()


def login(client, user_id, password):
    r = client.post("/api/v1/auth/login", json={"id": user_id, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['token']}"}


@pytest.fixture
def admin_headers(client):
    return login(client, "admin", "admin")


@pytest.fixture
def buyer_headers(client):
    return login(client, "buyer", "123")


@pytest.fixture
def vendor_headers(client):
    return login(client, "vendor1", "123")


@pytest.fixture
def second_vendor_headers(client, admin_headers):
    body = {"id": "vendor2", "name": "Zhao", "company": "Budget Desks Ltd", "role": "vendor", "password": "pw"}
    r = client.post("/api/v1/users", json=body, headers=admin_headers)
    assert r.status_code == 201, r.text
    return login(client, "vendor2", "pw")


@pytest.fixture
def rfq(client, buyer_headers):
    body = {
        "title": "Office chairs",
        "description": "Ergonomic chairs for the new floor",
        "deadline": "2026-12-31",
        "items": [
            {"id": "chair", "name": "Chair", "quantity": 10, "unit": "pcs"},
            {"id": "mat", "name": "Floor mat", "quantity": 2, "unit": "pcs"},
        ],
    }
    r = client.post("/api/v1/rfqs", json=body, headers=buyer_headers)
    assert r.status_code == 201, r.text
    return r.json()
