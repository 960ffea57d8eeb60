import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from tinydb.storages import MemoryStorage

from deskboard import api
from deskboard.cache_store import CacheStore
from deskboard.config_loader import AppConfig, CacheConfig
from deskboard.credentials import StaticCredentials
from deskboard.gateway import TemplateGateway
from deskboard.store import TemplateStore

from conftest import BASE_URL, FakeBackend, external_template, external_widget


class _Credentials(StaticCredentials):
    def set_token(self, token):
        self.token = token

    def clear(self):
        self.token = None


class _NoSymbols:
    async def is_reserved(self, name):
        return name.upper() == "EURUSD"


@pytest.fixture
def backend():
    backend = FakeBackend()
    backend.templates = [
        external_template(1, "Morning", "g22", display_order=1, filledAreas="g22_1"),
        external_template(2, "Evening", "g31", display_order=2),
    ]
    backend.widgets = {1: [external_widget(11, "Price Chart")], 2: []}
    return backend


@pytest.fixture
def client(backend):
    credentials = _Credentials("test-token")
    cache = CacheStore(storage=MemoryStorage)
    gateway = TemplateGateway(
        BASE_URL, credentials, cache, client=httpx.AsyncClient(transport=httpx.MockTransport(backend.handler))
    )
    store = TemplateStore(gateway, credentials, cache, symbols=_NoSymbols())
    api.init_api(store=store, credentials=credentials)

    app = FastAPI()
    app.include_router(api.router)
    with TestClient(app) as client:
        yield client
    cache.close()


def test_list_and_state(client):
    templates = client.get("/api/templates").json()
    assert [t["name"] for t in templates] == ["Morning", "Evening"]

    state = client.get("/api/state").json()
    assert state["active_template_id"] == "1"
    assert state["statuses"] == {"1": "saved", "2": "saved"}
    assert state["is_loading"] is False
    assert state["error"] is None


def test_create_rename_and_delete(client, backend):
    client.get("/api/templates")

    created = client.post("/api/templates", json={"name": "Scalping", "layout": "1-grid", "widgets": ["supertrend"]})
    assert created.status_code == 200
    template_id = created.json()["id"]
    assert template_id == str(backend.next_id)

    renamed = client.put(f"/api/templates/{template_id}/name", json={"name": "Scalps"})
    assert renamed.json()["name"] == "Scalps"

    deleted = client.delete(f"/api/templates/{template_id}").json()
    assert deleted["deleted"] is True
    assert [t["id"] for t in client.get("/api/templates").json()] == ["1", "2"]


def test_name_errors_map_to_conflict(client):
    client.get("/api/templates")

    duplicate = client.post("/api/templates", json={"name": "MORNING", "layout": "1-grid"})
    assert duplicate.status_code == 409
    assert "already exists" in duplicate.json()["detail"]

    reserved = client.post("/api/templates", json={"name": "eurusd", "layout": "1-grid"})
    assert reserved.status_code == 409

    short = client.put("/api/templates/1/name", json={"name": "ab"})
    assert short.status_code == 409
    assert client.get("/api/state").json()["error"] == "Template name must be at least 3 characters"

    assert client.delete("/api/error").status_code == 200
    assert client.get("/api/state").json()["error"] is None


def test_not_found_and_upstream_errors(client, backend):
    client.get("/api/templates")

    assert client.post("/api/templates/999/hide").status_code == 404
    assert client.delete("/api/templates/1/widgets/at/area-9").status_code == 404

    backend.overrides["renameTemplateWeb"] = lambda r: httpx.Response(503, text="maintenance")
    assert client.put("/api/templates/1/name", json={"name": "Morning Desk"}).status_code == 502


def test_widget_routes(client, backend):
    client.get("/api/templates")

    added = client.post("/api/templates/2/widgets", json={"kind": "price-chart", "position": "g31_1"})
    assert added.status_code == 200
    widget_id = added.json()["settings"]["widget_id"]

    moved = client.patch(f"/api/templates/2/widgets/{widget_id}", json={"top_pos": 120})
    assert moved.json()["settings"]["coordinates"]["top"] == 120

    assert client.delete("/api/templates/1/widgets/at/g22_1").json() == {"removed": "1-11"}
    assert client.delete(f"/api/templates/2/widgets/{widget_id}").status_code == 200
    assert client.get("/api/templates").json()[1]["widgets"] == []


def test_open_details_template(client, backend):
    client.get("/api/templates")

    opened = client.post("/api/templates/details", json={"symbol": "GBPJPY"})
    assert opened.status_code == 200
    assert opened.json()["id"] == str(backend.next_id)
    assert client.get("/api/state").json()["active_template_id"] == opened.json()["id"]

    again = client.post("/api/templates/details", json={"symbol": "gbpjpy"}).json()
    assert again["id"] == opened.json()["id"]
    assert len(backend.calls("createDetailsTemplateWeb")) == 1


def test_reorder_favorite_and_active(client, backend):
    client.get("/api/templates")

    ordered = client.put("/api/templates/order", json={"template_ids": ["2", "1"]}).json()
    assert [t["id"] for t in ordered] == ["2", "1"]

    favorite = client.patch("/api/templates/1", json={"is_favorite": True}).json()
    assert favorite["is_favorite"] is True

    assert client.post("/api/templates/2/active").json() == {"active_template_id": "2"}
    assert client.post("/api/templates/404/active").status_code == 404


def test_logout_falls_back_to_local_template(client, backend):
    client.get("/api/templates")

    assert client.delete("/api/auth/token").json() == {"authenticated": False}
    state = client.get("/api/state").json()
    assert [t["name"] for t in state["templates"]] == ["Untitled Layout"]
    assert state["statuses"] == {state["active_template_id"]: "fresh"}

    logged_in = client.post("/api/auth/token", json={"token": "new-token"}).json()
    assert logged_in == {"authenticated": True, "templates": 2}


def test_create_app_starts_without_credentials(tmp_path, monkeypatch):
    from main import create_app

    monkeypatch.delenv("DESKBOARD_TOKEN", raising=False)
    config = AppConfig(cache=CacheConfig(in_memory=True), credentials_path=str(tmp_path / "credentials.json"))

    with TestClient(create_app(config)) as client:
        state = client.get("/api/state").json()

    assert [t["name"] for t in state["templates"]] == ["Untitled Layout"]
    assert state["active_template_id"].startswith("fresh-")
