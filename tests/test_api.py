import datetime as dt

import pytest
from fastapi.testclient import TestClient

import app.main as main
from app.core.auth import get_current_owner
from app.db import StorageFault, get_session
from app.main import app
from app.services.models import GameData, GamePage
from app.services.rawg import RAWGError, RAWGNotFound


@pytest.fixture
def identity():
    return {"owner": None}


@pytest.fixture
def client(session, catalog, watchlist, identity, monkeypatch):
    def _session_override():
        yield session
        session.commit()

    monkeypatch.setattr(main, "catalog_repo", catalog)
    monkeypatch.setattr(main, "watchlist_repo", watchlist)
    app.dependency_overrides[get_session] = _session_override
    app.dependency_overrides[get_current_owner] = lambda: identity["owner"]
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fake_rawg(monkeypatch):
    class FakeClient:
        error: Exception | None = None

        def search_games(self, **kwargs):
            if self.error:
                raise self.error
            FakeClient.last_search = kwargs
            return GamePage(
                games=[
                    GameData(
                        external_id=100,
                        name="Nova",
                        slug="nova",
                        release_date=dt.date(2026, 3, 1),
                        platforms=["PlayStation 5"],
                    )
                ],
                count=1,
                page=kwargs.get("page", 1),
            )

        def get_game(self, id_or_slug):
            if self.error:
                raise self.error
            return GameData(external_id=100, name="Nova", slug="nova", description="Space.", developers=["Studio"])

    monkeypatch.setattr(main, "RAWGClient", FakeClient)
    return FakeClient


def test_anonymous_watchlist_reads_are_empty(client):
    assert client.get("/watchlist").json() == []
    assert client.get("/watchlist/count").json() == 0
    assert client.get("/watchlist/100/member").json() is False
    assert client.get("/watchlist/by-release-date").json() == {"upcoming": [], "released": []}


def test_anonymous_watchlist_writes_are_rejected(client):
    assert client.post("/watchlist", json={"external_id": 100, "game_name": "Nova"}).status_code == 401
    assert client.delete("/watchlist/100").status_code == 401
    response = client.post("/watchlist/100/notify")
    assert response.status_code == 401
    assert response.json()["detail"] == "Not authenticated"


def test_watchlist_round_trip(client, identity, session, catalog):
    catalog.upsert(session, {"external_id": 100, "name": "Nova", "slug": "nova", "release_date": "2026-03-01"})
    identity["owner"] = "u1"

    first = client.post("/watchlist", json={"external_id": 100, "game_name": "Nova"})
    assert first.status_code == 200
    again = client.post("/watchlist", json={"external_id": 100, "game_name": "Nova"})
    assert again.json()["id"] == first.json()["id"]

    assert client.get("/watchlist/100/member").json() is True
    assert client.get("/watchlist/count").json() == 1
    assert client.post("/watchlist/100/notify").json() is False
    assert client.delete("/watchlist/100").json() is True
    assert client.delete("/watchlist/100").json() is False


def test_watchlist_items_carry_countdowns(client, identity):
    identity["owner"] = "u1"
    client.post("/watchlist", json={"external_id": 1, "game_name": "TBA"})
    client.post("/watchlist", json={"external_id": 2, "game_name": "Classic", "release_date": "2001-01-01"})

    items = {item["external_id"]: item for item in client.get("/watchlist").json()}
    assert items[1]["countdown"]["is_unscheduled"] is True
    assert items[2]["countdown"]["is_released"] is True
    assert items[2]["countdown"]["ticking"] is False
    assert items[1]["notify"] is True

    partition = client.get("/watchlist/by-release-date").json()
    assert partition["upcoming"] == []
    assert {item["external_id"] for item in partition["released"]} == {1, 2}


def test_watchlist_add_validates_payload(client, identity):
    identity["owner"] = "u1"
    assert client.post("/watchlist", json={"external_id": 1, "game_name": ""}).status_code == 422


def test_catalog_queries(client, session, catalog):
    catalog.upsert(session, {"external_id": 1, "name": "Nova", "slug": "nova", "platforms": ["PlayStation 5"]})
    catalog.upsert(session, {"external_id": 2, "name": "Orbit", "slug": "orbit", "platforms": ["PC"]})

    listed = client.get("/catalog").json()
    assert [game["slug"] for game in listed] == ["orbit", "nova"]
    filtered = client.get("/catalog", params={"platform": "playstation"}).json()
    assert [game["slug"] for game in filtered] == ["nova"]
    assert client.get("/catalog/slug/nova").json()["external_id"] == 1
    assert client.get("/catalog/slug/missing").json() is None
    assert client.get("/catalog/2").json()["name"] == "Orbit"
    assert client.get("/catalog/999").json() is None
    assert client.get("/catalog/upcoming").json() == []
    assert client.get("/catalog/recent").json() == []
    assert client.get("/catalog", params={"order": "rating"}).status_code == 422


def test_catalog_storage_fault_returns_503(client, monkeypatch, catalog):
    def _broken(*_, **__):
        raise StorageFault("catalog list failed")

    monkeypatch.setattr(catalog, "list", _broken)
    assert client.get("/catalog").status_code == 503


def test_gateway_search_is_not_cached(client, fake_rawg, catalog, session):
    response = client.get("/games", params={"view": "recent", "platform": "playstation", "search": "nova"})
    assert response.status_code == 200
    body = response.json()
    assert body["games"][0]["slug"] == "nova"
    assert fake_rawg.last_search["search"] == "nova"
    assert catalog.get_by_external_id(session, 100) is None


def test_gateway_errors_map_to_http_status(client, fake_rawg):
    fake_rawg.error = RAWGNotFound("gone")
    assert client.get("/games/nova").status_code == 404
    fake_rawg.error = RAWGError("rawg down")
    assert client.get("/games").status_code == 502
    assert client.post("/catalog/refresh", json={}).status_code == 502


def test_game_details_include_extra_fields(client, fake_rawg):
    body = client.get("/games/nova").json()
    assert body["description"] == "Space."
    assert body["developers"] == ["Studio"]


def test_refresh_and_cache_write_to_catalog(client, fake_rawg, catalog, session):
    refreshed = client.post("/catalog/refresh", json={"view": "upcoming", "pages": 1})
    assert refreshed.json() == {"fetched": 1, "stored": 1, "failed": 0}
    assert catalog.get_by_slug(session, "nova") is not None

    cached = client.post("/catalog/games/nova").json()
    assert cached["description"] == "Space."
    assert catalog.get_by_external_id(session, 100).description == "Space."


def test_refresh_rejects_too_many_pages(client, fake_rawg):
    assert client.post("/catalog/refresh", json={"pages": 50}).status_code == 422
