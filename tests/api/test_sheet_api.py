"""캐릭터 시트 API 통합 테스트

TestClient + in-memory SQLite.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event as sa_event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.api.sheet import router as sheet_router
from src.core.event_bus import EventBus
from src.db.models import Base
from src.services.sheet_service import SheetService


@pytest.fixture()
def client():
    """TestClient + 인메모리 환경 세팅"""
    db_engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @sa_event.listens_for(db_engine, "connect")
    def _set_fk(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(db_engine)
    session_factory = sessionmaker(bind=db_engine)
    db = session_factory()

    app = FastAPI()
    app.include_router(sheet_router)
    app.state.sheet_service = SheetService(db, EventBus())

    with TestClient(app) as c:
        yield c

    db.close()


@pytest.fixture()
def character_id(client):
    resp = client.post(
        "/characters",
        json={
            "name": "Hero",
            "abilities": {"str": 14, "dex": 16},
            "weapon_proficiencies": ["sim"],
            "currency": {"cp": 250},
        },
    )
    assert resp.status_code == 201
    return resp.json()["character_id"]


def _drop(client, character_id, name, kind, system=None):
    return client.post(
        f"/characters/{character_id}/items",
        json={"name": name, "kind": kind, "system": system or {}},
    )


class TestCharacterApi:
    def test_create_and_get(self, client, character_id):
        resp = client.get(f"/characters/{character_id}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["name"] == "Hero"
        assert data["level"] == 0
        assert data["currency"] == {"cp": 250}

    def test_create_validation(self, client):
        assert client.post("/characters", json={"name": ""}).status_code == 422
        assert client.post("/characters", json={"name": "X", "actor_type": "dragon"}).status_code == 422

    def test_get_missing(self, client):
        assert client.get("/characters/nope").status_code == 404

    def test_update_display(self, client, character_id):
        resp = client.patch(
            f"/characters/{character_id}/display", json={"metric_weight_units": True}
        )
        assert resp.status_code == 200
        assert resp.json()["display"]["metric_weight_units"] is True

        sheet = client.get(f"/characters/{character_id}/sheet").json()
        assert sheet["weight_unit"] == "kg"


class TestSheetApi:
    def test_sheet_layout(self, client, character_id):
        _drop(client, character_id, "Fighter", "class", {"levels": 3})
        _drop(client, character_id, "Club", "weapon", {"weaponType": "simpleM", "weight": 2})
        resp = client.get(f"/characters/{character_id}/sheet")
        assert resp.status_code == 200
        data = resp.json()

        assert data["level"] == 3
        keys = [b["key"] for b in data["inventory"]]
        assert keys[0] == "weapon"
        assert [b["key"] for b in data["features"]] == ["background", "classes", "active", "passive"]
        assert [r["resource_id"] for r in data["resources"][:3]] == ["primary", "secondary", "tertiary"]

        club = data["inventory"][0]["items"][0]
        ctx = data["item_context"][club["item_id"]]
        assert ctx["proficiency"] == 1
        assert ctx["total_weight"] == 2

        cls = data["features"][1]["items"][0]
        levels = data["item_context"][cls["item_id"]]["available_levels"]
        assert len(levels) == 20
        assert levels[2] == {"level": 3, "delta": 0, "disabled": False}

    def test_sheet_filters(self, client, character_id):
        _drop(client, character_id, "Club", "weapon")
        resp = client.get(
            f"/characters/{character_id}/sheet", params={"inventory": ["equipped", "bogus"]}
        )
        assert resp.status_code == 200
        assert all(not b["items"] for b in resp.json()["inventory"])

    def test_unpaired_subclass_warning(self, client, character_id):
        _drop(client, character_id, "Thief", "subclass", {"classIdentifier": "rogue"})
        data = client.get(f"/characters/{character_id}/sheet").json()
        assert any("rogue" in w["message"] for w in data["warnings"])

    def test_sheet_missing_character(self, client):
        assert client.get("/characters/nope/sheet").status_code == 404


class TestItemApi:
    def test_drop_and_get(self, client, character_id):
        resp = _drop(client, character_id, "Dagger", "weapon", {"properties": {"fin": True, "x": "junk"}})
        assert resp.status_code == 201
        item_id = resp.json()["item_id"]

        item = client.get(f"/characters/{character_id}/items/{item_id}").json()
        assert item["kind"] == "weapon"
        assert item["system"]["properties"] == {"fin": True}

    def test_drop_unknown_kind(self, client, character_id):
        assert _drop(client, character_id, "Thing", "vehicle").status_code == 422

    def test_drop_rejected(self, client, character_id):
        _drop(client, character_id, "Fighter", "class", {"levels": 20})
        resp = _drop(client, character_id, "Wizard", "class")
        assert resp.status_code == 409

    def test_drop_missing_character(self, client):
        assert _drop(client, "nope", "Dagger", "weapon").status_code == 404

    def test_update_item_diagnostics(self, client, character_id):
        item_id = _drop(client, character_id, "Rope", "loot").json()["item_id"]
        resp = client.patch(
            f"/characters/{character_id}/items/{item_id}",
            json={"changes": {"quantity": 3, "weight": "heavy"}},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["applied"] is True
        assert [d["path"] for d in data["diagnostics"]] == ["weight"]

    def test_update_empty_changes(self, client, character_id):
        item_id = _drop(client, character_id, "Rope", "loot").json()["item_id"]
        resp = client.patch(f"/characters/{character_id}/items/{item_id}", json={"changes": {}})
        assert resp.status_code == 422

    def test_toggle(self, client, character_id):
        sword = _drop(client, character_id, "Sword", "weapon").json()["item_id"]
        resp = client.post(f"/characters/{character_id}/items/{sword}/toggle")
        assert resp.status_code == 200
        item = client.get(f"/characters/{character_id}/items/{sword}").json()
        assert item["system"]["equipped"] is True

        gem = _drop(client, character_id, "Gem", "loot").json()["item_id"]
        assert client.post(f"/characters/{character_id}/items/{gem}/toggle").status_code == 409

    def test_delete(self, client, character_id):
        item_id = _drop(client, character_id, "Rope", "loot").json()["item_id"]
        assert client.delete(f"/characters/{character_id}/items/{item_id}").status_code == 204
        assert client.get(f"/characters/{character_id}/items/{item_id}").status_code == 404
        assert client.delete(f"/characters/{character_id}/items/{item_id}").status_code == 404


class TestLevelApi:
    def test_level_change(self, client, character_id):
        cls = _drop(client, character_id, "Fighter", "class", {"levels": 3}).json()["item_id"]
        resp = client.post(f"/characters/{character_id}/items/{cls}/level", json={"delta": 2})
        assert resp.status_code == 200
        assert resp.json()["applied"] is True
        assert client.get(f"/characters/{character_id}").json()["level"] == 5

    def test_level_change_over_max(self, client, character_id):
        cls = _drop(client, character_id, "Fighter", "class", {"levels": 19}).json()["item_id"]
        resp = client.post(f"/characters/{character_id}/items/{cls}/level", json={"delta": 2})
        assert resp.status_code == 409

    def test_subclass_cannot_join_claimed_class(self, client, character_id):
        _drop(client, character_id, "Fighter", "class")
        _drop(client, character_id, "Champion", "subclass", {"classIdentifier": "fighter"})
        thief = _drop(client, character_id, "Thief", "subclass", {"classIdentifier": "rogue"}).json()["item_id"]
        resp = client.patch(
            f"/characters/{character_id}/items/{thief}",
            json={"changes": {"classIdentifier": "fighter"}},
        )
        assert resp.status_code == 409

    def test_levels_not_patchable(self, client, character_id):
        cls = _drop(client, character_id, "Fighter", "class", {"levels": 3}).json()["item_id"]
        resp = client.patch(
            f"/characters/{character_id}/items/{cls}", json={"changes": {"levels": 9}}
        )
        assert resp.status_code == 409


class TestResourceApi:
    def test_add_and_remove(self, client, character_id):
        resp = client.post(f"/characters/{character_id}/resources", json={"label": "Luck", "max": 3})
        assert resp.status_code == 201
        resource_id = resp.json()["resource_id"]

        resp = client.delete(f"/characters/{character_id}/resources/{resource_id}")
        assert resp.status_code == 200
        assert resp.json()["applied"] is True

    def test_builtin_not_removable(self, client, character_id):
        assert client.delete(f"/characters/{character_id}/resources/primary").status_code == 409

    def test_linked_resource(self, client, character_id):
        wand = _drop(
            client,
            character_id,
            "Wand",
            "consumable",
            {"uses": {"value": 3, "max": 7, "per": "charges"}},
        ).json()["item_id"]
        resource_id = client.post(
            f"/characters/{character_id}/resources", json={"linked_item_id": wand}
        ).json()["resource_id"]

        resp = client.patch(
            f"/characters/{character_id}/resources/{resource_id}", json={"changes": {"max": 9}}
        )
        assert resp.status_code == 409

        resp = client.patch(
            f"/characters/{character_id}/resources/{resource_id}", json={"changes": {"value": 2}}
        )
        assert resp.status_code == 200
        item = client.get(f"/characters/{character_id}/items/{wand}").json()
        assert item["system"]["uses"]["value"] == 2

        resp = client.patch(
            f"/characters/{character_id}/items/{wand}", json={"changes": {"uses.max": 1}}
        )
        assert resp.status_code == 409

    def test_invalid_resource_values(self, client, character_id):
        resp = client.patch(
            f"/characters/{character_id}/resources/primary",
            json={"changes": {"max": "lots"}},
        )
        assert resp.status_code == 409

    def test_link_missing_item(self, client, character_id):
        resp = client.post(
            f"/characters/{character_id}/resources", json={"linked_item_id": "missing"}
        )
        assert resp.status_code == 404


class TestCurrencyApi:
    def test_convert(self, client, character_id):
        resp = client.post(f"/characters/{character_id}/currency/convert", json={})
        assert resp.status_code == 200
        assert resp.json()["applied"] is True
        currency = client.get(f"/characters/{character_id}").json()["currency"]
        assert currency == {"pp": 0, "gp": 2, "ep": 1, "sp": 0, "cp": 0}

    def test_declined_is_noop(self, client, character_id):
        resp = client.post(f"/characters/{character_id}/currency/convert", json={"confirm": False})
        assert resp.status_code == 200
        assert resp.json() == {
            "applied": False,
            "reason": "cancelled",
            "code": "cancelled",
            "item_id": None,
            "diagnostics": [],
        }
        assert client.get(f"/characters/{character_id}").json()["currency"] == {"cp": 250}
