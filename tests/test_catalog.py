from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from personnel_console import main as app_main
from personnel_console.infra import audit, db, events


@pytest.fixture()
def catalog_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "catalog_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _admin_headers(client: TestClient) -> dict[str, str]:
    client.post("/api/auth/bootstrap-admin", json={"username": "admin", "password": "admin-pass"})
    login = client.post("/api/auth/login", json={"username": "admin", "password": "admin-pass"})
    return {"Authorization": f"Bearer {login.json()['access_token']}"}


def test_role_crud_with_soft_delete(catalog_client: TestClient) -> None:
    headers = _admin_headers(catalog_client)

    created = catalog_client.post("/api/roles", json={"name": "clerk", "description": "front desk"}, headers=headers)
    assert created.status_code == 201
    role_id = created.json()["id"]

    duplicate = catalog_client.post("/api/roles", json={"name": "clerk"}, headers=headers)
    assert duplicate.status_code == 409
    blank = catalog_client.post("/api/roles", json={"name": "  "}, headers=headers)
    assert blank.status_code == 400

    renamed = catalog_client.patch(f"/api/roles/{role_id}", json={"name": "desk-clerk"}, headers=headers)
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "desk-clerk"
    assert renamed.json()["description"] == "front desk"

    by_name = catalog_client.get("/api/roles/name/desk-clerk", headers=headers)
    assert by_name.json()["id"] == role_id

    deleted = catalog_client.delete(f"/api/roles/{role_id}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["deleted_at"] is not None
    assert catalog_client.delete(f"/api/roles/{role_id}", headers=headers).status_code == 412

    visible = [item["id"] for item in catalog_client.get("/api/roles", headers=headers).json()]
    assert role_id not in visible
    everything = catalog_client.get("/api/roles?include_deleted=true", headers=headers).json()
    assert role_id in [item["id"] for item in everything]

    restored = catalog_client.patch(f"/api/roles/{role_id}/restore", headers=headers)
    assert restored.status_code == 200
    assert restored.json()["deleted_at"] is None
    assert catalog_client.get(f"/api/roles/{role_id}", headers=headers).status_code == 200
    assert catalog_client.get("/api/roles/missing", headers=headers).status_code == 404


def test_permission_catalog(catalog_client: TestClient) -> None:
    headers = _admin_headers(catalog_client)

    defaults = catalog_client.get("/api/permissions", headers=headers).json()
    assert "auth.users.lock" in [item["key"] for item in defaults]

    created = catalog_client.post(
        "/api/permissions",
        json={"module": "personnel", "resource": "persons", "action": "read", "display_name": "View persons"},
        headers=headers,
    )
    assert created.status_code == 201
    body = created.json()
    assert body["key"] == "personnel.persons.read"
    assert body["status"] is True

    duplicate = catalog_client.post(
        "/api/permissions",
        json={"module": "personnel", "resource": "persons", "action": "read", "display_name": "Again"},
        headers=headers,
    )
    assert duplicate.status_code == 409
    empty = catalog_client.post(
        "/api/permissions",
        json={"module": "personnel", "resource": "", "action": "read", "display_name": "Broken"},
        headers=headers,
    )
    assert empty.status_code == 400

    found = catalog_client.get("/api/permissions/search?module=personnel", headers=headers).json()
    assert [item["id"] for item in found] == [body["id"]]

    updated = catalog_client.patch(
        f"/api/permissions/{body['id']}",
        json={"description": "read-only access to person records"},
        headers=headers,
    )
    assert updated.json()["description"] == "read-only access to person records"
    assert updated.json()["display_name"] == "View persons"

    deactivated = catalog_client.delete(f"/api/permissions/{body['id']}", headers=headers)
    assert deactivated.json()["status"] is False
    active_keys = [item["key"] for item in catalog_client.get("/api/permissions?active_only=true", headers=headers).json()]
    assert "personnel.persons.read" not in active_keys

    reactivated = catalog_client.patch(f"/api/permissions/{body['id']}/restore", headers=headers)
    assert reactivated.status_code == 200
    assert reactivated.json()["status"] is True
    again = catalog_client.patch(f"/api/permissions/{body['id']}/restore", headers=headers)
    assert again.status_code == 412
