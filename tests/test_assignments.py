from __future__ import annotations

from collections.abc import Generator
from datetime import timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, col, create_engine, select

from personnel_console import main as app_main
from personnel_console.domain.models import EventRecord, UserRoleAssignment, now_utc
from personnel_console.infra import audit, db, events
from personnel_console.services.assignment_service import AssignmentService


@pytest.fixture()
def graph_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "assignments_test.db"
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


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _admin_headers(client: TestClient) -> dict[str, str]:
    response = client.post("/api/auth/bootstrap-admin", json={"username": "admin", "password": "admin-pass"})
    assert response.status_code == 201
    login = client.post("/api/auth/login", json={"username": "admin", "password": "admin-pass"})
    assert login.status_code == 200
    return _auth_header(login.json()["access_token"])


def _create_user(client: TestClient, headers: dict[str, str], username: str) -> str:
    response = client.post("/api/users", json={"username": username, "password": "secret"}, headers=headers)
    assert response.status_code == 201
    return response.json()["id"]


def _create_role(client: TestClient, headers: dict[str, str], name: str) -> str:
    response = client.post("/api/roles", json={"name": name}, headers=headers)
    assert response.status_code == 201
    return response.json()["id"]


def _create_permission(
    client: TestClient,
    headers: dict[str, str],
    resource: str,
    action: str = "read",
    module: str = "personnel",
) -> str:
    response = client.post(
        "/api/permissions",
        json={"module": module, "resource": resource, "action": action, "display_name": f"{action} {resource}"},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["id"]


def test_assign_role_twice_conflicts(graph_client: TestClient) -> None:
    headers = _admin_headers(graph_client)
    user_id = _create_user(graph_client, headers, "u1")
    role_id = _create_role(graph_client, headers, "clerk")

    first = graph_client.post(f"/api/users/{user_id}/roles/{role_id}", headers=headers)
    assert first.status_code == 201
    assert first.json()["active"] is True
    assert first.json()["role"]["name"] == "clerk"
    assert first.json()["removable"] is True

    second = graph_client.post(f"/api/users/{user_id}/roles/{role_id}", headers=headers)
    assert second.status_code == 409

    roles = graph_client.get(f"/api/users/{user_id}/roles", headers=headers).json()
    assert [item["role_id"] for item in roles] == [role_id]


def test_assign_role_requires_known_ids_and_future_expiry(graph_client: TestClient) -> None:
    headers = _admin_headers(graph_client)
    user_id = _create_user(graph_client, headers, "u1")
    role_id = _create_role(graph_client, headers, "clerk")

    assert graph_client.post(f"/api/users/missing/roles/{role_id}", headers=headers).status_code == 404
    assert graph_client.post(f"/api/users/{user_id}/roles/missing", headers=headers).status_code == 404

    past = graph_client.post(
        f"/api/users/{user_id}/roles/{role_id}",
        json={"expiration_date": (now_utc() - timedelta(hours=1)).isoformat()},
        headers=headers,
    )
    assert past.status_code == 400

    future = graph_client.post(
        f"/api/users/{user_id}/roles/{role_id}",
        json={"expiration_date": (now_utc() + timedelta(days=30)).isoformat()},
        headers=headers,
    )
    assert future.status_code == 201
    assert future.json()["expiration_date"] is not None


def test_remove_role_keeps_history_and_rejects_second_removal(graph_client: TestClient) -> None:
    headers = _admin_headers(graph_client)
    user_id = _create_user(graph_client, headers, "u1")
    role_id = _create_role(graph_client, headers, "clerk")
    graph_client.post(f"/api/users/{user_id}/roles/{role_id}", headers=headers)

    removed = graph_client.delete(f"/api/users/{user_id}/roles/{role_id}", headers=headers)
    assert removed.status_code == 204

    again = graph_client.delete(f"/api/users/{user_id}/roles/{role_id}", headers=headers)
    assert again.status_code == 412

    roles = graph_client.get(f"/api/users/{user_id}/roles", headers=headers).json()
    assert len(roles) == 1
    assert roles[0]["active"] is False
    assert roles[0]["removable"] is False

    reassigned = graph_client.post(f"/api/users/{user_id}/roles/{role_id}", headers=headers)
    assert reassigned.status_code == 201
    roles = graph_client.get(f"/api/users/{user_id}/roles", headers=headers).json()
    assert sorted(item["active"] for item in roles) == [False, True]


def test_frozen_grant_cannot_be_removed(graph_client: TestClient) -> None:
    headers = _admin_headers(graph_client)
    role_id = _create_role(graph_client, headers, "registrar")
    p1 = _create_permission(graph_client, headers, "persons")
    p2 = _create_permission(graph_client, headers, "documents")
    assert graph_client.post(f"/api/roles/{role_id}/permissions/{p1}", headers=headers).status_code == 201
    assert graph_client.post(f"/api/roles/{role_id}/permissions/{p2}", headers=headers).status_code == 201

    deactivated = graph_client.delete(f"/api/permissions/{p2}", headers=headers)
    assert deactivated.status_code == 200
    assert deactivated.json()["status"] is False

    frozen = graph_client.delete(f"/api/roles/{role_id}/permissions/{p2}", headers=headers)
    assert frozen.status_code == 412

    removed = graph_client.delete(f"/api/roles/{role_id}/permissions/{p1}", headers=headers)
    assert removed.status_code == 204

    listing = graph_client.get(f"/api/roles/{role_id}/permissions", headers=headers).json()
    grants = {item["permission_id"]: item for item in listing}
    assert grants[p1]["active"] is False
    assert grants[p1]["restorable"] is True
    assert grants[p2]["active"] is True
    assert grants[p2]["frozen"] is True
    assert grants[p2]["removable"] is False


def test_grant_conflicts_and_inactive_permission(graph_client: TestClient) -> None:
    headers = _admin_headers(graph_client)
    role_id = _create_role(graph_client, headers, "registrar")
    p1 = _create_permission(graph_client, headers, "persons")
    p2 = _create_permission(graph_client, headers, "areas")

    graph_client.post(f"/api/roles/{role_id}/permissions/{p1}", headers=headers)
    duplicate = graph_client.post(f"/api/roles/{role_id}/permissions/{p1}", headers=headers)
    assert duplicate.status_code == 409

    graph_client.delete(f"/api/permissions/{p2}", headers=headers)
    inactive = graph_client.post(f"/api/roles/{role_id}/permissions/{p2}", headers=headers)
    assert inactive.status_code == 412

    never_granted = graph_client.delete(f"/api/roles/{role_id}/permissions/missing", headers=headers)
    assert never_granted.status_code == 404


def test_restore_permission_grant(graph_client: TestClient) -> None:
    headers = _admin_headers(graph_client)
    role_id = _create_role(graph_client, headers, "registrar")
    p1 = _create_permission(graph_client, headers, "persons")
    p2 = _create_permission(graph_client, headers, "areas")

    no_history = graph_client.patch(f"/api/roles/{role_id}/permissions/{p2}/restore", headers=headers)
    assert no_history.status_code == 412

    granted = graph_client.post(f"/api/roles/{role_id}/permissions/{p1}", headers=headers).json()
    graph_client.delete(f"/api/roles/{role_id}/permissions/{p1}", headers=headers)

    restored = graph_client.patch(f"/api/roles/{role_id}/permissions/{p1}/restore", headers=headers)
    assert restored.status_code == 200
    assert restored.json()["id"] == granted["id"]
    assert restored.json()["active"] is True

    again = graph_client.patch(f"/api/roles/{role_id}/permissions/{p1}/restore", headers=headers)
    assert again.status_code == 409


def test_effective_permissions_follow_the_graph(graph_client: TestClient) -> None:
    headers = _admin_headers(graph_client)
    user_id = _create_user(graph_client, headers, "u1")
    reader = _create_role(graph_client, headers, "reader")
    editor = _create_role(graph_client, headers, "editor")
    read_persons = _create_permission(graph_client, headers, "persons", "read")
    write_persons = _create_permission(graph_client, headers, "persons", "write")
    archived = _create_permission(graph_client, headers, "archive", "read")

    for role_id, permission_id in (
        (reader, read_persons),
        (editor, read_persons),
        (editor, write_persons),
        (editor, archived),
    ):
        graph_client.post(f"/api/roles/{role_id}/permissions/{permission_id}", headers=headers)
    graph_client.delete(f"/api/permissions/{archived}", headers=headers)

    graph_client.post(f"/api/users/{user_id}/roles/{reader}", headers=headers)
    only_reader = graph_client.get(f"/api/users/{user_id}/effective-permissions", headers=headers).json()
    assert only_reader["keys"] == ["personnel.persons.read"]

    graph_client.post(f"/api/users/{user_id}/roles/{editor}", headers=headers)
    both = graph_client.get(f"/api/users/{user_id}/effective-permissions", headers=headers).json()
    assert set(both["keys"]) == {"personnel.persons.read", "personnel.persons.write"}

    graph_client.delete(f"/api/users/{user_id}/roles/{editor}", headers=headers)
    after_removal = graph_client.get(f"/api/users/{user_id}/effective-permissions", headers=headers).json()
    assert set(after_removal["keys"]) <= set(both["keys"])
    assert after_removal["keys"] == ["personnel.persons.read"]


def test_expired_role_assignment_drops_out(graph_client: TestClient) -> None:
    headers = _admin_headers(graph_client)
    user_id = _create_user(graph_client, headers, "temp")
    role_id = _create_role(graph_client, headers, "seasonal")
    permission_id = _create_permission(graph_client, headers, "shifts")
    graph_client.post(f"/api/roles/{role_id}/permissions/{permission_id}", headers=headers)

    service = AssignmentService()
    now = now_utc()
    service.assign_role_to_user(user_id, role_id, expiration_date=now + timedelta(days=1), now=now)

    assert [item.key for item in service.effective_permissions(user_id, now)] == ["personnel.shifts.read"]
    assert service.effective_permissions(user_id, now + timedelta(days=2)) == []


def test_granted_role_opens_protected_routes(graph_client: TestClient) -> None:
    headers = _admin_headers(graph_client)
    user_id = _create_user(graph_client, headers, "viewer")
    role_id = _create_role(graph_client, headers, "viewers")

    permissions = graph_client.get("/api/permissions/search?module=auth&resource=users&action=read", headers=headers)
    assert permissions.status_code == 200
    users_read = permissions.json()[0]["id"]
    graph_client.post(f"/api/roles/{role_id}/permissions/{users_read}", headers=headers)
    graph_client.post(f"/api/users/{user_id}/roles/{role_id}", headers=headers)

    login = graph_client.post("/api/auth/login", json={"username": "viewer", "password": "secret"})
    assert login.json()["permissions"] == ["auth.users.read"]
    viewer_headers = _auth_header(login.json()["access_token"])

    assert graph_client.get("/api/users", headers=viewer_headers).status_code == 200
    forbidden = graph_client.post(f"/api/users/{user_id}/roles/{role_id}", headers=viewer_headers)
    assert forbidden.status_code == 403


def test_assignment_mutations_publish_events(graph_client: TestClient) -> None:
    headers = _admin_headers(graph_client)
    user_id = _create_user(graph_client, headers, "u1")
    role_id = _create_role(graph_client, headers, "clerk")
    graph_client.post(f"/api/users/{user_id}/roles/{role_id}", headers=headers)
    graph_client.delete(f"/api/users/{user_id}/roles/{role_id}", headers=headers)

    with Session(db.get_engine()) as session:
        statement = select(EventRecord).where(col(EventRecord.event_type).startswith("role."))
        types = [row.event_type for row in session.exec(statement).all()]
    assert sorted(types) == ["role.assigned", "role.removed"]


def test_active_edge_uniqueness_is_enforced_by_the_store(graph_client: TestClient) -> None:
    headers = _admin_headers(graph_client)
    user_id = _create_user(graph_client, headers, "u1")
    role_id = _create_role(graph_client, headers, "clerk")
    graph_client.post(f"/api/users/{user_id}/roles/{role_id}", headers=headers)

    with Session(db.get_engine()) as session:
        session.add(UserRoleAssignment(user_id=user_id, role_id=role_id, active=True))
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()
        session.add(UserRoleAssignment(user_id=user_id, role_id=role_id, active=False))
        session.commit()
