from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from towdesk.models import AuditLog, Report

from conftest import auth_headers


def _create(client: TestClient, headers, **overrides):
    payload = {"title": "Highway breakdown", "type": "tow", "location": "I-95 mile 12"}
    payload.update(overrides)
    resp = client.post("/reports", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_requires_authentication(client: TestClient):
    assert client.get("/reports").status_code == 401
    assert client.get("/reports", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_create_report_starts_open(client: TestClient, session: Session, employee, employee_headers):
    report = _create(client, employee_headers)
    entries = session.query(AuditLog).filter(AuditLog.entity_type == "report").all()
    assert [e.action for e in entries] == ["report_created"]
    assert entries[0].entity_id == str(report["id"])
    assert report["status"] == "open"
    assert report["assigned_to"] is None
    assert report["created_by"] == employee.user_id
    assert report["creator_name"] == "Eve Employee"
    assert report["created_at"].endswith("+00:00")


def test_create_report_rejects_blank_required_fields(client: TestClient, employee_headers):
    resp = client.post("/reports", json={"title": "  ", "location": "Main St"}, headers=employee_headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Please fill in all required fields"


def test_full_lifecycle_by_assignee(client: TestClient, session: Session, employee, employee_headers):
    report_id = _create(client, employee_headers)["id"]

    accepted = client.post(f"/reports/{report_id}/accept", headers=employee_headers)
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "assigned"
    assert accepted.json()["assigned_to"] == employee.user_id

    for target in ("en_route", "in_progress", "completed"):
        resp = client.post(f"/reports/{report_id}/status", json={"status": target}, headers=employee_headers)
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == target

    actions = [
        entry.action
        for entry in session.query(AuditLog).filter(AuditLog.entity_id == str(report_id)).order_by(AuditLog.id)
    ]
    assert actions == [
        "report_created",
        "report_assigned",
        "report_status_changed",
        "report_status_changed",
        "report_status_changed",
    ]


def test_accepting_taken_report_conflicts(client: TestClient, make_staff, employee_headers, admin_headers):
    other_headers = auth_headers(make_staff("employee", name="Sam Second"))
    report_id = _create(client, employee_headers)["id"]
    assert client.post(f"/reports/{report_id}/accept", headers=employee_headers).status_code == 200
    assert client.post(f"/reports/{report_id}/accept", headers=admin_headers).status_code == 409
    # Taken reports drop off other employees' board entirely.
    assert client.post(f"/reports/{report_id}/accept", headers=other_headers).status_code == 404


def test_skipping_status_is_rejected(client: TestClient, employee_headers):
    report_id = _create(client, employee_headers)["id"]
    client.post(f"/reports/{report_id}/accept", headers=employee_headers)
    resp = client.post(f"/reports/{report_id}/status", json={"status": "completed"}, headers=employee_headers)
    assert resp.status_code == 409


def test_manager_cannot_advance_someone_elses_report(client: TestClient, employee_headers, owner_headers):
    report_id = _create(client, employee_headers)["id"]
    client.post(f"/reports/{report_id}/accept", headers=employee_headers)
    resp = client.post(f"/reports/{report_id}/status", json={"status": "en_route"}, headers=owner_headers)
    assert resp.status_code == 403


def test_unassign_reverts_to_open(client: TestClient, employee_headers):
    report_id = _create(client, employee_headers)["id"]
    client.post(f"/reports/{report_id}/accept", headers=employee_headers)
    client.post(f"/reports/{report_id}/status", json={"status": "en_route"}, headers=employee_headers)

    resp = client.post(f"/reports/{report_id}/unassign", headers=employee_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "open"
    assert resp.json()["assigned_to"] is None


def test_cancel_and_close_by_manager(client: TestClient, employee_headers, admin_headers):
    report_id = _create(client, employee_headers)["id"]
    denied = client.post(f"/reports/{report_id}/status", json={"status": "cancelled"}, headers=employee_headers)
    assert denied.status_code == 403

    cancelled = client.post(f"/reports/{report_id}/status", json={"status": "cancelled"}, headers=admin_headers)
    assert cancelled.json()["status"] == "cancelled"
    again = client.post(f"/reports/{report_id}/status", json={"status": "cancelled"}, headers=admin_headers)
    assert again.status_code == 409

    closed = client.post(f"/reports/{report_id}/status", json={"status": "closed"}, headers=admin_headers)
    assert closed.status_code == 200
    assert closed.json()["status"] == "closed"


def test_dispatch_assign_by_admin(client: TestClient, employee, employee_headers, admin_headers):
    report_id = _create(client, admin_headers, type="pd_tow")["id"]
    resp = client.post(f"/reports/{report_id}/assign", json={"user_id": employee.user_id}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["assignee_name"] == "Eve Employee"

    forbidden = client.post(f"/reports/{report_id}/assign", json={"user_id": employee.user_id}, headers=employee_headers)
    assert forbidden.status_code == 403


def test_employee_sees_open_and_own_reports_only(client: TestClient, make_staff, employee_headers, admin_headers):
    other_headers = auth_headers(make_staff("employee", name="Sam Second"))
    mine = _create(client, employee_headers, title="Mine")["id"]
    taken = _create(client, admin_headers, title="Taken")["id"]
    client.post(f"/reports/{taken}/accept", headers=other_headers)
    client.post(f"/reports/{mine}/accept", headers=employee_headers)

    titles = {r["title"] for r in client.get("/reports", headers=employee_headers).json()}
    assert titles == {"Mine"}
    assert client.get(f"/reports/{taken}", headers=employee_headers).status_code == 404

    every = {r["title"] for r in client.get("/reports", headers=admin_headers).json()}
    assert every == {"Mine", "Taken"}


def test_list_filters(client: TestClient, owner_headers):
    _create(client, owner_headers, title="Flat tire", type="roadside", location="Elm St")
    _create(client, owner_headers)
    resp = client.get("/reports", params={"type": "roadside"}, headers=owner_headers)
    assert [r["title"] for r in resp.json()] == ["Flat tire"]
    resp = client.get("/reports", params={"search": "i-95"}, headers=owner_headers)
    assert [r["title"] for r in resp.json()] == ["Highway breakdown"]
    assert client.get("/reports", params={"status": "bogus"}, headers=owner_headers).status_code == 400


def test_update_report_records_changed_fields(client: TestClient, session: Session, employee_headers, admin_headers):
    report_id = _create(client, employee_headers)["id"]
    resp = client.patch(f"/reports/{report_id}", json={"notes": "Blue sedan, hazards on"}, headers=employee_headers)
    assert resp.status_code == 200
    assert resp.json()["notes"] == "Blue sedan, hazards on"

    entry = session.query(AuditLog).filter(AuditLog.action == "report_updated").one()
    assert entry.old_value == {"notes": None}
    assert entry.new_value == {"notes": "Blue sedan, hazards on"}

    blank = client.patch(f"/reports/{report_id}", json={"location": ""}, headers=admin_headers)
    assert blank.status_code == 400


def test_delete_requires_manager_and_is_audited(
    client: TestClient, session: Session, admin, employee_headers, admin_headers
):
    report_id = _create(client, employee_headers)["id"]
    assert client.delete(f"/reports/{report_id}", headers=employee_headers).status_code == 403

    resp = client.delete(f"/reports/{report_id}", headers=admin_headers)
    assert resp.status_code == 204
    assert session.get(Report, report_id) is None

    entry = session.query(AuditLog).filter(AuditLog.action == "report_deleted").one()
    assert entry.user_id == admin.user_id
    assert entry.old_value["title"] == "Highway breakdown"
    assert entry.old_value["status"] == "open"
    assert client.delete(f"/reports/{report_id}", headers=admin_headers).status_code == 404

