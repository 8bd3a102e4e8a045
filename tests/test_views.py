from __future__ import annotations

import datetime as dt
import io

from fastapi.testclient import TestClient
from openpyxl import load_workbook
from sqlalchemy.orm import Session

from towdesk import services
from towdesk.models import ClockRecord


def _record(user_id: str, day: dt.date, minutes: int) -> ClockRecord:
    start = dt.datetime.combine(day, dt.time(14, 0), tzinfo=dt.timezone.utc)
    return ClockRecord(
        user_id=user_id,
        clock_in=start,
        clock_out=start + dt.timedelta(minutes=minutes),
        duration=minutes,
        date=day.isoformat(),
    )


def _report(client: TestClient, headers, title: str, report_type: str = "tow") -> int:
    resp = client.post("/reports", json={"title": title, "type": report_type, "location": "Main St"}, headers=headers)
    return resp.json()["id"]


def test_dashboard_for_employee(client: TestClient, employee, employee_headers, admin_headers):
    mine = _report(client, employee_headers, "Mine")
    _report(client, admin_headers, "Open call")
    client.post(f"/reports/{mine}/accept", headers=employee_headers)
    client.post("/tow-units", json={"name": "T1", "operator": "Maya", "license_plate": "P1"}, headers=employee_headers)

    data = client.get("/dashboard", headers=employee_headers).json()
    assert data["role"] == "employee"
    assert [r["title"] for r in data["my_active_reports"]] == ["Mine"]
    assert {r["title"] for r in data["latest_reports"]} == {"Mine", "Open call"}
    assert data["tow_unit_counts"]["available"] == 1
    assert data["online_count"] == 0
    assert data["clock"]["is_clocked_in"] is False


def test_analytics_overview(client: TestClient, session: Session, employee, admin, owner_headers, employee_headers):
    done = _report(client, employee_headers, "Done", "pd_tow")
    _report(client, employee_headers, "Waiting")
    client.post(f"/reports/{done}/accept", headers=employee_headers)
    for target in ("en_route", "in_progress", "completed"):
        client.post(f"/reports/{done}/status", json={"status": target}, headers=employee_headers)
    session.add(_record(employee.user_id, services._local_today(), 120))
    session.commit()

    assert client.get("/analytics", headers=employee_headers).status_code == 403
    data = client.get("/analytics", headers=owner_headers).json()
    assert data["total_reports"] == 2
    assert data["open_reports"] == 1
    assert data["completed_reports"] == 1
    assert data["pd_tows"] == 1
    assert data["civ_tows"] == 1
    assert data["total_hours"] == 2.0
    assert data["status_counts"]["completed"] == 1

    staff = {row["name"]: row for row in data["staff"]}
    assert set(staff) == {"Eve Employee", "Adam Admin"}
    assert staff["Eve Employee"]["report_count"] == 2
    assert staff["Eve Employee"]["today_hours"] == 2.0
    assert staff["Adam Admin"]["report_count"] == 0


def test_staff_analytics_detail(client: TestClient, session: Session, employee, admin_headers):
    session.add(_record(employee.user_id, services._local_today(), 30))
    session.commit()
    data = client.get(f"/analytics/staff/{employee.user_id}", headers=admin_headers).json()
    assert data["total_hours"] == 0.5
    assert len(data["clock_records"]) == 1
    assert client.get("/analytics/staff/missing", headers=admin_headers).status_code == 404


def test_timesheet_export(client: TestClient, session: Session, employee, owner_headers):
    day = dt.date(2024, 4, 2)
    session.add(_record(employee.user_id, day, 95))
    session.add(_record(employee.user_id, dt.date(2024, 5, 1), 60))
    session.commit()

    resp = client.get(
        "/analytics/timesheet",
        params={"from_date": "2024-04-01", "to_date": "2024-04-30"},
        headers=owner_headers,
    )
    assert resp.status_code == 200
    assert "timesheet_2024-04-01_2024-04-30.xlsx" in resp.headers["content-disposition"]
    sheet = load_workbook(io.BytesIO(resp.content)).active
    rows = list(sheet.iter_rows(values_only=True))
    assert rows[0] == ("Staff", "Date", "Clock in", "Clock out", "Minutes", "Hours")
    assert len(rows) == 2
    assert rows[1][0] == "Eve Employee"
    assert rows[1][4] == 95

    inverted = client.get(
        "/analytics/timesheet",
        params={"from_date": "2024-04-30", "to_date": "2024-04-01"},
        headers=owner_headers,
    )
    assert inverted.status_code == 400
