from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from towdesk.fleet import TowUnitRegistry

UNIT = {"name": "Truck 7", "operator": "Maya", "license_plate": "TOW-7", "phone": "555-0107"}


def test_registry_add_orders_newest_first():
    registry = TowUnitRegistry()
    first = registry.add(**UNIT)
    second = registry.add(name="Truck 8", operator="Leo", license_plate="TOW-8")
    assert [u.id for u in registry.list()] == [second.id, first.id]
    assert second.status == "available"
    assert second.vehicle_type == "flatbed"


def test_registry_requires_core_fields():
    registry = TowUnitRegistry()
    with pytest.raises(ValueError):
        registry.add(name="Truck 9", operator=" ", license_plate="TOW-9")


def test_registry_update_and_counts():
    registry = TowUnitRegistry()
    unit = registry.add(**UNIT)
    registry.update(unit.id, {"status": "dispatched", "location": "Exit 4"})
    assert registry.get(unit.id).location == "Exit 4"
    assert registry.status_counts() == {"available": 0, "dispatched": 1, "offline": 0, "maintenance": 0}
    with pytest.raises(ValueError):
        registry.update(unit.id, {"status": "flying"})
    assert registry.update("missing", {"name": "x"}) is None


def test_registry_search_and_filter():
    registry = TowUnitRegistry()
    registry.add(**UNIT)
    registry.add(name="Wrecker 2", operator="Ola", license_plate="W-2", status="offline")
    assert [u.name for u in registry.list(search="maya")] == ["Truck 7"]
    assert [u.name for u in registry.list(status="offline")] == ["Wrecker 2"]


def test_tow_unit_api(client: TestClient, employee_headers, admin_headers):
    created = client.post("/tow-units", json=UNIT, headers=employee_headers)
    assert created.status_code == 201
    unit_id = created.json()["id"]

    bad = client.post("/tow-units", json={"name": "", "operator": "x", "license_plate": "y"}, headers=employee_headers)
    assert bad.status_code == 400

    patched = client.patch(f"/tow-units/{unit_id}", json={"status": "maintenance"}, headers=employee_headers)
    assert patched.json()["status"] == "maintenance"
    assert client.patch("/tow-units/nope", json={"status": "offline"}, headers=employee_headers).status_code == 404

    listed = client.get("/tow-units", params={"status": "maintenance"}, headers=employee_headers).json()
    assert [u["id"] for u in listed] == [unit_id]

    assert client.delete(f"/tow-units/{unit_id}", headers=employee_headers).status_code == 403
    assert client.delete(f"/tow-units/{unit_id}", headers=admin_headers).status_code == 204
    assert client.get("/tow-units", headers=admin_headers).json() == []


def test_registry_update_ignores_null_and_rejects_blank_required():
    registry = TowUnitRegistry()
    unit = registry.add(**UNIT)
    registry.update(unit.id, {"status": None, "phone": None})
    assert unit.status == "available"
    assert unit.phone == "555-0107"

    for field in ("name", "operator", "license_plate"):
        with pytest.raises(ValueError):
            registry.update(unit.id, {field: "  "})
    assert unit.name == "Truck 7"

    registry.update(unit.id, {"name": "  Truck 7B "})
    assert unit.name == "Truck 7B"


def test_tow_unit_patch_validation(client: TestClient, employee_headers):
    unit_id = client.post("/tow-units", json=UNIT, headers=employee_headers).json()["id"]

    nulled = client.patch(f"/tow-units/{unit_id}", json={"status": None}, headers=employee_headers)
    assert nulled.status_code == 200
    assert nulled.json()["status"] == "available"

    blank = client.patch(f"/tow-units/{unit_id}", json={"name": "  "}, headers=employee_headers)
    assert blank.status_code == 400
    assert blank.json()["detail"] == "Please fill in required fields"
    assert client.get("/tow-units", headers=employee_headers).json()[0]["name"] == "Truck 7"
