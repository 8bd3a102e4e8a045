from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from threading import RLock
from typing import Any, Dict, List, Optional

TOW_UNIT_STATUSES = ("available", "dispatched", "offline", "maintenance")

UNIT_FIELDS = ("name", "operator", "phone", "status", "location", "vehicle_type", "license_plate")
REQUIRED_FIELDS = ("name", "operator", "license_plate")


def _require_text(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Please fill in required fields")
    return value.strip()


@dataclass
class TowUnit:
    id: str
    name: str
    operator: str
    license_plate: str
    phone: str = ""
    status: str = "available"
    location: str = ""
    vehicle_type: str = "flatbed"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TowUnitRegistry:
    """Process-local fleet roster. Units live only as long as the process."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._units: Dict[str, TowUnit] = {}
        self._order: List[str] = []

    def list(self, search: Optional[str] = None, status: Optional[str] = None) -> List[TowUnit]:
        with self._lock:
            units = [self._units[unit_id] for unit_id in self._order]
        if search:
            needle = search.lower()
            units = [u for u in units if needle in u.name.lower() or needle in u.operator.lower()]
        if status:
            units = [u for u in units if u.status == status]
        return units

    def get(self, unit_id: str) -> Optional[TowUnit]:
        with self._lock:
            return self._units.get(unit_id)

    def add(self, **fields: Any) -> TowUnit:
        for required in REQUIRED_FIELDS:
            _require_text(fields.get(required))
        status = fields.get("status") or "available"
        if status not in TOW_UNIT_STATUSES:
            raise ValueError(f"Unknown unit status '{status}'")
        unit = TowUnit(
            id=uuid.uuid4().hex[:12],
            name=fields["name"].strip(),
            operator=fields["operator"].strip(),
            license_plate=fields["license_plate"].strip(),
            phone=fields.get("phone") or "",
            status=status,
            location=fields.get("location") or "",
            vehicle_type=fields.get("vehicle_type") or "flatbed",
        )
        with self._lock:
            self._units[unit.id] = unit
            # Newest first, like the report board.
            self._order.insert(0, unit.id)
        return unit

    def update(self, unit_id: str, changes: Dict[str, Any]) -> Optional[TowUnit]:
        changes = {field: value for field, value in changes.items() if value is not None}
        if "status" in changes and changes["status"] not in TOW_UNIT_STATUSES:
            raise ValueError(f"Unknown unit status '{changes['status']}'")
        for required in REQUIRED_FIELDS:
            if required in changes:
                changes[required] = _require_text(changes[required])
        with self._lock:
            unit = self._units.get(unit_id)
            if unit is None:
                return None
            for field in UNIT_FIELDS:
                if field in changes:
                    setattr(unit, field, changes[field])
            return unit

    def remove(self, unit_id: str) -> bool:
        with self._lock:
            if unit_id not in self._units:
                return False
            del self._units[unit_id]
            self._order.remove(unit_id)
            return True

    def status_counts(self) -> Dict[str, int]:
        counts = {status: 0 for status in TOW_UNIT_STATUSES}
        with self._lock:
            for unit in self._units.values():
                counts[unit.status] = counts.get(unit.status, 0) + 1
        return counts
