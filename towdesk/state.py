from __future__ import annotations

import json
from threading import RLock
from typing import Any, Dict

from sqlalchemy.orm import Session

from .config import Settings
from .models import AppSetting


TEXT_FIELDS = ("company_name", "phone", "email", "address")

NOTIFICATION_FIELDS = (
    "notify_new_jobs",
    "notify_job_status",
    "notify_unit_availability",
    "notify_daily_reports",
)


def _normalize_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


class CompanySettingsState:
    """Company profile and notification toggles, editable at runtime."""

    def __init__(self, base_settings: Settings):
        self._lock = RLock()
        self.company_name: str = base_settings.company_name
        self.phone: str = ""
        self.email: str = ""
        self.address: str = ""
        self.notify_new_jobs: bool = True
        self.notify_job_status: bool = True
        self.notify_unit_availability: bool = False
        self.notify_daily_reports: bool = False

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            data: Dict[str, Any] = {field: getattr(self, field) for field in TEXT_FIELDS}
            data.update({field: getattr(self, field) for field in NOTIFICATION_FIELDS})
            return data

    def apply(self, updates: Dict[str, Any]) -> None:
        with self._lock:
            for field in TEXT_FIELDS:
                if field in updates and updates[field] is not None:
                    setattr(self, field, _normalize_text(updates[field]))
            for field in NOTIFICATION_FIELDS:
                if field in updates and updates[field] is not None:
                    setattr(self, field, bool(updates[field]))

    def load_from_db(self, session: Session) -> None:
        records = session.query(AppSetting).all()
        if not records:
            return
        decoded: Dict[str, Any] = {}
        for record in records:
            if record.key in TEXT_FIELDS:
                decoded[record.key] = record.value
            elif record.key in NOTIFICATION_FIELDS:
                try:
                    decoded[record.key] = bool(json.loads(record.value))
                except json.JSONDecodeError:
                    continue
        if decoded:
            self.apply(decoded)

    def persist(self, session: Session, updates: Dict[str, Any]) -> None:
        for key, value in updates.items():
            if key in TEXT_FIELDS:
                value = _normalize_text(value)
            elif key in NOTIFICATION_FIELDS:
                value = json.dumps(bool(value))
            else:
                continue
            record = session.query(AppSetting).filter(AppSetting.key == key).one_or_none()
            if record:
                record.value = value
            else:
                session.add(AppSetting(key=key, value=value))
        session.commit()
