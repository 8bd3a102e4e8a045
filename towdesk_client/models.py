"""Data models returned by the TowDesk client."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class StaffProfile:
    """A staff member as seen by the API."""

    user_id: str
    name: str
    username: str
    email: str
    role: Optional[str] = None
    phone: Optional[str] = None
    clocked_in: bool = False


@dataclass(slots=True)
class ClockEntry:
    record_id: int
    clock_in: Optional[datetime]
    clock_out: Optional[datetime]
    duration_minutes: Optional[int]
    date: str


@dataclass(slots=True)
class ClockStatus:
    """Current shift and accumulated hours."""

    is_clocked_in: bool
    today_hours: float = 0.0
    weekly_hours: float = 0.0
    current: Optional[ClockEntry] = None


@dataclass(slots=True)
class TowReport:
    """A dispatch report (job)."""

    report_id: int
    title: str
    report_type: str
    status: str
    location: str
    vehicle: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    assigned_to: Optional[str] = None
    assignee_name: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(slots=True)
class ApplicationStatus:
    """Public view of a job application."""

    application_id: str
    character_name: str
    status: str
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewer_notes: Optional[str] = None


__all__ = ["StaffProfile", "ClockEntry", "ClockStatus", "TowReport", "ApplicationStatus"]
