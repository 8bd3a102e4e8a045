"""HTTP client for the TowDesk API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from urllib.parse import urljoin

import requests

from .config import ClientConfig
from .models import ApplicationStatus, ClockEntry, ClockStatus, StaffProfile, TowReport


class ApiError(RuntimeError):
    """Raised when the API cannot be reached or rejects a request."""

    def __init__(self, message: str, *, response: Optional[requests.Response] = None) -> None:
        super().__init__(message)
        self.response = response

    @property
    def status_code(self) -> Optional[int]:
        return self.response.status_code if self.response is not None else None


class ApiClient:
    """Wraps HTTP calls to the TowDesk API."""

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: int = 15) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self.token = token
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: ClientConfig) -> "ApiClient":
        return cls(config.api_base_url, token=config.api_token, timeout=config.timeout_seconds)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, **kwargs):
        url = urljoin(self.base_url, path.lstrip("/"))
        kwargs.setdefault("timeout", self.timeout)
        headers = kwargs.setdefault("headers", {})
        headers.update(self._headers())
        try:
            response = requests.request(method, url, **kwargs)
        except requests.RequestException as exc:  # pragma: no cover - network failure
            raise ApiError(str(exc)) from exc

        if response.status_code >= 400:
            raise ApiError(f"API error {response.status_code}: {self._detail(response)}", response=response)

        if response.headers.get("Content-Type", "").startswith("application/json"):
            return response.json()
        return response.content

    @staticmethod
    def _detail(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict) and "detail" in body:
            return str(body["detail"])
        return response.text

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------
    def login(self, login: str, password: str) -> StaffProfile:
        data = self._request("POST", "/auth/login", json={"login": login, "password": password})
        self.token = data["access_token"]
        return self._profile(data["profile"])

    def logout(self) -> None:
        try:
            self._request("POST", "/auth/logout")
        finally:
            self.token = None

    def me(self) -> tuple[StaffProfile, ClockStatus]:
        data = self._request("GET", "/me")
        return self._profile(data["profile"]), self._clock_status(data["clock"])

    # ------------------------------------------------------------------
    # Time clock
    # ------------------------------------------------------------------
    def clock_in(self) -> ClockEntry:
        return self._clock_entry(self._request("POST", "/clock/in"))

    def clock_out(self) -> ClockEntry:
        return self._clock_entry(self._request("POST", "/clock/out"))

    def clock_status(self) -> ClockStatus:
        return self._clock_status(self._request("GET", "/clock/status"))

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------
    def list_reports(
        self,
        *,
        search: Optional[str] = None,
        report_type: Optional[str] = None,
        status: Optional[str] = None,
        mine: bool = False,
    ) -> list[TowReport]:
        params: dict[str, Any] = {}
        if search:
            params["search"] = search
        if report_type:
            params["type"] = report_type
        if status:
            params["status"] = status
        if mine:
            params["mine"] = "true"
        data = self._request("GET", "/reports", params=params) or []
        return [self._report(item) for item in data]

    def create_report(self, title: str, location: str, report_type: str = "tow", **details: Any) -> TowReport:
        payload = {"title": title, "location": location, "type": report_type}
        payload.update({key: value for key, value in details.items() if value is not None})
        return self._report(self._request("POST", "/reports", json=payload))

    def accept_report(self, report_id: int) -> TowReport:
        return self._report(self._request("POST", f"/reports/{report_id}/accept"))

    def assign_report(self, report_id: int, user_id: str) -> TowReport:
        return self._report(self._request("POST", f"/reports/{report_id}/assign", json={"user_id": user_id}))

    def unassign_report(self, report_id: int) -> TowReport:
        return self._report(self._request("POST", f"/reports/{report_id}/unassign"))

    def set_report_status(self, report_id: int, status: str) -> TowReport:
        data = self._request("POST", f"/reports/{report_id}/status", json={"status": status})
        return self._report(data)

    def cancel_report(self, report_id: int) -> TowReport:
        return self.set_report_status(report_id, "cancelled")

    def delete_report(self, report_id: int) -> None:
        self._request("DELETE", f"/reports/{report_id}")

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------
    def submit_application(self, answers: dict[str, str]) -> str:
        data = self._request("POST", "/applications", json=answers)
        return data["application_id"]

    def check_application_status(self, application_id: str) -> Optional[ApplicationStatus]:
        data = self._request("POST", "/applications/status", json={"application_id": application_id})
        if not data.get("found"):
            return None
        item = data["application"]
        return ApplicationStatus(
            application_id=item["application_id"],
            character_name=item.get("character_name", ""),
            status=item["status"],
            submitted_at=self._parse_datetime(item.get("created_at")),
            reviewed_at=self._parse_datetime(item.get("reviewed_at")),
            reviewer_notes=item.get("reviewer_notes"),
        )

    # ------------------------------------------------------------------
    # Staff
    # ------------------------------------------------------------------
    def create_staff(
        self,
        *,
        name: str,
        username: str,
        email: str,
        password: str,
        role: str = "employee",
        phone: Optional[str] = None,
    ) -> str:
        payload = {
            "name": name,
            "username": username,
            "email": email,
            "password": password,
            "role": role,
            "phone": phone,
        }
        data = self._request("POST", "/staff", json=payload)
        return data["user_id"]

    def update_staff(self, user_id: str, **changes: Any) -> None:
        self._request("PATCH", f"/staff/{user_id}", json=changes)

    def delete_staff(self, user_id: str) -> None:
        self._request("DELETE", f"/staff/{user_id}")

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------
    @staticmethod
    def _parse_datetime(value: Optional[str]):
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:  # pragma: no cover - unexpected server format
            return None

    @staticmethod
    def _profile(item: dict[str, Any]) -> StaffProfile:
        return StaffProfile(
            user_id=item["user_id"],
            name=item.get("name", ""),
            username=item.get("username", ""),
            email=item.get("email", ""),
            role=item.get("role"),
            phone=item.get("phone"),
            clocked_in=bool(item.get("clocked_in", False)),
        )

    def _clock_entry(self, item: dict[str, Any]) -> ClockEntry:
        return ClockEntry(
            record_id=int(item["id"]),
            clock_in=self._parse_datetime(item.get("clock_in")),
            clock_out=self._parse_datetime(item.get("clock_out")),
            duration_minutes=item.get("duration"),
            date=item.get("date", ""),
        )

    def _clock_status(self, item: dict[str, Any]) -> ClockStatus:
        current = item.get("current_record")
        return ClockStatus(
            is_clocked_in=bool(item.get("is_clocked_in")),
            today_hours=float(item.get("today_hours", 0)),
            weekly_hours=float(item.get("weekly_hours", 0)),
            current=self._clock_entry(current) if current else None,
        )

    def _report(self, item: dict[str, Any]) -> TowReport:
        return TowReport(
            report_id=int(item["id"]),
            title=item.get("title", ""),
            report_type=item.get("type", "tow"),
            status=item.get("status", "open"),
            location=item.get("location", ""),
            vehicle=item.get("vehicle"),
            customer_name=item.get("customer_name"),
            customer_phone=item.get("customer_phone"),
            assigned_to=item.get("assigned_to"),
            assignee_name=item.get("assignee_name"),
            notes=item.get("notes"),
            created_at=self._parse_datetime(item.get("created_at")),
        )


__all__ = ["ApiClient", "ApiError"]
