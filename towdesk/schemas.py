from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from typing_extensions import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, model_validator


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


UtcDatetime = Annotated[dt.datetime, PlainSerializer(_serialize_datetime, when_used="json")]


class StaffResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    user_id: str
    name: str
    username: str
    email: str
    phone: Optional[str]
    role: Optional[str]
    clocked_in: bool
    created_at: UtcDatetime


class LoginRequest(BaseModel):
    login: str = Field(min_length=1)
    password: str = Field(min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    profile: StaffResponse


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(min_length=6)
    new_password: str = Field(min_length=6)
    confirm_password: str = Field(min_length=6)

    @model_validator(mode="after")
    def _validate_match(self) -> "PasswordChangeRequest":
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class StaffCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    username: str = Field(min_length=1)
    email: str = Field(min_length=3)
    password: str = Field(min_length=6)
    phone: Optional[str] = None
    role: str = "employee"


class StaffUpdateRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = Field(default=None, min_length=6)
    role: Optional[str] = None


class StaffMutationResponse(BaseModel):
    success: bool = True
    user_id: Optional[str] = None


class OwnerSetupRequest(BaseModel):
    email: str = Field(min_length=3)
    password: str = Field(min_length=6)
    name: str = Field(min_length=1)


class SetupStatusResponse(BaseModel):
    owner_exists: bool


class ClockRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    user_id: str
    clock_in: UtcDatetime
    clock_out: Optional[UtcDatetime]
    duration: Optional[int]
    date: str


class ClockStatusResponse(BaseModel):
    is_clocked_in: bool
    current_record: Optional[ClockRecordResponse]
    today_hours: float
    weekly_hours: float


class MeResponse(BaseModel):
    profile: StaffResponse
    clock: ClockStatusResponse


class ReportCreateRequest(BaseModel):
    title: str
    type: Literal["tow", "roadside", "impound", "pd_tow"] = "tow"
    location: str
    vehicle: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    notes: Optional[str] = None
    due_at: Optional[dt.datetime] = None


class ReportUpdateRequest(BaseModel):
    title: Optional[str] = None
    type: Optional[Literal["tow", "roadside", "impound", "pd_tow"]] = None
    location: Optional[str] = None
    vehicle: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    notes: Optional[str] = None
    due_at: Optional[dt.datetime] = None


class ReportStatusRequest(BaseModel):
    status: str


class ReportAssignRequest(BaseModel):
    user_id: str


class ReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    title: str
    type: str
    status: str
    location: str
    vehicle: Optional[str]
    customer_name: Optional[str]
    customer_phone: Optional[str]
    assigned_to: Optional[str]
    assignee_name: Optional[str]
    created_by: Optional[str]
    creator_name: Optional[str]
    notes: Optional[str]
    due_at: Optional[UtcDatetime]
    created_at: UtcDatetime
    updated_at: UtcDatetime


class TowUnitCreateRequest(BaseModel):
    name: str
    operator: str
    license_plate: str
    phone: Optional[str] = None
    location: Optional[str] = None
    vehicle_type: Optional[str] = None


class TowUnitUpdateRequest(BaseModel):
    name: Optional[str] = None
    operator: Optional[str] = None
    license_plate: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[Literal["available", "dispatched", "offline", "maintenance"]] = None
    location: Optional[str] = None
    vehicle_type: Optional[str] = None


class TowUnitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    name: str
    operator: str
    license_plate: str
    phone: str
    status: str
    location: str
    vehicle_type: str


class ApplicationCreateRequest(BaseModel):
    character_name: str
    discord_name: str
    timezone: str
    hours_per_week: str
    why_join: str
    experience: str
    scenario_vehicle_breakdown: str
    scenario_difficult_customer: str
    scenario_enhance_roleplay: str
    rule_break_response: str


class ApplicationSubmittedResponse(BaseModel):
    application_id: str


class ApplicationStatusRequest(BaseModel):
    application_id: Optional[str] = None


class ApplicationPublicView(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    application_id: str
    character_name: str
    status: str
    created_at: UtcDatetime
    reviewed_at: Optional[UtcDatetime]
    reviewer_notes: Optional[str]


class ApplicationStatusResponse(BaseModel):
    found: bool
    application: Optional[ApplicationPublicView] = None


class ApplicationResponse(ApplicationPublicView):
    id: int
    discord_name: str
    timezone: str
    hours_per_week: str
    why_join: str
    experience: str
    scenario_vehicle_breakdown: str
    scenario_difficult_customer: str
    scenario_enhance_roleplay: str
    rule_break_response: str
    reviewed_by: Optional[str]


class ApplicationReviewRequest(BaseModel):
    status: Literal["accepted", "denied"]
    reviewer_notes: Optional[str] = None


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    user_id: Optional[str]
    user_name: str
    action: str
    entity_type: str
    entity_id: Optional[str]
    old_value: Optional[Dict[str, Any]]
    new_value: Optional[Dict[str, Any]]
    details: Optional[str]
    created_at: UtcDatetime


class StaffAnalytics(BaseModel):
    user_id: str
    name: str
    role: Optional[str]
    clocked_in: bool
    today_hours: float
    total_hours: float
    report_count: int
    civ_tows: int
    pd_tows: int
    completed_reports: int


class StaffAnalyticsDetail(StaffAnalytics):
    clock_records: List[ClockRecordResponse] = Field(default_factory=list)


class AnalyticsResponse(BaseModel):
    total_reports: int
    open_reports: int
    completed_reports: int
    civ_tows: int
    pd_tows: int
    total_hours: float
    status_counts: Dict[str, int]
    staff: List[StaffAnalytics]


class OnlineUser(BaseModel):
    user_id: str
    name: str
    online_at: str


class PresenceResponse(BaseModel):
    online_users: List[OnlineUser]
    online_count: int


class DashboardResponse(BaseModel):
    role: Optional[str]
    clock: ClockStatusResponse
    my_active_reports: List[ReportResponse]
    latest_reports: List[ReportResponse]
    tow_unit_counts: Dict[str, int]
    online_count: int


class SettingsResponse(BaseModel):
    company_name: str
    phone: str
    email: str
    address: str
    notify_new_jobs: bool
    notify_job_status: bool
    notify_unit_availability: bool
    notify_daily_reports: bool


class SettingsUpdateRequest(BaseModel):
    company_name: Optional[str] = Field(default=None, min_length=1)
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    notify_new_jobs: Optional[bool] = None
    notify_job_status: Optional[bool] = None
    notify_unit_availability: Optional[bool] = None
    notify_daily_reports: Optional[bool] = None
