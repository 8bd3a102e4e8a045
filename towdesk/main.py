from __future__ import annotations

import datetime as dt
import logging
from typing import Optional, Tuple

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from .config import configure_logging, settings
from .database import db_session, get_db, init_db
from .fleet import TowUnitRegistry
from .middleware import RequestLogMiddleware
from .models import Profile
from .presence import PresenceChannel, PresenceRoster
from .schemas import (
    AnalyticsResponse,
    ApplicationCreateRequest,
    ApplicationResponse,
    ApplicationReviewRequest,
    ApplicationStatusRequest,
    ApplicationStatusResponse,
    ApplicationSubmittedResponse,
    AuditLogResponse,
    ClockRecordResponse,
    ClockStatusResponse,
    DashboardResponse,
    LoginRequest,
    MeResponse,
    OwnerSetupRequest,
    PasswordChangeRequest,
    PresenceResponse,
    ReportAssignRequest,
    ReportCreateRequest,
    ReportResponse,
    ReportStatusRequest,
    ReportUpdateRequest,
    SettingsResponse,
    SettingsUpdateRequest,
    SetupStatusResponse,
    StaffAnalyticsDetail,
    StaffCreateRequest,
    StaffMutationResponse,
    StaffResponse,
    StaffUpdateRequest,
    TokenResponse,
    TowUnitCreateRequest,
    TowUnitResponse,
    TowUnitUpdateRequest,
)
from .security import authenticate, create_access_token, get_current_staff, require_manager, resolve_token
from .services import (
    accept_report,
    analytics_overview,
    assign_report,
    build_dashboard,
    change_password,
    change_report_status,
    check_application_status,
    clock_in,
    clock_out,
    clock_status,
    create_report,
    create_staff,
    delete_report,
    delete_staff,
    export_timesheet,
    get_application,
    get_report,
    list_applications,
    list_audit_logs,
    list_clock_records,
    list_reports,
    list_staff,
    owner_exists,
    review_application,
    setup_owner,
    staff_analytics,
    submit_application,
    unassign_report,
    update_company_settings,
    update_report,
    update_staff,
)
from .state import CompanySettingsState

configure_logging()
logger = logging.getLogger(__name__)

init_db()

company_state = CompanySettingsState(settings)
with db_session() as session:
    company_state.load_from_db(session)

app = FastAPI(title=settings.app_name)
app.state.company_state = company_state
app.state.tow_units = TowUnitRegistry()
app.state.presence = PresenceChannel(PresenceRoster())
app.add_middleware(RequestLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _tow_units(request: Request) -> TowUnitRegistry:
    return request.app.state.tow_units


def _presence(request: Request) -> PresenceChannel:
    return request.app.state.presence


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@app.post("/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest, db: Session = Depends(get_db)) -> TokenResponse:
    profile = authenticate(db, payload.login, payload.password)
    if profile is None or profile.role is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid login credentials")
    token = create_access_token(profile.user_id, profile.role)
    logger.info("%s logged in", profile.user_id)
    return TokenResponse(access_token=token, profile=StaffResponse.model_validate(profile))


@app.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(request: Request, current: Profile = Depends(get_current_staff)) -> Response:
    _presence(request).roster.untrack(current.user_id)
    logger.info("%s logged out", current.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/auth/password", status_code=status.HTTP_204_NO_CONTENT)
def password_change(
    payload: PasswordChangeRequest,
    current: Profile = Depends(get_current_staff),
    db: Session = Depends(get_db),
) -> Response:
    change_password(db, current, payload.current_password, payload.new_password)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/me", response_model=MeResponse)
def me(current: Profile = Depends(get_current_staff), db: Session = Depends(get_db)) -> MeResponse:
    return {"profile": current, "clock": clock_status(db, current)}


# ---------------------------------------------------------------------------
# Time clock
# ---------------------------------------------------------------------------


@app.post("/clock/in", response_model=ClockRecordResponse, status_code=status.HTTP_201_CREATED)
def work_clock_in(current: Profile = Depends(get_current_staff), db: Session = Depends(get_db)) -> ClockRecordResponse:
    return clock_in(db, current)


@app.post("/clock/out", response_model=ClockRecordResponse)
def work_clock_out(current: Profile = Depends(get_current_staff), db: Session = Depends(get_db)) -> ClockRecordResponse:
    return clock_out(db, current)


@app.get("/clock/status", response_model=ClockStatusResponse)
def work_clock_status(current: Profile = Depends(get_current_staff), db: Session = Depends(get_db)) -> ClockStatusResponse:
    return clock_status(db, current)


@app.get("/clock/records", response_model=list[ClockRecordResponse])
def work_clock_records(
    user_id: Optional[str] = None,
    include_all: bool = Query(default=False, alias="all"),
    from_date: Optional[dt.date] = None,
    to_date: Optional[dt.date] = None,
    current: Profile = Depends(get_current_staff),
    db: Session = Depends(get_db),
) -> list[ClockRecordResponse]:
    return list_clock_records(db, current, user_id, include_all, from_date, to_date)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


@app.get("/reports", response_model=list[ReportResponse])
def get_reports(
    search: Optional[str] = None,
    report_type: Optional[str] = Query(default=None, alias="type"),
    status_value: Optional[str] = Query(default=None, alias="status"),
    mine: bool = False,
    current: Profile = Depends(get_current_staff),
    db: Session = Depends(get_db),
) -> list[ReportResponse]:
    return list_reports(db, current, search, report_type, status_value, mine)


@app.post("/reports", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
def create_report_entry(
    payload: ReportCreateRequest,
    current: Profile = Depends(get_current_staff),
    db: Session = Depends(get_db),
) -> ReportResponse:
    return create_report(db, current, payload.model_dump())


@app.get("/reports/{report_id}", response_model=ReportResponse)
def get_report_entry(
    report_id: int,
    current: Profile = Depends(get_current_staff),
    db: Session = Depends(get_db),
) -> ReportResponse:
    return get_report(db, current, report_id)


@app.patch("/reports/{report_id}", response_model=ReportResponse)
def update_report_entry(
    report_id: int,
    payload: ReportUpdateRequest,
    current: Profile = Depends(get_current_staff),
    db: Session = Depends(get_db),
) -> ReportResponse:
    changes = payload.model_dump(exclude_unset=True)
    return update_report(db, current, report_id, changes)


@app.post("/reports/{report_id}/accept", response_model=ReportResponse)
def accept_report_entry(
    report_id: int,
    current: Profile = Depends(get_current_staff),
    db: Session = Depends(get_db),
) -> ReportResponse:
    return accept_report(db, current, report_id)


@app.post("/reports/{report_id}/assign", response_model=ReportResponse)
def assign_report_entry(
    report_id: int,
    payload: ReportAssignRequest,
    current: Profile = Depends(get_current_staff),
    db: Session = Depends(get_db),
) -> ReportResponse:
    return assign_report(db, current, report_id, payload.user_id)


@app.post("/reports/{report_id}/unassign", response_model=ReportResponse)
def unassign_report_entry(
    report_id: int,
    current: Profile = Depends(get_current_staff),
    db: Session = Depends(get_db),
) -> ReportResponse:
    return unassign_report(db, current, report_id)


@app.post("/reports/{report_id}/status", response_model=ReportResponse)
def change_report_status_entry(
    report_id: int,
    payload: ReportStatusRequest,
    current: Profile = Depends(get_current_staff),
    db: Session = Depends(get_db),
) -> ReportResponse:
    return change_report_status(db, current, report_id, payload.status)


@app.delete("/reports/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_report_entry(
    report_id: int,
    current: Profile = Depends(get_current_staff),
    db: Session = Depends(get_db),
) -> Response:
    delete_report(db, current, report_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Fleet
# ---------------------------------------------------------------------------


@app.get("/tow-units", response_model=list[TowUnitResponse])
def get_tow_units(
    request: Request,
    search: Optional[str] = None,
    status_value: Optional[str] = Query(default=None, alias="status"),
    current: Profile = Depends(get_current_staff),
) -> list[TowUnitResponse]:
    return [unit.to_dict() for unit in _tow_units(request).list(search, status_value)]


@app.post("/tow-units", response_model=TowUnitResponse, status_code=status.HTTP_201_CREATED)
def create_tow_unit(
    payload: TowUnitCreateRequest,
    request: Request,
    current: Profile = Depends(get_current_staff),
) -> TowUnitResponse:
    try:
        unit = _tow_units(request).add(**payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return unit.to_dict()


@app.patch("/tow-units/{unit_id}", response_model=TowUnitResponse)
def update_tow_unit(
    unit_id: str,
    payload: TowUnitUpdateRequest,
    request: Request,
    current: Profile = Depends(get_current_staff),
) -> TowUnitResponse:
    try:
        unit = _tow_units(request).update(unit_id, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if unit is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tow unit not found")
    return unit.to_dict()


@app.delete("/tow-units/{unit_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_tow_unit(
    unit_id: str,
    request: Request,
    current: Profile = Depends(require_manager),
) -> Response:
    if not _tow_units(request).remove(unit_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tow unit not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Staff administration
# ---------------------------------------------------------------------------


@app.get("/setup/status", response_model=SetupStatusResponse)
def setup_status(db: Session = Depends(get_db)) -> SetupStatusResponse:
    return SetupStatusResponse(owner_exists=owner_exists(db))


@app.post("/setup/owner", response_model=StaffMutationResponse, status_code=status.HTTP_201_CREATED)
def setup_owner_account(payload: OwnerSetupRequest, db: Session = Depends(get_db)) -> StaffMutationResponse:
    profile = setup_owner(db, payload.email, payload.password, payload.name)
    return StaffMutationResponse(user_id=profile.user_id)


@app.get("/staff", response_model=list[StaffResponse])
def get_staff_list(
    search: Optional[str] = None,
    current: Profile = Depends(require_manager),
    db: Session = Depends(get_db),
) -> list[StaffResponse]:
    return list_staff(db, search)


@app.post("/staff", response_model=StaffMutationResponse, status_code=status.HTTP_201_CREATED)
def create_staff_member(
    payload: StaffCreateRequest,
    current: Profile = Depends(require_manager),
    db: Session = Depends(get_db),
) -> StaffMutationResponse:
    profile = create_staff(
        db,
        current,
        payload.name,
        payload.username,
        payload.email,
        payload.password,
        payload.phone,
        payload.role,
    )
    return StaffMutationResponse(user_id=profile.user_id)


@app.patch("/staff/{user_id}", response_model=StaffMutationResponse)
def update_staff_member(
    user_id: str,
    payload: StaffUpdateRequest,
    current: Profile = Depends(get_current_staff),
    db: Session = Depends(get_db),
) -> StaffMutationResponse:
    profile = update_staff(db, current, user_id, payload.model_dump(exclude_unset=True))
    return StaffMutationResponse(user_id=profile.user_id)


@app.delete("/staff/{user_id}", response_model=StaffMutationResponse)
def delete_staff_member(
    user_id: str,
    current: Profile = Depends(require_manager),
    db: Session = Depends(get_db),
) -> StaffMutationResponse:
    delete_staff(db, current, user_id)
    return StaffMutationResponse()


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------


@app.post("/applications", response_model=ApplicationSubmittedResponse, status_code=status.HTTP_201_CREATED)
def submit_application_form(payload: ApplicationCreateRequest, db: Session = Depends(get_db)) -> ApplicationSubmittedResponse:
    application = submit_application(db, payload.model_dump())
    return ApplicationSubmittedResponse(application_id=application.application_id)


@app.post("/applications/status", response_model=ApplicationStatusResponse)
def application_status(payload: ApplicationStatusRequest, db: Session = Depends(get_db)) -> ApplicationStatusResponse:
    application = check_application_status(db, payload.application_id)
    if application is None:
        return ApplicationStatusResponse(found=False)
    return {"found": True, "application": application}


@app.get("/applications", response_model=list[ApplicationResponse])
def get_applications(
    search: Optional[str] = None,
    status_value: Optional[str] = Query(default=None, alias="status"),
    current: Profile = Depends(require_manager),
    db: Session = Depends(get_db),
) -> list[ApplicationResponse]:
    return list_applications(db, status_value, search)


@app.get("/applications/{application_id}", response_model=ApplicationResponse)
def get_application_entry(
    application_id: str,
    current: Profile = Depends(require_manager),
    db: Session = Depends(get_db),
) -> ApplicationResponse:
    return get_application(db, application_id)


@app.post("/applications/{application_id}/review", response_model=ApplicationResponse)
def review_application_entry(
    application_id: str,
    payload: ApplicationReviewRequest,
    current: Profile = Depends(require_manager),
    db: Session = Depends(get_db),
) -> ApplicationResponse:
    return review_application(db, current, application_id, payload.status, payload.reviewer_notes)


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------


@app.get("/dashboard", response_model=DashboardResponse)
def dashboard(
    request: Request,
    current: Profile = Depends(get_current_staff),
    db: Session = Depends(get_db),
) -> DashboardResponse:
    return build_dashboard(db, current, _tow_units(request), _presence(request).roster)


@app.get("/analytics", response_model=AnalyticsResponse)
def analytics(
    search: Optional[str] = None,
    current: Profile = Depends(require_manager),
    db: Session = Depends(get_db),
) -> AnalyticsResponse:
    return analytics_overview(db, search)


@app.get("/analytics/staff/{user_id}", response_model=StaffAnalyticsDetail)
def analytics_for_staff(
    user_id: str,
    current: Profile = Depends(require_manager),
    db: Session = Depends(get_db),
) -> StaffAnalyticsDetail:
    return staff_analytics(db, user_id)


@app.get("/analytics/timesheet")
def analytics_timesheet(
    from_date: dt.date,
    to_date: dt.date,
    current: Profile = Depends(require_manager),
    db: Session = Depends(get_db),
) -> Response:
    filename, content = export_timesheet(db, from_date, to_date)
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    media_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    return Response(content, media_type=media_type, headers=headers)


@app.get("/audit-logs", response_model=list[AuditLogResponse])
def audit_logs(
    limit: Optional[int] = Query(default=None, ge=1),
    action: Optional[str] = None,
    search: Optional[str] = None,
    current: Profile = Depends(require_manager),
    db: Session = Depends(get_db),
) -> list[AuditLogResponse]:
    return list_audit_logs(db, limit, action, search)


@app.get("/settings", response_model=SettingsResponse)
def read_settings(request: Request, current: Profile = Depends(require_manager)) -> SettingsResponse:
    state: CompanySettingsState = request.app.state.company_state
    return SettingsResponse(**state.snapshot())


@app.put("/settings", response_model=SettingsResponse)
def write_settings(
    payload: SettingsUpdateRequest,
    request: Request,
    current: Profile = Depends(require_manager),
    db: Session = Depends(get_db),
) -> SettingsResponse:
    state: CompanySettingsState = request.app.state.company_state
    updates = payload.model_dump(exclude_unset=True)
    snapshot = update_company_settings(db, state, current, updates)
    return SettingsResponse(**snapshot)


# ---------------------------------------------------------------------------
# Presence
# ---------------------------------------------------------------------------


@app.get("/presence", response_model=PresenceResponse)
def presence(request: Request, current: Profile = Depends(get_current_staff)) -> PresenceResponse:
    roster = _presence(request).roster
    return PresenceResponse(online_users=roster.snapshot(), online_count=roster.count())


def _socket_identity(websocket: WebSocket, token: Optional[str]) -> Optional[Tuple[str, str]]:
    # The session is released before the socket starts listening.
    provider = websocket.app.dependency_overrides.get(get_db, get_db)
    sessions = provider()
    db = next(sessions)
    try:
        profile = resolve_token(db, token)
        return (profile.user_id, profile.name) if profile is not None else None
    finally:
        sessions.close()


@app.websocket("/presence/ws")
async def presence_socket(websocket: WebSocket, token: Optional[str] = None) -> None:
    identity = _socket_identity(websocket, token)
    if identity is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    user_id, name = identity
    channel: PresenceChannel = websocket.app.state.presence
    await channel.connect(websocket, user_id, name)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        await channel.disconnect(websocket, user_id)
