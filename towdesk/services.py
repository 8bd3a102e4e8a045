from __future__ import annotations

import datetime as dt
import io
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from zoneinfo import ZoneInfo

from fastapi import HTTPException, status
from openpyxl import Workbook
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .audit import log_audit_event
from .config import settings
from .fleet import TowUnitRegistry
from .models import Application, AuditLog, ClockRecord, Profile, Report, UserRole
from .presence import PresenceRoster
from .security import hash_password, verify_password
from .state import CompanySettingsState
from .utils import clean_text, generate_application_id, normalize_application_id
from .workflow import (
    DONE_STATUSES,
    REPORT_STATUSES,
    TERMINAL_STATUSES,
    TransitionError,
    check_accept,
    check_assign,
    check_status_change,
    check_unassign,
    is_manager,
)

logger = logging.getLogger(__name__)

UTC = dt.timezone.utc
LOCAL_TZ = ZoneInfo(settings.timezone)

STAFF_CREATABLE_ROLES = {"admin", "employee"}

APPLICATION_FIELDS = (
    "character_name",
    "discord_name",
    "timezone",
    "hours_per_week",
    "why_join",
    "experience",
    "scenario_vehicle_breakdown",
    "scenario_difficult_customer",
    "scenario_enhance_roleplay",
    "rule_break_response",
)

REPORT_DETAIL_FIELDS = (
    "title",
    "type",
    "location",
    "vehicle",
    "customer_name",
    "customer_phone",
    "notes",
    "due_at",
)

MAX_AUDIT_PAGE = 500


def _now() -> dt.datetime:
    return dt.datetime.now(UTC)


def _local_today() -> dt.date:
    return _now().astimezone(LOCAL_TZ).date()


def _commit(db: Session, detail: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Database write failed: %s", detail)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


def _raise_transition(exc: TransitionError) -> None:
    code = status.HTTP_403_FORBIDDEN if exc.forbidden else status.HTTP_409_CONFLICT
    raise HTTPException(status_code=code, detail=str(exc)) from exc


def _minutes_to_hours(minutes: int) -> float:
    return round(minutes / 60, 2)


# ---------------------------------------------------------------------------
# Staff
# ---------------------------------------------------------------------------


def owner_exists(db: Session) -> bool:
    return db.query(UserRole).filter(UserRole.role == "owner").first() is not None


def get_staff(db: Session, user_id: str) -> Profile:
    profile = db.get(Profile, user_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Staff member not found")
    return profile


def _ensure_unique_identity(
    db: Session,
    email: Optional[str],
    username: Optional[str],
    exclude_user_id: Optional[str] = None,
) -> None:
    if email:
        query = db.query(Profile).filter(Profile.email == email)
        if exclude_user_id:
            query = query.filter(Profile.user_id != exclude_user_id)
        if query.first() is not None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is already registered")
    if username:
        query = db.query(Profile).filter(Profile.username == username)
        if exclude_user_id:
            query = query.filter(Profile.user_id != exclude_user_id)
        if query.first() is not None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username is already taken")


def _create_profile(
    db: Session,
    name: str,
    username: str,
    email: str,
    password: str,
    phone: Optional[str],
    role: str,
) -> Profile:
    normalized_email = email.strip().lower()
    normalized_username = username.strip().lower()
    display_name = clean_text(name)
    if not display_name or not normalized_username or "@" not in normalized_email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name, username and a valid email are required")
    # Usernames never look like e-mail addresses.
    if "@" in normalized_username:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username cannot contain '@'")
    _ensure_unique_identity(db, normalized_email, normalized_username)
    profile = Profile(
        name=display_name,
        username=normalized_username,
        email=normalized_email,
        phone=clean_text(phone),
        password_hash=hash_password(password),
    )
    profile.role_entry = UserRole(role=role)
    db.add(profile)
    _commit(db, "Failed to create staff member")
    db.refresh(profile)
    return profile


def setup_owner(db: Session, email: str, password: str, name: str) -> Profile:
    if owner_exists(db):
        logger.warning("Rejected owner setup: an owner already exists")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="An owner account already exists")
    username = email.strip().lower().split("@")[0]
    profile = _create_profile(db, name, username, email, password, None, "owner")
    logger.info("Owner account %s created", profile.user_id)
    return profile


def list_staff(db: Session, search: Optional[str] = None) -> List[Profile]:
    query = db.query(Profile)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(Profile.name).like(pattern),
                Profile.username.like(pattern),
                Profile.email.like(pattern),
            )
        )
    return query.order_by(Profile.name.asc()).all()


def create_staff(
    db: Session,
    actor: Profile,
    name: str,
    username: str,
    email: str,
    password: str,
    phone: Optional[str],
    role: str,
) -> Profile:
    if role == "owner" or role not in STAFF_CREATABLE_ROLES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Role must be admin or employee")
    if actor.role == "admin" and role != "employee":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admins can only create employees")
    profile = _create_profile(db, name, username, email, password, phone, role)
    logger.info("Staff member %s (%s) created by %s", profile.user_id, role, actor.user_id)
    log_audit_event(
        db,
        actor=actor,
        action="user_created",
        entity_type="user",
        entity_id=profile.user_id,
        new_value={"name": profile.name, "username": profile.username, "role": role},
        details=f"Created {role} {profile.name}",
    )
    return profile


def update_staff(db: Session, actor: Profile, user_id: str, changes: Dict[str, Any]) -> Profile:
    target = get_staff(db, user_id)
    is_self = actor.user_id == target.user_id
    if not is_self:
        if not is_manager(actor.role):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        if actor.role == "admin" and target.role != "employee":
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admins can only update employees")

    new_role = changes.get("role")
    if new_role is not None and new_role != target.role:
        if actor.role != "owner":
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the owner can change roles")
        if target.role == "owner":
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="The owner role cannot be changed")
        if new_role not in STAFF_CREATABLE_ROLES:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Role must be admin or employee")

    before = {"name": target.name, "phone": target.phone, "email": target.email}
    email = changes.get("email")
    if email:
        normalized_email = email.strip().lower()
        if "@" not in normalized_email:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A valid email is required")
        _ensure_unique_identity(db, normalized_email, None, exclude_user_id=target.user_id)
        target.email = normalized_email
    if changes.get("password"):
        target.password_hash = hash_password(changes["password"])
    name = clean_text(changes.get("name"))
    if name:
        target.name = name
    if "phone" in changes:
        target.phone = clean_text(changes["phone"])

    old_role = target.role
    role_changed = new_role is not None and new_role != old_role
    if role_changed:
        target.role_entry.role = new_role
    db.add(target)
    _commit(db, "Failed to update staff member")
    db.refresh(target)

    after = {"name": target.name, "phone": target.phone, "email": target.email}
    if before != after or changes.get("password"):
        log_audit_event(
            db,
            actor=actor,
            action="user_updated",
            entity_type="user",
            entity_id=target.user_id,
            old_value=before,
            new_value=after,
            details="Password changed" if changes.get("password") else None,
        )
    if role_changed:
        logger.info("Role of %s changed from %s to %s", target.user_id, old_role, new_role)
        log_audit_event(
            db,
            actor=actor,
            action="role_changed",
            entity_type="user",
            entity_id=target.user_id,
            old_value={"role": old_role},
            new_value={"role": new_role},
        )
    return target


def delete_staff(db: Session, actor: Profile, user_id: str) -> None:
    target = get_staff(db, user_id)
    if target.role == "owner":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot delete owner account")
    if actor.role == "admin" and target.role != "employee":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admins can only delete employees")
    snapshot = {"name": target.name, "username": target.username, "role": target.role}

    orphaned = (
        db.query(Report)
        .filter(Report.assigned_to == target.user_id, Report.status.notin_(TERMINAL_STATUSES))
        .all()
    )
    for report in orphaned:
        report.mark_unassigned()
    db.query(Report).filter(Report.created_by == target.user_id).update(
        {Report.created_by: None}, synchronize_session=False
    )
    db.delete(target)
    _commit(db, "Failed to delete staff member")
    logger.info("Staff member %s deleted by %s (%d reports reopened)", user_id, actor.user_id, len(orphaned))
    log_audit_event(
        db,
        actor=actor,
        action="user_deleted",
        entity_type="user",
        entity_id=user_id,
        old_value=snapshot,
        details=f"Deleted {snapshot['role']} {snapshot['name']}",
    )


def change_password(db: Session, profile: Profile, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, profile.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")
    profile.password_hash = hash_password(new_password)
    db.add(profile)
    _commit(db, "Failed to change password")


# ---------------------------------------------------------------------------
# Time clock
# ---------------------------------------------------------------------------


def get_open_record(db: Session, user_id: str, day: Optional[dt.date] = None) -> Optional[ClockRecord]:
    day = day or _local_today()
    return (
        db.query(ClockRecord)
        .filter(
            ClockRecord.user_id == user_id,
            ClockRecord.date == day.isoformat(),
            ClockRecord.clock_out.is_(None),
        )
        .order_by(ClockRecord.clock_in.desc())
        .first()
    )


def clock_in(db: Session, profile: Profile) -> ClockRecord:
    today = _local_today()
    if get_open_record(db, profile.user_id, today):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Already clocked in")
    record = ClockRecord(user_id=profile.user_id, clock_in=_now(), date=today.isoformat())
    profile.clocked_in = True
    db.add(record)
    db.add(profile)
    _commit(db, "Failed to clock in")
    db.refresh(record)
    logger.info("%s clocked in", profile.user_id)
    log_audit_event(db, actor=profile, action="clock_in", entity_type="clock_record", entity_id=record.id)
    return record


def clock_out(db: Session, profile: Profile) -> ClockRecord:
    record = get_open_record(db, profile.user_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active clock record for today")
    record.mark_clocked_out(_now())
    profile.clocked_in = False
    db.add(record)
    db.add(profile)
    _commit(db, "Failed to clock out")
    db.refresh(record)
    logger.info("%s clocked out after %s minutes", profile.user_id, record.duration)
    log_audit_event(
        db,
        actor=profile,
        action="clock_out",
        entity_type="clock_record",
        entity_id=record.id,
        new_value={"duration": record.duration},
    )
    return record


def _sum_minutes(records: Iterable[ClockRecord]) -> int:
    return sum(record.duration or 0 for record in records)


def clock_status(db: Session, profile: Profile) -> Dict[str, Any]:
    today = _local_today()
    week_start = today - dt.timedelta(days=today.weekday())
    records = (
        db.query(ClockRecord)
        .filter(
            ClockRecord.user_id == profile.user_id,
            ClockRecord.date >= week_start.isoformat(),
            ClockRecord.date <= today.isoformat(),
        )
        .all()
    )
    today_records = [record for record in records if record.date == today.isoformat()]
    current = get_open_record(db, profile.user_id, today)
    return {
        "is_clocked_in": current is not None,
        "current_record": current,
        "today_hours": _minutes_to_hours(_sum_minutes(today_records)),
        "weekly_hours": _minutes_to_hours(_sum_minutes(records)),
    }


def list_clock_records(
    db: Session,
    actor: Profile,
    user_id: Optional[str] = None,
    include_all: bool = False,
    from_date: Optional[dt.date] = None,
    to_date: Optional[dt.date] = None,
) -> List[ClockRecord]:
    query = db.query(ClockRecord)
    if include_all or (user_id and user_id != actor.user_id):
        if not is_manager(actor.role):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    if not include_all:
        query = query.filter(ClockRecord.user_id == (user_id or actor.user_id))
    if from_date:
        query = query.filter(ClockRecord.date >= from_date.isoformat())
    if to_date:
        query = query.filter(ClockRecord.date <= to_date.isoformat())
    return query.order_by(ClockRecord.clock_in.desc()).all()


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def _report_snapshot(report: Report) -> Dict[str, Any]:
    return {
        "title": report.title,
        "type": report.type,
        "status": report.status,
        "location": report.location,
        "assigned_to": report.assigned_to,
    }


def _can_view(actor: Profile, report: Report) -> bool:
    if is_manager(actor.role):
        return True
    return report.status == "open" or actor.user_id in (report.assigned_to, report.created_by)


def list_reports(
    db: Session,
    actor: Profile,
    search: Optional[str] = None,
    report_type: Optional[str] = None,
    status_value: Optional[str] = None,
    mine: bool = False,
) -> List[Report]:
    query = db.query(Report)
    if not is_manager(actor.role):
        query = query.filter(
            or_(
                Report.status == "open",
                Report.assigned_to == actor.user_id,
                Report.created_by == actor.user_id,
            )
        )
    if mine:
        query = query.filter(or_(Report.assigned_to == actor.user_id, Report.created_by == actor.user_id))
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(Report.title).like(pattern),
                func.lower(Report.location).like(pattern),
                func.lower(Report.vehicle).like(pattern),
                func.lower(Report.customer_name).like(pattern),
            )
        )
    if report_type:
        query = query.filter(Report.type == report_type)
    if status_value:
        if status_value not in REPORT_STATUSES:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown report status")
        query = query.filter(Report.status == status_value)
    return query.order_by(Report.created_at.desc(), Report.id.desc()).all()


def get_report(db: Session, actor: Profile, report_id: int) -> Report:
    report = db.get(Report, report_id)
    if report is None or not _can_view(actor, report):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")
    return report


def create_report(db: Session, actor: Profile, fields: Dict[str, Any]) -> Report:
    title = clean_text(fields.get("title"))
    location = clean_text(fields.get("location"))
    if not title or not location:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Please fill in all required fields")
    report = Report(
        title=title,
        type=fields.get("type") or "tow",
        status="open",
        location=location,
        vehicle=clean_text(fields.get("vehicle")),
        customer_name=clean_text(fields.get("customer_name")),
        customer_phone=clean_text(fields.get("customer_phone")),
        notes=clean_text(fields.get("notes")),
        due_at=fields.get("due_at"),
        created_by=actor.user_id,
    )
    db.add(report)
    _commit(db, "Failed to create report")
    db.refresh(report)
    logger.info("Report %s created by %s", report.id, actor.user_id)
    log_audit_event(
        db,
        actor=actor,
        action="report_created",
        entity_type="report",
        entity_id=report.id,
        new_value=_report_snapshot(report),
        details=f"Created report {report.title}",
    )
    return report


def update_report(db: Session, actor: Profile, report_id: int, changes: Dict[str, Any]) -> Report:
    report = get_report(db, actor, report_id)
    if not (is_manager(actor.role) or actor.user_id in (report.created_by, report.assigned_to)):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    before = {field: getattr(report, field) for field in REPORT_DETAIL_FIELDS}
    for field in REPORT_DETAIL_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if field in {"title", "location"}:
            value = clean_text(value)
            if not value:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{field.capitalize()} is required")
        elif field == "type":
            if value is None:
                continue
        elif field != "due_at":
            value = clean_text(value)
        setattr(report, field, value)
    after = {field: getattr(report, field) for field in REPORT_DETAIL_FIELDS}
    changed = {field: after[field] for field in REPORT_DETAIL_FIELDS if before[field] != after[field]}
    if not changed:
        return report
    db.add(report)
    _commit(db, "Failed to update report")
    db.refresh(report)
    log_audit_event(
        db,
        actor=actor,
        action="report_updated",
        entity_type="report",
        entity_id=report.id,
        old_value={field: before[field] for field in changed},
        new_value=changed,
    )
    return report


def accept_report(db: Session, actor: Profile, report_id: int) -> Report:
    report = get_report(db, actor, report_id)
    try:
        check_accept(report.status)
    except TransitionError as exc:
        _raise_transition(exc)
    report.mark_assigned(actor.user_id)
    db.add(report)
    _commit(db, "Failed to update report")
    db.refresh(report)
    logger.info("Report %s accepted by %s", report.id, actor.user_id)
    log_audit_event(
        db,
        actor=actor,
        action="report_assigned",
        entity_type="report",
        entity_id=report.id,
        old_value={"status": "open", "assigned_to": None},
        new_value={"status": report.status, "assigned_to": actor.user_id},
        details=f"{actor.name} accepted {report.title}",
    )
    return report


def assign_report(db: Session, actor: Profile, report_id: int, user_id: str) -> Report:
    report = get_report(db, actor, report_id)
    try:
        check_assign(report.status, actor.role)
    except TransitionError as exc:
        _raise_transition(exc)
    assignee = db.get(Profile, user_id)
    if assignee is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown staff member")
    report.mark_assigned(assignee.user_id)
    db.add(report)
    _commit(db, "Failed to update report")
    db.refresh(report)
    logger.info("Report %s assigned to %s by %s", report.id, assignee.user_id, actor.user_id)
    log_audit_event(
        db,
        actor=actor,
        action="report_assigned",
        entity_type="report",
        entity_id=report.id,
        old_value={"status": "open", "assigned_to": None},
        new_value={"status": report.status, "assigned_to": assignee.user_id},
        details=f"Assigned {report.title} to {assignee.name}",
    )
    return report


def unassign_report(db: Session, actor: Profile, report_id: int) -> Report:
    report = get_report(db, actor, report_id)
    try:
        check_unassign(report.status, report.assigned_to, actor.user_id)
    except TransitionError as exc:
        _raise_transition(exc)
    before = {"status": report.status, "assigned_to": report.assigned_to}
    report.mark_unassigned()
    db.add(report)
    _commit(db, "Failed to update report")
    db.refresh(report)
    logger.info("Report %s unassigned by %s", report.id, actor.user_id)
    log_audit_event(
        db,
        actor=actor,
        action="report_assigned",
        entity_type="report",
        entity_id=report.id,
        old_value=before,
        new_value={"status": report.status, "assigned_to": None},
        details=f"{actor.name} unassigned from {report.title}",
    )
    return report


def change_report_status(db: Session, actor: Profile, report_id: int, target: str) -> Report:
    report = get_report(db, actor, report_id)
    previous = report.status
    try:
        check_status_change(
            previous,
            target,
            role=actor.role,
            actor_id=actor.user_id,
            assigned_to=report.assigned_to,
        )
    except TransitionError as exc:
        logger.warning("Rejected status change of report %s from %s to %s by %s", report.id, previous, target, actor.user_id)
        _raise_transition(exc)
    report.status = target
    db.add(report)
    _commit(db, "Failed to update report")
    db.refresh(report)
    logger.info("Report %s moved from %s to %s", report.id, previous, target)
    log_audit_event(
        db,
        actor=actor,
        action="report_status_changed",
        entity_type="report",
        entity_id=report.id,
        old_value={"status": previous},
        new_value={"status": target},
    )
    return report


def delete_report(db: Session, actor: Profile, report_id: int) -> None:
    if not is_manager(actor.role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only owners and admins can delete reports")
    report = db.get(Report, report_id)
    if report is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")
    snapshot = _report_snapshot(report)
    db.delete(report)
    _commit(db, "Failed to delete report")
    logger.info("Report %s deleted by %s", report_id, actor.user_id)
    log_audit_event(
        db,
        actor=actor,
        action="report_deleted",
        entity_type="report",
        entity_id=report_id,
        old_value=snapshot,
        details=f"Deleted report {snapshot['title']}",
    )


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------


def submit_application(db: Session, answers: Dict[str, Any]) -> Application:
    cleaned: Dict[str, str] = {}
    for field in APPLICATION_FIELDS:
        value = clean_text(answers.get(field))
        if not value:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="All fields are required")
        cleaned[field] = value
    application_id = generate_application_id()
    while db.query(Application).filter(Application.application_id == application_id).first() is not None:
        application_id = generate_application_id()
    application = Application(application_id=application_id, status="pending", **cleaned)
    db.add(application)
    _commit(db, "Failed to submit application")
    db.refresh(application)
    logger.info("Application %s submitted", application.application_id)
    return application


def check_application_status(db: Session, raw_id: Optional[str]) -> Optional[Application]:
    """Public lookup. Malformed and unknown IDs are indistinguishable to the caller."""
    if raw_id is None or not raw_id.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Application ID is required")
    application_id = normalize_application_id(raw_id)
    if application_id is None:
        logger.info("Application lookup with malformed ID")
        return None
    application = db.query(Application).filter(Application.application_id == application_id).one_or_none()
    if application is None:
        logger.info("Application not found: %s", application_id)
    return application


def list_applications(db: Session, status_value: Optional[str] = None, search: Optional[str] = None) -> List[Application]:
    query = db.query(Application)
    if status_value:
        query = query.filter(Application.status == status_value)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(Application.character_name).like(pattern),
                func.lower(Application.discord_name).like(pattern),
                func.lower(Application.application_id).like(pattern),
            )
        )
    return query.order_by(Application.created_at.desc(), Application.id.desc()).all()


def get_application(db: Session, application_id: str) -> Application:
    normalized = normalize_application_id(application_id)
    application = None
    if normalized:
        application = db.query(Application).filter(Application.application_id == normalized).one_or_none()
    if application is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Application not found")
    return application


def review_application(
    db: Session,
    actor: Profile,
    application_id: str,
    decision: str,
    reviewer_notes: Optional[str],
) -> Application:
    application = get_application(db, application_id)
    if application.status != "pending":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Application has already been reviewed")
    application.status = decision
    application.reviewed_by = actor.user_id
    application.reviewed_at = _now()
    application.reviewer_notes = clean_text(reviewer_notes)
    db.add(application)
    _commit(db, "Failed to update application")
    db.refresh(application)
    logger.info("Application %s %s by %s", application.application_id, decision, actor.user_id)
    log_audit_event(
        db,
        actor=actor,
        action="application_reviewed",
        entity_type="application",
        entity_id=application.application_id,
        old_value={"status": "pending"},
        new_value={"status": decision},
        details=application.reviewer_notes,
    )
    return application


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


def list_audit_logs(
    db: Session,
    limit: Optional[int] = None,
    action: Optional[str] = None,
    search: Optional[str] = None,
) -> List[AuditLog]:
    size = limit or settings.audit_log_page_size
    size = max(1, min(size, MAX_AUDIT_PAGE))
    query = db.query(AuditLog)
    if action:
        query = query.filter(AuditLog.action == action)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(AuditLog.user_name).like(pattern),
                func.lower(AuditLog.details).like(pattern),
                func.lower(AuditLog.entity_type).like(pattern),
            )
        )
    return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(size).all()


# ---------------------------------------------------------------------------
# Analytics and views
# ---------------------------------------------------------------------------


def _staff_breakdown(profile: Profile, reports: List[Report], records: List[ClockRecord], today: str) -> Dict[str, Any]:
    own_reports = [r for r in reports if profile.user_id in (r.assigned_to, r.created_by)]
    own_records = [r for r in records if r.user_id == profile.user_id]
    return {
        "user_id": profile.user_id,
        "name": profile.name,
        "role": profile.role,
        "clocked_in": profile.clocked_in,
        "today_hours": _minutes_to_hours(_sum_minutes(r for r in own_records if r.date == today)),
        "total_hours": _minutes_to_hours(_sum_minutes(own_records)),
        "report_count": len(own_reports),
        "civ_tows": sum(1 for r in own_reports if r.type != "pd_tow"),
        "pd_tows": sum(1 for r in own_reports if r.type == "pd_tow"),
        "completed_reports": sum(1 for r in own_reports if r.status in DONE_STATUSES),
    }


def analytics_overview(db: Session, search: Optional[str] = None) -> Dict[str, Any]:
    reports = db.query(Report).all()
    records = db.query(ClockRecord).all()
    today = _local_today().isoformat()
    staff = [
        profile
        for profile in list_staff(db, search)
        if profile.role in {"admin", "employee"}
    ]
    status_counts = {value: 0 for value in REPORT_STATUSES}
    for report in reports:
        status_counts[report.status] = status_counts.get(report.status, 0) + 1
    return {
        "total_reports": len(reports),
        "open_reports": status_counts["open"],
        "completed_reports": sum(1 for r in reports if r.status in DONE_STATUSES),
        "civ_tows": sum(1 for r in reports if r.type != "pd_tow"),
        "pd_tows": sum(1 for r in reports if r.type == "pd_tow"),
        "total_hours": _minutes_to_hours(_sum_minutes(records)),
        "status_counts": status_counts,
        "staff": [_staff_breakdown(profile, reports, records, today) for profile in staff],
    }


def staff_analytics(db: Session, user_id: str) -> Dict[str, Any]:
    profile = get_staff(db, user_id)
    reports = (
        db.query(Report)
        .filter(or_(Report.assigned_to == user_id, Report.created_by == user_id))
        .all()
    )
    records = (
        db.query(ClockRecord)
        .filter(ClockRecord.user_id == user_id)
        .order_by(ClockRecord.clock_in.desc())
        .all()
    )
    detail = _staff_breakdown(profile, reports, records, _local_today().isoformat())
    detail["clock_records"] = records
    return detail


def _local_time_label(value: Optional[dt.datetime]) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(LOCAL_TZ).strftime("%H:%M")


def export_timesheet(db: Session, from_date: dt.date, to_date: dt.date) -> Tuple[str, bytes]:
    if to_date < from_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid range")
    rows = (
        db.query(ClockRecord, Profile)
        .join(Profile, Profile.user_id == ClockRecord.user_id)
        .filter(
            ClockRecord.date >= from_date.isoformat(),
            ClockRecord.date <= to_date.isoformat(),
            ClockRecord.clock_out.isnot(None),
        )
        .order_by(ClockRecord.date.asc(), Profile.name.asc(), ClockRecord.clock_in.asc())
        .all()
    )
    wb = Workbook()
    ws = wb.active
    ws.title = "Timesheet"
    ws.append(["Staff", "Date", "Clock in", "Clock out", "Minutes", "Hours"])
    for record, profile in rows:
        minutes = record.duration or 0
        ws.append(
            [
                profile.name,
                record.date,
                _local_time_label(record.clock_in),
                _local_time_label(record.clock_out),
                minutes,
                _minutes_to_hours(minutes),
            ]
        )
    buffer = io.BytesIO()
    wb.save(buffer)
    filename = f"timesheet_{from_date.isoformat()}_{to_date.isoformat()}.xlsx"
    logger.info("Timesheet export %s with %d rows", filename, len(rows))
    return filename, buffer.getvalue()


def build_dashboard(
    db: Session,
    actor: Profile,
    registry: TowUnitRegistry,
    roster: PresenceRoster,
) -> Dict[str, Any]:
    visible = list_reports(db, actor)
    active = [
        report
        for report in visible
        if report.assigned_to == actor.user_id and report.status not in TERMINAL_STATUSES
    ]
    return {
        "role": actor.role,
        "clock": clock_status(db, actor),
        "my_active_reports": active,
        "latest_reports": visible[:5],
        "tow_unit_counts": registry.status_counts(),
        "online_count": roster.count(),
    }


def update_company_settings(
    db: Session,
    state: CompanySettingsState,
    actor: Profile,
    updates: Dict[str, Any],
) -> Dict[str, Any]:
    before = state.snapshot()
    state.apply(updates)
    try:
        state.persist(db, updates)
    except SQLAlchemyError:
        db.rollback()
        state.apply(before)
        logger.exception("Failed to persist company settings")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save settings")
    snapshot = state.snapshot()
    changed = {key: snapshot[key] for key in snapshot if before.get(key) != snapshot[key]}
    if changed:
        log_audit_event(
            db,
            actor=actor,
            action="settings_updated",
            entity_type="settings",
            old_value={key: before[key] for key in changed},
            new_value=changed,
        )
    return snapshot
