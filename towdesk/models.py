from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.sqlite import JSON as SQLiteJSON
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def new_user_id() -> str:
    return str(uuid.uuid4())


UTC = dt.timezone.utc


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Profile(Base):
    __tablename__ = "profiles"

    user_id = Column(String(36), primary_key=True, default=new_user_id)
    name = Column(String(120), nullable=False)
    username = Column(String(80), nullable=False, unique=True, index=True)
    email = Column(String(200), nullable=False, unique=True, index=True)
    phone = Column(String(40), nullable=True)
    password_hash = Column(String(200), nullable=False)
    clocked_in = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    role_entry = relationship(
        "UserRole",
        back_populates="profile",
        uselist=False,
        cascade="all, delete-orphan",
    )
    clock_records = relationship(
        "ClockRecord",
        back_populates="profile",
        cascade="all, delete-orphan",
        order_by="ClockRecord.clock_in",
    )

    @property
    def role(self) -> str | None:
        return self.role_entry.role if self.role_entry else None


class UserRole(Base):
    __tablename__ = "user_roles"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(36), ForeignKey("profiles.user_id"), nullable=False, unique=True, index=True)
    role = Column(String(20), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    profile = relationship("Profile", back_populates="role_entry")


class ClockRecord(Base):
    __tablename__ = "clock_records"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("profiles.user_id"), nullable=False, index=True)
    clock_in = Column(DateTime(timezone=True), nullable=False, index=True)
    clock_out = Column(DateTime(timezone=True), nullable=True)
    duration = Column(Integer, nullable=True)  # minutes
    date = Column(String(10), nullable=False, index=True)

    profile = relationship("Profile", back_populates="clock_records")

    def mark_clocked_out(self, now: dt.datetime) -> None:
        if self.clock_out is not None:
            return
        normalized_now = _as_utc(now)
        self.clock_out = normalized_now
        delta = normalized_now - _as_utc(self.clock_in)
        # Half-up rounding of the wall-clock delta in minutes.
        self.duration = int(delta.total_seconds() / 60 + 0.5) if delta.total_seconds() >= 0 else 0


class Report(Base):
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    type = Column(String(20), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="open", index=True)
    location = Column(String(200), nullable=False)
    vehicle = Column(String(200), nullable=True)
    customer_name = Column(String(120), nullable=True)
    customer_phone = Column(String(40), nullable=True)
    assigned_to = Column(String(36), ForeignKey("profiles.user_id"), nullable=True, index=True)
    created_by = Column(String(36), ForeignKey("profiles.user_id"), nullable=True, index=True)
    notes = Column(Text, nullable=True)
    due_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    assignee = relationship("Profile", foreign_keys=[assigned_to])
    creator = relationship("Profile", foreign_keys=[created_by])

    @property
    def assignee_name(self) -> str | None:
        return self.assignee.name if self.assignee else None

    @property
    def creator_name(self) -> str | None:
        return self.creator.name if self.creator else None

    def mark_assigned(self, user_id: str) -> None:
        self.assigned_to = user_id
        self.status = "assigned"

    def mark_unassigned(self) -> None:
        self.assigned_to = None
        self.status = "open"


class Application(Base):
    __tablename__ = "applications"

    id = Column(Integer, primary_key=True)
    application_id = Column(String(11), nullable=False, unique=True, index=True)
    character_name = Column(String(120), nullable=False)
    discord_name = Column(String(120), nullable=False)
    timezone = Column(String(60), nullable=False)
    hours_per_week = Column(String(60), nullable=False)
    why_join = Column(Text, nullable=False)
    experience = Column(Text, nullable=False)
    scenario_vehicle_breakdown = Column(Text, nullable=False)
    scenario_difficult_customer = Column(Text, nullable=False)
    scenario_enhance_roleplay = Column(Text, nullable=False)
    rule_break_response = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    reviewed_by = Column(String(36), ForeignKey("profiles.user_id"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reviewer_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(36), nullable=True, index=True)
    user_name = Column(String(120), nullable=False)
    action = Column(String(40), nullable=False, index=True)
    entity_type = Column(String(40), nullable=False)
    entity_id = Column(String(60), nullable=True)
    old_value = Column(SQLiteJSON, nullable=True)
    new_value = Column(SQLiteJSON, nullable=True)
    details = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)


class AppSetting(Base):
    __tablename__ = "app_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
