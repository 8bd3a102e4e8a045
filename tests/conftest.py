from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from towdesk.database import configure_sqlite, get_db, init_db
from towdesk.fleet import TowUnitRegistry
from towdesk.main import app
from towdesk.models import Profile, UserRole
from towdesk.presence import PresenceChannel, PresenceRoster
from towdesk.security import create_access_token, hash_password


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="session")
def engine(temp_db_path: Path):
    url = f"sqlite:///{temp_db_path}"
    engine = configure_sqlite(create_engine(url, connect_args={"check_same_thread": False}, future=True))
    init_db(engine)
    return engine


@pytest.fixture(scope="function")
def session(engine) -> Generator[Session, None, None]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionTesting = sessionmaker(
        bind=connection, autoflush=False, autocommit=False, expire_on_commit=False, future=True
    )
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(scope="function")
def client(session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.tow_units = TowUnitRegistry()
    app.state.presence = PresenceChannel(PresenceRoster())
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def make_staff(session: Session) -> Callable[..., Profile]:
    def _make(role: str = "employee", name: str | None = None, password: str = "secret123") -> Profile:
        username = f"{role}{session.query(Profile).count() + 1}"
        profile = Profile(
            name=name or username.capitalize(),
            username=username,
            email=f"{username}@towdesk.test",
            password_hash=hash_password(password),
        )
        profile.role_entry = UserRole(role=role)
        session.add(profile)
        session.commit()
        session.refresh(profile)
        return profile

    return _make


def auth_headers(profile: Profile) -> Dict[str, str]:
    token = create_access_token(profile.user_id, profile.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def owner(make_staff) -> Profile:
    return make_staff("owner", name="Olivia Owner")


@pytest.fixture()
def admin(make_staff) -> Profile:
    return make_staff("admin", name="Adam Admin")


@pytest.fixture()
def employee(make_staff) -> Profile:
    return make_staff("employee", name="Eve Employee")


@pytest.fixture()
def owner_headers(owner: Profile) -> Dict[str, str]:
    return auth_headers(owner)


@pytest.fixture()
def admin_headers(admin: Profile) -> Dict[str, str]:
    return auth_headers(admin)


@pytest.fixture()
def employee_headers(employee: Profile) -> Dict[str, str]:
    return auth_headers(employee)
