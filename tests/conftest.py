"""Shared fixtures: in-memory database, seeded tenant and an API client."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from salon.auth import create_access_token
from salon.database import Base, get_db
from salon.main import app
from salon.models import Client, Resource, Service, StaffMember, User

# Local wall-clock offset used by the API payloads in these tests
LOCAL_OFFSET = "-03:00"


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _add(db, obj):
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


@pytest.fixture
def owner(db_session):
    return _add(db_session, User(username="owner", full_name="Salon Owner", role="admin"))


@pytest.fixture
def reception_user(db_session, owner):
    return _add(db_session, User(username="front", role="reception", tenant_id=owner.id))


@pytest.fixture
def anna(db_session, owner):
    return _add(db_session, StaffMember(user_id=owner.id, first_name="Anna", last_name="Ruiz"))


@pytest.fixture
def bea(db_session, owner):
    return _add(db_session, StaffMember(user_id=owner.id, first_name="Bea", last_name="Sosa"))


@pytest.fixture
def staff_user(db_session, owner, anna):
    return _add(db_session, User(username="anna", role="staff", tenant_id=owner.id, staff_id=anna.id))


@pytest.fixture
def customer(db_session, owner):
    return _add(db_session, Client(user_id=owner.id, first_name="Laura", last_name="Gomez"))


@pytest.fixture
def chair(db_session, owner):
    return _add(db_session, Resource(user_id=owner.id, name="Wash chair", capacity=1))


@pytest.fixture
def haircut(db_session, owner, chair):
    return _add(
        db_session,
        Service(user_id=owner.id, name="Haircut", duration_minutes=60, resource_id=chair.id),
    )


@pytest.fixture
def manicure(db_session, owner):
    return _add(db_session, Service(user_id=owner.id, name="Manicure", duration_minutes=45))


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def local_time(days_ahead: int = 3, hour: int = 10, minute: int = 0) -> str:
    """ISO timestamp at a local wall-clock time a few days from now"""
    local_tz = timezone(timedelta(hours=-3))
    day = datetime.now(local_tz).date() + timedelta(days=days_ahead)
    return f"{day.isoformat()}T{hour:02d}:{minute:02d}:00{LOCAL_OFFSET}"
