import math

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from attendance_module import router
from attendance_module.database import Base, get_db_session
from attendance_module.geo import EARTH_RADIUS_M
from attendance_module.models import School, SystemSetting, Teacher, UserProfile
from attendance_module.notifications import DispatchResult, NotificationDispatcher
from attendance_module.security import create_access_token

SCHOOL_LAT = 12.9716
SCHOOL_LNG = 77.5946


def north_of(lat: float, lng: float, meters: float) -> tuple[float, float]:
    # Due north, the haversine distance is exactly R * delta-latitude.
    return lat + math.degrees(meters / EARTH_RADIUS_M), lng


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self, result: DispatchResult | None = None, error: Exception | None = None) -> None:
        self.calls = []
        self.result = result or DispatchResult(success=True, message_id="wamid.test")
        self.error = error

    def send(self, school_id, recipient_role, message):
        self.calls.append((school_id, recipient_role, message))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def school(db):
    school = School(name="Greenwood High", latitude=SCHOOL_LAT, longitude=SCHOOL_LNG)
    db.add(school)
    db.commit()
    return school


@pytest.fixture
def teacher(db, school):
    profile = UserProfile(school_id=school.id, name="Asha Rao", role="teacher")
    db.add(profile)
    db.flush()
    teacher = Teacher(school_id=school.id, user_profile_id=profile.id)
    db.add(teacher)
    db.commit()
    return teacher


@pytest.fixture
def principal(db, school):
    profile = UserProfile(school_id=school.id, name="R. Menon", role="principal", phone="+919800000001")
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def set_setting(db):
    def _set(school_id: int, key: str, value: str) -> None:
        db.add(SystemSetting(school_id=school_id, setting_key=key, setting_value=value))
        db.commit()

    return _set


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def app(session_factory, dispatcher):
    app = FastAPI()
    app.include_router(router)

    def _session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db_session] = _session
    app.state.notification_dispatcher = dispatcher
    app.state.notification_executor = None
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def auth_headers(school):
    def _headers(role: str = "teacher", user_id: int = 1, school_id: int | None = None) -> dict:
        token = create_access_token(str(user_id), school_id or school.id, role)
        return {"Authorization": f"Bearer {token}"}

    return _headers
