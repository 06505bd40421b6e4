# tests/conftest.py
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from clinic import crud, models
from clinic.audit_trail import AuditTrail
from clinic.config import Settings
from clinic.context import RequestContext
from clinic.database import build_engine, build_session_factory, create_tables, drop_tables
from clinic.main import create_app
from clinic.security import configure_field_ciphers, pwd_context
from clinic.sessions import InMemorySessionStore

# Cheap argon2 parameters so hashing does not dominate the suite
pwd_context.update(argon2__memory_cost=1024, argon2__rounds=1)

NOW = datetime(2026, 3, 2, 9, 0, 0)
PASSWORD = "Sup3r-Secret!"


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def settings():
    s = Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        ENCRYPTION_KEY="medical-test-key-0123456789",
        SECURE_KEY="ic-number-test-key-9876543210",
        REDIS_URL=None,
        LOG_LEVEL="WARNING",
    )
    configure_field_ciphers(s)
    return s


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def db(settings):
    engine = build_engine(settings.database_url)
    create_tables(engine)
    session = build_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()
        drop_tables(engine)
        engine.dispose()


@pytest.fixture
def audit(db, clock):
    return AuditTrail(db, clock)


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def ctx():
    return RequestContext(ip_address="10.0.0.5", path="/api/v1/appointments", user_agent="pytest")


@pytest.fixture
def patient(db, clock):
    return crud.create_patient(db, "Aisyah Binti Omar", ic_number="900101-14-5566", diagnosis="Asthma", phone="012-3456789", created_at=clock())


@pytest.fixture
def other_patient(db, clock):
    return crud.create_patient(db, "Lim Chee Keong", ic_number="850505-10-1234", created_at=clock())


@pytest.fixture
def doctors(db):
    return {
        "ali": crud.create_doctor(db, "Dr. Ali Rahman", "General Practice"),
        "tan": crud.create_doctor(db, "Dr. Tan Wei Ming", "Cardiology"),
    }


@pytest.fixture
def admin_user(db, clock):
    return crud.create_user(db, "admin", PASSWORD, models.UserRole.admin, created_at=clock())


@pytest.fixture
def doctor_user(db, clock):
    return crud.create_user(db, "dr.tan", PASSWORD, models.UserRole.doctor, created_at=clock())


def audit_actions(db):
    return [log.action for log in db.query(models.AuditLog).order_by(models.AuditLog.id).all()]


# --- API fixtures ---

@pytest.fixture
def app(settings, clock):
    return create_app(settings=settings, clock=clock, session_store=InMemorySessionStore())


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def app_db(app, client):
    session = app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded(app_db, clock):
    """Admin and doctor accounts, two doctors and one patient in the app's database."""
    crud.create_user(app_db, "admin", PASSWORD, models.UserRole.admin, created_at=clock())
    tan_user = crud.create_user(app_db, "dr.tan", PASSWORD, models.UserRole.doctor, created_at=clock())
    crud.create_doctor(app_db, "Dr. Tan Wei Ming", "Cardiology", user_id=tan_user.id)
    crud.create_doctor(app_db, "Dr. Ali Rahman", "General Practice")
    patient = crud.create_patient(app_db, "Aisyah Binti Omar", ic_number="900101-14-5566", created_at=clock())
    return {"patient_id": patient.id}


def login(client, username="admin", password=PASSWORD):
    return client.post("/api/v1/auth/login", data={"username": username, "password": password})
