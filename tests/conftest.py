"""Pytest configuration and shared fixtures."""
import os

# Point the module-level engine at a throwaway database before anything imports it
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.setdefault("LOG_JSON", "false")

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from railcert.clock import FixedClock
from railcert.database import get_db, init_db
from railcert.models.domain import Employee
from railcert.services.certifications import create_certification

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    # One shared connection so the API test client sees the same database
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)

    TestingSessionLocal = sessionmaker(bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def clock():
    """A clock pinned to 2024-01-01 UTC."""
    return FixedClock(T0)


@pytest.fixture
def employee(db_session, clock):
    """An employee with no certifications."""
    employee = Employee(
        first_name="Dana",
        last_name="Reyes",
        email="dana@example.com",
        created_by_user_id="admin_1",
        created_at=clock.now(),
    )
    db_session.add(employee)
    db_session.commit()
    db_session.refresh(employee)
    return employee


@pytest.fixture
def make_certification(db_session, employee, clock):
    """Factory for certifications with proof, valid from T0 unless told otherwise."""
    def _make(certification_type="Track Safety Training", **kwargs):
        kwargs.setdefault("certificate_media_id", "media_001")
        kwargs.setdefault("issue_date", T0)
        if not kwargs.get("is_non_expiring"):
            kwargs.setdefault("expiration_date", datetime(2025, 1, 1, tzinfo=timezone.utc))
        return create_certification(
            db_session,
            employee_id=kwargs.pop("employee_id", employee.id),
            certification_type=certification_type,
            created_by_user_id="admin_1",
            clock=clock,
            **kwargs,
        )
    return _make


@pytest.fixture
def client(db_session, clock):
    """API client bound to the test database and the fixed clock."""
    from railcert.main import app
    from railcert.api.routes import get_clock

    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
