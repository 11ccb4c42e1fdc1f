"""
Shared fixtures. Every test runs against a fresh in-memory SQLite schema.

The in-memory database lives on a single shared connection, so a test must
not hold one session's transaction open while an API request runs; API
tests seed and inspect data through short-lived sessions instead.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("JWT_SECRET", "road-defect-test-secret-0123456789abcdef")
os.environ.setdefault("EXPOSE_ERROR_DETAIL", "true")

import jwt
import pytest
from fastapi.testclient import TestClient

from config import settings
from database import Base, SessionLocal, engine
from models import AggregatedLocation, Contractor, User


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    from main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_location():
    """Insert a hotspot directly, bypassing aggregation."""

    def _make(session, grid_id="13.0827_80.2707", status="pending", **fields):
        lat, lng = (float(part) for part in grid_id.split("_"))
        location = AggregatedLocation(
            grid_id=grid_id,
            latitude=lat,
            longitude=lng,
            total_potholes=fields.pop("total_potholes", 1),
            total_patchy=fields.pop("total_patchy", 0),
            highest_severity=fields.pop("highest_severity", "Medium"),
            report_count=fields.pop("report_count", 1),
            status=status,
            **fields,
        )
        session.add(location)
        session.commit()
        return location

    return _make


@pytest.fixture
def make_contractor():
    """Insert a contractor with its user account."""

    def _make(session, company="City Roadworks Ltd", email=None, is_active=True):
        email = email or f"{company.lower().replace(' ', '.')}@example.com"
        user = User(email=email, role="contractor")
        session.add(user)
        session.flush()
        contractor = Contractor(
            user_id=user.id, company_name=company, contact_email=email, is_active=is_active
        )
        session.add(contractor)
        session.commit()
        return contractor

    return _make


@pytest.fixture
def auth_headers():
    """Bearer headers for a signed token carrying the given user id and role."""

    def _headers(user_id, role="user"):
        token = jwt.encode({"id": user_id, "role": role}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
        return {"Authorization": f"Bearer {token}"}

    return _headers
