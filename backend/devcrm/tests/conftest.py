"""Pytest configuration for devcrm integration tests

WHAT: Provides shared fixtures for HTTP endpoint and service-level tests
WHY: Every test gets a fresh in-memory database with the funnel stages seeded,
     two tenants (for isolation checks) and authenticated clients
REFERENCES:
    - devcrm/main.py: FastAPI application
    - devcrm/database.py: Database configuration
    - devcrm/deps.py: Dependency injection
"""

import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure backend is in path
BACKEND_ROOT = Path(__file__).resolve().parents[2]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Set test environment before devcrm modules are imported
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
# Must be URL-safe base64-encoded 32-byte string (devcrm.security validates at import time)
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")
os.environ.pop("SENTRY_DSN", None)


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """In-memory SQLite shared by every connection of the test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from devcrm.models import Base
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def test_db_session(test_db_engine) -> Generator[Session, None, None]:
    """Session with the funnel stages already seeded."""
    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine
    )

    from devcrm.services.activity_types import seed_funnel_stages

    session = SessionLocal()
    seed_funnel_stages(session)
    yield session
    session.rollback()
    session.close()


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(test_db_session):
    """FastAPI application bound to the test session."""
    from devcrm.main import create_app
    from devcrm.database import get_db

    test_app = create_app()

    def override_get_db():
        try:
            yield test_db_session
        except Exception:
            test_db_session.rollback()
            raise

    test_app.dependency_overrides[get_db] = override_get_db
    return test_app


@pytest.fixture
def client(app) -> TestClient:
    """Unauthenticated client."""
    return TestClient(app)


def _auth_headers(user) -> dict:
    from devcrm.security import create_access_token

    token = create_access_token(subject=str(user.id), tenant_id=str(user.tenant_id))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_client(app, test_admin) -> TestClient:
    """Client signed in as the tenant admin."""
    client = TestClient(app)
    client.headers.update(_auth_headers(test_admin))
    return client


@pytest.fixture
def member_client(app, test_member) -> TestClient:
    """Client signed in as a non-admin member of the same tenant."""
    client = TestClient(app)
    client.headers.update(_auth_headers(test_member))
    return client


@pytest.fixture
def other_client(app, other_admin) -> TestClient:
    """Client signed in as the admin of a different tenant."""
    client = TestClient(app)
    client.headers.update(_auth_headers(other_admin))
    return client


# ============================================================================
# Model Fixtures
# ============================================================================

def _make_user(db, tenant, email, role, password="password123"):
    from devcrm.models import AuthCredential, User
    from devcrm.security import get_password_hash

    user = User(
        tenant_id=tenant.id,
        email=email,
        display_name=email.split("@")[0],
        role=role,
        created_at=datetime.utcnow(),
    )
    db.add(user)
    db.flush()
    db.add(AuthCredential(user_id=user.id, password_hash=get_password_hash(password)))
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def test_tenant(test_db_session):
    """Tenant with the default activity types."""
    from devcrm.models import Tenant
    from devcrm.services.activity_types import seed_default_activity_types

    tenant = Tenant(name="Test Tenant")
    test_db_session.add(tenant)
    test_db_session.commit()
    seed_default_activity_types(test_db_session, tenant.id)
    test_db_session.refresh(tenant)
    return tenant


@pytest.fixture
def test_admin(test_db_session, test_tenant):
    from devcrm.models import UserRoleEnum

    return _make_user(test_db_session, test_tenant, "admin@example.com", UserRoleEnum.admin)


@pytest.fixture
def test_member(test_db_session, test_tenant):
    from devcrm.models import UserRoleEnum

    return _make_user(test_db_session, test_tenant, "member@example.com", UserRoleEnum.member)


@pytest.fixture
def other_tenant(test_db_session):
    """Second tenant (for isolation tests)."""
    from devcrm.models import Tenant
    from devcrm.services.activity_types import seed_default_activity_types

    tenant = Tenant(name="Other Tenant")
    test_db_session.add(tenant)
    test_db_session.commit()
    seed_default_activity_types(test_db_session, tenant.id)
    test_db_session.refresh(tenant)
    return tenant


@pytest.fixture
def other_admin(test_db_session, other_tenant):
    from devcrm.models import UserRoleEnum

    return _make_user(test_db_session, other_tenant, "admin@other.example.com", UserRoleEnum.admin)


@pytest.fixture
def make_developer(test_db_session, test_tenant):
    """Factory: make_developer("Alice", email="alice@example.com", tenant=...)."""
    from devcrm.services.developers import create_developer

    def _make(name, email=None, tenant=None, **kwargs):
        return create_developer(
            test_db_session,
            (tenant or test_tenant).id,
            display_name=name,
            primary_email=email,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_activity(test_db_session, test_tenant):
    """Factory: make_activity("click", developer, occurred_at=..., value=...)."""
    from devcrm.services.activities import create_activity

    def _make(action, developer=None, occurred_at=None, tenant=None, **kwargs):
        data = {
            "developer_id": developer.id if developer is not None else None,
            "anon_id": None if developer is not None else kwargs.pop("anon_id", "anon-1"),
            "action": action,
            "occurred_at": occurred_at or datetime(2025, 1, 15, 12, 0),
            "source": kwargs.pop("source", "test"),
        }
        data.update(kwargs)
        return create_activity(test_db_session, (tenant or test_tenant).id, data)

    return _make
