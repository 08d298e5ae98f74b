"""Shared fixtures for the budget ledger tests.

Each test gets its own file-backed SQLite database under ``tmp_path`` so
that two sessions can interleave like two API workers would.
"""

from __future__ import annotations

import os

# Settings are read once, on first import of the package.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LEDGER_RETRY_BASE_DELAY_SECONDS", "0.001")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from budget_ledger.database import Base, get_db  # noqa: E402
import budget_ledger.models  # noqa: E402,F401
from budget_ledger.schemas.common import TierRef  # noqa: E402
from budget_ledger.services import allocation_service, membership_service  # noqa: E402

FISCAL_YEAR = 2026

REGION = TierRef(kind="region", id="region-1")
ORG_A = TierRef(kind="organization", id="org-a")
ORG_B = TierRef(kind="organization", id="org-b")
FARMER_F = TierRef(kind="farmer", id="farmer-f")
FARMER_G = TierRef(kind="farmer", id="farmer-g")


@pytest.fixture
def engine(tmp_path):
    """SQLite engine on a fresh database file with every table created."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def ledger(db):
    """Scenario 1 state: region-1 funded with 100,000, 40,000 allocated to org-a.

    Memberships: org-a and org-b in region-1, farmer-f and farmer-g in org-a.
    """
    membership_service.set_membership(db, ORG_A, REGION)
    membership_service.set_membership(db, ORG_B, REGION)
    membership_service.set_membership(db, FARMER_F, ORG_A)
    membership_service.set_membership(db, FARMER_G, ORG_A)

    allocation_service.fund_tier(
        db, REGION, FISCAL_YEAR, "100000.00", idempotency_key="fixture:fund"
    )
    allocation_service.allocate(
        db, REGION, ORG_A, FISCAL_YEAR, "40000.00", idempotency_key="fixture:alloc"
    )
    return db


@pytest.fixture
def client(session_factory):
    """TestClient whose ``get_db`` dependency uses the per-test database."""
    from budget_ledger.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Actor-Id": "admin-1"}
