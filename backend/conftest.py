"""
Shared fixtures: a fresh in-memory database per test.

StaticPool keeps the single in-memory connection alive across sessions and
the TestClient's worker thread.
"""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from optistore.api.deps import get_db
from optistore.db.init_db import init_db
from optistore.main import app
from optistore.models.prescription import Prescription
from optistore.services.reconciliation import AdvanceInputs, LineItem


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def prescription(db):
    rx = Prescription(
        prescription_no="P2610-181234",
        reference_no="P2610-181234",
        name="Anita Rao",
        mobile_no="9876543210",
        email="anita@example.com",
        city="Pune",
    )
    db.add(rx)
    db.commit()
    return rx


@pytest.fixture
def two_items():
    """rate 500 x1 no tax; rate 200 x2 at 5% tax."""
    return [
        LineItem(item_name="Ray-Ban Frame", rate="500", qty=1, item_code="FRM001", si=1),
        LineItem(item_name="Single Vision Lens", rate="200", qty=2, tax_percent="5", item_code="LEN010", si=2),
    ]


@pytest.fixture
def advances():
    return AdvanceInputs(cash=Decimal("100"), card_upi=Decimal("50"), other=Decimal("0"))


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    # No context manager: the lifespan would create tables on the configured database
    yield TestClient(app)
    app.dependency_overrides.clear()
