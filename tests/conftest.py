"""
Pytest fixtures for the meditrack test suite.

Provides:
- In-memory SQLite sessions with every table created
- Factory fixtures for clinics, items and received batches
- A FastAPI TestClient bound to the same session
"""

import itertools
from contextlib import contextmanager
from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from meditrack.alerts import service as alert_service
from meditrack.alerts.notifications import CollectingDispatcher
from meditrack.alerts.schemas import AlertRuleCreate
from meditrack.clinics import service as clinic_service
from meditrack.clinics.schemas import ClinicCreate
from meditrack.database import Base, get_db, import_models, make_engine
from meditrack.stock.adjustments import service as ledger
from meditrack.stock.items import service as item_service
from meditrack.stock.items.schemas import ItemCreate

import_models()

ACTOR_ID = 7
LEAD_ID = 3

TODAY = date(2026, 3, 15)


def days_from_today(days: int) -> date:
    return TODAY + timedelta(days=days)


@contextmanager
def failing_flushes(session, error):
    """Make every flush on ``session`` raise ``error`` while the block runs."""

    def _fail(flushing, flush_context, instances):
        raise error

    event.listen(session, "before_flush", _fail)
    try:
        yield
    finally:
        event.remove(session, "before_flush", _fail)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    # SQLite's implicit DELETE on DROP TABLE trips self-referencing RESTRICT FKs
    with engine.begin() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(conn)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_clinic(db):
    def _make(name: str = "Riverside Clinic", timezone: str = "UTC"):
        return clinic_service.create_clinic(db, ClinicCreate(name=name, timezone=timezone))

    return _make


@pytest.fixture
def clinic(make_clinic):
    return make_clinic()


@pytest.fixture
def make_item(db, clinic):
    def _make(name: str = "Amoxicillin 500mg", threshold: int = 10, clinic_id=None, **kwargs):
        return item_service.create_item(
            db,
            clinic_id or clinic.id,
            ItemCreate(name=name, threshold=threshold, **kwargs),
        )

    return _make


@pytest.fixture
def item(make_item):
    return make_item()


@pytest.fixture
def receive(db):
    numbers = itertools.count(1)

    def _receive(item, quantity: int, expiry_date=None, batch_number=None, actor_id: int = ACTOR_ID):
        return ledger.receive_batch(
            db,
            item.clinic_id,
            item.id,
            batch_number or f"BN-{next(numbers):04d}",
            quantity,
            actor_id,
            expiry_date=expiry_date,
        )

    return _receive


@pytest.fixture
def make_rule(db, clinic):
    def _make(rule_type, item=None, threshold=None, name=None, **kwargs):
        payload = AlertRuleCreate(
            name=name or f"{rule_type.value.lower()} rule",
            type=rule_type,
            item_id=item.id if item is not None else None,
            threshold=threshold,
            **kwargs,
        )
        return alert_service.create_rule(db, clinic.id, payload, LEAD_ID)

    return _make


@pytest.fixture
def dispatcher():
    return CollectingDispatcher()


# =============================================================================
# API
# =============================================================================


@pytest.fixture
def client(db):
    from meditrack.main import app

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def headers(clinic):
    def _headers(actor_id: int = ACTOR_ID, roles: str = "", clinic_id=None):
        values = {
            "X-Actor-Id": str(actor_id),
            "X-Clinic-Id": str(clinic_id or clinic.id),
        }
        if roles:
            values["X-Actor-Roles"] = roles
        return values

    return _headers
