"""Pytest configuration and fixtures for the compliance test suite."""

import os
from datetime import date, datetime, timedelta
from uuid import uuid4

import pytest

# Point the application engine at SQLite BEFORE any compliance import
os.environ.setdefault("DATABASE_URL", "sqlite://")

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from compliance.database import Base
from compliance.models.actor import ActorContext
from compliance.models.db_models import (
    AgencyAssignmentDB, AuditingFirmDB, AuditorDB, ObservationSeverity,
    UserDB, UserRole,
)


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite does not emit BEGIN itself, which breaks SAVEPOINT
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# ACTORS
# =============================================================================

def make_user(db, role: UserRole, name: str) -> ActorContext:
    user = UserDB(
        id=str(uuid4()),
        email=f"{uuid4().hex[:8]}@example.com",
        name=name,
        role=role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    return ActorContext(user_id=user.id, role=role, name=name)


@pytest.fixture
def agency(db):
    return make_user(db, UserRole.USER, "Northwind Collections")


@pytest.fixture
def other_agency(db):
    return make_user(db, UserRole.USER, "Southgate Recoveries")


@pytest.fixture
def admin(db):
    return make_user(db, UserRole.ADMIN, "Compliance Admin")


@pytest.fixture
def super_admin(db):
    return make_user(db, UserRole.SUPER_ADMIN, "Head of Compliance")


@pytest.fixture
def firm_id(db):
    firm = AuditingFirmDB(id=str(uuid4()), name=f"Firm {uuid4().hex[:6]}")
    db.add(firm)
    db.commit()
    return firm.id


@pytest.fixture
def auditor(db, firm_id):
    actor = make_user(db, UserRole.AUDITOR, "Field Auditor")
    db.add(AuditorDB(id=str(uuid4()), user_id=actor.user_id, firm_id=firm_id))
    db.commit()
    return actor


def assign(db, agency_id: str, firm_id: str, active: bool = True) -> None:
    db.add(AgencyAssignmentDB(
        id=str(uuid4()),
        agency_id=agency_id,
        firm_id=firm_id,
        is_active=active,
    ))
    db.commit()


@pytest.fixture
def assigned(db, agency, firm_id):
    """Active assignment of `agency` to the auditor's firm."""
    assign(db, agency.user_id, firm_id)
    return True


# =============================================================================
# PIPELINE HELPERS
# =============================================================================

@pytest.fixture
def now():
    return datetime(2026, 3, 10, 9, 0, 0)


@pytest.fixture
def make_observation(db, auditor):
    """Create an audit for the agency and one observation on it; returns the observation id."""
    from compliance.services.escalation import AuditService

    def _make(agency_actor, number="OBS-1", severity=ObservationSeverity.HIGH, evidence_required=False, audit_id=None):
        service = AuditService(db)
        if audit_id is None:
            created = service.create_audit(auditor, agency_actor.user_id, date(2026, 3, 2), location="Pune")
            assert created.success, created.message
            audit_id = created.data["audit_id"]

        added = service.add_observation(
            auditor, audit_id, number, severity,
            "Collection calls made outside permitted hours",
            category="Conduct",
            evidence_required=evidence_required,
        )
        assert added.success, added.message
        return added.data["observation_id"]

    return _make


@pytest.fixture
def issued_observation(db, admin, agency, assigned, make_observation, now):
    """Observation sent to the agency with a 3-day deadline; returns (observation_id, notice_id)."""
    from compliance.services.escalation import NoticeService

    observation_id = make_observation(agency)
    result = NoticeService(db).issue_to_agency(
        admin, observation_id, response_deadline=now + timedelta(days=3), now=now,
    )
    assert result.success, result.message
    return observation_id, result.data["notice_id"]
