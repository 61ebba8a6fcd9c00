"""Shared test fixtures — async DB, client, auth helpers, factories.

Reusable across all test modules (calendar, ledger, workflow, leave, rollover, api).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Iterable, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from leave_portal.common.constants import LeaveType, OrgRole, policy_for
from leave_portal.config import settings
from leave_portal.database import Base, get_db, get_session_factory
from leave_portal.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
# (e.g. StaffMember → LeaveBalance, LeaveRequest)
import leave_portal.common.audit  # noqa: F401
import leave_portal.leave.models  # noqa: F401
import leave_portal.ledger.models  # noqa: F401
import leave_portal.org.models  # noqa: F401
import leave_portal.workcalendar.models  # noqa: F401

from leave_portal.ledger.models import LeaveBalance
from leave_portal.org.models import ActingAppointment, RoleAssignment, StaffMember

# ── SQLite compat: compile PG-specific types to TEXT/BLOB ───────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and uuid_generate_v4() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    dbapi_conn.create_function(
        "uuid_generate_v4", 0, lambda: str(uuid.uuid4()),
    )

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from leave_portal.common.rate_limit import limiter

    limiter.reset()
    yield


@pytest.fixture(autouse=True)
def _single_rollover_worker(monkeypatch):
    """One StaticPool connection cannot host parallel transactions."""
    monkeypatch.setattr(settings, "ROLLOVER_CONCURRENCY", 1)


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def _override_get_session_factory() -> async_sessionmaker:
    return TestSessionFactory


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_session_factory] = _override_get_session_factory
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

def _make_staff(
    *,
    full_name: str = "Ama Mensah",
    directorate: Optional[str] = "Finance and Administration",
    unit: Optional[str] = None,
    independent_unit: Optional[str] = None,
    supervisor_id: Optional[uuid.UUID] = None,
    date_of_joining: Optional[date] = date(2020, 2, 3),
    is_active: bool = True,
) -> dict:
    if independent_unit is not None:
        directorate, unit = None, independent_unit
    return dict(
        id=uuid.uuid4(),
        staff_code=f"MOFA-{uuid.uuid4().hex[:6].upper()}",
        full_name=full_name,
        directorate=directorate,
        unit=unit,
        is_independent_unit=independent_unit is not None,
        supervisor_id=supervisor_id,
        date_of_joining=date_of_joining,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
    )


async def _seed_staff(db: AsyncSession, **kwargs) -> StaffMember:
    staff = StaffMember(**_make_staff(**kwargs))
    db.add(staff)
    await db.flush()
    return staff


async def _seed_role(
    db: AsyncSession,
    staff_id: uuid.UUID,
    role: OrgRole,
    *,
    directorate: Optional[str] = None,
    unit: Optional[str] = None,
    is_active: bool = True,
) -> RoleAssignment:
    ra = RoleAssignment(
        id=uuid.uuid4(),
        staff_id=staff_id,
        role=role,
        directorate=directorate,
        unit=unit,
        is_active=is_active,
        assigned_at=datetime.now(timezone.utc),
    )
    db.add(ra)
    await db.flush()
    return ra


async def _seed_acting(
    db: AsyncSession,
    staff_id: uuid.UUID,
    role: OrgRole,
    *,
    starts_on: date,
    ends_on: date,
    directorate: Optional[str] = None,
    unit: Optional[str] = None,
    on_behalf_of_id: Optional[uuid.UUID] = None,
    is_active: bool = True,
) -> ActingAppointment:
    appointment = ActingAppointment(
        id=uuid.uuid4(),
        staff_id=staff_id,
        role=role,
        directorate=directorate,
        unit=unit,
        on_behalf_of_id=on_behalf_of_id,
        starts_on=starts_on,
        ends_on=ends_on,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
    )
    db.add(appointment)
    await db.flush()
    return appointment


async def _seed_balance(
    db: AsyncSession,
    staff_id: uuid.UUID,
    leave_type: LeaveType = LeaveType.annual,
    *,
    period: int = 2025,
    entitlement: Optional[Decimal] = None,
    consumed: Decimal = Decimal("0"),
    carried_forward_in: Decimal = Decimal("0"),
    carry_forward_consumed: Decimal = Decimal("0"),
    carry_forward_expires_on: Optional[date] = None,
) -> LeaveBalance:
    policy = policy_for(leave_type)
    bal = LeaveBalance(
        id=uuid.uuid4(),
        staff_id=staff_id,
        leave_type=leave_type,
        period=period,
        entitlement=policy.base_entitlement if entitlement is None else entitlement,
        consumed=consumed,
        carried_forward_in=carried_forward_in,
        carry_forward_consumed=carry_forward_consumed,
        carry_forward_cap=policy.carry_forward_cap,
        carry_forward_expires_on=carry_forward_expires_on,
        version=1,
    )
    db.add(bal)
    await db.flush()
    return bal


async def _seed_org(db: AsyncSession) -> dict[str, StaffMember]:
    """A small directorate plus an independent unit, with everyone's approvers.

    Finance and Administration (directorate):
        hod  ← head_of_department, supervises ``supervisor``
        supervisor                 supervises ``staff``
        staff
    Internal Audit (independent unit):
        hoiu ← head_of_independent_unit, supervises ``auditor``
        auditor
    Organization-wide:
        hr   ← hr_officer
        cd   ← chief_director
    """
    fin = "Finance and Administration"
    cd = await _seed_staff(db, full_name="Kwame Boateng", directorate="Chief Director's Office")
    hr = await _seed_staff(db, full_name="Efua Owusu", directorate="Human Resource Management")
    hod = await _seed_staff(db, full_name="Yaw Asante", directorate=fin, supervisor_id=cd.id)
    supervisor = await _seed_staff(
        db, full_name="Akosua Darko", directorate=fin, unit="Accounts", supervisor_id=hod.id,
    )
    staff = await _seed_staff(
        db, full_name="Kofi Mensah", directorate=fin, unit="Accounts", supervisor_id=supervisor.id,
    )
    hoiu = await _seed_staff(
        db, full_name="Abena Ofori", independent_unit="Internal Audit", supervisor_id=cd.id,
    )
    auditor = await _seed_staff(
        db, full_name="Kojo Appiah", independent_unit="Internal Audit", supervisor_id=hoiu.id,
    )

    await _seed_role(db, cd.id, OrgRole.chief_director)
    await _seed_role(db, hr.id, OrgRole.hr_officer)
    await _seed_role(db, hod.id, OrgRole.head_of_department, directorate=fin)
    await _seed_role(db, hoiu.id, OrgRole.head_of_independent_unit, unit="Internal Audit")

    return dict(
        cd=cd, hr=hr, hod=hod, supervisor=supervisor, staff=staff, hoiu=hoiu, auditor=auditor,
    )


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    staff_id: uuid.UUID,
    roles: Iterable[str] = ("staff",),
    expired: bool = False,
) -> str:
    """Generate a JWT access token the way the identity provider issues them."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(staff_id),
        "roles": list(roles),
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(staff_id: uuid.UUID, *roles: str) -> dict[str, str]:
    token = create_access_token(staff_id, roles or ("staff",))
    return {"Authorization": f"Bearer {token}"}
