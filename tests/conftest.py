"""Shared test fixtures — async DB, client, ledger factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from leave_ledger.common.constants import (
    LeaveSession,
    LeaveType,
    ReservationStatus,
    UserStatus,
)
from leave_ledger.common.exceptions import StoreError
from leave_ledger.database import Base, get_db
from leave_ledger.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module foreign keys
import leave_ledger.common.audit  # noqa: F401
import leave_ledger.leave.models  # noqa: F401
import leave_ledger.users.models  # noqa: F401

from leave_ledger.leave.models import LeaveGrant, LeaveReservation
from leave_ledger.leave.service import LeaveService
from leave_ledger.leave.store import LeaveStore
from leave_ledger.users.models import User

# ── SQLite compat: compile PG-specific types to TEXT ────────────────

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
    """Register NOW() and gen_random_uuid() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
    )
    dbapi_conn.create_function(
        "gen_random_uuid", 0, lambda: str(uuid.uuid4()),
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
    from leave_ledger.common.rate_limit import limiter
    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise StoreError("commit", exc.__class__.__name__) from exc
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
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

# Fixed clock for service tests: a Monday
TODAY = date(2025, 3, 3)


def _make_user(
    *,
    name: str = "Test User",
    join_date: date = date(2020, 3, 1),
    status: UserStatus = UserStatus.ACTIVE,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        name=name,
        join_date=join_date,
        group_id="dev",
        status=status,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


async def _seed_user(db: AsyncSession, **kwargs) -> User:
    user = User(**_make_user(**kwargs))
    db.add(user)
    await db.flush()
    return user


async def _seed_grant(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    year: int = 2025,
    total: Decimal = Decimal("15"),
    used: Decimal = Decimal("0"),
    expire_at: Optional[date] = None,
) -> LeaveGrant:
    grant = LeaveGrant(
        id=uuid.uuid4(),
        user_id=user_id,
        year=year,
        total=total,
        used=used,
        remain=total - used,
        expire_at=expire_at or date(year, 12, 31),
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )
    db.add(grant)
    await db.flush()
    return grant


async def _seed_reservation(
    db: AsyncSession,
    user_id: uuid.UUID,
    leave_date: date,
    *,
    leave_type: LeaveType = LeaveType.FULL,
    session: Optional[LeaveSession] = None,
    status: ReservationStatus = ReservationStatus.RESERVED,
) -> LeaveReservation:
    reservation = LeaveReservation(
        id=uuid.uuid4(),
        user_id=user_id,
        date=leave_date,
        type=leave_type,
        session=session,
        amount=Decimal("1.0") if leave_type == LeaveType.FULL else Decimal("0.5"),
        status=status,
        created_at=datetime.now(timezone.utc),
    )
    db.add(reservation)
    await db.flush()
    return reservation


def _service(db: AsyncSession, *, today: date = TODAY) -> LeaveService:
    return LeaveService(LeaveStore(db), today=lambda: today)


@pytest.fixture
async def test_user(db) -> User:
    """An active user who joined 2020-03-01."""
    return await _seed_user(db)


@pytest.fixture
def service(db) -> LeaveService:
    return _service(db)
