"""Leave service test suite — reservation state machine, FIFO deduction and
reversal, grant maintenance and read models.

Tests run against SQLite via the shared conftest.py fixtures, with the
service clock pinned to Monday 2025-03-03.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.common.audit import AuditTrail
from leave_ledger.common.constants import (
    ErrorCode,
    LeaveSession,
    LeaveType,
    ReservationStatus,
    UserStatus,
    Weekday,
)
from leave_ledger.common.exceptions import (
    AllocationException,
    ConflictError,
    InvalidStateException,
    LeaveValidationException,
    NotFoundException,
)
from leave_ledger.leave.models import LeaveGrant, LeaveReservation, LeaveUsage
from leave_ledger.leave.schemas import Deduction
from tests.conftest import _seed_grant, _seed_reservation, _seed_user, _service

WEDNESDAY = date(2025, 3, 5)
THURSDAY = date(2025, 3, 6)
SUNDAY = date(2025, 3, 9)
LAST_FRIDAY = date(2025, 2, 28)


# ═════════════════════════════════════════════════════════════════════
# Helpers — seed a two-year ledger
# ═════════════════════════════════════════════════════════════════════


async def _seed_ledger(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    used_2025: str = "14",
    used_2026: str = "0",
) -> tuple[LeaveGrant, LeaveGrant]:
    """2025: 15 days expiring 2025-12-31; 2026: 17 days expiring 2026-12-31."""
    g2025 = await _seed_grant(
        db, user_id, year=2025, total=Decimal("15"), used=Decimal(used_2025),
    )
    g2026 = await _seed_grant(
        db, user_id, year=2026, total=Decimal("17"), used=Decimal(used_2026),
    )
    return g2025, g2026


async def _audit_count(db: AsyncSession, action: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(AuditTrail).where(AuditTrail.action == action)
    )
    return result.scalar_one()


# ═════════════════════════════════════════════════════════════════════
# 1. Requesting leave
# ═════════════════════════════════════════════════════════════════════


class TestRequestLeave:
    """Tests for LeaveService.request_leave()."""

    async def test_reserve_future_day(self, db: AsyncSession, test_user, service):
        """A future request is RESERVED and leaves the grants untouched."""
        g2025, g2026 = await _seed_ledger(db, test_user.id)

        outcome = await service.request_leave(test_user.id, WEDNESDAY, LeaveType.FULL)

        assert outcome.usage_id is None
        assert outcome.reservation.status == ReservationStatus.RESERVED
        assert outcome.reservation.amount == Decimal("1.0")
        await db.refresh(g2025)
        await db.refresh(g2026)
        assert g2025.remain == Decimal("1")
        assert g2026.remain == Decimal("17")
        assert await _audit_count(db, "reserve") == 1

    async def test_reserve_half_day(self, db: AsyncSession, test_user, service):
        await _seed_ledger(db, test_user.id)

        outcome = await service.request_leave(
            test_user.id, WEDNESDAY, LeaveType.HALF, LeaveSession.PM,
        )

        assert outcome.reservation.amount == Decimal("0.5")
        assert outcome.reservation.session == LeaveSession.PM

    async def test_full_day_session_dropped(self, db: AsyncSession, test_user, service):
        await _seed_ledger(db, test_user.id)

        outcome = await service.request_leave(
            test_user.id, WEDNESDAY, LeaveType.FULL, LeaveSession.AM,
        )

        assert outcome.reservation.session is None

    async def test_immediate_use_deducts(self, db: AsyncSession, test_user, service):
        """Backfilled leave is deducted at once and recorded as usage."""
        g2025, _ = await _seed_ledger(db, test_user.id)

        outcome = await service.request_leave(
            test_user.id, LAST_FRIDAY, LeaveType.FULL, immediate=True,
        )

        assert outcome.reservation_id is None
        assert outcome.usage.allocations == [Deduction(year=2025, amount=Decimal("1"))]
        assert outcome.usage.source_year == 2025
        assert outcome.usage.weekday == Weekday.FRI
        await db.refresh(g2025)
        assert g2025.used == Decimal("15")
        assert g2025.remain == Decimal("0")
        assert await _audit_count(db, "use") == 1

    async def test_past_reservation_rejected(self, db: AsyncSession, test_user, service):
        await _seed_ledger(db, test_user.id)

        with pytest.raises(LeaveValidationException) as exc_info:
            await service.request_leave(test_user.id, LAST_FRIDAY, LeaveType.FULL)
        assert exc_info.value.code == ErrorCode.INVALID_DATE

    async def test_sunday_rejected(self, db: AsyncSession, test_user, service):
        await _seed_ledger(db, test_user.id)

        with pytest.raises(LeaveValidationException) as exc_info:
            await service.request_leave(test_user.id, SUNDAY, LeaveType.FULL)
        assert exc_info.value.code == ErrorCode.SUNDAY_NOT_ALLOWED

    async def test_half_day_next_to_full_day(self, db: AsyncSession, test_user, service):
        await _seed_ledger(db, test_user.id)
        await _seed_reservation(db, test_user.id, WEDNESDAY)

        with pytest.raises(LeaveValidationException) as exc_info:
            await service.request_leave(
                test_user.id, WEDNESDAY, LeaveType.HALF, LeaveSession.AM,
            )
        assert exc_info.value.code == ErrorCode.DUPLICATE_RESERVATION

    async def test_reservations_hold_back_balance(self, db: AsyncSession, test_user, service):
        """With one day left, a second full-day reservation is refused."""
        await _seed_grant(db, test_user.id, year=2025, total=Decimal("15"), used=Decimal("14"))

        await service.request_leave(test_user.id, WEDNESDAY, LeaveType.FULL)
        with pytest.raises(LeaveValidationException) as exc_info:
            await service.request_leave(test_user.id, THURSDAY, LeaveType.FULL)
        assert exc_info.value.code == ErrorCode.INSUFFICIENT_LEAVE

    async def test_no_grants_insufficient(self, db: AsyncSession, test_user, service):
        with pytest.raises(LeaveValidationException) as exc_info:
            await service.request_leave(
                test_user.id, WEDNESDAY, LeaveType.HALF, LeaveSession.AM,
            )
        assert exc_info.value.code == ErrorCode.INSUFFICIENT_LEAVE

    async def test_unknown_user(self, db: AsyncSession, service):
        with pytest.raises(NotFoundException):
            await service.request_leave(uuid.uuid4(), WEDNESDAY, LeaveType.FULL)

    async def test_resigned_user(self, db: AsyncSession, service):
        user = await _seed_user(db, status=UserStatus.RESIGNED)
        await _seed_ledger(db, user.id)

        with pytest.raises(NotFoundException):
            await service.request_leave(user.id, WEDNESDAY, LeaveType.FULL)


# ═════════════════════════════════════════════════════════════════════
# 2. Approve / cancel
# ═════════════════════════════════════════════════════════════════════


class TestApprovalWorkflow:
    """RESERVED → USED | CANCELLED."""

    async def test_approve_deducts_fifo(self, db: AsyncSession, test_user, service):
        """The half day left in 2025 goes first, the rest comes from 2026."""
        g2025, g2026 = await _seed_ledger(db, test_user.id, used_2025="14.5")
        outcome = await service.request_leave(test_user.id, WEDNESDAY, LeaveType.FULL)

        usage = await service.approve_reservation(outcome.reservation_id)

        assert usage.reservation_id == outcome.reservation_id
        assert usage.allocations == [
            Deduction(year=2025, amount=Decimal("0.5")),
            Deduction(year=2026, amount=Decimal("0.5")),
        ]
        assert usage.source_year == 2025
        await db.refresh(g2025)
        await db.refresh(g2026)
        assert g2025.remain == Decimal("0")
        assert g2026.remain == Decimal("16.5")
        assert g2026.used == Decimal("0.5")

        reservation = await db.get(LeaveReservation, outcome.reservation_id)
        assert reservation.status == ReservationStatus.USED
        assert reservation.resolved_at is not None

    async def test_approve_without_balance_keeps_reservation(
        self, db: AsyncSession, test_user, service,
    ):
        """Grants exhausted since the request: nothing changes."""
        g2025, g2026 = await _seed_ledger(db, test_user.id, used_2025="15", used_2026="17")
        reservation = await _seed_reservation(db, test_user.id, WEDNESDAY)

        with pytest.raises(AllocationException):
            await service.approve_reservation(reservation.id)

        await db.refresh(reservation)
        await db.refresh(g2025)
        await db.refresh(g2026)
        assert reservation.status == ReservationStatus.RESERVED
        assert g2025.remain == Decimal("0")
        assert g2026.remain == Decimal("0")
        usages = (await db.execute(select(LeaveUsage))).scalars().all()
        assert usages == []

    async def test_approve_twice(self, db: AsyncSession, test_user, service):
        await _seed_ledger(db, test_user.id)
        reservation = await _seed_reservation(db, test_user.id, WEDNESDAY)
        await service.approve_reservation(reservation.id)

        with pytest.raises(InvalidStateException):
            await service.approve_reservation(reservation.id)

    async def test_cancel(self, db: AsyncSession, test_user, service):
        g2025, _ = await _seed_ledger(db, test_user.id)
        reservation = await _seed_reservation(db, test_user.id, WEDNESDAY)

        result = await service.cancel_reservation(reservation.id)

        assert result.status == ReservationStatus.CANCELLED
        assert result.resolved_at is not None
        await db.refresh(g2025)
        assert g2025.remain == Decimal("1")

    async def test_cancel_frees_the_date(self, db: AsyncSession, test_user, service):
        await _seed_ledger(db, test_user.id)
        reservation = await _seed_reservation(db, test_user.id, WEDNESDAY)
        await service.cancel_reservation(reservation.id)

        outcome = await service.request_leave(test_user.id, WEDNESDAY, LeaveType.FULL)
        assert outcome.reservation.status == ReservationStatus.RESERVED

    async def test_terminal_states_are_final(self, db: AsyncSession, test_user, service):
        await _seed_ledger(db, test_user.id)
        reservation = await _seed_reservation(db, test_user.id, WEDNESDAY)
        await service.cancel_reservation(reservation.id)

        with pytest.raises(InvalidStateException):
            await service.cancel_reservation(reservation.id)
        with pytest.raises(InvalidStateException):
            await service.approve_reservation(reservation.id)

    async def test_unknown_reservation(self, db: AsyncSession, service):
        with pytest.raises(NotFoundException):
            await service.approve_reservation(uuid.uuid4())
        with pytest.raises(NotFoundException):
            await service.cancel_reservation(uuid.uuid4())


# ═════════════════════════════════════════════════════════════════════
# 3. Reversal
# ═════════════════════════════════════════════════════════════════════


class TestReverseUsage:

    async def test_reverse_restores_source_grant(self, db: AsyncSession, test_user, service):
        """used 5 / remain 12 before the day was taken back."""
        grant = await _seed_grant(
            db, test_user.id, year=2025, total=Decimal("17"), used=Decimal("4"),
        )
        outcome = await service.request_leave(
            test_user.id, LAST_FRIDAY, LeaveType.FULL, immediate=True,
        )
        await db.refresh(grant)
        assert (grant.used, grant.remain) == (Decimal("5"), Decimal("12"))

        restored = await service.reverse_usage(outcome.usage_id)

        assert [(g.year, g.used, g.remain) for g in restored] == [
            (2025, Decimal("4"), Decimal("13")),
        ]
        await db.refresh(grant)
        assert grant.used == Decimal("4")
        assert grant.remain == Decimal("13")
        assert await db.get(LeaveUsage, outcome.usage_id) is None
        assert await _audit_count(db, "reverse") == 1

    async def test_reverse_split_usage(self, db: AsyncSession, test_user, service):
        g2025, g2026 = await _seed_ledger(db, test_user.id, used_2025="14.5")
        outcome = await service.request_leave(
            test_user.id, LAST_FRIDAY, LeaveType.FULL, immediate=True,
        )

        await service.reverse_usage(outcome.usage_id)

        await db.refresh(g2025)
        await db.refresh(g2026)
        assert g2025.remain == Decimal("0.5")
        assert g2026.remain == Decimal("17")

    async def test_reverse_twice(self, db: AsyncSession, test_user, service):
        await _seed_ledger(db, test_user.id)
        outcome = await service.request_leave(
            test_user.id, LAST_FRIDAY, LeaveType.FULL, immediate=True,
        )
        await service.reverse_usage(outcome.usage_id)

        with pytest.raises(NotFoundException):
            await service.reverse_usage(outcome.usage_id)

    async def test_reverse_approved_leaves_reservation_used(
        self, db: AsyncSession, test_user, service,
    ):
        await _seed_ledger(db, test_user.id)
        reservation = await _seed_reservation(db, test_user.id, WEDNESDAY)
        usage = await service.approve_reservation(reservation.id)

        await service.reverse_usage(usage.id)

        await db.refresh(reservation)
        assert reservation.status == ReservationStatus.USED


# ═════════════════════════════════════════════════════════════════════
# 4. Grant maintenance
# ═════════════════════════════════════════════════════════════════════


class TestGrants:

    async def test_default_entitlement_and_expiry(self, db: AsyncSession, test_user, service):
        """Joined 2020-03-01: five years of service in 2025 → 17 days."""
        grant = await service.grant_annual_leave(test_user.id, 2025)

        assert grant.total == Decimal("17")
        assert grant.used == Decimal("0")
        assert grant.remain == Decimal("17")
        assert grant.expire_at == date(2026, 12, 31)
        assert await _audit_count(db, "grant") == 1

    async def test_explicit_total_and_expiry(self, db: AsyncSession, test_user, service):
        grant = await service.grant_annual_leave(
            test_user.id, 2025, total=Decimal("3.5"), expire_at=date(2025, 6, 30),
        )
        assert grant.total == Decimal("3.5")
        assert grant.expire_at == date(2025, 6, 30)

    async def test_duplicate_year(self, db: AsyncSession, test_user, service):
        await service.grant_annual_leave(test_user.id, 2025)

        with pytest.raises(ConflictError):
            await service.grant_annual_leave(test_user.id, 2025)

    async def test_fractional_total_rejected(self, db: AsyncSession, test_user, service):
        with pytest.raises(LeaveValidationException) as exc_info:
            await service.grant_annual_leave(test_user.id, 2025, total=Decimal("2.3"))
        assert exc_info.value.code == ErrorCode.INVALID_AMOUNT

    async def test_set_used(self, db: AsyncSession, test_user, service):
        await _seed_grant(db, test_user.id, year=2025, total=Decimal("15"))

        grant = await service.set_used(test_user.id, 2025, Decimal("3.5"))

        assert grant.used == Decimal("3.5")
        assert grant.remain == Decimal("11.5")
        assert await _audit_count(db, "set_used") == 1

    @pytest.mark.parametrize("used", ["-1", "16", "2.25"])
    async def test_set_used_out_of_range(self, db: AsyncSession, test_user, service, used):
        await _seed_grant(db, test_user.id, year=2025, total=Decimal("15"))

        with pytest.raises(LeaveValidationException) as exc_info:
            await service.set_used(test_user.id, 2025, Decimal(used))
        assert exc_info.value.code == ErrorCode.INVALID_AMOUNT

    async def test_set_used_unknown_year(self, db: AsyncSession, test_user, service):
        with pytest.raises(NotFoundException):
            await service.set_used(test_user.id, 2031, Decimal("1"))


# ═════════════════════════════════════════════════════════════════════
# 5. Reads
# ═════════════════════════════════════════════════════════════════════


class TestReads:

    async def test_status(self, db: AsyncSession, test_user, service):
        await _seed_ledger(db, test_user.id, used_2025="13")
        await _seed_reservation(db, test_user.id, WEDNESDAY)
        await _seed_reservation(
            db, test_user.id, THURSDAY, status=ReservationStatus.CANCELLED,
        )

        status = await service.get_status(test_user.id)

        assert status.total == Decimal("32")
        assert status.used == Decimal("13")
        assert status.remain == Decimal("19")
        assert status.reserved == Decimal("1")
        assert status.available == Decimal("18")
        assert status.nearest_expiry.year == 2025
        assert status.nearest_expiry.amount == Decimal("2")

    async def test_status_unknown_user(self, db: AsyncSession, service):
        with pytest.raises(NotFoundException):
            await service.get_status(uuid.uuid4())

    async def test_list_reservations_by_status(self, db: AsyncSession, test_user, service):
        await _seed_reservation(db, test_user.id, WEDNESDAY)
        await _seed_reservation(
            db, test_user.id, THURSDAY, status=ReservationStatus.CANCELLED,
        )

        everything = await service.list_reservations(test_user.id)
        reserved = await service.list_reservations(
            test_user.id, status=ReservationStatus.RESERVED,
        )

        assert [r.date for r in everything] == [WEDNESDAY, THURSDAY]
        assert [r.date for r in reserved] == [WEDNESDAY]

    async def test_usage_records_and_weekday_stats(self, db: AsyncSession, test_user):
        service = _service(db, today=date(2025, 3, 20))
        await _seed_ledger(db, test_user.id, used_2025="0")
        for day in (date(2025, 3, 3), date(2025, 3, 10), date(2025, 3, 14)):
            await service.request_leave(test_user.id, day, LeaveType.FULL, immediate=True)

        recent = await service.list_usage_records(
            test_user.id, from_date=date(2025, 3, 10),
        )
        stats = await service.get_weekday_usage(test_user.id)

        assert [u.date for u in recent] == [date(2025, 3, 14), date(2025, 3, 10)]
        assert [(s.weekday, s.count) for s in stats] == [
            (Weekday.MON, 2),
            (Weekday.FRI, 1),
        ]
        assert stats[0].total_used == Decimal("2")
