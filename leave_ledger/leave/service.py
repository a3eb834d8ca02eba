"""Leave service layer — reservation state machine over the FIFO ledger.

Business logic:
  - Request leave: validate, then either reserve (no balance effect) or, for
    backfilled days, deduct immediately and write a usage record
  - Approve a reservation: deduct FIFO across grants, RESERVED → USED
  - Cancel a reservation: RESERVED → CANCELLED, balance untouched
  - Reverse a usage record: give every deducted day back to its grant
  - Open a grant year and correct a grant's used days (admin)
  - Status, reservation / usage listings, usage by weekday

Every mutation takes the per-user lock first and computes the full outcome
before writing anything, so a rejected operation leaves the session clean.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Callable, Optional, Sequence

from leave_ledger.common.constants import (
    ZERO,
    ErrorCode,
    LeaveSession,
    LeaveType,
    ReservationStatus,
    is_half_day_multiple,
)
from leave_ledger.common.exceptions import (
    AllocationException,
    InvalidStateException,
    LeaveValidationException,
    NotFoundException,
)
from leave_ledger.config import settings
from leave_ledger.leave.allocation import AllocationEngine, check_grant_invariant
from leave_ledger.leave.entitlement import entitlement_for_year
from leave_ledger.leave.models import LeaveUsage
from leave_ledger.leave.schemas import (
    GrantSnapshot,
    RequestOutcome,
    ReservationOut,
    StatusView,
    UsageOut,
    WeekdayUsage,
)
from leave_ledger.leave.status import StatusAggregator
from leave_ledger.leave.store import LeaveStore
from leave_ledger.leave.validator import RequestValidator

logger = logging.getLogger(__name__)


def _deductions_json(usage: UsageOut) -> list[dict[str, str]]:
    return [{"year": str(d.year), "amount": str(d.amount)} for d in usage.allocations]


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations over an injected ``LeaveStore``.

    Reservation states: RESERVED (initial) → USED | CANCELLED (both terminal).
    """

    def __init__(
        self,
        store: LeaveStore,
        *,
        non_working_weekday: int = settings.NON_WORKING_WEEKDAY,
        grant_validity_years: int = settings.GRANT_VALIDITY_YEARS,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.store = store
        self.non_working_weekday = non_working_weekday
        self.grant_validity_years = grant_validity_years
        self.today = today

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    async def _reserved(self, user_id: uuid.UUID) -> list[ReservationOut]:
        rows = await self.store.list_reservations(user_id, status=ReservationStatus.RESERVED)
        return [ReservationOut.model_validate(r) for r in rows]

    async def _deduct(
        self,
        user_id: uuid.UUID,
        grants: Sequence[GrantSnapshot],
        leave_date: date,
        leave_type: LeaveType,
        session: Optional[LeaveSession],
        amount: Decimal,
        *,
        reservation_id: Optional[uuid.UUID] = None,
    ) -> LeaveUsage:
        """Allocate ``amount`` FIFO, persist the grants, write the usage record."""
        allocation = AllocationEngine.allocate(grants, amount)
        if not allocation.success:
            available = sum((g.remain for g in grants), ZERO)
            logger.warning(
                "allocation of %s for user %s failed: %s remaining",
                amount, user_id, available,
            )
            raise AllocationException(amount, available)

        await self.store.save_grants(grants, allocation.updated_grants)
        return await self.store.create_usage_record(
            user_id,
            leave_date,
            leave_type,
            session,
            amount,
            allocation.deductions,
            reservation_id=reservation_id,
        )

    # ─────────────────────────────────────────────────────────────────
    # Request
    # ─────────────────────────────────────────────────────────────────

    async def request_leave(
        self,
        user_id: uuid.UUID,
        leave_date: date,
        leave_type: LeaveType,
        session: Optional[LeaveSession] = None,
        *,
        immediate: bool = False,
        actor_id: Optional[uuid.UUID] = None,
    ) -> RequestOutcome:
        """Request a day or half day of leave.

        ``immediate=True`` (backfill) deducts straight away and returns the
        usage record; otherwise a RESERVED reservation is created and nothing
        is deducted until it is approved. Future reservations are checked
        against what is left after earlier reservations; immediate use only
        against the grants themselves.
        """

        user = await self.store.lock_user(user_id)
        if not user.is_active:
            raise NotFoundException("User", str(user_id))

        if leave_type == LeaveType.FULL:
            session = None

        grants = await self.store.list_grants(user_id)
        reserved = await self._reserved(user_id)
        status = StatusAggregator.get_status(user_id, grants, reserved)

        result = RequestValidator.validate(
            leave_date,
            leave_type,
            session,
            status.remain if immediate else status.available,
            reserved,
            not_before=None if immediate else self.today(),
            non_working_weekday=self.non_working_weekday,
        )
        if not result.valid:
            logger.warning(
                "leave request rejected for user %s on %s: %s",
                user_id, leave_date, result.error_code.value,
            )
            raise LeaveValidationException(result.error_code, result.error)

        amount = RequestValidator.required_amount(leave_type)

        if immediate:
            usage = await self._deduct(user_id, grants, leave_date, leave_type, session, amount)
            usage_out = UsageOut.model_validate(usage)
            await self.store.record_audit(
                action="use",
                entity_type="leave_usage",
                entity_id=usage.id,
                actor_id=actor_id,
                new_values={
                    "date": leave_date.isoformat(),
                    "amount": str(amount),
                    "allocations": _deductions_json(usage_out),
                },
            )
            logger.info(
                "user %s used %s day(s) on %s from %s",
                user_id, amount, leave_date, [d.year for d in usage_out.allocations],
            )
            return RequestOutcome(usage_id=usage.id, usage=usage_out)

        reservation = await self.store.create_reservation(
            user_id, leave_date, leave_type, session, amount,
        )
        await self.store.record_audit(
            action="reserve",
            entity_type="leave_reservation",
            entity_id=reservation.id,
            actor_id=actor_id,
            new_values={
                "date": leave_date.isoformat(),
                "type": leave_type.value,
                "session": session.value if session else None,
                "status": ReservationStatus.RESERVED.value,
            },
        )
        logger.info("user %s reserved %s on %s", user_id, leave_type.value, leave_date)
        reservation_out = ReservationOut.model_validate(reservation)
        return RequestOutcome(reservation_id=reservation.id, reservation=reservation_out)

    # ─────────────────────────────────────────────────────────────────
    # Approve / Cancel
    # ─────────────────────────────────────────────────────────────────

    async def _load_reserved(self, reservation_id: uuid.UUID):
        """Lock the owner, then re-read the reservation and require RESERVED."""
        reservation = await self.store.get_reservation(reservation_id)
        await self.store.lock_user(reservation.user_id)
        reservation = await self.store.get_reservation(reservation_id, for_update=True)
        if reservation.status != ReservationStatus.RESERVED:
            raise InvalidStateException(
                "LeaveReservation",
                reservation_id,
                reservation.status.value,
                ReservationStatus.RESERVED.value,
            )
        return reservation

    async def approve_reservation(
        self,
        reservation_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> UsageOut:
        """Deduct a reservation's amount and mark it USED.

        If the grants no longer cover the amount the reservation stays
        RESERVED and ``AllocationException`` is raised.
        """

        reservation = await self._load_reserved(reservation_id)
        grants = await self.store.list_grants(reservation.user_id)

        usage = await self._deduct(
            reservation.user_id,
            grants,
            reservation.date,
            reservation.type,
            reservation.session,
            reservation.amount,
            reservation_id=reservation.id,
        )
        await self.store.update_reservation_status(reservation, ReservationStatus.USED)

        usage_out = UsageOut.model_validate(usage)
        await self.store.record_audit(
            action="approve",
            entity_type="leave_reservation",
            entity_id=reservation.id,
            actor_id=actor_id,
            old_values={"status": ReservationStatus.RESERVED.value},
            new_values={
                "status": ReservationStatus.USED.value,
                "usage_id": str(usage.id),
                "allocations": _deductions_json(usage_out),
            },
        )
        logger.info(
            "reservation %s approved: %s day(s) from %s",
            reservation.id, reservation.amount, [d.year for d in usage_out.allocations],
        )
        return usage_out

    async def cancel_reservation(
        self,
        reservation_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> ReservationOut:
        """RESERVED → CANCELLED. Reservations never hold balance, so none moves."""

        reservation = await self._load_reserved(reservation_id)
        await self.store.update_reservation_status(reservation, ReservationStatus.CANCELLED)

        await self.store.record_audit(
            action="cancel",
            entity_type="leave_reservation",
            entity_id=reservation.id,
            actor_id=actor_id,
            old_values={"status": ReservationStatus.RESERVED.value},
            new_values={"status": ReservationStatus.CANCELLED.value},
        )
        logger.info("reservation %s cancelled", reservation.id)
        return ReservationOut.model_validate(reservation)

    # ─────────────────────────────────────────────────────────────────
    # Reverse usage
    # ─────────────────────────────────────────────────────────────────

    async def reverse_usage(
        self,
        usage_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> list[GrantSnapshot]:
        """Restore a usage record's days to their grants and delete the record.

        Reversing the same record twice fails with ``NotFoundException``.
        """

        usage = await self.store.get_usage_record(usage_id)
        await self.store.lock_user(usage.user_id)
        # Re-read under the lock: a concurrent reversal may have removed it
        usage = await self.store.get_usage_record(usage_id)
        usage_out = UsageOut.model_validate(usage)

        grants = await self.store.list_grants(usage.user_id)
        restored = AllocationEngine.reverse_allocation(grants, usage_out)

        await self.store.save_grants(grants, restored)
        await self.store.delete_usage_record(usage)

        await self.store.record_audit(
            action="reverse",
            entity_type="leave_usage",
            entity_id=usage_out.id,
            actor_id=actor_id,
            old_values={
                "date": usage_out.date.isoformat(),
                "amount": str(usage_out.amount),
                "allocations": _deductions_json(usage_out),
            },
        )
        logger.info(
            "usage %s reversed: %s day(s) restored to %s",
            usage_out.id, usage_out.amount, [d.year for d in usage_out.allocations],
        )
        return [g for g in restored if g.user_id == usage_out.user_id]

    # ─────────────────────────────────────────────────────────────────
    # Grants
    # ─────────────────────────────────────────────────────────────────

    async def grant_annual_leave(
        self,
        user_id: uuid.UUID,
        year: int,
        *,
        total: Optional[Decimal] = None,
        expire_at: Optional[date] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> GrantSnapshot:
        """Open ``year``'s grant. Size defaults to the years-of-service
        entitlement, expiry to Dec 31 of ``year + grant_validity_years``."""

        user = await self.store.lock_user(user_id)
        if total is None:
            total = Decimal(entitlement_for_year(user.join_date, year))
        if expire_at is None:
            expire_at = date(year + self.grant_validity_years, 12, 31)

        if total < ZERO or not is_half_day_multiple(total):
            raise LeaveValidationException(
                ErrorCode.INVALID_AMOUNT,
                f"A grant total must be a non-negative multiple of 0.5, got {total}.",
            )

        grant = await self.store.create_grant(user_id, year, total, expire_at)
        await self.store.record_audit(
            action="grant",
            entity_type="leave_grant",
            entity_id=grant.id,
            actor_id=actor_id,
            new_values={
                "year": year,
                "total": str(total),
                "expire_at": expire_at.isoformat(),
            },
        )
        logger.info("granted %s day(s) for %s to user %s", total, year, user_id)
        return GrantSnapshot.model_validate(grant)

    async def set_used(
        self,
        user_id: uuid.UUID,
        year: int,
        used: Decimal,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> GrantSnapshot:
        """Administrative correction: set ``used`` and recompute ``remain``."""

        await self.store.lock_user(user_id)
        grant = await self.store.get_grant(user_id, year)
        used = Decimal(used)

        if used < ZERO or used > grant.total or not is_half_day_multiple(used):
            raise LeaveValidationException(
                ErrorCode.INVALID_AMOUNT,
                f"Used days must be a multiple of 0.5 between 0 and {grant.total}, got {used}.",
            )

        before = GrantSnapshot.model_validate(grant)
        after = before.model_copy(update={"used": used, "remain": before.total - used})
        check_grant_invariant(after)
        await self.store.save_grant(after)

        await self.store.record_audit(
            action="set_used",
            entity_type="leave_grant",
            entity_id=grant.id,
            actor_id=actor_id,
            old_values={"used": str(before.used), "remain": str(before.remain)},
            new_values={"used": str(after.used), "remain": str(after.remain)},
        )
        logger.info("user %s grant %s used set %s → %s", user_id, year, before.used, used)
        return after

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    async def get_status(self, user_id: uuid.UUID) -> StatusView:
        await self.store.get_user(user_id)
        grants = await self.store.list_grants(user_id)
        reserved = await self._reserved(user_id)
        return StatusAggregator.get_status(user_id, grants, reserved)

    async def list_reservations(
        self,
        user_id: uuid.UUID,
        *,
        status: Optional[ReservationStatus] = None,
    ) -> list[ReservationOut]:
        await self.store.get_user(user_id)
        rows = await self.store.list_reservations(user_id, status=status)
        return [ReservationOut.model_validate(r) for r in rows]

    async def list_usage_records(
        self,
        user_id: uuid.UUID,
        *,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> list[UsageOut]:
        await self.store.get_user(user_id)
        rows = await self.store.list_usage_records(
            user_id, from_date=from_date, to_date=to_date,
        )
        return [UsageOut.model_validate(u) for u in rows]

    async def get_weekday_usage(self, user_id: uuid.UUID) -> list[WeekdayUsage]:
        usages = await self.list_usage_records(user_id)
        return StatusAggregator.weekday_usage(user_id, usages)
