"""Persistence boundary for the leave ledger.

``LeaveStore`` is the only place that talks to the database. Everything it
hands out to the ledger logic is an immutable snapshot or an ORM row scoped to
the caller's session; every ``SQLAlchemyError`` is turned into ``StoreError``
so the engine can abort the operation without leaking driver exceptions.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterator, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.common.audit import create_audit_entry
from leave_ledger.common.constants import (
    LeaveSession,
    LeaveType,
    ReservationStatus,
    Weekday,
)
from leave_ledger.common.exceptions import (
    ConflictError,
    NotFoundException,
    StoreError,
)
from leave_ledger.leave.models import (
    LeaveGrant,
    LeaveReservation,
    LeaveUsage,
    LeaveUsageAllocation,
)
from leave_ledger.leave.schemas import Deduction, GrantSnapshot
from leave_ledger.users.models import User

logger = logging.getLogger(__name__)


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("store operation %s failed", operation)
        raise StoreError(operation, exc.__class__.__name__) from exc


class LeaveStore:
    """Grant / reservation / usage persistence over one ``AsyncSession``."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ─────────────────────────────────────────────────────────────────
    # Users
    # ─────────────────────────────────────────────────────────────────

    async def get_user(self, user_id: uuid.UUID) -> User:
        with _store_errors("get_user"):
            user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundException("User", str(user_id))
        return user

    async def lock_user(self, user_id: uuid.UUID) -> User:
        """Take the per-user write lock (row lock on ``users``).

        Every mutation of a user's grants, reservations or usage records must
        hold this lock until its transaction ends.
        """
        with _store_errors("lock_user"):
            result = await self.db.execute(
                select(User).where(User.id == user_id).with_for_update()
            )
            user = result.scalars().first()
        if user is None:
            raise NotFoundException("User", str(user_id))
        return user

    # ─────────────────────────────────────────────────────────────────
    # Grants
    # ─────────────────────────────────────────────────────────────────

    async def _grant_rows(self, user_id: uuid.UUID) -> Sequence[LeaveGrant]:
        result = await self.db.execute(
            select(LeaveGrant)
            .where(LeaveGrant.user_id == user_id)
            .order_by(LeaveGrant.year)
        )
        return result.scalars().all()

    async def list_grants(self, user_id: uuid.UUID) -> list[GrantSnapshot]:
        with _store_errors("list_grants"):
            rows = await self._grant_rows(user_id)
        return [GrantSnapshot.model_validate(row) for row in rows]

    async def get_grant(self, user_id: uuid.UUID, year: int) -> LeaveGrant:
        with _store_errors("get_grant"):
            result = await self.db.execute(
                select(LeaveGrant).where(
                    LeaveGrant.user_id == user_id,
                    LeaveGrant.year == year,
                )
            )
            grant = result.scalars().first()
        if grant is None:
            raise NotFoundException("LeaveGrant", f"{user_id}/{year}")
        return grant

    async def create_grant(
        self,
        user_id: uuid.UUID,
        year: int,
        total: Decimal,
        expire_at: date,
    ) -> LeaveGrant:
        grant = LeaveGrant(
            user_id=user_id,
            year=year,
            total=total,
            used=Decimal("0"),
            remain=total,
            expire_at=expire_at,
        )
        with _store_errors("create_grant"):
            existing = (
                await self.db.execute(
                    select(LeaveGrant.id).where(
                        LeaveGrant.user_id == user_id,
                        LeaveGrant.year == year,
                    )
                )
            ).scalar()
            if existing is not None:
                raise ConflictError("user_id/year", f"{user_id}/{year}")
            self.db.add(grant)
            await self.db.flush()
        return grant

    async def save_grant(self, snapshot: GrantSnapshot) -> LeaveGrant:
        """Write a snapshot's ``used`` / ``remain`` back to its row."""
        with _store_errors("save_grant"):
            grant = (
                await self.db.execute(
                    select(LeaveGrant).where(
                        LeaveGrant.user_id == snapshot.user_id,
                        LeaveGrant.year == snapshot.year,
                    )
                )
            ).scalars().first()
            if grant is None:
                raise NotFoundException("LeaveGrant", f"{snapshot.user_id}/{snapshot.year}")
            grant.used = snapshot.used
            grant.remain = snapshot.remain
            grant.updated_at = datetime.now(timezone.utc)
            await self.db.flush()
        return grant

    async def save_grants(
        self,
        before: Sequence[GrantSnapshot],
        after: Sequence[GrantSnapshot],
    ) -> None:
        """Persist only the grants whose balances changed."""
        previous = {(g.user_id, g.year): g for g in before}
        for snapshot in after:
            if previous.get((snapshot.user_id, snapshot.year)) != snapshot:
                await self.save_grant(snapshot)

    # ─────────────────────────────────────────────────────────────────
    # Reservations
    # ─────────────────────────────────────────────────────────────────

    async def list_reservations(
        self,
        user_id: uuid.UUID,
        *,
        status: Optional[ReservationStatus] = None,
    ) -> list[LeaveReservation]:
        query = (
            select(LeaveReservation)
            .where(LeaveReservation.user_id == user_id)
            .order_by(LeaveReservation.date, LeaveReservation.created_at)
        )
        if status is not None:
            query = query.where(LeaveReservation.status == status)
        with _store_errors("list_reservations"):
            result = await self.db.execute(query)
            return list(result.scalars().all())

    async def get_reservation(
        self,
        reservation_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> LeaveReservation:
        query = select(LeaveReservation).where(LeaveReservation.id == reservation_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        with _store_errors("get_reservation"):
            reservation = (await self.db.execute(query)).scalars().first()
        if reservation is None:
            raise NotFoundException("LeaveReservation", str(reservation_id))
        return reservation

    async def create_reservation(
        self,
        user_id: uuid.UUID,
        leave_date: date,
        leave_type: LeaveType,
        session: Optional[LeaveSession],
        amount: Decimal,
    ) -> LeaveReservation:
        reservation = LeaveReservation(
            user_id=user_id,
            date=leave_date,
            type=leave_type,
            session=session,
            amount=amount,
            status=ReservationStatus.RESERVED,
            created_at=datetime.now(timezone.utc),
        )
        with _store_errors("create_reservation"):
            self.db.add(reservation)
            await self.db.flush()
        return reservation

    async def update_reservation_status(
        self,
        reservation: LeaveReservation,
        status: ReservationStatus,
    ) -> LeaveReservation:
        reservation.status = status
        reservation.resolved_at = datetime.now(timezone.utc)
        with _store_errors("update_reservation_status"):
            await self.db.flush()
        return reservation

    # ─────────────────────────────────────────────────────────────────
    # Usage records
    # ─────────────────────────────────────────────────────────────────

    async def create_usage_record(
        self,
        user_id: uuid.UUID,
        leave_date: date,
        leave_type: LeaveType,
        session: Optional[LeaveSession],
        amount: Decimal,
        deductions: Sequence[Deduction],
        *,
        reservation_id: Optional[uuid.UUID] = None,
    ) -> LeaveUsage:
        usage = LeaveUsage(
            user_id=user_id,
            reservation_id=reservation_id,
            date=leave_date,
            type=leave_type,
            session=session,
            amount=amount,
            weekday=Weekday.from_python(leave_date.weekday()),
            source_year=deductions[0].year,
            used_at=datetime.now(timezone.utc),
        )
        usage.allocations = [
            LeaveUsageAllocation(position=i, year=d.year, amount=d.amount)
            for i, d in enumerate(deductions)
        ]
        with _store_errors("create_usage_record"):
            self.db.add(usage)
            await self.db.flush()
        return usage

    async def get_usage_record(self, usage_id: uuid.UUID) -> LeaveUsage:
        with _store_errors("get_usage_record"):
            usage = (
                await self.db.execute(select(LeaveUsage).where(LeaveUsage.id == usage_id))
            ).scalars().first()
        if usage is None:
            raise NotFoundException("LeaveUsage", str(usage_id))
        return usage

    async def list_usage_records(
        self,
        user_id: uuid.UUID,
        *,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> list[LeaveUsage]:
        query = (
            select(LeaveUsage)
            .where(LeaveUsage.user_id == user_id)
            .order_by(LeaveUsage.date.desc())
        )
        if from_date is not None:
            query = query.where(LeaveUsage.date >= from_date)
        if to_date is not None:
            query = query.where(LeaveUsage.date <= to_date)
        with _store_errors("list_usage_records"):
            result = await self.db.execute(query)
            return list(result.scalars().all())

    async def delete_usage_record(self, usage: LeaveUsage) -> None:
        with _store_errors("delete_usage_record"):
            await self.db.delete(usage)
            await self.db.flush()

    # ─────────────────────────────────────────────────────────────────
    # Audit
    # ─────────────────────────────────────────────────────────────────

    async def record_audit(
        self,
        *,
        action: str,
        entity_type: str,
        entity_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        old_values: Optional[dict[str, Any]] = None,
        new_values: Optional[dict[str, Any]] = None,
    ) -> None:
        with _store_errors("record_audit"):
            await create_audit_entry(
                self.db,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                actor_id=actor_id,
                old_values=old_values,
                new_values=new_values,
            )
