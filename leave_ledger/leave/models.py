"""Leave ORM models: LeaveGrant, LeaveReservation, LeaveUsage, LeaveUsageAllocation."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_ledger.common.constants import (
    LeaveSession,
    LeaveType,
    ReservationStatus,
    Weekday,
)
from leave_ledger.database import Base


class LeaveGrant(Base):
    """One year's entitlement for a user, with its own expiry date."""

    __tablename__ = "leave_grants"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "year", name="uq_leave_grant_user_year"),
        sa.CheckConstraint("used >= 0", name="ck_leave_grant_used_non_negative"),
        sa.CheckConstraint("remain >= 0", name="ck_leave_grant_remain_non_negative"),
        sa.CheckConstraint("remain = total - used", name="ck_leave_grant_remain_balanced"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    total: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)
    used: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, server_default=sa.text("0")
    )
    remain: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)
    expire_at: Mapped[date] = mapped_column(sa.Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )


class LeaveReservation(Base):
    """A future-dated request awaiting approval. Holds no balance."""

    __tablename__ = "leave_reservations"
    __table_args__ = (
        sa.Index("ix_leave_reservations_user_date", "user_id", "date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    type: Mapped[LeaveType] = mapped_column(
        sa.Enum(LeaveType, name="leave_type", create_type=False), nullable=False
    )
    session: Mapped[Optional[LeaveSession]] = mapped_column(
        sa.Enum(LeaveSession, name="leave_session", create_type=False)
    )
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        sa.Enum(ReservationStatus, name="reservation_status", create_type=False),
        nullable=False,
        default=ReservationStatus.RESERVED,
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )


class LeaveUsage(Base):
    """A committed, balance-deducting leave day (or half day)."""

    __tablename__ = "leave_usages"
    __table_args__ = (
        sa.Index("ix_leave_usages_user_date", "user_id", "date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    reservation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_reservations.id"), unique=True
    )
    date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    type: Mapped[LeaveType] = mapped_column(
        sa.Enum(LeaveType, name="leave_type", create_type=False), nullable=False
    )
    session: Mapped[Optional[LeaveSession]] = mapped_column(
        sa.Enum(LeaveSession, name="leave_session", create_type=False)
    )
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)
    weekday: Mapped[Weekday] = mapped_column(
        sa.Enum(Weekday, name="weekday", create_type=False), nullable=False
    )
    # Earliest-expiring grant charged; the full split lives in ``allocations``
    source_year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    used_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )

    # Relationships
    allocations: Mapped[list[LeaveUsageAllocation]] = relationship(
        back_populates="usage",
        cascade="all, delete-orphan",
        order_by="LeaveUsageAllocation.position",
        lazy="selectin",
    )


class LeaveUsageAllocation(Base):
    """One ``(year, amount)`` deduction tuple of a usage record."""

    __tablename__ = "leave_usage_allocations"
    __table_args__ = (
        sa.UniqueConstraint("usage_id", "year", name="uq_leave_usage_allocation_year"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    usage_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_usages.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)

    # Relationships
    usage: Mapped[LeaveUsage] = relationship(back_populates="allocations")
