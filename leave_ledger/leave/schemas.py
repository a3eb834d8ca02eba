"""Leave Pydantic v2 schemas — ledger snapshots, request / response validation.

Naming conventions:
  - *Snapshot           → immutable values the pure ledger components work on
  - *Create / *Request  → request bodies (write)
  - *Out / *View        → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from leave_ledger.common.constants import (
    ErrorCode,
    LeaveSession,
    LeaveType,
    ReservationStatus,
    Weekday,
    is_half_day_multiple,
)

T = TypeVar("T")


def _check_half_days(v: Decimal) -> Decimal:
    if not is_half_day_multiple(v):
        raise ValueError("amounts must be multiples of 0.5 days.")
    return v


# ═════════════════════════════════════════════════════════════════════
# Ledger snapshots
# ═════════════════════════════════════════════════════════════════════


class GrantSnapshot(BaseModel):
    """Immutable view of one (user_id, year) grant."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    user_id: uuid.UUID
    year: int
    total: Decimal
    used: Decimal
    remain: Decimal
    expire_at: date


class Deduction(BaseModel):
    """One ``(year, amount)`` charge against a grant."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    year: int
    amount: Decimal


class AllocationResult(BaseModel):
    """Outcome of a FIFO allocation. On failure nothing is deducted."""

    success: bool
    deductions: list[Deduction] = Field(default_factory=list)
    updated_grants: list[GrantSnapshot] = Field(default_factory=list)
    shortfall: Decimal = Decimal("0")


class ValidationResult(BaseModel):
    """Outcome of checking a candidate leave request."""

    valid: bool
    error_code: Optional[ErrorCode] = None
    error: Optional[str] = None


# ═════════════════════════════════════════════════════════════════════
# Reservations / usage records
# ═════════════════════════════════════════════════════════════════════


class ReservationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    date: date
    type: LeaveType
    session: Optional[LeaveSession] = None
    amount: Decimal
    status: ReservationStatus
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class UsageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    reservation_id: Optional[uuid.UUID] = None
    date: date
    type: LeaveType
    session: Optional[LeaveSession] = None
    amount: Decimal
    weekday: Weekday
    source_year: int
    used_at: datetime
    allocations: list[Deduction] = Field(default_factory=list)


# ═════════════════════════════════════════════════════════════════════
# Status
# ═════════════════════════════════════════════════════════════════════


class NearestExpiry(BaseModel):
    year: int
    amount: Decimal
    expire_at: date


class StatusView(BaseModel):
    """A user's entitlement across all grant years."""

    user_id: uuid.UUID
    total: Decimal
    used: Decimal
    reserved: Decimal
    remain: Decimal
    # remain minus what is already promised to RESERVED requests
    available: Decimal
    balances: list[GrantSnapshot]
    nearest_expiry: Optional[NearestExpiry] = None


class WeekdayUsage(BaseModel):
    weekday: Weekday
    total_used: Decimal
    count: int


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for requesting a day or half day of leave."""

    user_id: uuid.UUID
    date: date
    type: LeaveType
    session: Optional[LeaveSession] = Field(
        default=None, description="AM or PM; required for HALF requests"
    )
    immediate: bool = Field(
        default=False,
        description="Deduct now (backfill) instead of creating a reservation",
    )
    actor_id: Optional[uuid.UUID] = None


class ActorRequest(BaseModel):
    """Optional body for approve / cancel / reverse calls."""

    actor_id: Optional[uuid.UUID] = None


class GrantCreate(BaseModel):
    """Open a new entitlement year for a user."""

    year: int = Field(..., ge=1900, le=9999)
    total: Optional[Decimal] = Field(
        default=None, ge=0, description="Defaults to the years-of-service entitlement"
    )
    expire_at: Optional[date] = None
    actor_id: Optional[uuid.UUID] = None

    @field_validator("total")
    @classmethod
    def total_in_half_days(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return v if v is None else _check_half_days(v)

    @model_validator(mode="after")
    def expiry_not_before_year(self) -> "GrantCreate":
        if self.expire_at is not None and self.expire_at.year < self.year:
            raise ValueError("expire_at cannot fall before the grant year.")
        return self


class UsedUpdate(BaseModel):
    """Administrative correction of a grant's used days."""

    used: Decimal
    actor_id: Optional[uuid.UUID] = None


# ═════════════════════════════════════════════════════════════════════
# Result envelope
# ═════════════════════════════════════════════════════════════════════


class RequestOutcome(BaseModel):
    """Which record a leave request produced."""

    reservation_id: Optional[uuid.UUID] = None
    usage_id: Optional[uuid.UUID] = None
    reservation: Optional[ReservationOut] = None
    usage: Optional[UsageOut] = None


class OperationResult(BaseModel, Generic[T]):
    """Success envelope; failures are rendered as problem details."""

    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None


def ok(data: Any = None, message: Optional[str] = None) -> OperationResult:
    return OperationResult(success=True, data=data, message=message)
