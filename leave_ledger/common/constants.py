"""Enums and constants for the leave ledger — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum
from decimal import Decimal


# ── Users ───────────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    USER = "USER"
    VIEW = "VIEW"


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    RESIGNED = "RESIGNED"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveType(str, enum.Enum):
    FULL = "FULL"
    HALF = "HALF"


class LeaveSession(str, enum.Enum):
    AM = "AM"
    PM = "PM"


class ReservationStatus(str, enum.Enum):
    RESERVED = "RESERVED"
    USED = "USED"
    CANCELLED = "CANCELLED"


class Weekday(str, enum.Enum):
    MON = "MON"
    TUE = "TUE"
    WED = "WED"
    THU = "THU"
    FRI = "FRI"
    SAT = "SAT"
    SUN = "SUN"

    @classmethod
    def from_python(cls, weekday: int) -> "Weekday":
        """Map ``date.weekday()`` (0=Mon … 6=Sun) to a Weekday."""
        return list(cls)[weekday]


# ── Error kinds ─────────────────────────────────────────────────────

class ErrorCode(str, enum.Enum):
    # Request validation
    SUNDAY_NOT_ALLOWED = "SUNDAY_NOT_ALLOWED"
    INSUFFICIENT_LEAVE = "INSUFFICIENT_LEAVE"
    DUPLICATE_RESERVATION = "DUPLICATE_RESERVATION"
    INVALID_HALF_DAY = "INVALID_HALF_DAY"
    INVALID_DATE = "INVALID_DATE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    # Lookup / state machine
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    CONFLICT = "CONFLICT"
    # Ledger
    ALLOCATION_FAILED = "ALLOCATION_FAILED"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"
    STORE_ERROR = "STORE_ERROR"
    # Malformed request body or query
    INVALID_REQUEST = "INVALID_REQUEST"


# ── Amounts ─────────────────────────────────────────────────────────

FULL_DAY = Decimal("1.0")
HALF_DAY = Decimal("0.5")
ZERO = Decimal("0")

LEAVE_AMOUNTS: dict[LeaveType, Decimal] = {
    LeaveType.FULL: FULL_DAY,
    LeaveType.HALF: HALF_DAY,
}

# ── Entitlement policy ──────────────────────────────────────────────

BASE_ANNUAL_LEAVE = 15
MAX_ANNUAL_LEAVE = 25


def is_half_day_multiple(value: Decimal) -> bool:
    """True when ``value`` is a whole number of half days."""
    return (value * 2) % 1 == 0
