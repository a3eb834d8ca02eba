"""Request validation — stateless rules a leave request must pass before it is
reserved or deducted.

Rules run in a fixed order and the first failure wins:

  0. date window (only when ``not_before`` is given)
  1. no leave on the non-working weekday
  2. enough remaining leave for the requested amount
  3. no clash with RESERVED entries on the same date
  4. HALF requests name a session
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from leave_ledger.common.constants import (
    LEAVE_AMOUNTS,
    ErrorCode,
    LeaveSession,
    LeaveType,
    ReservationStatus,
)
from leave_ledger.leave.schemas import ReservationOut, ValidationResult

SUNDAY = 6


def _fail(code: ErrorCode, message: str) -> ValidationResult:
    return ValidationResult(valid=False, error_code=code, error=message)


class RequestValidator:
    """Pure rule checks. Safe to call any number of times."""

    @staticmethod
    def required_amount(leave_type: LeaveType) -> Decimal:
        return LEAVE_AMOUNTS[leave_type]

    @staticmethod
    def validate(
        request_date: date,
        leave_type: LeaveType,
        session: Optional[LeaveSession],
        remaining_total: Decimal,
        existing_reservations: Iterable[ReservationOut],
        *,
        not_before: Optional[date] = None,
        non_working_weekday: int = SUNDAY,
    ) -> ValidationResult:
        if not_before is not None and request_date < not_before:
            return _fail(
                ErrorCode.INVALID_DATE,
                f"{request_date.isoformat()} is in the past; "
                f"reservations must be on or after {not_before.isoformat()}.",
            )

        if request_date.weekday() == non_working_weekday:
            return _fail(
                ErrorCode.SUNDAY_NOT_ALLOWED,
                f"Leave cannot be taken on {request_date.strftime('%A')}s.",
            )

        required = RequestValidator.required_amount(leave_type)
        if Decimal(remaining_total) < required:
            return _fail(
                ErrorCode.INSUFFICIENT_LEAVE,
                f"{required} day(s) required but only {remaining_total} remaining.",
            )

        same_date = [
            r for r in existing_reservations
            if r.date == request_date and r.status == ReservationStatus.RESERVED
        ]
        if same_date:
            if any(r.type == LeaveType.FULL for r in same_date):
                return _fail(
                    ErrorCode.DUPLICATE_RESERVATION,
                    f"A full day is already reserved on {request_date.isoformat()}.",
                )
            if leave_type == LeaveType.FULL:
                return _fail(
                    ErrorCode.DUPLICATE_RESERVATION,
                    f"A half day is already reserved on {request_date.isoformat()}; "
                    f"a full day would exceed one day.",
                )
            if session is not None and any(
                r.type == LeaveType.HALF and r.session == session for r in same_date
            ):
                return _fail(
                    ErrorCode.INVALID_HALF_DAY,
                    f"The {session.value} half of {request_date.isoformat()} "
                    f"is already reserved.",
                )

        if leave_type == LeaveType.HALF and session is None:
            return _fail(
                ErrorCode.INVALID_HALF_DAY,
                "A half-day request must specify the AM or PM session.",
            )

        return ValidationResult(valid=True)
