"""Common module — shared constants, errors and audit trail for the leave ledger."""

from leave_ledger.common.audit import AuditTrail, create_audit_entry
from leave_ledger.common.constants import (
    FULL_DAY,
    HALF_DAY,
    ErrorCode,
    LeaveSession,
    LeaveType,
    ReservationStatus,
    UserRole,
    UserStatus,
    Weekday,
)
from leave_ledger.common.exceptions import (
    AllocationException,
    AppException,
    ConflictError,
    InvalidStateException,
    InvariantViolation,
    LeaveValidationException,
    NotFoundException,
    StoreError,
    register_exception_handlers,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "ErrorCode",
    "LeaveSession",
    "LeaveType",
    "ReservationStatus",
    "UserRole",
    "UserStatus",
    "Weekday",
    "FULL_DAY",
    "HALF_DAY",
    # Exceptions
    "AppException",
    "AllocationException",
    "ConflictError",
    "InvalidStateException",
    "InvariantViolation",
    "LeaveValidationException",
    "NotFoundException",
    "StoreError",
    "register_exception_handlers",
]
