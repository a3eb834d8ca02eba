"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from leave_ledger.common.constants import ErrorCode

BASE_ERROR_URI = "https://leave-ledger.local/errors"

logger = logging.getLogger(__name__)


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        code: ErrorCode,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.code = code
        self.errors = errors
        super().__init__(detail)


class LeaveValidationException(AppException):
    """422 — a leave request or ledger edit broke a business rule."""

    def __init__(self, code: ErrorCode, detail: str) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail=detail,
            code=code,
            errors={"code": [code.value]},
        )


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
            code=ErrorCode.NOT_FOUND,
        )


class InvalidStateException(AppException):
    """409 — entity exists but is not in the state the transition requires."""

    def __init__(self, entity_type: str, entity_id: Any, current: str, expected: str) -> None:
        self.current = current
        super().__init__(
            status_code=409,
            error_type="invalid-state",
            title="Invalid State",
            detail=(
                f"{entity_type} '{entity_id}' is {current}; "
                f"this operation requires {expected}."
            ),
            code=ErrorCode.INVALID_STATE,
        )


class ConflictError(AppException):
    """409 — unique-constraint / duplicate."""

    def __init__(self, field: str, value: Any) -> None:
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=f"An entry with {field}='{value}' already exists.",
            code=ErrorCode.CONFLICT,
            errors={field: [f"'{value}' is already in use."]},
        )


class AllocationException(AppException):
    """409 — grants could not cover the amount at deduction time.

    Safe to retry after re-reading the user's status.
    """

    def __init__(self, requested: Any, available: Any) -> None:
        self.requested = requested
        self.available = available
        super().__init__(
            status_code=409,
            error_type="allocation-failed",
            title="Allocation Failed",
            detail=(
                f"Cannot deduct {requested} day(s); only {available} day(s) "
                f"remain across all grants."
            ),
            code=ErrorCode.ALLOCATION_FAILED,
        )


class InvariantViolation(AppException):
    """500 — a ledger computation would corrupt a grant. Never clamped."""

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=500,
            error_type="invariant-violation",
            title="Ledger Invariant Violation",
            detail=detail,
            code=ErrorCode.INVARIANT_VIOLATION,
        )


class StoreError(AppException):
    """503 — the persistence layer failed; the operation was aborted."""

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        super().__init__(
            status_code=503,
            error_type="store-error",
            title="Store Error",
            detail=f"Store operation '{operation}' failed: {reason}",
            code=ErrorCode.STORE_ERROR,
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
        # Result envelope shared with successful responses
        "success": False,
        "error": exc.code.value,
        "message": exc.detail,
    }
    if exc.errors:
        body["errors"] = exc.errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s → %s: %s", request.method, request.url.path, exc.code.value, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "success": False,
            "error": ErrorCode.INVALID_REQUEST.value,
            "message": "Request validation failed.",
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
