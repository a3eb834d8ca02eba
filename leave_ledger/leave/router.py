"""Leave router — requests, reservation approval/cancellation, usage reversal,
status and admin grant maintenance.

Every write endpoint runs in the request's transaction; a raised
``AppException`` rolls it back and is rendered as a problem detail.
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request

from leave_ledger.common.constants import ReservationStatus
from leave_ledger.common.rate_limit import limiter
from leave_ledger.dependencies import get_leave_service
from leave_ledger.leave.schemas import (
    ActorRequest,
    GrantCreate,
    GrantSnapshot,
    LeaveRequestCreate,
    OperationResult,
    RequestOutcome,
    ReservationOut,
    StatusView,
    UsageOut,
    UsedUpdate,
    WeekdayUsage,
    ok,
)
from leave_ledger.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])


# ── POST /requests ──────────────────────────────────────────────────

@router.post("/requests", response_model=OperationResult[RequestOutcome], status_code=201)
@limiter.limit("30/minute")
async def request_leave(
    request: Request,
    body: LeaveRequestCreate,
    service: LeaveService = Depends(get_leave_service),
):
    """Reserve a future day (or half day), or record an immediate use."""
    outcome = await service.request_leave(
        body.user_id,
        body.date,
        body.type,
        body.session,
        immediate=body.immediate,
        actor_id=body.actor_id,
    )
    message = "Leave used." if body.immediate else "Leave reserved."
    return ok(outcome, message)


# ── POST /reservations/{id}/approve ─────────────────────────────────

@router.post(
    "/reservations/{reservation_id}/approve",
    response_model=OperationResult[UsageOut],
)
async def approve_reservation(
    reservation_id: uuid.UUID,
    body: Optional[ActorRequest] = Body(None),
    service: LeaveService = Depends(get_leave_service),
):
    """Deduct the reservation FIFO across grants and mark it USED."""
    usage = await service.approve_reservation(
        reservation_id, actor_id=body.actor_id if body else None,
    )
    return ok(usage, "Reservation approved.")


# ── POST /reservations/{id}/cancel ──────────────────────────────────

@router.post(
    "/reservations/{reservation_id}/cancel",
    response_model=OperationResult[ReservationOut],
)
async def cancel_reservation(
    reservation_id: uuid.UUID,
    body: Optional[ActorRequest] = Body(None),
    service: LeaveService = Depends(get_leave_service),
):
    reservation = await service.cancel_reservation(
        reservation_id, actor_id=body.actor_id if body else None,
    )
    return ok(reservation, "Reservation cancelled.")


# ── DELETE /usages/{id} ─────────────────────────────────────────────

@router.delete("/usages/{usage_id}", response_model=OperationResult[list[GrantSnapshot]])
async def reverse_usage(
    usage_id: uuid.UUID,
    actor_id: Optional[uuid.UUID] = Query(None),
    service: LeaveService = Depends(get_leave_service),
):
    """Give a usage record's days back to their grants and delete it."""
    grants = await service.reverse_usage(usage_id, actor_id=actor_id)
    return ok(grants, "Usage reversed.")


# ── GET /users/{user_id}/status ─────────────────────────────────────

@router.get("/users/{user_id}/status", response_model=OperationResult[StatusView])
async def get_status(
    user_id: uuid.UUID,
    service: LeaveService = Depends(get_leave_service),
):
    return ok(await service.get_status(user_id))


# ── GET /users/{user_id}/reservations ───────────────────────────────

@router.get(
    "/users/{user_id}/reservations",
    response_model=OperationResult[list[ReservationOut]],
)
async def list_reservations(
    user_id: uuid.UUID,
    status: Optional[ReservationStatus] = Query(None),
    service: LeaveService = Depends(get_leave_service),
):
    return ok(await service.list_reservations(user_id, status=status))


# ── GET /users/{user_id}/usages ─────────────────────────────────────

@router.get("/users/{user_id}/usages", response_model=OperationResult[list[UsageOut]])
async def list_usage_records(
    user_id: uuid.UUID,
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    service: LeaveService = Depends(get_leave_service),
):
    """Usage records, newest first, optionally limited to a date range."""
    return ok(
        await service.list_usage_records(user_id, from_date=from_date, to_date=to_date)
    )


# ── GET /users/{user_id}/usage-by-weekday ───────────────────────────

@router.get(
    "/users/{user_id}/usage-by-weekday",
    response_model=OperationResult[list[WeekdayUsage]],
)
async def usage_by_weekday(
    user_id: uuid.UUID,
    service: LeaveService = Depends(get_leave_service),
):
    return ok(await service.get_weekday_usage(user_id))


# ── POST /users/{user_id}/grants (admin) ────────────────────────────

@router.post(
    "/users/{user_id}/grants",
    response_model=OperationResult[GrantSnapshot],
    status_code=201,
)
async def grant_annual_leave(
    user_id: uuid.UUID,
    body: GrantCreate,
    service: LeaveService = Depends(get_leave_service),
):
    """Open a grant year. Size defaults to the years-of-service entitlement."""
    grant = await service.grant_annual_leave(
        user_id,
        body.year,
        total=body.total,
        expire_at=body.expire_at,
        actor_id=body.actor_id,
    )
    return ok(grant, "Grant created.")


# ── PUT /users/{user_id}/grants/{year}/used (admin) ─────────────────

@router.put(
    "/users/{user_id}/grants/{year}/used",
    response_model=OperationResult[GrantSnapshot],
)
async def set_used(
    user_id: uuid.UUID,
    year: int,
    body: UsedUpdate,
    service: LeaveService = Depends(get_leave_service),
):
    grant = await service.set_used(user_id, year, body.used, actor_id=body.actor_id)
    return ok(grant, "Grant updated.")
