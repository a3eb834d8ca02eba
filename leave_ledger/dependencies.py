"""Shared FastAPI dependencies."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.database import get_db
from leave_ledger.leave.service import LeaveService
from leave_ledger.leave.store import LeaveStore


async def get_leave_service(db: AsyncSession = Depends(get_db)) -> LeaveService:
    """A ``LeaveService`` bound to the request's session (one transaction)."""
    return LeaveService(LeaveStore(db))
