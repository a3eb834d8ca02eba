"""Annual entitlement by years of service.

15 days after the first full year, one more day for every two further years,
capped at 25.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from leave_ledger.common.constants import BASE_ANNUAL_LEAVE, MAX_ANNUAL_LEAVE


def calculate_years_of_service(join_date: date, base_date: Optional[date] = None) -> int:
    """Whole years between ``join_date`` and ``base_date`` (default: today)."""
    base = base_date or date.today()
    years = base.year - join_date.year
    if (base.month, base.day) < (join_date.month, join_date.day):
        years -= 1
    return max(years, 0)


def calculate_annual_leave(years_of_service: int) -> int:
    if years_of_service < 1:
        return 0
    return min(BASE_ANNUAL_LEAVE + (years_of_service - 1) // 2, MAX_ANNUAL_LEAVE)


def anniversary_in(join_date: date, year: int) -> date:
    """The join anniversary inside ``year`` (Feb 29 moves to Mar 1 outside leap years)."""
    try:
        return join_date.replace(year=year)
    except ValueError:
        return date(year, 3, 1)


def entitlement_for_year(join_date: date, year: int) -> int:
    """Grant size for ``year``, measured at the join anniversary in that year."""
    return calculate_annual_leave(
        calculate_years_of_service(join_date, anniversary_in(join_date, year))
    )
