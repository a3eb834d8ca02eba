"""Read-side projections of a user's ledger. Pure functions, no I/O."""

from __future__ import annotations

import uuid
from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Sequence

from leave_ledger.common.constants import ZERO, ReservationStatus, Weekday
from leave_ledger.leave.schemas import (
    GrantSnapshot,
    NearestExpiry,
    ReservationOut,
    StatusView,
    UsageOut,
    WeekdayUsage,
)


class StatusAggregator:

    @staticmethod
    def get_status(
        user_id: uuid.UUID,
        grants: Sequence[GrantSnapshot],
        reservations: Iterable[ReservationOut],
    ) -> StatusView:
        """Sum the user's grants and RESERVED reservations into a StatusView."""
        balances = sorted((g for g in grants if g.user_id == user_id), key=lambda g: g.year)

        total = sum((g.total for g in balances), ZERO)
        used = sum((g.used for g in balances), ZERO)
        remain = sum((g.remain for g in balances), ZERO)
        reserved = sum(
            (
                r.amount for r in reservations
                if r.user_id == user_id and r.status == ReservationStatus.RESERVED
            ),
            ZERO,
        )

        # ISO dates compare chronologically
        with_remaining = sorted(
            (g for g in balances if g.remain > ZERO),
            key=lambda g: (g.expire_at, g.year),
        )
        nearest = None
        if with_remaining:
            first = with_remaining[0]
            nearest = NearestExpiry(year=first.year, amount=first.remain, expire_at=first.expire_at)

        return StatusView(
            user_id=user_id,
            total=total,
            used=used,
            reserved=reserved,
            remain=remain,
            available=max(remain - reserved, ZERO),
            balances=balances,
            nearest_expiry=nearest,
        )

    @staticmethod
    def weekday_usage(
        user_id: uuid.UUID,
        usages: Iterable[UsageOut],
    ) -> list[WeekdayUsage]:
        """Days used per weekday, Monday first; weekdays never used are left out."""
        totals: dict[Weekday, Decimal] = defaultdict(lambda: ZERO)
        counts: dict[Weekday, int] = defaultdict(int)
        for usage in usages:
            if usage.user_id != user_id:
                continue
            totals[usage.weekday] += usage.amount
            counts[usage.weekday] += 1

        return [
            WeekdayUsage(weekday=day, total_used=totals[day], count=counts[day])
            for day in Weekday
            if counts[day]
        ]
