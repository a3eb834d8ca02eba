"""FIFO allocation of leave usage against per-year grants, and its exact inverse.

Grants are consumed earliest-expiring first so that the entitlement most at
risk of being forfeited is used up before later years are touched. Both
directions work on immutable ``GrantSnapshot`` values and return new ones;
persisting the result is the caller's job.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Sequence

from leave_ledger.common.constants import ZERO, is_half_day_multiple
from leave_ledger.common.exceptions import InvariantViolation
from leave_ledger.leave.schemas import (
    AllocationResult,
    Deduction,
    GrantSnapshot,
    UsageOut,
)

logger = logging.getLogger(__name__)


def check_grant_invariant(grant: GrantSnapshot) -> None:
    """Raise ``InvariantViolation`` unless ``0 <= remain == total - used``."""
    if grant.used < ZERO:
        raise InvariantViolation(
            f"Grant {grant.year} for user {grant.user_id} would have used={grant.used}."
        )
    if grant.remain < ZERO or grant.remain > grant.total:
        raise InvariantViolation(
            f"Grant {grant.year} for user {grant.user_id} would have "
            f"remain={grant.remain} outside [0, {grant.total}]."
        )
    if grant.remain != grant.total - grant.used:
        raise InvariantViolation(
            f"Grant {grant.year} for user {grant.user_id} is unbalanced: "
            f"total={grant.total} used={grant.used} remain={grant.remain}."
        )


class AllocationEngine:
    """Earliest-expiring-first deduction over a single user's grants."""

    @staticmethod
    def fifo_order(grants: Sequence[GrantSnapshot]) -> list[GrantSnapshot]:
        """Grants with something left, earliest ``expire_at`` first (ties by year)."""
        return sorted(
            (g for g in grants if g.remain > ZERO),
            key=lambda g: (g.expire_at, g.year),
        )

    @staticmethod
    def allocate(grants: Sequence[GrantSnapshot], amount: Decimal) -> AllocationResult:
        """Deduct ``amount`` from ``grants`` in FIFO order.

        All-or-nothing: if the grants cannot cover the whole amount the result
        has ``success=False``, no deductions, and the input grants unchanged.
        """
        amount = Decimal(amount)
        if amount <= ZERO or not is_half_day_multiple(amount):
            raise ValueError(f"allocation amount must be a positive multiple of 0.5, got {amount}")

        left = amount
        deductions: list[Deduction] = []
        for grant in AllocationEngine.fifo_order(grants):
            if left == ZERO:
                break
            take = min(grant.remain, left)
            deductions.append(Deduction(year=grant.year, amount=take))
            left -= take

        if left > ZERO:
            logger.debug("allocation of %s short by %s", amount, left)
            return AllocationResult(
                success=False,
                deductions=[],
                updated_grants=list(grants),
                shortfall=left,
            )

        taken = {d.year: d.amount for d in deductions}
        updated: list[GrantSnapshot] = []
        for grant in grants:
            if grant.year in taken:
                grant = grant.model_copy(
                    update={
                        "used": grant.used + taken[grant.year],
                        "remain": grant.remain - taken[grant.year],
                    }
                )
                check_grant_invariant(grant)
            updated.append(grant)

        return AllocationResult(success=True, deductions=deductions, updated_grants=updated)

    @staticmethod
    def reverse_allocation(
        grants: Sequence[GrantSnapshot],
        usage: UsageOut,
    ) -> list[GrantSnapshot]:
        """Give a usage record's days back to the grants they were taken from.

        Records written before per-year splits were kept carry no allocations;
        for those the whole amount goes back to ``source_year``.
        """
        deductions = usage.allocations or [
            Deduction(year=usage.source_year, amount=usage.amount)
        ]
        by_year = {g.year: g for g in grants if g.user_id == usage.user_id}

        restored: dict[int, GrantSnapshot] = {}
        for d in deductions:
            grant = restored.get(d.year, by_year.get(d.year))
            if grant is None:
                raise InvariantViolation(
                    f"Usage {usage.id} references grant {d.year} for user "
                    f"{usage.user_id}, which does not exist."
                )
            grant = grant.model_copy(
                update={"used": grant.used - d.amount, "remain": grant.remain + d.amount}
            )
            check_grant_invariant(grant)
            restored[d.year] = grant

        return [
            restored.get(g.year, g) if g.user_id == usage.user_id else g
            for g in grants
        ]
