from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from models import Budget, BudgetStatus


@dataclass(frozen=True)
class Verdict:
    can_afford: bool
    requested_amount: int
    budget_limit: int
    spent_amount: int
    remaining: int
    would_exceed: bool
    excess_amount: int
    usage_before: float
    usage_after: float
    reason: str

    def alert_triggered(self, threshold: int) -> bool:
        return self.usage_after >= threshold

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


def format_amount(minor: int) -> str:
    return f"{minor / 100:,.2f}"


def _usage(spent: int, limit: int) -> float:
    if limit <= 0:
        return 0.0
    return round(spent / limit * 100, 2)


def check_affordability(
    budget: Budget, amount: int, now: datetime
) -> Verdict:
    """
    Decide whether ``budget`` can absorb ``amount`` at ``now``.
    Only reads the snapshot; a refusal is a verdict, not an exception.
    """
    limit = budget.amount
    spent = budget.spent
    remaining = limit - spent
    new_spent = spent + amount
    would_exceed = new_spent > limit
    excess = new_spent - limit if would_exceed else 0

    status = BudgetStatus(budget.status)
    if status != BudgetStatus.active:
        can_afford = False
        reason = f"Budget is {status.value}"
    elif now < budget.period_start or now > budget.period_end:
        can_afford = False
        reason = "Budget period is not active"
    elif would_exceed:
        can_afford = False
        reason = (
            f"Spending {format_amount(amount)} would exceed budget limit by "
            f"{format_amount(excess)} (remaining: {format_amount(remaining)})"
        )
    else:
        can_afford = True
        reason = (
            f"Spending {format_amount(amount)} is within budget "
            f"(remaining: {format_amount(remaining - amount)} after transaction)"
        )

    return Verdict(
        can_afford=can_afford,
        requested_amount=amount,
        budget_limit=limit,
        spent_amount=spent,
        remaining=remaining,
        would_exceed=would_exceed,
        excess_amount=excess,
        usage_before=_usage(spent, limit),
        usage_after=_usage(new_spent, limit),
        reason=reason,
    )
