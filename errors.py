from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from affordability import Verdict


EXPENSE_SUGGESTIONS = (
    "Reduce the expense amount to fit within the budget",
    "Increase the budget limit to accommodate this expense",
    "Wait until the next budget period",
    "Choose a different budget with more available funds",
)

GOAL_SUGGESTIONS = (
    "Reduce the goal target amount to fit within the budget",
    "Increase the budget limit to accommodate this goal",
    "Choose a different budget with more available funds",
)


class LedgerRejection(ValueError):
    """An expected, user-facing refusal. Nothing was written."""


class ValidationError(LedgerRejection):
    pass


class NotFoundError(LedgerRejection):
    pass


class GoalStateError(LedgerRejection):
    pass


class BudgetExceededError(LedgerRejection):
    def __init__(
        self,
        verdict: Verdict,
        *,
        message: str = "Expense cannot be created: budget limit exceeded",
        suggestions: Optional[Sequence[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.verdict = verdict
        self.suggestions = list(
            EXPENSE_SUGGESTIONS if suggestions is None else suggestions
        )

    @property
    def budget_limit(self) -> int:
        return self.verdict.budget_limit

    @property
    def spent(self) -> int:
        return self.verdict.spent_amount

    @property
    def remaining(self) -> int:
        return self.verdict.remaining

    @property
    def excess(self) -> int:
        return self.verdict.excess_amount

    def as_dict(self) -> dict[str, object]:
        data = self.verdict.as_dict()
        data["suggestions"] = list(self.suggestions)
        return data


class PersistenceError(RuntimeError):
    """The store failed after the request was accepted; safe to retry."""
