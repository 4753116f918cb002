from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from affordability import Verdict, check_affordability
from clock import Clock
from config import Settings, get_settings
from errors import (
    BudgetExceededError,
    GoalStateError,
    LedgerRejection,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from models import Budget, Expense, ExpenseStatus, Goal, GoalStatus
from periods import month_period, period_label
from schemas import ExpenseIn
from stores import (
    BudgetStore,
    ExpenseStore,
    GoalStore,
    RecipientDirectory,
    SqlBudgetStore,
    SqlExpenseStore,
    SqlGoalStore,
    SqlRecipientDirectory,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BudgetInfo:
    budget_id: int
    budget_limit: int
    previous_spent: int
    new_spent: int
    remaining: int
    usage_before: float
    usage_after: float
    alert_triggered: bool

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class ExpenseResult:
    expense: Expense
    budget_info: BudgetInfo
    goal_id: Optional[int] = None
    goal_achieved: bool = False


class BudgetResolver:
    def __init__(
        self,
        budgets: BudgetStore,
        goals: GoalStore,
        clock: Clock,
        *,
        default_amount: int,
        alert_threshold: int,
    ) -> None:
        self.budgets = budgets
        self.goals = goals
        self.clock = clock
        self.default_amount = default_amount
        self.alert_threshold = alert_threshold

    def resolve(self, data: ExpenseIn) -> int:
        """
        Pick the budget an expense is charged against: the goal's budget,
        then an explicit budget, then the default budget for the current period.
        """
        if data.goal_id is not None:
            goal = self.goals.get(data.goal_id)
            if goal is None:
                raise NotFoundError(f"Goal not found: {data.goal_id}")
            if goal.status == GoalStatus.achieved:
                raise GoalStateError("Cannot create expense for an already achieved goal")
            if goal.is_terminal:
                raise GoalStateError(
                    f"Cannot create expense for a {goal.status.value} goal"
                )
            if goal.budget_id is not None:
                return self._existing(goal.budget_id).id
            return self.find_or_create_default().id

        if data.budget_id is not None:
            return self._existing(data.budget_id).id

        return self.find_or_create_default().id

    def _existing(self, budget_id: int) -> Budget:
        budget = self.budgets.get(budget_id)
        if budget is None:
            raise NotFoundError(f"Budget not found: {budget_id}")
        return budget

    def find_or_create_default(self, now: Optional[datetime] = None) -> Budget:
        now = now or self.clock.now()
        existing = self.budgets.find_active_default(now)
        if existing is not None:
            return existing

        period = month_period(now)
        budget, created = self.budgets.insert_default_if_absent(
            name=f"Default Budget - {period_label(now)}",
            amount=self.default_amount,
            period=period,
            alert_threshold=self.alert_threshold,
        )
        if created:
            logger.info(
                f"default_budget_created: id={budget.id} period={period.slug} "
                f"amount={budget.amount}"
            )
        return budget


class GoalAchiever:
    def __init__(self, goals: GoalStore, clock: Clock) -> None:
        self.goals = goals
        self.clock = clock

    def validate(self, goal: Goal, amount: int) -> None:
        if goal.status != GoalStatus.pending:
            raise GoalStateError(f"Goal {goal.id} is already {goal.status.value}")
        # A goal is satisfied by one expense of exactly its target amount.
        if amount != goal.target_amount:
            raise ValidationError(
                f"Expense amount ({amount}) must match goal target amount "
                f"({goal.target_amount})"
            )

    def achieve(self, goal: Goal, expense: Expense) -> Goal:
        self.validate(goal, expense.amount)
        if not self.goals.mark_achieved(goal.id, expense.id, self.clock.now()):
            raise GoalStateError(f"Goal {goal.id} is no longer pending")
        updated = self.goals.get(goal.id)
        logger.info(f"goal_achieved: goal_id={goal.id} expense_id={expense.id}")
        return updated


class ExpenseLedger:
    """
    Entry point for recording expenses against budgets.

    ``create_expense`` runs resolution, the affordability check, the expense
    insert and the spend increment in one transaction on ``session``; the
    increment is a conditional update so concurrent callers can never push a
    budget past its limit. Goal achievement happens afterwards in its own
    transaction and never undoes the expense.
    """

    def __init__(
        self,
        session: Session,
        *,
        budgets: Optional[BudgetStore] = None,
        goals: Optional[GoalStore] = None,
        expenses: Optional[ExpenseStore] = None,
        recipients: Optional[RecipientDirectory] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.clock = clock or Clock(self.settings.timezone)
        self.budgets = budgets or SqlBudgetStore(session)
        self.goals = goals or SqlGoalStore(session)
        self.expenses = expenses or SqlExpenseStore(session)
        self.recipients = recipients or SqlRecipientDirectory(session)
        self.resolver = BudgetResolver(
            self.budgets,
            self.goals,
            self.clock,
            default_amount=self.settings.default_budget_amount,
            alert_threshold=self.settings.alert_threshold,
        )
        self.achiever = GoalAchiever(self.goals, self.clock)

    def _validate(self, data: ExpenseIn) -> None:
        if data.amount <= 0:
            raise ValidationError("amount must be greater than 0")
        if not data.recipient_code.strip():
            raise ValidationError("recipient_code is required")
        if not data.narration.strip():
            raise ValidationError("narration is required")
        if data.reference and self.expenses.reference_exists(data.reference):
            raise ValidationError(f"Reference already used: {data.reference}")

    def create_expense(self, data: ExpenseIn) -> ExpenseResult:
        try:
            expense, budget_info = self._record(data)
        except LedgerRejection:
            self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("expense_store_error: stage=record")
            raise PersistenceError(
                "Could not record the expense, please try again"
            ) from exc

        goal_achieved = False
        if expense.goal_id is not None:
            goal_achieved = self._achieve_after_record(expense)

        return ExpenseResult(
            expense=expense,
            budget_info=budget_info,
            goal_id=expense.goal_id,
            goal_achieved=goal_achieved,
        )

    def _record(self, data: ExpenseIn) -> tuple[Expense, BudgetInfo]:
        self._validate(data)
        recipient_code = data.recipient_code.strip()
        if not self.recipients.exists(recipient_code):
            raise NotFoundError(f"Recipient not found: {recipient_code}")

        budget_id = self.resolver.resolve(data)
        if data.goal_id is not None:
            self.achiever.validate(self.goals.get(data.goal_id), data.amount)

        now = self.clock.now()
        budget = self.budgets.get_for_update(budget_id)
        verdict = check_affordability(budget, data.amount, now)
        if not verdict.can_afford:
            self._reject(budget_id, verdict)

        expense = Expense(
            recipient_code=recipient_code,
            recipient_name=self.recipients.name_for(recipient_code) or recipient_code,
            amount=data.amount,
            currency=(data.currency or self.settings.default_currency).upper(),
            category=data.category,
            narration=data.narration.strip(),
            reference=data.reference or f"EXP_{uuid4().hex[:16].upper()}",
            status=ExpenseStatus.pending,
            notes=data.notes,
            goal_id=data.goal_id,
            budget_id=budget_id,
        )
        try:
            self.expenses.add(expense)
        except IntegrityError as exc:
            self.session.rollback()
            # Another request committed the same reference after _validate.
            if data.reference and self.expenses.reference_exists(data.reference):
                raise ValidationError(
                    f"Reference already used: {data.reference}"
                ) from exc
            raise

        try:
            applied = self.budgets.apply_spend(budget_id, data.amount, now)
        except SQLAlchemyError as exc:
            raise self._compensate(expense, exc) from exc

        if not applied:
            self.session.rollback()
            fresh = self.budgets.get(budget_id)
            verdict = check_affordability(fresh, data.amount, now)
            if verdict.can_afford:
                verdict = replace(
                    verdict,
                    can_afford=False,
                    reason="Budget changed while the expense was being recorded",
                )
            self._reject(budget_id, verdict)

        budget = self.budgets.get(budget_id)
        new_spent = budget.spent
        previous_spent = new_spent - data.amount
        usage_after = budget.usage_percent
        budget_info = BudgetInfo(
            budget_id=budget_id,
            budget_limit=budget.amount,
            previous_spent=previous_spent,
            new_spent=new_spent,
            remaining=budget.amount - new_spent,
            usage_before=round(previous_spent / budget.amount * 100, 2)
            if budget.amount > 0
            else 0.0,
            usage_after=usage_after,
            alert_triggered=usage_after >= budget.alert_threshold,
        )

        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._compensate(expense, exc) from exc

        logger.info(
            f"expense_created: id={expense.id} reference={expense.reference} "
            f"budget_id={budget_id} amount={expense.amount} new_spent={new_spent}"
        )
        if budget_info.alert_triggered:
            logger.warning(
                f"budget_alert: budget_id={budget_id} usage={usage_after} "
                f"threshold={budget.alert_threshold}"
            )
        return expense, budget_info

    def _reject(self, budget_id: int, verdict: Verdict) -> None:
        logger.info(
            f"expense_rejected: budget_id={budget_id} "
            f"requested={verdict.requested_amount} reason={verdict.reason!r}"
        )
        raise BudgetExceededError(verdict)

    def _compensate(self, expense: Expense, exc: SQLAlchemyError) -> PersistenceError:
        reference, budget_id = expense.reference, expense.budget_id
        # The expense row was only flushed; rolling back removes it together
        # with any partial spend update.
        self.session.rollback()
        logger.warning(
            f"expense_compensated: reference={reference} "
            f"budget_id={budget_id} error={exc}"
        )
        return PersistenceError("Could not record the expense, please try again")

    def _achieve_after_record(self, expense: Expense) -> bool:
        try:
            goal = self.goals.get(expense.goal_id)
            if goal is None:
                raise NotFoundError(f"Goal not found: {expense.goal_id}")
            self.achiever.achieve(goal, expense)
            self.session.commit()
        except (LedgerRejection, SQLAlchemyError) as exc:
            self.session.rollback()
            logger.warning(
                f"goal_achieve_failed: goal_id={expense.goal_id} "
                f"expense_id={expense.id} error={exc}"
            )
            return False
        return True

    def check_affordability(self, budget_id: int, amount: int) -> Verdict:
        if amount <= 0:
            raise ValidationError("amount must be greater than 0")
        budget = self.budgets.get(budget_id)
        if budget is None:
            raise NotFoundError(f"Budget not found: {budget_id}")
        return check_affordability(budget, amount, self.clock.now())

    def achieve_goal(self, goal_id: int, expense_id: int) -> Goal:
        goal = self.goals.get(goal_id)
        if goal is None:
            raise NotFoundError(f"Goal not found: {goal_id}")
        expense = self.expenses.get(expense_id)
        if expense is None:
            raise NotFoundError(f"Expense not found: {expense_id}")
        try:
            self.achiever.validate(goal, expense.amount)
            self._check_goal_expense(goal, expense)
            updated = self.achiever.achieve(goal, expense)
            self.session.commit()
        except LedgerRejection:
            self.session.rollback()
            raise
        except IntegrityError as exc:
            self.session.rollback()
            raise ValidationError(
                f"Expense {expense_id} already achieved another goal"
            ) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"goal_store_error: goal_id={goal_id}")
            raise PersistenceError("Could not update the goal, please try again") from exc
        return updated

    def _check_goal_expense(self, goal: Goal, expense: Expense) -> None:
        if expense.goal_id is not None and expense.goal_id != goal.id:
            raise ValidationError(
                f"Expense {expense.id} is linked to goal {expense.goal_id}"
            )
        if goal.budget_id is not None and expense.budget_id != goal.budget_id:
            raise ValidationError(
                f"Expense {expense.id} was charged to budget {expense.budget_id}, "
                f"not the goal's budget {goal.budget_id}"
            )
        previous = self.goals.achieved_by(expense.id)
        if previous is not None and previous.id != goal.id:
            raise ValidationError(
                f"Expense {expense.id} already achieved goal {previous.id}"
            )

    def find_or_create_default_budget(self, now: Optional[datetime] = None) -> Budget:
        try:
            budget = self.resolver.find_or_create_default(now)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("budget_store_error: stage=default_budget")
            raise PersistenceError(
                "Could not prepare the default budget, please try again"
            ) from exc
        return budget
