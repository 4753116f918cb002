from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from affordability import check_affordability
from clock import Clock
from errors import (
    GOAL_SUGGESTIONS,
    BudgetExceededError,
    GoalStateError,
    NotFoundError,
    ValidationError,
)
from models import (
    Budget,
    BudgetStatus,
    Expense,
    ExpenseStatus,
    Goal,
    GoalPriority,
    GoalStatus,
    GoalType,
    LimitType,
    Recipient,
)
from periods import Period, day_bounds
from schemas import (
    BudgetIn,
    BudgetUpdateIn,
    ExpenseUpdateIn,
    GoalIn,
    GoalUpdateIn,
    RecipientIn,
)


logger = logging.getLogger(__name__)


@dataclass
class ExpenseFilters:
    recipient_code: Optional[str] = None
    category: Optional[str] = None
    status: Optional[ExpenseStatus] = None
    goal_id: Optional[int] = None
    budget_id: Optional[int] = None


class BudgetService:
    def __init__(self, session: Session, clock: Optional[Clock] = None) -> None:
        self.session = session
        self.clock = clock or Clock()

    def create(self, data: BudgetIn) -> Budget:
        name = data.name.strip()
        if not name:
            raise ValidationError("Budget name cannot be empty")
        if data.period_end < data.period_start:
            raise ValidationError("Period end must not be before period start")
        start, end = day_bounds(data.period_start, data.period_end)
        budget = Budget(
            name=name,
            limit_type=data.limit_type,
            amount=data.amount,
            period_start=start,
            period_end=end,
            spent=0,
            status=BudgetStatus.active,
            alert_threshold=data.alert_threshold or 80,
            notes=data.notes,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        logger.info(
            f"budget_created: id={budget.id} type={budget.limit_type.value} "
            f"amount={budget.amount}"
        )
        return budget

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget:
            raise NotFoundError(f"Budget not found: {budget_id}")
        return budget

    def list(
        self,
        limit_type: Optional[LimitType] = None,
        status: Optional[BudgetStatus] = None,
        active: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Budget]:
        stmt = (
            select(Budget)
            .order_by(Budget.period_start.desc(), Budget.id.desc())
            .offset(offset)
            .limit(limit)
        )
        if limit_type:
            stmt = stmt.where(Budget.limit_type == limit_type)
        if status:
            stmt = stmt.where(Budget.status == status)
        if active is not None:
            now = self.clock.now()
            in_period = (Budget.period_start <= now) & (Budget.period_end >= now)
            if active:
                stmt = stmt.where(in_period, Budget.status == BudgetStatus.active)
            else:
                stmt = stmt.where(~in_period | (Budget.status != BudgetStatus.active))
        return self.session.scalars(stmt).all()

    def active(self, now: Optional[datetime] = None) -> list[Budget]:
        now = now or self.clock.now()
        stmt = (
            select(Budget)
            .where(
                Budget.status == BudgetStatus.active,
                Budget.period_start <= now,
                Budget.period_end >= now,
            )
            .order_by(Budget.limit_type, Budget.id)
        )
        return self.session.scalars(stmt).all()

    def update(self, budget_id: int, data: BudgetUpdateIn) -> Budget:
        budget = self.get(budget_id)
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationError("Budget name cannot be empty")
            budget.name = name
        if changes.get("amount") is not None:
            budget.amount = changes["amount"]
        if changes.get("alert_threshold") is not None:
            budget.alert_threshold = changes["alert_threshold"]
        if "notes" in changes:
            budget.notes = changes["notes"]
        if changes.get("status") is not None:
            budget.status = changes["status"]

        if budget.spent > budget.amount:
            budget.status = BudgetStatus.exceeded
        elif budget.status == BudgetStatus.exceeded and changes.get("status") is None:
            budget.status = BudgetStatus.active

        self.session.commit()
        self.session.refresh(budget)
        return budget

    @staticmethod
    def summary(budget: Budget) -> dict[str, object]:
        return {
            "budget_id": budget.id,
            "name": budget.name,
            "amount": budget.amount,
            "spent": budget.spent,
            "remaining": budget.remaining,
            "usage_percent": budget.usage_percent,
            "alert_threshold": budget.alert_threshold,
            "alert_triggered": budget.usage_percent >= budget.alert_threshold,
            "status": budget.status.value,
        }


class GoalService:
    def __init__(self, session: Session, clock: Optional[Clock] = None) -> None:
        self.session = session
        self.clock = clock or Clock()

    def _check_target(self, budget_id: int, target_amount: int, action: str) -> None:
        budget = self.session.get(Budget, budget_id)
        if not budget:
            raise NotFoundError(f"Budget not found: {budget_id}")
        verdict = check_affordability(budget, target_amount, self.clock.now())
        if not verdict.can_afford:
            raise BudgetExceededError(
                verdict,
                message=f"Goal cannot be {action}: target amount exceeds budget",
                suggestions=GOAL_SUGGESTIONS,
            )

    def create(self, data: GoalIn) -> Goal:
        title = data.title.strip()
        if not title:
            raise ValidationError("Goal title cannot be empty")
        if data.end_date and data.end_date < data.start_date:
            raise ValidationError("End date must not be before start date")
        if data.budget_id is not None:
            self._check_target(data.budget_id, data.target_amount, "created")

        goal = Goal(
            title=title,
            description=data.description,
            goal_type=data.goal_type,
            target_amount=data.target_amount,
            budget_id=data.budget_id,
            frequency=data.frequency,
            start_date=data.start_date,
            end_date=data.end_date,
            status=GoalStatus.pending,
            category=data.category,
            priority=data.priority,
            notes=data.notes,
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        logger.info(
            f"goal_created: id={goal.id} target={goal.target_amount} "
            f"budget_id={goal.budget_id}"
        )
        return goal

    def get(self, goal_id: int) -> Goal:
        goal = self.session.get(Goal, goal_id)
        if not goal:
            raise NotFoundError(f"Goal not found: {goal_id}")
        return goal

    def list(
        self,
        status: Optional[GoalStatus] = None,
        budget_id: Optional[int] = None,
        goal_type: Optional[GoalType] = None,
        priority: Optional[GoalPriority] = None,
        active: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Goal]:
        stmt = (
            select(Goal)
            .order_by(Goal.created_at.desc(), Goal.id.desc())
            .offset(offset)
            .limit(limit)
        )
        if status:
            stmt = stmt.where(Goal.status == status)
        if budget_id:
            stmt = stmt.where(Goal.budget_id == budget_id)
        if goal_type:
            stmt = stmt.where(Goal.goal_type == goal_type)
        if priority:
            stmt = stmt.where(Goal.priority == priority)
        if active is not None:
            today = self.clock.now().date()
            running = (Goal.status == GoalStatus.pending) & (Goal.start_date <= today)
            running = running & (Goal.end_date.is_(None) | (Goal.end_date >= today))
            stmt = stmt.where(running if active else ~running)
        return self.session.scalars(stmt).all()

    def update(self, goal_id: int, data: GoalUpdateIn) -> Goal:
        goal = self.get(goal_id)
        if goal.is_terminal:
            raise GoalStateError(f"Cannot update a {goal.status.value} goal")

        changes = data.model_dump(exclude_unset=True)
        status = changes.get("status")
        if status == GoalStatus.achieved:
            raise GoalStateError("Goals are achieved by recording a matching expense")

        target = changes.get("target_amount") or goal.target_amount
        budget_id = changes["budget_id"] if "budget_id" in changes else goal.budget_id
        retarget = target != goal.target_amount or budget_id != goal.budget_id
        if retarget and budget_id is not None:
            self._check_target(budget_id, target, "updated")

        if "title" in changes:
            title = (changes["title"] or "").strip()
            if not title:
                raise ValidationError("Goal title cannot be empty")
            goal.title = title
        end_date = changes.get("end_date")
        if end_date and end_date < goal.start_date:
            raise ValidationError("End date must not be before start date")

        goal.target_amount = target
        goal.budget_id = budget_id
        for field in ("description", "end_date", "category", "notes"):
            if field in changes:
                setattr(goal, field, changes[field])
        if changes.get("priority") is not None:
            goal.priority = changes["priority"]
        if status is not None:
            goal.status = status

        self.session.commit()
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        if goal.status == GoalStatus.achieved:
            raise GoalStateError("Cannot delete an achieved goal")
        linked = ExpenseService(self.session).count_for_goal(goal.id)
        if linked:
            raise GoalStateError(
                f"Cannot delete goal with {linked} linked expense(s)"
            )
        self.session.delete(goal)
        self.session.commit()


class ExpenseService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, expense_id: int) -> Expense:
        expense = self.session.get(Expense, expense_id)
        if not expense:
            raise NotFoundError(f"Expense not found: {expense_id}")
        return expense

    def list(
        self,
        period: Optional[Period],
        filters: ExpenseFilters,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Expense]:
        stmt = (
            select(Expense)
            .order_by(Expense.created_at.desc(), Expense.id.desc())
            .offset(offset)
            .limit(limit)
        )
        if period is not None:
            stmt = stmt.where(Expense.created_at.between(period.start, period.end))
        if filters.recipient_code:
            stmt = stmt.where(Expense.recipient_code == filters.recipient_code)
        if filters.category:
            stmt = stmt.where(
                func.lower(Expense.category) == filters.category.lower()
            )
        if filters.status:
            stmt = stmt.where(Expense.status == filters.status)
        if filters.goal_id:
            stmt = stmt.where(Expense.goal_id == filters.goal_id)
        if filters.budget_id:
            stmt = stmt.where(Expense.budget_id == filters.budget_id)
        return self.session.scalars(stmt).all()

    def update(self, expense_id: int, data: ExpenseUpdateIn) -> Expense:
        """Amount, budget and goal links are fixed once the expense is recorded."""
        expense = self.get(expense_id)
        changes = data.model_dump(exclude_unset=True)
        if "narration" in changes:
            narration = (changes["narration"] or "").strip()
            if not narration:
                raise ValidationError("narration is required")
            expense.narration = narration
        if changes.get("status") is not None:
            expense.status = changes["status"]
        for field in ("category", "payment_date", "notes"):
            if field in changes:
                setattr(expense, field, changes[field])
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def count_for_goal(self, goal_id: int) -> int:
        stmt = select(func.count(Expense.id)).where(Expense.goal_id == goal_id)
        return int(self.session.execute(stmt).scalar_one() or 0)


class RecipientService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _by_code(self, recipient_code: str) -> Optional[Recipient]:
        stmt = select(Recipient).where(Recipient.recipient_code == recipient_code)
        return self.session.scalar(stmt)

    def upsert(self, data: RecipientIn) -> Recipient:
        code = data.recipient_code.strip()
        if not code:
            raise ValidationError("recipient_code is required")
        recipient = self._by_code(code)
        if recipient is None:
            recipient = Recipient(recipient_code=code)
            self.session.add(recipient)
        recipient.name = data.name.strip()
        recipient.type = data.type
        recipient.account_number = data.account_number
        recipient.bank_code = data.bank_code
        recipient.bank_name = data.bank_name
        recipient.currency = data.currency.upper()
        recipient.description = data.description
        self.session.commit()
        self.session.refresh(recipient)
        return recipient

    def get(self, recipient_code: str) -> Recipient:
        recipient = self._by_code(recipient_code)
        if not recipient:
            raise NotFoundError(f"Recipient not found: {recipient_code}")
        return recipient

    def list(self, limit: int = 100, offset: int = 0) -> list[Recipient]:
        stmt = select(Recipient).order_by(Recipient.name).offset(offset).limit(limit)
        return self.session.scalars(stmt).all()

    def exists(self, recipient_code: str) -> bool:
        return self._by_code(recipient_code) is not None
