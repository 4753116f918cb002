"""
Store interfaces used by the ledger, and their SQLAlchemy implementations.

All SQL stores built for one operation share a single ``Session``; the caller
owns commit and rollback. Stores only ``flush``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import CompileError, NoResultFound
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from models import (
    Budget,
    BudgetStatus,
    Expense,
    Goal,
    GoalStatus,
    LimitType,
    Recipient,
)
from periods import Period


class BudgetStore(ABC):
    @abstractmethod
    def get(self, budget_id: int) -> Optional[Budget]:
        """Fresh snapshot of a budget, or ``None``."""

    @abstractmethod
    def get_for_update(self, budget_id: int) -> Optional[Budget]:
        """Like ``get`` but row-locked for the rest of the transaction where supported."""

    @abstractmethod
    def find_active_default(self, now: datetime) -> Optional[Budget]:
        ...

    @abstractmethod
    def insert_default_if_absent(
        self, *, name: str, amount: int, period: Period, alert_threshold: int
    ) -> tuple[Budget, bool]:
        """
        Insert the default budget for ``period`` unless one already exists.
        Returns the budget for the period and whether this call created it.
        """

    @abstractmethod
    def apply_spend(self, budget_id: int, amount: int, now: datetime) -> bool:
        """
        Add ``amount`` to ``spent`` only if the budget is active, ``now`` is in
        its period and the new total stays within the limit. Returns whether
        the row was updated.
        """


class GoalStore(ABC):
    @abstractmethod
    def get(self, goal_id: int) -> Optional[Goal]:
        ...

    @abstractmethod
    def mark_achieved(self, goal_id: int, expense_id: int, at: datetime) -> bool:
        """Pending → achieved, once. Returns False if the goal was not pending."""

    @abstractmethod
    def achieved_by(self, expense_id: int) -> Optional[Goal]:
        """The goal ``expense_id`` already achieved, if any."""


class ExpenseStore(ABC):
    @abstractmethod
    def get(self, expense_id: int) -> Optional[Expense]:
        ...

    @abstractmethod
    def add(self, expense: Expense) -> Expense:
        ...

    @abstractmethod
    def reference_exists(self, reference: str) -> bool:
        ...


class RecipientDirectory(ABC):
    @abstractmethod
    def exists(self, recipient_code: str) -> bool:
        ...

    @abstractmethod
    def name_for(self, recipient_code: str) -> Optional[str]:
        ...


class SqlBudgetStore(BudgetStore):
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, budget_id: int) -> Optional[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.id == budget_id)
            .execution_options(populate_existing=True)
        )
        return self.session.scalar(stmt)

    def get_for_update(self, budget_id: int) -> Optional[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.id == budget_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.scalar(stmt)

    def find_active_default(self, now: datetime) -> Optional[Budget]:
        stmt = (
            select(Budget)
            .where(
                Budget.limit_type == LimitType.default,
                Budget.period_start <= now,
                Budget.period_end >= now,
                Budget.status == BudgetStatus.active,
            )
            .order_by(Budget.id.asc())
            .limit(1)
        )
        return self.session.scalar(stmt)

    def _by_period_key(self, key: str) -> Optional[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.limit_type == LimitType.default, Budget.period_key == key)
            .execution_options(populate_existing=True)
        )
        return self.session.scalar(stmt)

    def insert_default_if_absent(
        self, *, name: str, amount: int, period: Period, alert_threshold: int
    ) -> tuple[Budget, bool]:
        values = {
            "name": name,
            "limit_type": LimitType.default,
            "amount": amount,
            "period_start": period.start,
            "period_end": period.end,
            "spent": 0,
            "status": BudgetStatus.active,
            "alert_threshold": alert_threshold,
            "period_key": period.slug,
        }
        dialect = self.session.get_bind().dialect.name
        if dialect == "sqlite":
            stmt = sqlite_insert(Budget).values(**values)
        elif dialect == "postgresql":
            stmt = pg_insert(Budget).values(**values)
        else:
            raise CompileError(f"Default budget upsert not supported on {dialect}")
        stmt = stmt.on_conflict_do_nothing(index_elements=["limit_type", "period_key"])
        created = self.session.execute(stmt).rowcount == 1
        budget = self._by_period_key(period.slug)
        if budget is None:
            raise NoResultFound(
                f"Default budget for {period.slug} vanished after upsert"
            )
        return budget, created

    def apply_spend(self, budget_id: int, amount: int, now: datetime) -> bool:
        stmt = (
            update(Budget)
            .where(
                Budget.id == budget_id,
                Budget.status == BudgetStatus.active,
                Budget.period_start <= now,
                Budget.period_end >= now,
                Budget.spent + amount <= Budget.amount,
            )
            .values(spent=Budget.spent + amount, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1


class SqlGoalStore(GoalStore):
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, goal_id: int) -> Optional[Goal]:
        stmt = (
            select(Goal)
            .where(Goal.id == goal_id)
            .execution_options(populate_existing=True)
        )
        return self.session.scalar(stmt)

    def mark_achieved(self, goal_id: int, expense_id: int, at: datetime) -> bool:
        stmt = (
            update(Goal)
            .where(
                Goal.id == goal_id,
                Goal.status == GoalStatus.pending,
                Goal.achieved_by_expense_id.is_(None),
            )
            .values(
                status=GoalStatus.achieved,
                achieved_at=at,
                achieved_by_expense_id=expense_id,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def achieved_by(self, expense_id: int) -> Optional[Goal]:
        stmt = select(Goal).where(Goal.achieved_by_expense_id == expense_id)
        return self.session.scalar(stmt)


class SqlExpenseStore(ExpenseStore):
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, expense_id: int) -> Optional[Expense]:
        return self.session.get(Expense, expense_id)

    def add(self, expense: Expense) -> Expense:
        self.session.add(expense)
        self.session.flush()
        return expense

    def reference_exists(self, reference: str) -> bool:
        stmt = select(func.count(Expense.id)).where(Expense.reference == reference)
        return (self.session.execute(stmt).scalar_one() or 0) > 0


class SqlRecipientDirectory(RecipientDirectory):
    def __init__(self, session: Session) -> None:
        self.session = session

    def _get(self, recipient_code: str) -> Optional[Recipient]:
        stmt = select(Recipient).where(Recipient.recipient_code == recipient_code)
        return self.session.scalar(stmt)

    def exists(self, recipient_code: str) -> bool:
        return self._get(recipient_code) is not None

    def name_for(self, recipient_code: str) -> Optional[str]:
        recipient = self._get(recipient_code)
        return recipient.name if recipient else None
