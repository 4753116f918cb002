from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class LimitType(str, Enum):
    period = "period"
    emergency = "emergency"
    default = "default"


class BudgetStatus(str, Enum):
    active = "active"
    exceeded = "exceeded"
    completed = "completed"
    paused = "paused"


class GoalStatus(str, Enum):
    pending = "pending"
    achieved = "achieved"
    cancelled = "cancelled"
    failed = "failed"


TERMINAL_GOAL_STATUSES = frozenset(
    {GoalStatus.achieved, GoalStatus.cancelled, GoalStatus.failed}
)


class GoalType(str, Enum):
    recurring_expense = "recurring_expense"
    investment = "investment"
    purchase = "purchase"
    emergency = "emergency"


class GoalFrequency(str, Enum):
    once = "once"
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class GoalPriority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class ExpenseStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"
    cancelled = "cancelled"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Recipient(Base, TimestampMixin):
    """Local cache of transfer recipients registered with the payment provider."""

    __tablename__ = "recipients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recipient_code: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="nuban")
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    account_number: Mapped[Optional[str]] = mapped_column(String(20))
    bank_code: Mapped[Optional[str]] = mapped_column(String(20))
    bank_name: Mapped[Optional[str]] = mapped_column(String(120))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    description: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("recipient_code", name="uq_recipient_code"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    limit_type: Mapped[LimitType] = mapped_column(
        SAEnum(LimitType, name="limittype", values_callable=_enum_values),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[BudgetStatus] = mapped_column(
        SAEnum(BudgetStatus, name="budgetstatus", values_callable=_enum_values),
        nullable=False,
        default=BudgetStatus.active,
    )
    alert_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=80)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    # Only set on budgets created by the default-budget fallback, e.g. "2026-10".
    period_key: Mapped[Optional[str]] = mapped_column(String(7))

    goals: Mapped[list["Goal"]] = relationship("Goal", back_populates="budget")
    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="budget"
    )

    __table_args__ = (
        UniqueConstraint("limit_type", "period_key", name="uq_budget_type_period_key"),
        Index("ix_budgets_type_status", "limit_type", "status"),
        Index("ix_budgets_period", "period_start", "period_end"),
        CheckConstraint("amount >= 0", name="ck_budgets_amount_positive"),
        CheckConstraint("spent >= 0", name="ck_budgets_spent_positive"),
        CheckConstraint("period_end >= period_start", name="ck_budgets_period_order"),
    )

    @property
    def remaining(self) -> int:
        return self.amount - self.spent

    @property
    def usage_percent(self) -> float:
        if self.amount <= 0:
            return 0.0
        return round(self.spent / self.amount * 100, 2)


class Goal(Base, TimestampMixin):
    __tablename__ = "goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    goal_type: Mapped[GoalType] = mapped_column(
        SAEnum(GoalType, name="goaltype", values_callable=_enum_values),
        nullable=False,
    )
    target_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    budget_id: Mapped[Optional[int]] = mapped_column(ForeignKey("budgets.id"))
    frequency: Mapped[GoalFrequency] = mapped_column(
        SAEnum(GoalFrequency, name="goalfrequency", values_callable=_enum_values),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    status: Mapped[GoalStatus] = mapped_column(
        SAEnum(GoalStatus, name="goalstatus", values_callable=_enum_values),
        nullable=False,
        default=GoalStatus.pending,
    )
    achieved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    achieved_by_expense_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("expenses.id", use_alter=True, name="fk_goals_achieved_by_expense")
    )
    category: Mapped[Optional[str]] = mapped_column(String(100))
    priority: Mapped[GoalPriority] = mapped_column(
        SAEnum(GoalPriority, name="goalpriority", values_callable=_enum_values),
        nullable=False,
        default=GoalPriority.medium,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    budget: Mapped[Optional["Budget"]] = relationship(
        "Budget", back_populates="goals"
    )

    __table_args__ = (
        Index("ix_goals_status", "status"),
        Index("ix_goals_budget", "budget_id"),
        UniqueConstraint("achieved_by_expense_id", name="uq_goals_achieved_by_expense"),
        CheckConstraint("target_amount > 0", name="ck_goals_target_positive"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_GOAL_STATUSES


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recipient_code: Mapped[str] = mapped_column(String(100), nullable=False)
    recipient_name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    category: Mapped[Optional[str]] = mapped_column(String(100))
    narration: Mapped[str] = mapped_column(Text, nullable=False)
    reference: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[ExpenseStatus] = mapped_column(
        SAEnum(ExpenseStatus, name="expensestatus", values_callable=_enum_values),
        nullable=False,
        default=ExpenseStatus.pending,
    )
    payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    goal_id: Mapped[Optional[int]] = mapped_column(ForeignKey("goals.id"))
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)

    budget: Mapped["Budget"] = relationship("Budget", back_populates="expenses")
    goal: Mapped[Optional["Goal"]] = relationship(
        "Goal", foreign_keys=[goal_id]
    )

    __table_args__ = (
        UniqueConstraint("reference", name="uq_expense_reference"),
        Index("ix_expenses_recipient", "recipient_code"),
        Index("ix_expenses_status", "status"),
        Index("ix_expenses_category", "category"),
        Index("ix_expenses_goal", "goal_id"),
        Index("ix_expenses_budget", "budget_id"),
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
    )
