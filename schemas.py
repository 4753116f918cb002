from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import (
    BudgetStatus,
    ExpenseStatus,
    GoalFrequency,
    GoalPriority,
    GoalStatus,
    GoalType,
    LimitType,
)


class ExpenseIn(BaseModel):
    # Presence and positivity are validated by ExpenseLedger.
    recipient_code: str = Field(default="", max_length=100)
    amount: int = 0
    narration: str = Field(default="", max_length=500)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    category: Optional[str] = Field(default=None, max_length=100)
    reference: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = None
    goal_id: Optional[int] = Field(default=None, gt=0)
    budget_id: Optional[int] = Field(default=None, gt=0)


class ExpenseUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category: Optional[str] = Field(default=None, max_length=100)
    narration: Optional[str] = Field(default=None, min_length=1, max_length=500)
    status: Optional[ExpenseStatus] = None
    payment_date: Optional[datetime] = None
    notes: Optional[str] = None


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    recipient_code: str
    recipient_name: str
    amount: int
    currency: str
    category: Optional[str]
    narration: str
    reference: str
    status: ExpenseStatus
    payment_date: Optional[datetime]
    notes: Optional[str]
    goal_id: Optional[int]
    budget_id: int
    created_at: datetime
    updated_at: datetime


class BudgetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    limit_type: LimitType
    amount: int = Field(..., gt=0)
    period_start: date
    period_end: date
    alert_threshold: Optional[int] = Field(default=None, ge=1, le=100)
    notes: Optional[str] = None


class BudgetUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    amount: Optional[int] = Field(default=None, gt=0)
    alert_threshold: Optional[int] = Field(default=None, ge=1, le=100)
    status: Optional[BudgetStatus] = None
    notes: Optional[str] = None


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    limit_type: LimitType
    amount: int
    period_start: datetime
    period_end: datetime
    spent: int
    remaining: int
    usage_percent: float
    status: BudgetStatus
    alert_threshold: int
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime


class GoalIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    goal_type: GoalType
    target_amount: int = Field(..., gt=0)
    budget_id: Optional[int] = Field(default=None, gt=0)
    frequency: GoalFrequency
    start_date: date
    end_date: Optional[date] = None
    category: Optional[str] = Field(default=None, max_length=100)
    priority: GoalPriority = GoalPriority.medium
    notes: Optional[str] = None


class GoalUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    target_amount: Optional[int] = Field(default=None, gt=0)
    budget_id: Optional[int] = Field(default=None, gt=0)
    end_date: Optional[date] = None
    status: Optional[GoalStatus] = None
    category: Optional[str] = Field(default=None, max_length=100)
    priority: Optional[GoalPriority] = None
    notes: Optional[str] = None


class GoalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str]
    goal_type: GoalType
    target_amount: int
    budget_id: Optional[int]
    frequency: GoalFrequency
    start_date: date
    end_date: Optional[date]
    status: GoalStatus
    achieved_at: Optional[datetime]
    achieved_by_expense_id: Optional[int]
    category: Optional[str]
    priority: GoalPriority
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime


class AchieveGoalIn(BaseModel):
    expense_id: int = Field(..., gt=0)


class RecipientIn(BaseModel):
    recipient_code: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    type: str = Field(default="nuban", max_length=20)
    account_number: Optional[str] = Field(default=None, max_length=20)
    bank_code: Optional[str] = Field(default=None, max_length=20)
    bank_name: Optional[str] = Field(default=None, max_length=120)
    currency: str = Field(default="NGN", min_length=3, max_length=3)
    description: Optional[str] = None


class RecipientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    recipient_code: str
    name: str
    type: str
    account_number: Optional[str]
    bank_code: Optional[str]
    bank_name: Optional[str]
    currency: str
    description: Optional[str]
