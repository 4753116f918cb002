"""initial ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


limit_type = sa.Enum("period", "emergency", "default", name="limittype")
budget_status = sa.Enum("active", "exceeded", "completed", "paused", name="budgetstatus")
goal_type = sa.Enum(
    "recurring_expense", "investment", "purchase", "emergency", name="goaltype"
)
goal_frequency = sa.Enum(
    "once", "daily", "weekly", "monthly", "quarterly", "yearly", name="goalfrequency"
)
goal_status = sa.Enum("pending", "achieved", "cancelled", "failed", name="goalstatus")
goal_priority = sa.Enum("low", "medium", "high", name="goalpriority")
expense_status = sa.Enum("pending", "paid", "failed", "cancelled", name="expensestatus")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "recipients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("recipient_code", sa.String(length=100), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False, server_default="nuban"),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("account_number", sa.String(length=20), nullable=True),
        sa.Column("bank_code", sa.String(length=20), nullable=True),
        sa.Column("bank_name", sa.String(length=120), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="NGN"),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("recipient_code", name="uq_recipient_code"),
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("limit_type", limit_type, nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("period_start", sa.DateTime(), nullable=False),
        sa.Column("period_end", sa.DateTime(), nullable=False),
        sa.Column("spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", budget_status, nullable=False, server_default="active"),
        sa.Column("alert_threshold", sa.Integer(), nullable=False, server_default="80"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("period_key", sa.String(length=7), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "limit_type", "period_key", name="uq_budget_type_period_key"
        ),
        sa.CheckConstraint("amount >= 0", name="ck_budgets_amount_positive"),
        sa.CheckConstraint("spent >= 0", name="ck_budgets_spent_positive"),
        sa.CheckConstraint(
            "period_end >= period_start", name="ck_budgets_period_order"
        ),
    )
    op.create_index("ix_budgets_type_status", "budgets", ["limit_type", "status"])
    op.create_index("ix_budgets_period", "budgets", ["period_start", "period_end"])

    op.create_table(
        "goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("goal_type", goal_type, nullable=False),
        sa.Column("target_amount", sa.Integer(), nullable=False),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=True
        ),
        sa.Column("frequency", goal_frequency, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("status", goal_status, nullable=False, server_default="pending"),
        sa.Column("achieved_at", sa.DateTime(), nullable=True),
        sa.Column("achieved_by_expense_id", sa.Integer(), nullable=True),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("priority", goal_priority, nullable=False, server_default="medium"),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "achieved_by_expense_id", name="uq_goals_achieved_by_expense"
        ),
        sa.CheckConstraint("target_amount > 0", name="ck_goals_target_positive"),
    )
    op.create_index("ix_goals_status", "goals", ["status"])
    op.create_index("ix_goals_budget", "goals", ["budget_id"])

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("recipient_code", sa.String(length=100), nullable=False),
        sa.Column("recipient_name", sa.String(length=200), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="NGN"),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("narration", sa.Text(), nullable=False),
        sa.Column("reference", sa.String(length=100), nullable=False),
        sa.Column("status", expense_status, nullable=False, server_default="pending"),
        sa.Column("payment_date", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("goal_id", sa.Integer(), sa.ForeignKey("goals.id"), nullable=True),
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), nullable=False
        ),
        *_timestamps(),
        sa.UniqueConstraint("reference", name="uq_expense_reference"),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
    )
    op.create_index("ix_expenses_recipient", "expenses", ["recipient_code"])
    op.create_index("ix_expenses_status", "expenses", ["status"])
    op.create_index("ix_expenses_category", "expenses", ["category"])
    op.create_index("ix_expenses_goal", "expenses", ["goal_id"])
    op.create_index("ix_expenses_budget", "expenses", ["budget_id"])

    # goals and expenses reference each other; close the cycle once both exist.
    with op.batch_alter_table("goals") as batch_op:
        batch_op.create_foreign_key(
            "fk_goals_achieved_by_expense",
            "expenses",
            ["achieved_by_expense_id"],
            ["id"],
        )


def downgrade() -> None:
    with op.batch_alter_table("goals") as batch_op:
        batch_op.drop_constraint("fk_goals_achieved_by_expense", type_="foreignkey")
    op.drop_index("ix_expenses_budget", table_name="expenses")
    op.drop_index("ix_expenses_goal", table_name="expenses")
    op.drop_index("ix_expenses_category", table_name="expenses")
    op.drop_index("ix_expenses_status", table_name="expenses")
    op.drop_index("ix_expenses_recipient", table_name="expenses")
    op.drop_table("expenses")
    op.drop_index("ix_goals_budget", table_name="goals")
    op.drop_index("ix_goals_status", table_name="goals")
    op.drop_table("goals")
    op.drop_index("ix_budgets_period", table_name="budgets")
    op.drop_index("ix_budgets_type_status", table_name="budgets")
    op.drop_table("budgets")
    op.drop_table("recipients")
    for enum in (
        expense_status,
        goal_priority,
        goal_status,
        goal_frequency,
        goal_type,
        budget_status,
        limit_type,
    ):
        enum.drop(op.get_bind(), checkfirst=True)
