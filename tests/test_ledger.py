import logging
from datetime import date, datetime

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from clock import FixedClock
from config import Settings
from database import Base
from errors import (
    EXPENSE_SUGGESTIONS,
    BudgetExceededError,
    GoalStateError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from ledger import ExpenseLedger
from models import (
    Budget,
    BudgetStatus,
    Expense,
    Goal,
    GoalFrequency,
    GoalStatus,
    GoalType,
    LimitType,
    Recipient,
)
from schemas import ExpenseIn
from services import ExpenseService
from stores import SqlBudgetStore, SqlGoalStore


SETTINGS = Settings(
    database_url="sqlite://",
    timezone="UTC",
    default_budget_amount=5_000_000,
    default_currency="NGN",
    alert_threshold=80,
    log_level="INFO",
)


def _engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def _seed(session: Session, amount: int = 100_000, **budget_fields) -> Budget:
    session.add(Recipient(recipient_code="RCP_ada", name="Ada Okafor"))
    fields = {
        "name": "October spending",
        "limit_type": LimitType.period,
        "amount": amount,
        "period_start": datetime(2026, 10, 1),
        "period_end": datetime(2026, 10, 31, 23, 59, 59),
        "spent": 0,
        "status": BudgetStatus.active,
        "alert_threshold": 80,
    }
    fields.update(budget_fields)
    budget = Budget(**fields)
    session.add(budget)
    session.commit()
    return budget


def _goal(session: Session, target: int, budget_id=None, **fields) -> Goal:
    goal = Goal(
        title="New laptop",
        goal_type=GoalType.purchase,
        target_amount=target,
        budget_id=budget_id,
        frequency=GoalFrequency.once,
        start_date=date(2026, 10, 1),
        **fields,
    )
    session.add(goal)
    session.commit()
    return goal


def _ledger(session: Session, **kwargs) -> ExpenseLedger:
    kwargs.setdefault("clock", FixedClock(datetime(2026, 10, 15, 12, 0)))
    return ExpenseLedger(session, settings=SETTINGS, **kwargs)


def _expense(amount: int, **fields) -> ExpenseIn:
    fields.setdefault("recipient_code", "RCP_ada")
    fields.setdefault("narration", "Groceries")
    return ExpenseIn(amount=amount, **fields)


def _count(session: Session, model) -> int:
    return session.execute(select(func.count(model.id))).scalar_one()


def test_expense_within_budget_is_accepted() -> None:
    with Session(_engine()) as session:
        budget = _seed(session)

        result = _ledger(session).create_expense(_expense(60_000, budget_id=budget.id))

        info = result.budget_info
        assert info.budget_id == budget.id
        assert info.previous_spent == 0
        assert info.new_spent == 60_000
        assert info.remaining == 40_000
        assert info.usage_before == 0.0
        assert info.usage_after == 60.0
        assert info.alert_triggered is False
        assert result.goal_id is None
        assert result.goal_achieved is False

        expense = result.expense
        assert expense.id is not None
        assert expense.recipient_name == "Ada Okafor"
        assert expense.currency == "NGN"
        assert expense.reference.startswith("EXP_")
        session.refresh(budget)
        assert budget.spent == 60_000


def test_expense_over_the_limit_is_rejected_without_side_effects() -> None:
    with Session(_engine()) as session:
        budget = _seed(session)
        ledger = _ledger(session)
        ledger.create_expense(_expense(60_000, budget_id=budget.id))

        with pytest.raises(BudgetExceededError) as excinfo:
            ledger.create_expense(_expense(50_000, budget_id=budget.id))

        exc = excinfo.value
        assert exc.excess == 10_000
        assert exc.remaining == 40_000
        assert exc.spent == 60_000
        assert exc.budget_limit == 100_000
        assert exc.suggestions == list(EXPENSE_SUGGESTIONS)
        assert exc.as_dict()["excess_amount"] == 10_000

        session.refresh(budget)
        assert budget.spent == 60_000
        assert _count(session, Expense) == 1


def test_expense_for_goal_achieves_it_and_charges_the_goal_budget() -> None:
    with Session(_engine()) as session:
        budget = _seed(session)
        other = _seed_other_budget(session)
        ledger = _ledger(session)
        ledger.create_expense(_expense(60_000, budget_id=budget.id))
        goal = _goal(session, 20_000, budget_id=budget.id)

        result = ledger.create_expense(
            _expense(20_000, goal_id=goal.id, budget_id=other.id)
        )

        assert result.goal_achieved is True
        assert result.goal_id == goal.id
        assert result.expense.budget_id == budget.id
        assert result.budget_info.new_spent == 80_000
        assert result.budget_info.alert_triggered is True

        session.refresh(goal)
        assert goal.status == GoalStatus.achieved
        assert goal.achieved_by_expense_id == result.expense.id
        assert goal.achieved_at == datetime(2026, 10, 15, 12, 0)
        session.refresh(other)
        assert other.spent == 0


def _seed_other_budget(session: Session) -> Budget:
    other = Budget(
        name="Emergency",
        limit_type=LimitType.emergency,
        amount=1_000_000,
        period_start=datetime(2026, 1, 1),
        period_end=datetime(2026, 12, 31, 23, 59, 59),
        spent=0,
        status=BudgetStatus.active,
        alert_threshold=80,
    )
    session.add(other)
    session.commit()
    return other


def test_unlinked_expense_falls_back_to_a_new_default_budget() -> None:
    with Session(_engine()) as session:
        session.add(Recipient(recipient_code="RCP_ada", name="Ada Okafor"))
        session.commit()

        result = _ledger(session).create_expense(_expense(5_000))

        budget = session.get(Budget, result.expense.budget_id)
        assert budget.limit_type == LimitType.default
        assert budget.amount == 5_000_000
        assert budget.spent == 5_000
        assert budget.period_key == "2026-10"
        assert budget.name == "Default Budget - October 2026"
        assert budget.period_start == datetime(2026, 10, 1)
        assert budget.period_end.date() == date(2026, 10, 31)


def test_achieved_goal_cannot_be_achieved_again() -> None:
    with Session(_engine()) as session:
        budget = _seed(session)
        ledger = _ledger(session)
        goal = _goal(session, 20_000, budget_id=budget.id)
        first = ledger.create_expense(_expense(20_000, goal_id=goal.id))
        second = ledger.create_expense(_expense(20_000, budget_id=budget.id))

        with pytest.raises(GoalStateError):
            ledger.achieve_goal(goal.id, second.expense.id)

        session.refresh(goal)
        assert goal.status == GoalStatus.achieved
        assert goal.achieved_by_expense_id == first.expense.id


def test_expense_for_achieved_goal_is_refused() -> None:
    with Session(_engine()) as session:
        budget = _seed(session)
        ledger = _ledger(session)
        goal = _goal(session, 20_000, budget_id=budget.id)
        ledger.create_expense(_expense(20_000, goal_id=goal.id))

        with pytest.raises(GoalStateError):
            ledger.create_expense(_expense(20_000, goal_id=goal.id))

        session.refresh(budget)
        assert budget.spent == 20_000


def test_spent_equals_the_sum_of_accepted_expenses() -> None:
    with Session(_engine()) as session:
        budget = _seed(session)
        ledger = _ledger(session)
        accepted = 0
        for amount in (30_000, 45_000, 30_000, 20_000, 5_000, 1):
            try:
                ledger.create_expense(_expense(amount, budget_id=budget.id))
            except BudgetExceededError:
                continue
            accepted += amount

        session.refresh(budget)
        assert accepted == 100_000
        assert budget.spent == accepted
        assert budget.spent <= budget.amount


def test_created_expense_keeps_its_links() -> None:
    with Session(_engine()) as session:
        budget = _seed(session)
        goal = _goal(session, 7_500, budget_id=budget.id)

        result = _ledger(session).create_expense(
            _expense(7_500, goal_id=goal.id, reference="INV-001", category="tech")
        )
        fetched = ExpenseService(session).get(result.expense.id)

        assert fetched.budget_id == budget.id
        assert fetched.goal_id == goal.id
        assert fetched.reference == "INV-001"
        assert fetched.category == "tech"


@pytest.mark.parametrize(
    "payload, error",
    [
        ({"amount": 0}, ValidationError),
        ({"amount": -10}, ValidationError),
        ({"amount": 100, "narration": "  "}, ValidationError),
        ({"amount": 100, "recipient_code": ""}, ValidationError),
        ({"amount": 100, "recipient_code": "RCP_nobody"}, NotFoundError),
        ({"amount": 100, "budget_id": 999}, NotFoundError),
        ({"amount": 100, "goal_id": 999}, NotFoundError),
    ],
)
def test_invalid_requests_write_nothing(payload, error) -> None:
    with Session(_engine()) as session:
        session.add(Recipient(recipient_code="RCP_ada", name="Ada Okafor"))
        session.commit()

        with pytest.raises(error):
            _ledger(session).create_expense(_expense(**payload))

        assert _count(session, Expense) == 0
        assert _count(session, Budget) == 0


def test_goal_amount_mismatch_undoes_the_default_budget() -> None:
    with Session(_engine()) as session:
        session.add(Recipient(recipient_code="RCP_ada", name="Ada Okafor"))
        session.commit()
        goal = _goal(session, 20_000)

        with pytest.raises(ValidationError):
            _ledger(session).create_expense(_expense(15_000, goal_id=goal.id))

        assert _count(session, Budget) == 0
        assert _count(session, Expense) == 0


def test_duplicate_reference_is_rejected() -> None:
    with Session(_engine()) as session:
        budget = _seed(session)
        ledger = _ledger(session)
        ledger.create_expense(_expense(1_000, budget_id=budget.id, reference="R-1"))

        with pytest.raises(ValidationError):
            ledger.create_expense(_expense(1_000, budget_id=budget.id, reference="R-1"))

        session.refresh(budget)
        assert budget.spent == 1_000


def test_paused_budget_rejects_expenses() -> None:
    with Session(_engine()) as session:
        budget = _seed(session, status=BudgetStatus.paused)

        with pytest.raises(BudgetExceededError) as excinfo:
            _ledger(session).create_expense(_expense(1_000, budget_id=budget.id))

        assert excinfo.value.verdict.reason == "Budget is paused"


def test_budget_outside_its_period_rejects_expenses() -> None:
    with Session(_engine()) as session:
        budget = _seed(session)
        clock = FixedClock(datetime(2026, 11, 2, 8, 0))

        with pytest.raises(BudgetExceededError) as excinfo:
            _ledger(session, clock=clock).create_expense(
                _expense(1_000, budget_id=budget.id)
            )

        assert excinfo.value.verdict.reason == "Budget period is not active"


class FailingSpendStore(SqlBudgetStore):
    def apply_spend(self, budget_id: int, amount: int, now: datetime) -> bool:
        raise OperationalError("UPDATE budgets", {}, Exception("disk I/O error"))


def test_store_failure_after_insert_is_compensated(caplog) -> None:
    caplog.set_level(logging.WARNING, logger="ledger")
    with Session(_engine()) as session:
        budget = _seed(session)
        ledger = _ledger(session, budgets=FailingSpendStore(session))

        with pytest.raises(PersistenceError):
            ledger.create_expense(_expense(1_000, budget_id=budget.id))

        assert _count(session, Expense) == 0
        session.refresh(budget)
        assert budget.spent == 0
    assert "expense_compensated" in caplog.text


class StaleGoalStore(SqlGoalStore):
    def mark_achieved(self, goal_id: int, expense_id: int, at: datetime) -> bool:
        return False


def test_goal_achievement_failure_keeps_the_expense(caplog) -> None:
    caplog.set_level(logging.WARNING, logger="ledger")
    with Session(_engine()) as session:
        budget = _seed(session)
        goal = _goal(session, 2_000, budget_id=budget.id)
        ledger = _ledger(session, goals=StaleGoalStore(session))

        result = ledger.create_expense(_expense(2_000, goal_id=goal.id))

        assert result.goal_achieved is False
        assert result.goal_id == goal.id
        assert _count(session, Expense) == 1
        session.refresh(budget)
        session.refresh(goal)
        assert budget.spent == 2_000
        assert goal.status == GoalStatus.pending
    assert "goal_achieve_failed" in caplog.text


def test_achieve_goal_checks_the_expense() -> None:
    with Session(_engine()) as session:
        budget = _seed(session)
        ledger = _ledger(session)
        goal = _goal(session, 3_000, budget_id=budget.id)
        other_goal = _goal(session, 4_000, budget_id=budget.id)
        linked = ledger.create_expense(_expense(4_000, goal_id=other_goal.id))
        wrong_amount = ledger.create_expense(_expense(2_500, budget_id=budget.id))

        with pytest.raises(NotFoundError):
            ledger.achieve_goal(goal.id, 999)
        with pytest.raises(NotFoundError):
            ledger.achieve_goal(999, wrong_amount.expense.id)
        with pytest.raises(ValidationError):
            ledger.achieve_goal(goal.id, linked.expense.id)
        with pytest.raises(ValidationError):
            ledger.achieve_goal(goal.id, wrong_amount.expense.id)

        session.refresh(goal)
        assert goal.status == GoalStatus.pending
        assert goal.achieved_by_expense_id is None


def test_achieve_goal_with_a_matching_unlinked_expense() -> None:
    with Session(_engine()) as session:
        budget = _seed(session)
        ledger = _ledger(session)
        goal = _goal(session, 3_000, budget_id=budget.id)
        expense = ledger.create_expense(_expense(3_000, budget_id=budget.id)).expense

        achieved = ledger.achieve_goal(goal.id, expense.id)

        assert achieved.status == GoalStatus.achieved
        assert achieved.achieved_by_expense_id == expense.id


def test_check_affordability_reads_without_writing() -> None:
    with Session(_engine()) as session:
        budget = _seed(session)
        ledger = _ledger(session)

        verdict = ledger.check_affordability(budget.id, 120_000)

        assert verdict.can_afford is False
        assert verdict.excess_amount == 20_000
        with pytest.raises(ValidationError):
            ledger.check_affordability(budget.id, 0)
        with pytest.raises(NotFoundError):
            ledger.check_affordability(999, 10)
        session.refresh(budget)
        assert budget.spent == 0


def test_achieve_goal_requires_the_goal_budget_and_an_unused_expense() -> None:
    with Session(_engine()) as session:
        budget = _seed(session)
        other = _seed_other_budget(session)
        ledger = _ledger(session)
        first = _goal(session, 3_000, budget_id=budget.id)
        second = _goal(session, 3_000, budget_id=budget.id)
        elsewhere = ledger.create_expense(_expense(3_000, budget_id=other.id)).expense
        charged = ledger.create_expense(_expense(3_000, budget_id=budget.id)).expense

        with pytest.raises(ValidationError):
            ledger.achieve_goal(first.id, elsewhere.id)
        ledger.achieve_goal(first.id, charged.id)
        with pytest.raises(ValidationError):
            ledger.achieve_goal(second.id, charged.id)

        session.refresh(first)
        session.refresh(second)
        assert first.achieved_by_expense_id == charged.id
        assert second.status == GoalStatus.pending
        assert second.achieved_by_expense_id is None


def test_one_expense_cannot_achieve_two_goals_in_the_store() -> None:
    with Session(_engine()) as session:
        budget = _seed(session)
        first = _goal(session, 3_000, budget_id=budget.id)
        second = _goal(session, 3_000, budget_id=budget.id)
        expense = _ledger(session).create_expense(_expense(3_000, goal_id=first.id))
        store = SqlGoalStore(session)

        with pytest.raises(IntegrityError):
            store.mark_achieved(second.id, expense.expense.id, datetime(2026, 10, 15))
        session.rollback()

        assert store.get(second.id).status == GoalStatus.pending


class VanishingDefaultStore(SqlBudgetStore):
    def _by_period_key(self, key: str):
        return None


def test_default_budget_upsert_failure_is_wrapped() -> None:
    with Session(_engine()) as session:
        session.add(Recipient(recipient_code="RCP_ada", name="Ada Okafor"))
        session.commit()
        ledger = _ledger(session, budgets=VanishingDefaultStore(session))

        with pytest.raises(PersistenceError):
            ledger.create_expense(_expense(1_000))
        with pytest.raises(PersistenceError):
            ledger.find_or_create_default_budget()

        assert _count(session, Budget) == 0
        assert _count(session, Expense) == 0
