from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from clock import FixedClock
from config import Settings
from database import Base
from errors import GOAL_SUGGESTIONS, BudgetExceededError, GoalStateError, NotFoundError
from ledger import ExpenseLedger
from models import (
    Budget,
    BudgetStatus,
    GoalFrequency,
    GoalPriority,
    GoalStatus,
    GoalType,
    LimitType,
    Recipient,
)
from schemas import ExpenseIn, GoalIn, GoalUpdateIn
from services import GoalService


SETTINGS = Settings(
    database_url="sqlite://",
    timezone="UTC",
    default_budget_amount=5_000_000,
    default_currency="NGN",
    alert_threshold=80,
    log_level="INFO",
)
CLOCK = FixedClock(datetime(2026, 10, 15, 12, 0))


def _setup(session: Session) -> Budget:
    session.add(Recipient(recipient_code="RCP_ada", name="Ada Okafor"))
    budget = Budget(
        name="October spending",
        limit_type=LimitType.period,
        amount=100_000,
        period_start=datetime(2026, 10, 1),
        period_end=datetime(2026, 10, 31, 23, 59, 59),
        spent=60_000,
        status=BudgetStatus.active,
        alert_threshold=80,
    )
    session.add(budget)
    session.commit()
    return budget


def _goal_in(target: int, budget_id=None, **fields) -> GoalIn:
    data = {
        "title": "Phone repair",
        "goal_type": GoalType.purchase,
        "frequency": GoalFrequency.once,
        "start_date": date(2026, 10, 1),
    }
    data.update(fields)
    return GoalIn(target_amount=target, budget_id=budget_id, **data)


def _engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def test_create_goal_within_remaining_budget() -> None:
    with Session(_engine()) as session:
        budget = _setup(session)

        goal = GoalService(session, CLOCK).create(
            _goal_in(40_000, budget.id, priority=GoalPriority.high)
        )

        assert goal.status == GoalStatus.pending
        assert goal.budget_id == budget.id
        assert goal.priority == GoalPriority.high
        assert goal.achieved_by_expense_id is None


def test_create_goal_beyond_remaining_budget_is_refused() -> None:
    with Session(_engine()) as session:
        budget = _setup(session)

        with pytest.raises(BudgetExceededError) as excinfo:
            GoalService(session, CLOCK).create(_goal_in(40_001, budget.id))

        assert excinfo.value.suggestions == list(GOAL_SUGGESTIONS)
        assert excinfo.value.excess == 1
        assert GoalService(session, CLOCK).list() == []


def test_create_goal_for_unknown_budget() -> None:
    with Session(_engine()) as session:
        _setup(session)

        with pytest.raises(NotFoundError):
            GoalService(session, CLOCK).create(_goal_in(1_000, 999))


def test_update_rechecks_affordability_when_target_changes() -> None:
    with Session(_engine()) as session:
        budget = _setup(session)
        service = GoalService(session, CLOCK)
        goal = service.create(_goal_in(10_000, budget.id))

        with pytest.raises(BudgetExceededError):
            service.update(goal.id, GoalUpdateIn(target_amount=50_000))

        updated = service.update(goal.id, GoalUpdateIn(target_amount=30_000, notes="ok"))
        assert updated.target_amount == 30_000
        assert updated.notes == "ok"


def test_goal_cannot_be_marked_achieved_by_update() -> None:
    with Session(_engine()) as session:
        budget = _setup(session)
        service = GoalService(session, CLOCK)
        goal = service.create(_goal_in(10_000, budget.id))

        with pytest.raises(GoalStateError):
            service.update(goal.id, GoalUpdateIn(status=GoalStatus.achieved))

        assert service.get(goal.id).status == GoalStatus.pending


def test_cancelled_goal_is_immutable() -> None:
    with Session(_engine()) as session:
        budget = _setup(session)
        service = GoalService(session, CLOCK)
        ledger = ExpenseLedger(session, clock=CLOCK, settings=SETTINGS)
        goal = service.create(_goal_in(10_000, budget.id))
        service.update(goal.id, GoalUpdateIn(status=GoalStatus.cancelled))

        with pytest.raises(GoalStateError):
            service.update(goal.id, GoalUpdateIn(title="Renamed"))
        with pytest.raises(GoalStateError):
            ledger.create_expense(
                ExpenseIn(
                    recipient_code="RCP_ada",
                    amount=10_000,
                    narration="Repair",
                    goal_id=goal.id,
                )
            )
        expense = ledger.create_expense(
            ExpenseIn(
                recipient_code="RCP_ada",
                amount=10_000,
                narration="Repair",
                budget_id=budget.id,
            )
        ).expense
        with pytest.raises(GoalStateError):
            ledger.achieve_goal(goal.id, expense.id)

        reloaded = service.get(goal.id)
        assert reloaded.status == GoalStatus.cancelled
        assert reloaded.title == "Phone repair"
        assert reloaded.achieved_by_expense_id is None


def test_delete_rules() -> None:
    with Session(_engine()) as session:
        budget = _setup(session)
        service = GoalService(session, CLOCK)
        ledger = ExpenseLedger(session, clock=CLOCK, settings=SETTINGS)
        achieved = service.create(_goal_in(5_000, budget.id))
        ledger.create_expense(
            ExpenseIn(
                recipient_code="RCP_ada",
                amount=5_000,
                narration="Repair",
                goal_id=achieved.id,
            )
        )
        unused = service.create(_goal_in(1_000, budget.id))

        with pytest.raises(GoalStateError):
            service.delete(achieved.id)

        service.delete(unused.id)
        with pytest.raises(NotFoundError):
            service.get(unused.id)


def test_goal_with_linked_expense_cannot_be_deleted() -> None:
    with Session(_engine()) as session:
        budget = _setup(session)
        service = GoalService(session, CLOCK)
        ledger = ExpenseLedger(session, clock=CLOCK, settings=SETTINGS)
        goal = service.create(_goal_in(5_000, budget.id))
        ledger.create_expense(
            ExpenseIn(
                recipient_code="RCP_ada",
                amount=5_000,
                narration="Repair",
                goal_id=goal.id,
            )
        )
        # Set directly; the service never moves an achieved goal.
        reopened = service.get(goal.id)
        reopened.status = GoalStatus.failed
        session.commit()

        with pytest.raises(GoalStateError):
            service.delete(goal.id)


def test_list_filters() -> None:
    with Session(_engine()) as session:
        budget = _setup(session)
        service = GoalService(session, CLOCK)
        service.create(_goal_in(1_000, budget.id, goal_type=GoalType.investment))
        running = service.create(_goal_in(2_000))
        service.create(_goal_in(3_000, start_date=date(2026, 12, 1)))

        assert [g.target_amount for g in service.list(budget_id=budget.id)] == [1_000]
        assert len(service.list(goal_type=GoalType.purchase)) == 2
        active_ids = {g.id for g in service.list(active=True)}
        assert running.id in active_ids
        assert len(active_ids) == 2


def test_failed_goal_cannot_be_achieved() -> None:
    with Session(_engine()) as session:
        budget = _setup(session)
        service = GoalService(session, CLOCK)
        ledger = ExpenseLedger(session, clock=CLOCK, settings=SETTINGS)
        goal = service.create(_goal_in(10_000, budget.id))
        service.update(goal.id, GoalUpdateIn(status=GoalStatus.failed))
        expense = ledger.create_expense(
            ExpenseIn(
                recipient_code="RCP_ada",
                amount=10_000,
                narration="Repair",
                budget_id=budget.id,
            )
        ).expense

        with pytest.raises(GoalStateError):
            ledger.achieve_goal(goal.id, expense.id)
        with pytest.raises(GoalStateError):
            ledger.create_expense(
                ExpenseIn(
                    recipient_code="RCP_ada",
                    amount=10_000,
                    narration="Repair",
                    goal_id=goal.id,
                )
            )

        reloaded = service.get(goal.id)
        assert reloaded.status == GoalStatus.failed
        assert reloaded.achieved_by_expense_id is None
        assert reloaded.achieved_at is None
        session.refresh(budget)
        assert budget.spent == 70_000
