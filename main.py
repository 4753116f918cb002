import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from clock import Clock
from config import get_settings
from database import get_db
from errors import (
    BudgetExceededError,
    GoalStateError,
    LedgerRejection,
    NotFoundError,
    PersistenceError,
)
from ledger import ExpenseLedger
from models import (
    BudgetStatus,
    ExpenseStatus,
    GoalPriority,
    GoalStatus,
    GoalType,
    LimitType,
)
from periods import Period, resolve_period
from schemas import (
    AchieveGoalIn,
    BudgetIn,
    BudgetOut,
    BudgetUpdateIn,
    ExpenseIn,
    ExpenseOut,
    ExpenseUpdateIn,
    GoalIn,
    GoalOut,
    GoalUpdateIn,
    RecipientIn,
    RecipientOut,
)
from services import (
    BudgetService,
    ExpenseFilters,
    ExpenseService,
    GoalService,
    RecipientService,
)

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Expense Ledger")


def get_clock() -> Clock:
    return Clock(settings.timezone)


def _http_error(exc: LedgerRejection) -> HTTPException:
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, GoalStateError):
        status_code = 409
    else:
        status_code = 400
    return HTTPException(status_code=status_code, detail=str(exc))


@app.exception_handler(BudgetExceededError)
def budget_exceeded_handler(request: Request, exc: BudgetExceededError):
    return JSONResponse(
        status_code=400,
        content={"status": False, "message": exc.message, "data": exc.as_dict()},
    )


@app.exception_handler(PersistenceError)
def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error(f"request_failed: path={request.url.path} error={exc}")
    return JSONResponse(
        status_code=500,
        content={"status": False, "message": str(exc)},
    )


def _page(request: Request, default_limit: int = 50) -> tuple[int, int, int]:
    try:
        page = max(int(request.query_params.get("page", "1")), 1)
        limit = int(request.query_params.get("limit", str(default_limit)))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid pagination") from exc
    limit = min(max(limit, 1), 100)
    return page, limit, (page - 1) * limit


def _enum_param(request: Request, name: str, enum_cls):
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return enum_cls(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {raw}") from exc


def _int_param(request: Request, name: str) -> Optional[int]:
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {raw}") from exc


def _bool_param(request: Request, name: str) -> Optional[bool]:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return None
    return raw.lower() in {"1", "true", "yes"}


def period_from_request(request: Request, clock: Clock) -> Optional[Period]:
    period_slug = request.query_params.get("period", "all")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    try:
        return resolve_period(period_slug, start, end, now=clock.now())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _expense_json(expense) -> dict:
    return ExpenseOut.model_validate(expense).model_dump(mode="json")


def _budget_json(budget) -> dict:
    return BudgetOut.model_validate(budget).model_dump(mode="json")


def _goal_json(goal) -> dict:
    return GoalOut.model_validate(goal).model_dump(mode="json")


@app.post("/api/expenses", status_code=201)
def api_create_expense(
    payload: ExpenseIn,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ledger = ExpenseLedger(db, clock=clock, settings=settings)
    try:
        result = ledger.create_expense(payload)
    except BudgetExceededError:
        raise
    except LedgerRejection as exc:
        raise _http_error(exc) from exc
    return {
        "status": True,
        "message": "Expense created successfully",
        "data": {
            "expense": _expense_json(result.expense),
            "budget_info": result.budget_info.as_dict(),
            "goal_id": result.goal_id,
            "goal_achieved": result.goal_achieved,
        },
    }


@app.get("/api/expenses")
def api_list_expenses(
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    period = period_from_request(request, clock)
    filters = ExpenseFilters(
        recipient_code=request.query_params.get("recipient_code") or None,
        category=request.query_params.get("category") or None,
        status=_enum_param(request, "status", ExpenseStatus),
        goal_id=_int_param(request, "goal_id"),
        budget_id=_int_param(request, "budget_id"),
    )
    page, limit, offset = _page(request)
    items = ExpenseService(db).list(period, filters, limit=limit + 1, offset=offset)
    has_more = len(items) > limit
    return {
        "items": [_expense_json(expense) for expense in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.get("/api/expenses/{expense_id}")
def api_get_expense(expense_id: int, db: Session = Depends(get_db)):
    try:
        expense = ExpenseService(db).get(expense_id)
    except LedgerRejection as exc:
        raise _http_error(exc) from exc
    return _expense_json(expense)


@app.patch("/api/expenses/{expense_id}")
def api_update_expense(
    expense_id: int, payload: ExpenseUpdateIn, db: Session = Depends(get_db)
):
    try:
        expense = ExpenseService(db).update(expense_id, payload)
    except LedgerRejection as exc:
        raise _http_error(exc) from exc
    return _expense_json(expense)


@app.post("/api/budgets", status_code=201)
def api_create_budget(
    payload: BudgetIn,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        budget = BudgetService(db, clock).create(payload)
    except LedgerRejection as exc:
        raise _http_error(exc) from exc
    return _budget_json(budget)


@app.get("/api/budgets")
def api_list_budgets(
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    page, limit, offset = _page(request)
    items = BudgetService(db, clock).list(
        limit_type=_enum_param(request, "limit_type", LimitType),
        status=_enum_param(request, "status", BudgetStatus),
        active=_bool_param(request, "active"),
        limit=limit + 1,
        offset=offset,
    )
    has_more = len(items) > limit
    return {
        "items": [_budget_json(budget) for budget in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.get("/api/budgets/active")
def api_active_budgets(
    db: Session = Depends(get_db), clock: Clock = Depends(get_clock)
):
    return [_budget_json(budget) for budget in BudgetService(db, clock).active()]


@app.post("/api/budgets/default")
def api_default_budget(
    db: Session = Depends(get_db), clock: Clock = Depends(get_clock)
):
    budget = ExpenseLedger(db, clock=clock, settings=settings).find_or_create_default_budget()
    return _budget_json(budget)


@app.get("/api/budgets/{budget_id}")
def api_get_budget(
    budget_id: int, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)
):
    service = BudgetService(db, clock)
    try:
        budget = service.get(budget_id)
    except LedgerRejection as exc:
        raise _http_error(exc) from exc
    return {**_budget_json(budget), "summary": service.summary(budget)}


@app.patch("/api/budgets/{budget_id}")
def api_update_budget(
    budget_id: int,
    payload: BudgetUpdateIn,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        budget = BudgetService(db, clock).update(budget_id, payload)
    except LedgerRejection as exc:
        raise _http_error(exc) from exc
    return _budget_json(budget)


@app.get("/api/budgets/{budget_id}/check/{amount}")
def api_check_affordability(
    budget_id: int,
    amount: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ledger = ExpenseLedger(db, clock=clock, settings=settings)
    try:
        verdict = ledger.check_affordability(budget_id, amount)
    except LedgerRejection as exc:
        raise _http_error(exc) from exc
    return {"status": True, "data": verdict.as_dict()}


@app.post("/api/goals", status_code=201)
def api_create_goal(
    payload: GoalIn,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        goal = GoalService(db, clock).create(payload)
    except BudgetExceededError:
        raise
    except LedgerRejection as exc:
        raise _http_error(exc) from exc
    return _goal_json(goal)


@app.get("/api/goals")
def api_list_goals(
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    page, limit, offset = _page(request)
    items = GoalService(db, clock).list(
        status=_enum_param(request, "status", GoalStatus),
        budget_id=_int_param(request, "budget_id"),
        goal_type=_enum_param(request, "goal_type", GoalType),
        priority=_enum_param(request, "priority", GoalPriority),
        active=_bool_param(request, "active"),
        limit=limit + 1,
        offset=offset,
    )
    has_more = len(items) > limit
    return {
        "items": [_goal_json(goal) for goal in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.get("/api/goals/{goal_id}")
def api_get_goal(goal_id: int, db: Session = Depends(get_db)):
    try:
        goal = GoalService(db).get(goal_id)
    except LedgerRejection as exc:
        raise _http_error(exc) from exc
    return _goal_json(goal)


@app.patch("/api/goals/{goal_id}")
def api_update_goal(
    goal_id: int,
    payload: GoalUpdateIn,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        goal = GoalService(db, clock).update(goal_id, payload)
    except BudgetExceededError:
        raise
    except LedgerRejection as exc:
        raise _http_error(exc) from exc
    return _goal_json(goal)


@app.delete("/api/goals/{goal_id}", status_code=204)
def api_delete_goal(goal_id: int, db: Session = Depends(get_db)):
    try:
        GoalService(db).delete(goal_id)
    except LedgerRejection as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/goals/{goal_id}/achieve")
def api_achieve_goal(
    goal_id: int,
    payload: AchieveGoalIn,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ledger = ExpenseLedger(db, clock=clock, settings=settings)
    try:
        goal = ledger.achieve_goal(goal_id, payload.expense_id)
    except LedgerRejection as exc:
        raise _http_error(exc) from exc
    return _goal_json(goal)


@app.post("/api/recipients", status_code=201)
def api_upsert_recipient(payload: RecipientIn, db: Session = Depends(get_db)):
    try:
        recipient = RecipientService(db).upsert(payload)
    except LedgerRejection as exc:
        raise _http_error(exc) from exc
    return RecipientOut.model_validate(recipient).model_dump(mode="json")


@app.get("/api/recipients")
def api_list_recipients(request: Request, db: Session = Depends(get_db)):
    page, limit, offset = _page(request, default_limit=100)
    items = RecipientService(db).list(limit=limit, offset=offset)
    return [RecipientOut.model_validate(r).model_dump(mode="json") for r in items]
