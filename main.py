import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db
from errors import LedgerError
from models import CategoryType, RuleStatus, TransactionStatus
from money import cents_to_reais
from periods import Period, resolve_period
from recurrence import local_today
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountOut,
    AccountUpdate,
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    GoalContributionIn,
    GoalIn,
    GoalOut,
    GoalUpdate,
    RecurringRuleIn,
    RecurringRuleOut,
    RecurringRuleUpdate,
    RuleStatusIn,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
)
from services import (
    AccountService,
    CategoryService,
    DashboardService,
    GoalService,
    RecurringRuleService,
    TransactionFilters,
    TransactionService,
)
from session import InvalidSessionToken, read_user_token


logger = logging.getLogger(__name__)

app = FastAPI(title="Personal Ledger")


def current_user_id(authorization: Optional[str] = Header(default=None)) -> int:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return read_user_token(authorization[7:].strip())
    except InvalidSessionToken as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    if get_settings().scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def http_error(exc: LedgerError) -> HTTPException:
    if exc.status_code >= 500:
        logger.error(f"request_failed: error={exc}")
    return HTTPException(status_code=exc.status_code, detail=str(exc))


def ok(data: object = None) -> dict[str, object]:
    return {"success": True, "data": data}


def period_from_request(request: Request) -> Period:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    try:
        return resolve_period(period_slug, start, end, today=local_today())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def filters_from_request(request: Request) -> TransactionFilters:
    def _int_param(name: str) -> Optional[int]:
        raw = request.query_params.get(name)
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    status = None
    status_param = request.query_params.get("status")
    if status_param:
        try:
            status = TransactionStatus(status_param)
        except ValueError:
            status = None
    return TransactionFilters(
        account_id=_int_param("account"),
        category_id=_int_param("category"),
        status=status,
        query=request.query_params.get("q"),
    )


def dump(schema, obj) -> dict[str, object]:
    return schema.model_validate(obj).model_dump(mode="json")


# Accounts


@app.get("/accounts")
def list_accounts(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    service = AccountService(db, user_id)
    try:
        RecurringRuleService(db, user_id).catch_up()
        balances = service.balances()
    except LedgerError as exc:
        raise http_error(exc) from exc
    accounts = []
    for account in service.list_all():
        row = dump(AccountOut, account)
        row["balance_cents"] = balances[account.id]
        row["balance"] = str(cents_to_reais(balances[account.id]))
        accounts.append(row)
    return ok(accounts)


@app.post("/accounts", status_code=201)
def create_account(
    payload: AccountIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        account = AccountService(db, user_id).create(payload)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok(dump(AccountOut, account))


@app.patch("/accounts/{account_id}")
def update_account(
    account_id: int,
    payload: AccountUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        account = AccountService(db, user_id).update(account_id, payload)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok(dump(AccountOut, account))


@app.delete("/accounts/{account_id}")
def delete_account(
    account_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        AccountService(db, user_id).delete(account_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok()


@app.get("/accounts/{account_id}/balance")
def account_balance(
    account_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        RecurringRuleService(db, user_id).catch_up()
        balance = AccountService(db, user_id).current_balance(account_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok(
        {
            "account_id": account_id,
            "balance_cents": balance,
            "balance": str(cents_to_reais(balance)),
        }
    )


# Categories


@app.get("/categories")
def list_categories(
    type: Optional[CategoryType] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    categories = CategoryService(db, user_id).list_all(type)
    return ok([dump(CategoryOut, c) for c in categories])


@app.post("/categories", status_code=201)
def create_category(
    payload: CategoryIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        category = CategoryService(db, user_id).create(payload)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok(dump(CategoryOut, category))


@app.patch("/categories/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        category = CategoryService(db, user_id).update(category_id, payload)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok(dump(CategoryOut, category))


@app.delete("/categories/{category_id}")
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        CategoryService(db, user_id).delete(category_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok()


# Transactions


@app.get("/transactions")
def list_transactions(
    request: Request,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    period = period_from_request(request)
    filters = filters_from_request(request)
    try:
        RecurringRuleService(db, user_id).catch_up()
    except LedgerError as exc:
        raise http_error(exc) from exc
    txns = TransactionService(db, user_id).list(
        period, filters, limit=min(max(limit, 1), 200), offset=max(offset, 0)
    )
    return ok([dump(TransactionOut, t) for t in txns])


@app.post("/transactions", status_code=201)
def create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        result = TransactionService(db, user_id).create(payload)
    except LedgerError as exc:
        raise http_error(exc) from exc
    data = dump(TransactionOut, result.transaction) if result.transaction else None
    response = ok(data)
    if result.rule is not None:
        response["recurring_rule"] = dump(RecurringRuleOut, result.rule)
    return response


@app.get("/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        txn = TransactionService(db, user_id).get(transaction_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok(dump(TransactionOut, txn))


@app.patch("/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        txn = TransactionService(db, user_id).update(transaction_id, payload)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok(dump(TransactionOut, txn))


@app.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok()


# Recurring rules


@app.get("/recurring")
def list_recurring(
    status: Optional[RuleStatus] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    rules = RecurringRuleService(db, user_id).list(status)
    return ok([dump(RecurringRuleOut, r) for r in rules])


@app.post("/recurring", status_code=201)
def create_recurring(
    payload: RecurringRuleIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        rule = RecurringRuleService(db, user_id).create(payload)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok(dump(RecurringRuleOut, rule))


@app.post("/recurring/process")
def process_recurring(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    try:
        result = RecurringRuleService(db, user_id).process_due()
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok({"processed": result.processed})


@app.patch("/recurring/{rule_id}")
def update_recurring(
    rule_id: int,
    payload: RecurringRuleUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        rule = RecurringRuleService(db, user_id).update(rule_id, payload)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok(dump(RecurringRuleOut, rule))


@app.post("/recurring/{rule_id}/status")
def set_recurring_status(
    rule_id: int,
    payload: RuleStatusIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        rule = RecurringRuleService(db, user_id).set_status(rule_id, payload.status)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok(dump(RecurringRuleOut, rule))


@app.delete("/recurring/{rule_id}")
def delete_recurring(
    rule_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        RecurringRuleService(db, user_id).delete(rule_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok()


# Goals


@app.get("/goals")
def list_goals(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    goals = GoalService(db, user_id).list_all()
    return ok([dump(GoalOut, g) for g in goals])


@app.post("/goals", status_code=201)
def create_goal(
    payload: GoalIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        goal = GoalService(db, user_id).create(payload)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok(dump(GoalOut, goal))


@app.patch("/goals/{goal_id}")
def update_goal(
    goal_id: int,
    payload: GoalUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        goal = GoalService(db, user_id).update(goal_id, payload)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok(dump(GoalOut, goal))


@app.delete("/goals/{goal_id}")
def delete_goal(
    goal_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        GoalService(db, user_id).delete(goal_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok()


@app.post("/goals/{goal_id}/contributions", status_code=201)
def contribute_to_goal(
    goal_id: int,
    payload: GoalContributionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        result = GoalService(db, user_id).contribute(goal_id, payload)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok(
        {
            "transaction": dump(TransactionOut, result.transaction),
            "goal": dump(GoalOut, result.goal),
        }
    )


# Dashboard


@app.get("/dashboard")
def dashboard(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    try:
        overview = DashboardService(db, user_id).overview()
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ok(overview)
