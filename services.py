from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from database import commit_or_raise
from errors import (
    InsufficientFundsError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from ledger import SignedAmount, balance_after, breaks_solvency, transaction_balance
from models import (
    Account,
    BudgetType,
    CatchUpRun,
    Category,
    CategoryType,
    Goal,
    RecurringRule,
    RuleStatus,
    Transaction,
    TransactionStatus,
)
from periods import Period, month_window
from recurrence import (
    CatchUpResult,
    RecurringEngine,
    initial_next_run_date,
    local_today,
)
from schemas import (
    AccountIn,
    AccountUpdate,
    CategoryIn,
    CategoryUpdate,
    GoalContributionIn,
    GoalIn,
    GoalUpdate,
    RecurringRuleIn,
    RecurringRuleUpdate,
    TransactionIn,
    TransactionUpdate,
)


logger = logging.getLogger(__name__)

CONTRIBUTION_CATEGORY_NAME = "Goal contributions"

BUDGET_TYPE_LABELS = {
    BudgetType.essential_fixed: "Essential fixed",
    BudgetType.essential_variable: "Essential variable",
    BudgetType.discretionary: "Discretionary",
}

BUDGET_TYPE_COLORS = {
    BudgetType.essential_fixed: "#ef4444",
    BudgetType.essential_variable: "#f59e0b",
    BudgetType.discretionary: "#8b5cf6",
}

DEFAULT_CATEGORY_COLOR = "#22c55e"


def account_transactions(
    session: Session,
    user_id: int,
    account_id: int,
    *,
    exclude_id: Optional[int] = None,
) -> list[Transaction]:
    stmt = (
        select(Transaction)
        .options(joinedload(Transaction.category))
        .where(Transaction.user_id == user_id, Transaction.account_id == account_id)
    )
    if exclude_id is not None:
        stmt = stmt.where(Transaction.id != exclude_id)
    return list(session.scalars(stmt).all())


def _owned(session: Session, model, record_id: Optional[int], user_id: int, entity: str):
    record = session.get(model, record_id) if record_id is not None else None
    if not record or record.user_id != user_id:
        raise NotFoundError(entity)
    return record


@dataclass
class TransactionFilters:
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    status: Optional[TransactionStatus] = None
    query: Optional[str] = None


@dataclass
class TransactionWriteResult:
    transaction: Optional[Transaction]
    rule: Optional[RecurringRule] = None


@dataclass
class GoalContributionResult:
    transaction: Transaction
    goal: Goal


class AccountService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.name, Account.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, account_id: int) -> Account:
        return _owned(self.session, Account, account_id, self.user_id, "Account")

    def create(self, data: AccountIn) -> Account:
        account = Account(
            user_id=self.user_id,
            name=data.name,
            type=data.type,
            initial_balance_cents=data.initial_balance_cents,
            is_active=data.is_active,
        )
        self.session.add(account)
        commit_or_raise(self.session)
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountUpdate) -> Account:
        account = self.get(account_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None:
                raise ValidationError(f"{field} cannot be empty")
            setattr(account, field, value)
        commit_or_raise(self.session)
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        in_use = self.session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.account_id == account.id
            )
        ) or self.session.scalar(
            select(func.count(RecurringRule.id)).where(
                RecurringRule.account_id == account.id
            )
        )
        if in_use:
            raise ValidationError(
                "Account still has transactions or recurring rules"
            )
        self.session.delete(account)
        commit_or_raise(self.session)

    def current_balance(self, account_id: int) -> int:
        account = self.get(account_id)
        txns = account_transactions(self.session, self.user_id, account.id)
        return transaction_balance(account.initial_balance_cents, txns)

    def balances(self) -> dict[int, int]:
        accounts = self.list_all()
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.user_id == self.user_id)
        )
        by_account: dict[int, list[Transaction]] = {}
        for txn in self.session.scalars(stmt).all():
            by_account.setdefault(txn.account_id, []).append(txn)
        return {
            account.id: transaction_balance(
                account.initial_balance_cents, by_account.get(account.id, [])
            )
            for account in accounts
        }


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self, category_type: Optional[CategoryType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        if category_type is not None:
            stmt = stmt.where(Category.type == category_type)
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        return _owned(self.session, Category, category_id, self.user_id, "Category")

    def _ensure_unique(
        self, name: str, category_type: CategoryType, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            Category.type == category_type,
            func.lower(Category.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValidationError("Category with this name already exists")

    def create(self, data: CategoryIn) -> Category:
        self._ensure_unique(data.name, data.type)
        category = Category(
            user_id=self.user_id,
            name=data.name,
            type=data.type,
            budget_type=data.budget_type,
            color_hex=data.color_hex,
        )
        self.session.add(category)
        commit_or_raise(self.session)
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self.get(category_id)
        changes = data.model_dump(exclude_unset=True)
        for field in ("name", "type"):
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be empty")
        if "type" in changes and changes["type"] != category.type:
            # Flipping direction would silently re-sign every linked row.
            if self._in_use(category.id):
                raise ValidationError("Cannot change the type of a category in use")
        name = changes.get("name", category.name)
        category_type = changes.get("type", category.type)
        self._ensure_unique(name, category_type, exclude_id=category.id)
        for field, value in changes.items():
            setattr(category, field, value)
        commit_or_raise(self.session)
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        if self._in_use(category.id):
            raise ValidationError(
                "Category is used by transactions or recurring rules"
            )
        self.session.delete(category)
        commit_or_raise(self.session)

    def _in_use(self, category_id: int) -> bool:
        txns = self.session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.category_id == category_id
            )
        )
        rules = self.session.scalar(
            select(func.count(RecurringRule.id)).where(
                RecurringRule.category_id == category_id
            )
        )
        return bool(txns or rules)

    def contribution_category(self) -> Category:
        """Expense category used for goal contributions, created on first use."""
        stmt = (
            select(Category)
            .where(
                Category.user_id == self.user_id,
                Category.type == CategoryType.expense,
                func.lower(Category.name).like("%contribution%"),
            )
            .order_by(Category.id)
            .limit(1)
        )
        existing = self.session.scalar(stmt)
        if existing:
            return existing
        category = Category(
            user_id=self.user_id,
            name=CONTRIBUTION_CATEGORY_NAME,
            type=CategoryType.expense,
        )
        self.session.add(category)
        self.session.flush()
        return category


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _account(self, account_id: Optional[int]) -> Account:
        return _owned(self.session, Account, account_id, self.user_id, "Account")

    def _category(self, category_id: Optional[int]) -> Optional[Category]:
        if category_id is None:
            return None
        return _owned(self.session, Category, category_id, self.user_id, "Category")

    def balance(self, account: Account, *, exclude_id: Optional[int] = None) -> int:
        txns = account_transactions(
            self.session, self.user_id, account.id, exclude_id=exclude_id
        )
        return transaction_balance(account.initial_balance_cents, txns)

    def ensure_solvent(
        self,
        account: Account,
        before: int,
        after: int,
        message: Optional[str] = None,
    ) -> None:
        if breaks_solvency(before, after):
            logger.info(
                f"solvency_rejected: account_id={account.id} before={before} after={after}"
            )
            if message:
                raise InsufficientFundsError(message)
            raise InsufficientFundsError()

    def create(
        self,
        data: TransactionIn,
        *,
        recurring_rule_id: Optional[int] = None,
        today: Optional[date] = None,
    ) -> TransactionWriteResult:
        today = today or local_today()
        account = self._account(data.account_id)
        category = self._category(data.category_id)

        schedule_only = bool(
            data.is_recurring
            and data.recurring_start_date
            and data.recurring_start_date > today
        )

        txn: Optional[Transaction] = None
        if not schedule_only:
            amount = SignedAmount(
                category.type if category else None, data.amount_cents
            )
            before = self.balance(account)
            self.ensure_solvent(account, before, balance_after(before, amount))
            txn = Transaction(
                user_id=self.user_id,
                account_id=account.id,
                category_id=category.id if category else None,
                description=data.description,
                amount_cents=data.amount_cents,
                date=data.effective_date,
                payment_date=data.payment_date,
                status=data.status,
                recurring_rule_id=recurring_rule_id,
            )
            self.session.add(txn)

        rule: Optional[RecurringRule] = None
        if data.is_recurring:
            rule = RecurringRule(
                user_id=self.user_id,
                account_id=account.id,
                category_id=category.id,
                description=data.description,
                amount_cents=data.amount_cents,
                type=category.type,
                frequency=data.frequency,
                day_of_month=data.day_of_month,
                start_date=data.recurring_start_date,
                end_date=data.recurring_end_date,
                status=RuleStatus.active,
                next_run_date=initial_next_run_date(
                    data.recurring_start_date,
                    data.frequency,
                    data.day_of_month,
                    today=today,
                ),
            )
            self.session.add(rule)
            if txn is not None:
                txn.recurring_rule = rule
            reset_catch_up_watermark(self.session, self.user_id)

        commit_or_raise(self.session)
        if txn is not None:
            self.session.refresh(txn)
            logger.info(
                f"transaction_created: id={txn.id} account_id={account.id} "
                f"amount_cents={txn.amount_cents} rule_id={txn.recurring_rule_id}"
            )
        if rule is not None:
            self.session.refresh(rule)
            logger.info(
                f"recurring_rule_created: id={rule.id} "
                f"next_run_date={rule.next_run_date.isoformat()}"
            )
        return TransactionWriteResult(transaction=txn, rule=rule)

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction")
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.model_dump(exclude_unset=True)
        for field in ("account_id", "description", "amount_cents", "date", "status"):
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be empty")

        old_account = txn.account
        old_amount = SignedAmount(txn.direction, txn.amount_cents)
        new_account = self._account(changes.get("account_id", txn.account_id))
        new_category = self._category(changes.get("category_id", txn.category_id))
        new_amount = SignedAmount(
            new_category.type if new_category else None,
            changes.get("amount_cents", txn.amount_cents),
        )

        if new_account.id == old_account.id:
            before = self.balance(new_account)
            after = before - old_amount.delta + new_amount.delta
            self.ensure_solvent(new_account, before, after)
        else:
            old_before = self.balance(old_account)
            self.ensure_solvent(
                old_account, old_before, old_before - old_amount.delta
            )
            new_before = self.balance(new_account)
            self.ensure_solvent(
                new_account, new_before, new_before + new_amount.delta
            )

        if txn.goal_id is not None and "amount_cents" in changes:
            goal = self.session.get(Goal, txn.goal_id)
            if goal is not None:
                goal.current_amount_cents = max(
                    0,
                    goal.current_amount_cents - txn.amount_cents + new_amount.cents,
                )

        for field, value in changes.items():
            setattr(txn, field, value)
        commit_or_raise(self.session)
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        amount = SignedAmount(txn.direction, txn.amount_cents)
        if amount.is_income:
            before = self.balance(txn.account)
            self.ensure_solvent(
                txn.account,
                before,
                before - amount.delta,
                "Removing this income would leave the account with a negative balance",
            )

        if txn.goal_id is not None:
            goal = self.session.get(Goal, txn.goal_id)
            if goal is not None and goal.user_id == self.user_id:
                goal.current_amount_cents = max(
                    0, goal.current_amount_cents - txn.amount_cents
                )
                logger.info(
                    f"goal_contribution_reversed: goal_id={goal.id} "
                    f"amount_cents={txn.amount_cents}"
                )

        self.session.delete(txn)
        commit_or_raise(self.session)

    def list(
        self,
        period: Period,
        filters: Optional[TransactionFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        if filters.account_id:
            stmt = stmt.where(Transaction.account_id == filters.account_id)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.status:
            stmt = stmt.where(Transaction.status == filters.status)
        if filters.query:
            like = f"%{filters.query.lower()}%"
            stmt = stmt.where(func.lower(Transaction.description).like(like))
        return list(self.session.scalars(stmt).all())

    def recent(self, limit: int = 5) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.category), joinedload(Transaction.account)
            )
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())


def reset_catch_up_watermark(session: Session, user_id: int) -> None:
    session.execute(delete(CatchUpRun).where(CatchUpRun.user_id == user_id))


def catch_up_all_users(
    session: Session,
    today: Optional[date] = None,
    max_occurrences: Optional[int] = None,
) -> int:
    today = today or local_today()
    if max_occurrences is None:
        max_occurrences = get_settings().scheduler_catch_up_limit
    user_ids = session.scalars(
        select(RecurringRule.user_id)
        .where(
            RecurringRule.status == RuleStatus.active,
            RecurringRule.next_run_date <= today,
        )
        .distinct()
    ).all()
    engine = RecurringEngine(session)
    total = 0
    for user_id in user_ids:
        try:
            result = engine.process_due_rules(
                user_id, today, max_occurrences=max_occurrences
            )
        except LedgerError as exc:
            logger.warning(f"catch_up_failed: user_id={user_id} error={exc}")
            continue
        total += result.processed
    return total


class RecurringRuleService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, rule_id: int) -> RecurringRule:
        return _owned(self.session, RecurringRule, rule_id, self.user_id, "Recurring rule")

    def list(self, status: Optional[RuleStatus] = None) -> list[RecurringRule]:
        stmt = (
            select(RecurringRule)
            .options(joinedload(RecurringRule.category))
            .where(RecurringRule.user_id == self.user_id)
            .order_by(RecurringRule.next_run_date, RecurringRule.id)
        )
        if status is not None:
            stmt = stmt.where(RecurringRule.status == status)
        return list(self.session.scalars(stmt).all())

    def create(
        self, data: RecurringRuleIn, *, today: Optional[date] = None
    ) -> RecurringRule:
        today = today or local_today()
        account = _owned(self.session, Account, data.account_id, self.user_id, "Account")
        category = _owned(
            self.session, Category, data.category_id, self.user_id, "Category"
        )
        if data.end_date is not None and data.end_date < data.start_date:
            raise ValidationError("End date must not be before the start date")
        rule = RecurringRule(
            user_id=self.user_id,
            account_id=account.id,
            category_id=category.id,
            description=data.description,
            amount_cents=data.amount_cents,
            type=category.type,
            frequency=data.frequency,
            day_of_month=data.day_of_month,
            start_date=data.start_date,
            end_date=data.end_date,
            status=RuleStatus.active,
            next_run_date=initial_next_run_date(
                data.start_date, data.frequency, data.day_of_month, today=today
            ),
        )
        self.session.add(rule)
        reset_catch_up_watermark(self.session, self.user_id)
        commit_or_raise(self.session)
        self.session.refresh(rule)
        logger.info(
            f"recurring_rule_created: id={rule.id} "
            f"next_run_date={rule.next_run_date.isoformat()}"
        )
        return rule

    def update(
        self,
        rule_id: int,
        data: RecurringRuleUpdate,
        *,
        today: Optional[date] = None,
    ) -> RecurringRule:
        today = today or local_today()
        rule = self.get(rule_id)
        changes = data.model_dump(exclude_unset=True)
        for field in (
            "account_id",
            "category_id",
            "description",
            "amount_cents",
            "frequency",
            "start_date",
        ):
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be empty")
        if "account_id" in changes:
            _owned(self.session, Account, changes["account_id"], self.user_id, "Account")
        if "category_id" in changes:
            category = _owned(
                self.session, Category, changes["category_id"], self.user_id, "Category"
            )
            rule.type = category.type

        start_date = changes.get("start_date", rule.start_date)
        end_date = changes.get("end_date", rule.end_date)
        if end_date is not None and end_date < start_date:
            raise ValidationError("End date must not be before the start date")

        reschedule = any(
            field in changes and changes[field] != getattr(rule, field)
            for field in ("frequency", "day_of_month", "start_date")
        )
        for field, value in changes.items():
            setattr(rule, field, value)
        if reschedule:
            rule.next_run_date = initial_next_run_date(
                rule.start_date, rule.frequency, rule.day_of_month, today=today
            )
        reset_catch_up_watermark(self.session, self.user_id)
        commit_or_raise(self.session)
        self.session.refresh(rule)
        return rule

    def set_status(self, rule_id: int, status: RuleStatus) -> RecurringRule:
        rule = self.get(rule_id)
        previous = rule.status
        rule.status = status
        reset_catch_up_watermark(self.session, self.user_id)
        commit_or_raise(self.session)
        logger.info(
            f"recurring_rule_status: id={rule.id} from={previous.value} to={status.value}"
        )
        return rule

    def delete(self, rule_id: int) -> None:
        rule = self.get(rule_id)
        self.session.execute(
            update(Transaction)
            .where(Transaction.recurring_rule_id == rule.id)
            .values(recurring_rule_id=None)
        )
        self.session.delete(rule)
        commit_or_raise(self.session)

    def process_due(
        self, today: Optional[date] = None, *, max_occurrences: int = 1
    ) -> CatchUpResult:
        engine = RecurringEngine(self.session)
        return engine.process_due_rules(
            self.user_id, today, max_occurrences=max_occurrences
        )

    def catch_up(self, today: Optional[date] = None) -> CatchUpResult:
        """Lazy catch-up for read paths, at most once per user per day.

        The watermark is only recorded once nothing is left due, so a rule held
        back by insufficient funds is retried on the next read. Rule writes
        reset it so a rule created or resumed today is picked up as well.
        """
        today = today or local_today()
        run = self.session.scalar(
            select(CatchUpRun).where(CatchUpRun.user_id == self.user_id)
        )
        if run is not None and run.last_run_on >= today:
            return CatchUpResult(processed=0)

        result = self.process_due(
            today, max_occurrences=get_settings().scheduler_catch_up_limit
        )
        if RecurringEngine(self.session).due_rules(self.user_id, today):
            return result
        run = self.session.scalar(
            select(CatchUpRun).where(CatchUpRun.user_id == self.user_id)
        )
        if run is None:
            self.session.add(CatchUpRun(user_id=self.user_id, last_run_on=today))
        else:
            run.last_run_on = today
        commit_or_raise(self.session)
        return result


class GoalService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Goal]:
        stmt = (
            select(Goal)
            .where(Goal.user_id == self.user_id)
            .order_by(Goal.created_at, Goal.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, goal_id: int) -> Goal:
        return _owned(self.session, Goal, goal_id, self.user_id, "Goal")

    def create(self, data: GoalIn) -> Goal:
        goal = Goal(
            user_id=self.user_id,
            name=data.name,
            target_amount_cents=data.target_amount_cents,
            current_amount_cents=data.current_amount_cents,
            deadline=data.deadline,
        )
        self.session.add(goal)
        commit_or_raise(self.session)
        self.session.refresh(goal)
        return goal

    def update(self, goal_id: int, data: GoalUpdate) -> Goal:
        goal = self.get(goal_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None and field != "deadline":
                raise ValidationError(f"{field} cannot be empty")
            setattr(goal, field, value)
        commit_or_raise(self.session)
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        self.session.execute(
            update(Transaction)
            .where(Transaction.goal_id == goal.id)
            .values(goal_id=None)
        )
        self.session.delete(goal)
        commit_or_raise(self.session)

    def contribute(
        self, goal_id: int, data: GoalContributionIn
    ) -> GoalContributionResult:
        goal = self.get(goal_id)
        txn_service = TransactionService(self.session, self.user_id)
        account = _owned(self.session, Account, data.account_id, self.user_id, "Account")

        amount = SignedAmount(CategoryType.expense, data.amount_cents)
        before = txn_service.balance(account)
        txn_service.ensure_solvent(
            account,
            before,
            balance_after(before, amount),
            "Insufficient balance for this contribution",
        )

        category = CategoryService(self.session, self.user_id).contribution_category()
        txn = Transaction(
            user_id=self.user_id,
            account_id=account.id,
            category_id=category.id,
            description=f"Goal contribution: {goal.name}",
            amount_cents=data.amount_cents,
            date=data.date,
            status=TransactionStatus.paid,
            goal_id=goal.id,
        )
        self.session.add(txn)
        goal.current_amount_cents += data.amount_cents
        commit_or_raise(self.session)
        self.session.refresh(txn)
        self.session.refresh(goal)
        logger.info(
            f"goal_contribution: goal_id={goal.id} account_id={account.id} "
            f"amount_cents={data.amount_cents}"
        )
        return GoalContributionResult(transaction=txn, goal=goal)


class DashboardService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def overview(self, today: Optional[date] = None) -> dict[str, object]:
        today = today or local_today()
        RecurringRuleService(self.session, self.user_id).catch_up(today)

        settings = get_settings()
        months = month_window(today, settings.dashboard_months)
        current = months[-1]

        accounts = AccountService(self.session, self.user_id)
        account_rows = accounts.list_all()
        balances = accounts.balances()

        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(months[0].start, current.end),
            )
        )
        txns = list(self.session.scalars(stmt).all())
        month_txns = [txn for txn in txns if current.contains(txn.date)]
        goals = GoalService(self.session, self.user_id).list_all()

        cash_flow = self._cash_flow(months, txns)
        return {
            "summary": {
                "total_accounts": len(account_rows),
                "active_accounts": sum(1 for a in account_rows if a.is_active),
                "total_balance_cents": sum(balances.values()),
                "month_transactions": len(month_txns),
                "total_goals": len(goals),
                "active_goals": sum(
                    1
                    for g in goals
                    if g.current_amount_cents < g.target_amount_cents
                ),
            },
            "cash_flow": cash_flow,
            "balance_evolution": self._balance_evolution(cash_flow),
            "transaction_status": self._status_totals(month_txns),
            "expenses_by_category": self._expenses_by_category(month_txns),
            "budget_by_type": self._budget_by_type(month_txns),
            "goals": [self._goal_progress(goal) for goal in goals],
            "recent_transactions": [
                {
                    "id": txn.id,
                    "description": txn.description,
                    "amount_cents": txn.amount_cents,
                    "date": txn.date.isoformat(),
                    "status": txn.status.value,
                    "type": (txn.direction or CategoryType.expense).value,
                    "category": txn.category.name if txn.category else None,
                    "account": txn.account.name if txn.account else None,
                }
                for txn in TransactionService(self.session, self.user_id).recent(5)
            ],
        }

    @staticmethod
    def _cash_flow(
        months: list[Period], txns: list[Transaction]
    ) -> list[dict[str, object]]:
        buckets = {
            period.slug: {
                "month": period.slug,
                "label": period.start.strftime("%b"),
                "income_cents": 0,
                "expense_cents": 0,
            }
            for period in months
        }
        for txn in txns:
            bucket = buckets.get(txn.date.strftime("%Y-%m"))
            if bucket is None:
                continue
            if txn.direction == CategoryType.income:
                bucket["income_cents"] += txn.amount_cents
            elif txn.direction == CategoryType.expense:
                bucket["expense_cents"] += txn.amount_cents
        return [buckets[period.slug] for period in months]

    @staticmethod
    def _balance_evolution(
        cash_flow: list[dict[str, object]],
    ) -> list[dict[str, object]]:
        running = 0
        points = []
        for point in cash_flow:
            running += point["income_cents"] - point["expense_cents"]
            points.append(
                {
                    "month": point["month"],
                    "label": point["label"],
                    "balance_cents": running,
                }
            )
        return points

    @staticmethod
    def _status_totals(month_txns: list[Transaction]) -> list[dict[str, object]]:
        slices = [
            {
                "status": TransactionStatus.paid.value,
                "amount_cents": sum(
                    t.amount_cents
                    for t in month_txns
                    if t.status == TransactionStatus.paid
                ),
                "color": "#22c55e",
            },
            {
                "status": TransactionStatus.pending.value,
                "amount_cents": sum(
                    t.amount_cents
                    for t in month_txns
                    if t.status == TransactionStatus.pending
                ),
                "color": "#f59e0b",
            },
        ]
        return [item for item in slices if item["amount_cents"] > 0]

    @staticmethod
    def _paid_expenses(month_txns: list[Transaction]) -> list[Transaction]:
        return [
            t
            for t in month_txns
            if t.direction == CategoryType.expense and t.status == TransactionStatus.paid
        ]

    def _expenses_by_category(
        self, month_txns: list[Transaction]
    ) -> list[dict[str, object]]:
        by_name: dict[str, dict[str, object]] = {}
        for txn in self._paid_expenses(month_txns):
            entry = by_name.setdefault(
                txn.category.name,
                {
                    "name": txn.category.name,
                    "amount_cents": 0,
                    "color": txn.category.color_hex or DEFAULT_CATEGORY_COLOR,
                },
            )
            entry["amount_cents"] += txn.amount_cents
        return sorted(by_name.values(), key=lambda e: e["amount_cents"], reverse=True)

    def _budget_by_type(self, month_txns: list[Transaction]) -> list[dict[str, object]]:
        by_type: dict[BudgetType, dict[str, object]] = {}
        for txn in self._paid_expenses(month_txns):
            budget_type = txn.category.budget_type
            if budget_type is None:
                continue
            entry = by_type.setdefault(
                budget_type,
                {
                    "budget_type": budget_type.value,
                    "name": BUDGET_TYPE_LABELS[budget_type],
                    "amount_cents": 0,
                    "color": BUDGET_TYPE_COLORS[budget_type],
                },
            )
            entry["amount_cents"] += txn.amount_cents
        return list(by_type.values())

    @staticmethod
    def _goal_progress(goal: Goal) -> dict[str, object]:
        target = goal.target_amount_cents or 0
        current = goal.current_amount_cents or 0
        percent = round(current / target * 100) if target > 0 else 0
        return {
            "id": goal.id,
            "name": goal.name,
            "current_cents": current,
            "target_cents": target,
            "percent": percent,
        }
