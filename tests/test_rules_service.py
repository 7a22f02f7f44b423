from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import NotFoundError, PersistenceError, ValidationError
from models import (
    Account,
    AccountType,
    Category,
    CategoryType,
    Frequency,
    RuleStatus,
    Transaction,
)
from recurrence import RecurringEngine
from schemas import (
    CategoryIn,
    CategoryUpdate,
    RecurringRuleIn,
    RecurringRuleUpdate,
    TransactionIn,
)
from services import (
    CategoryService,
    RecurringRuleService,
    TransactionService,
    catch_up_all_users,
)


TODAY = date(2024, 3, 1)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed(session, user_id: int = 1):
    account = Account(
        user_id=user_id,
        name="Checking",
        type=AccountType.checking,
        initial_balance_cents=100_000,
    )
    bills = Category(user_id=user_id, name="Bills", type=CategoryType.expense)
    session.add_all([account, bills])
    session.commit()
    return account, bills


def rule_in(account, category, **overrides) -> RecurringRuleIn:
    payload = dict(
        account_id=account.id,
        category_id=category.id,
        description="Internet",
        amount_cents=9_900,
        frequency=Frequency.monthly,
        start_date=date(2024, 1, 1),
    )
    payload.update(overrides)
    return RecurringRuleIn(**payload)


def txn_count(session) -> int:
    return session.scalar(select(func.count(Transaction.id)))


def test_create_rule_inherits_category_direction() -> None:
    session = make_session()
    account, bills = seed(session)

    rule = RecurringRuleService(session, 1).create(rule_in(account, bills), today=TODAY)

    assert rule.type == CategoryType.expense
    assert rule.status == RuleStatus.active
    assert rule.next_run_date == TODAY


def test_create_rule_rejects_end_before_start() -> None:
    session = make_session()
    account, bills = seed(session)

    with pytest.raises(ValidationError):
        RecurringRuleService(session, 1).create(
            rule_in(account, bills, end_date=date(2023, 12, 1)), today=TODAY
        )


def test_rule_from_other_user_is_not_found() -> None:
    session = make_session()
    account, bills = seed(session)
    rule = RecurringRuleService(session, 1).create(rule_in(account, bills), today=TODAY)

    with pytest.raises(NotFoundError):
        RecurringRuleService(session, 2).set_status(rule.id, RuleStatus.paused)


def test_pause_and_resume() -> None:
    session = make_session()
    account, bills = seed(session)
    service = RecurringRuleService(session, 1)
    rule = service.create(rule_in(account, bills), today=TODAY)

    service.set_status(rule.id, RuleStatus.paused)
    assert service.process_due(TODAY).processed == 0

    service.set_status(rule.id, RuleStatus.active)
    assert service.process_due(TODAY).processed == 1


def test_update_frequency_reschedules() -> None:
    session = make_session()
    account, bills = seed(session)
    service = RecurringRuleService(session, 1)
    rule = service.create(rule_in(account, bills, start_date=date(2024, 3, 20)), today=TODAY)

    updated = service.update(
        rule.id,
        RecurringRuleUpdate(frequency=Frequency.monthly, day_of_month=5),
        today=TODAY,
    )

    assert updated.next_run_date == date(2024, 4, 5)


def test_delete_rule_keeps_posted_transactions() -> None:
    session = make_session()
    account, bills = seed(session)
    service = RecurringRuleService(session, 1)
    rule = service.create(rule_in(account, bills), today=TODAY)
    service.process_due(TODAY)

    service.delete(rule.id)

    txn = session.scalar(select(Transaction))
    session.refresh(txn)
    assert txn.recurring_rule_id is None


def test_lazy_catch_up_runs_once_per_day() -> None:
    session = make_session()
    account, bills = seed(session)
    service = RecurringRuleService(session, 1)
    rule = service.create(rule_in(account, bills, frequency=Frequency.daily), today=TODAY)

    assert service.catch_up(TODAY).processed == 1
    assert rule.next_run_date == date(2024, 3, 2)

    assert service.catch_up(date(2024, 3, 3)).processed == 2
    # Same day again: the watermark short-circuits even though a rule is due.
    rule.next_run_date = date(2024, 3, 1)
    session.commit()
    assert service.catch_up(date(2024, 3, 3)).processed == 0
    assert txn_count(session) == 3


def test_rule_write_resets_catch_up_watermark() -> None:
    session = make_session()
    account, bills = seed(session)
    service = RecurringRuleService(session, 1)
    service.catch_up(TODAY)

    service.create(rule_in(account, bills), today=TODAY)

    assert service.catch_up(TODAY).processed == 1


def test_catch_up_all_users_processes_every_owner() -> None:
    session = make_session()
    for user_id in (1, 2):
        account, bills = seed(session, user_id)
        RecurringRuleService(session, user_id).create(
            rule_in(account, bills, start_date=date(2024, 1, 1)),
            today=date(2024, 1, 1),
        )

    posted = catch_up_all_users(session, today=TODAY, max_occurrences=10)

    assert posted == 6
    assert txn_count(session) == 6


def test_category_names_are_unique_per_direction() -> None:
    session = make_session()
    service = CategoryService(session, 1)
    service.create(CategoryIn(name="Gifts", type=CategoryType.expense))
    service.create(CategoryIn(name="Gifts", type=CategoryType.income))

    with pytest.raises(ValidationError):
        service.create(CategoryIn(name="gifts", type=CategoryType.expense))


def test_category_in_use_cannot_flip_direction() -> None:
    session = make_session()
    account, bills = seed(session)
    TransactionService(session, 1).create(
        TransactionIn(
            account_id=account.id,
            category_id=bills.id,
            description="Power",
            amount_cents=100,
            date=TODAY,
        ),
        today=TODAY,
    )

    with pytest.raises(ValidationError):
        CategoryService(session, 1).update(
            bills.id, CategoryUpdate(type=CategoryType.income)
        )


def test_catch_up_retries_rule_held_back_by_funds() -> None:
    session = make_session()
    account = Account(
        user_id=1, name="Checking", type=AccountType.checking, initial_balance_cents=1_000
    )
    bills = Category(user_id=1, name="Bills", type=CategoryType.expense)
    salary = Category(user_id=1, name="Salary", type=CategoryType.income)
    session.add_all([account, bills, salary])
    session.commit()
    service = RecurringRuleService(session, 1)
    service.create(
        rule_in(account, bills, amount_cents=1_500, start_date=TODAY), today=TODAY
    )

    assert service.catch_up(TODAY).processed == 0

    TransactionService(session, 1).create(
        TransactionIn(
            account_id=account.id,
            category_id=salary.id,
            description="Salary",
            amount_cents=5_000,
            date=TODAY,
        ),
        today=TODAY,
    )

    assert service.catch_up(TODAY).processed == 1
    assert txn_count(session) == 2


def test_catch_up_all_users_continues_after_store_failure(monkeypatch) -> None:
    session = make_session()
    for user_id in (1, 2):
        account, bills = seed(session, user_id)
        RecurringRuleService(session, user_id).create(
            rule_in(account, bills), today=TODAY
        )
    original = RecurringEngine.process_due_rules

    def failing_for_first_user(self, user_id, today=None, **kwargs):
        if user_id == 1:
            raise PersistenceError("database is locked")
        return original(self, user_id, today, **kwargs)

    monkeypatch.setattr(RecurringEngine, "process_due_rules", failing_for_first_user)

    assert catch_up_all_users(session, today=TODAY, max_occurrences=10) == 1
