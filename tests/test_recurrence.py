from datetime import date

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from database import Base
from models import (
    Account,
    AccountType,
    Category,
    CategoryType,
    Frequency,
    RecurringRule,
    RuleStatus,
    Transaction,
    TransactionStatus,
)
from recurrence import (
    RecurringEngine,
    clamp_to_month,
    initial_next_run_date,
    next_occurrence,
)
from services import AccountService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed_rule(
    session,
    *,
    initial_balance_cents: int = 100_000,
    amount_cents: int = 10_000,
    start: date = date(2024, 1, 1),
    end: date | None = None,
    frequency: Frequency = Frequency.monthly,
    day_of_month: int | None = None,
) -> RecurringRule:
    account = Account(
        user_id=1,
        name="Checking",
        type=AccountType.checking,
        initial_balance_cents=initial_balance_cents,
    )
    category = Category(user_id=1, name="Rent", type=CategoryType.expense)
    session.add_all([account, category])
    session.flush()
    rule = RecurringRule(
        user_id=1,
        account_id=account.id,
        category_id=category.id,
        description="Rent",
        amount_cents=amount_cents,
        type=CategoryType.expense,
        frequency=frequency,
        day_of_month=day_of_month,
        start_date=start,
        end_date=end,
        status=RuleStatus.active,
        next_run_date=start,
    )
    session.add(rule)
    session.commit()
    return rule


def count_transactions(session) -> int:
    return session.scalar(select(func.count(Transaction.id)))


def test_next_occurrence_clamps_to_leap_february() -> None:
    assert next_occurrence(date(2024, 1, 31), Frequency.monthly, 31) == date(2024, 2, 29)


def test_next_occurrence_clamps_to_common_february() -> None:
    assert next_occurrence(date(2023, 1, 31), Frequency.monthly, 31) == date(2023, 2, 28)


def test_yearly_occurrence_from_leap_day() -> None:
    assert next_occurrence(date(2024, 2, 29), Frequency.yearly, 29) == date(2025, 2, 28)


def test_anchor_day_survives_short_months() -> None:
    assert next_occurrence(date(2024, 2, 29), Frequency.monthly, 31) == date(2024, 3, 31)


def test_daily_and_weekly_steps() -> None:
    assert next_occurrence(date(2024, 12, 31), Frequency.daily) == date(2025, 1, 1)
    assert next_occurrence(date(2024, 12, 28), Frequency.weekly) == date(2025, 1, 4)


def test_clamp_to_month() -> None:
    assert clamp_to_month(2024, 4, 31) == date(2024, 4, 30)
    assert clamp_to_month(2024, 4, 15) == date(2024, 4, 15)


def test_initial_next_run_date_never_backfills() -> None:
    result = initial_next_run_date(
        date(2024, 1, 1), Frequency.daily, today=date(2024, 3, 1)
    )
    assert result == date(2024, 3, 1)


def test_initial_next_run_date_moves_monthly_anchor_forward() -> None:
    result = initial_next_run_date(
        date(2024, 5, 10), Frequency.monthly, 5, today=date(2024, 5, 1)
    )
    assert result == date(2024, 6, 5)


def test_catch_up_is_idempotent() -> None:
    session = make_session()
    seed_rule(session)
    engine = RecurringEngine(session)

    first = engine.process_due_rules(1, date(2024, 3, 1), max_occurrences=10)
    second = engine.process_due_rules(1, date(2024, 3, 1), max_occurrences=10)

    assert first.processed == 3
    assert second.processed == 0
    assert count_transactions(session) == 3
    rule = session.scalar(select(RecurringRule))
    assert rule.next_run_date == date(2024, 4, 1)


def test_catch_up_posts_one_occurrence_per_invocation_by_default() -> None:
    session = make_session()
    seed_rule(session)
    engine = RecurringEngine(session)

    result = engine.process_due_rules(1, date(2024, 3, 1))

    assert result.processed == 1
    rule = session.scalar(select(RecurringRule))
    assert rule.next_run_date == date(2024, 2, 1)
    txn = session.scalar(select(Transaction))
    assert txn.status == TransactionStatus.paid
    assert txn.recurring_rule_id == rule.id
    assert txn.date == date(2024, 1, 1)


def test_catch_up_cancels_rule_at_end_date() -> None:
    session = make_session()
    seed_rule(session, start=date(2024, 1, 15), end=date(2024, 3, 15))
    engine = RecurringEngine(session)

    result = engine.process_due_rules(1, date(2024, 6, 1), max_occurrences=10)

    assert result.processed == 2
    rule = session.scalar(select(RecurringRule))
    assert rule.status == RuleStatus.cancelled
    assert engine.process_due_rules(1, date(2024, 12, 1), max_occurrences=10).processed == 0
    assert count_transactions(session) == 2


def test_catch_up_cancels_rule_past_end_date_without_posting() -> None:
    session = make_session()
    rule = seed_rule(session, start=date(2024, 1, 15), end=date(2024, 1, 10))

    posted = RecurringEngine(session).catch_up_rule(rule, date(2024, 2, 1))

    assert posted == 0
    assert rule.status == RuleStatus.cancelled
    assert count_transactions(session) == 0


def test_catch_up_stops_on_insufficient_funds() -> None:
    session = make_session()
    seed_rule(
        session,
        initial_balance_cents=1_000,
        amount_cents=1_500,
        start=date(2024, 3, 1),
    )

    result = RecurringEngine(session).process_due_rules(1, date(2024, 3, 1))

    assert result.processed == 0
    rule = session.scalar(select(RecurringRule))
    assert rule.status == RuleStatus.active
    assert rule.next_run_date == date(2024, 3, 1)
    assert count_transactions(session) == 0
    assert AccountService(session, 1).current_balance(rule.account_id) == 1_000


def test_paused_rules_are_not_due() -> None:
    session = make_session()
    rule = seed_rule(session)
    rule.status = RuleStatus.paused
    session.commit()

    result = RecurringEngine(session).process_due_rules(1, date(2024, 3, 1))

    assert result.processed == 0
    assert count_transactions(session) == 0


def test_monthly_rule_without_day_of_month_follows_current_day() -> None:
    session = make_session()
    rule = seed_rule(session, start=date(2024, 1, 31))
    rule.next_run_date = date(2024, 2, 29)
    session.commit()

    RecurringEngine(session).process_due_rules(1, date(2024, 2, 29))

    assert rule.next_run_date == date(2024, 3, 29)


def test_monthly_rule_with_day_of_month_returns_to_anchor() -> None:
    session = make_session()
    seed_rule(session, start=date(2024, 1, 31), day_of_month=31)

    RecurringEngine(session).process_due_rules(1, date(2024, 4, 30), max_occurrences=10)

    dates = session.scalars(select(Transaction.date).order_by(Transaction.date)).all()
    assert dates == [
        date(2024, 1, 31),
        date(2024, 2, 29),
        date(2024, 3, 31),
        date(2024, 4, 30),
    ]
