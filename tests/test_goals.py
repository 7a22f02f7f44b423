from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import InsufficientFundsError
from models import Account, AccountType, CategoryType, Goal, Transaction
from schemas import GoalContributionIn, GoalIn, GoalUpdate, TransactionUpdate
from services import AccountService, GoalService, TransactionService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed(session):
    account = Account(
        user_id=1,
        name="Checking",
        type=AccountType.checking,
        initial_balance_cents=10_000,
    )
    session.add(account)
    session.commit()
    goal = GoalService(session, 1).create(
        GoalIn(name="Trip", target_amount_cents=100_000)
    )
    return account, goal


def test_contribution_posts_expense_and_raises_goal() -> None:
    session = make_session()
    account, goal = seed(session)

    result = GoalService(session, 1).contribute(
        goal.id,
        GoalContributionIn(account_id=account.id, amount_cents=5_000, date=date(2024, 3, 1)),
    )

    assert result.goal.current_amount == Decimal("50.00")
    txn = result.transaction
    assert txn.amount == Decimal("50.00")
    assert txn.goal_id == goal.id
    assert txn.direction == CategoryType.expense
    assert txn.description == "Goal contribution: Trip"
    assert AccountService(session, 1).current_balance(account.id) == 5_000


def test_contribution_reuses_contribution_category() -> None:
    session = make_session()
    account, goal = seed(session)
    service = GoalService(session, 1)
    payload = GoalContributionIn(
        account_id=account.id, amount_cents=1_000, date=date(2024, 3, 1)
    )

    first = service.contribute(goal.id, payload)
    second = service.contribute(goal.id, payload)

    assert first.transaction.category_id == second.transaction.category_id


def test_contribution_beyond_balance_is_rejected() -> None:
    session = make_session()
    account, goal = seed(session)

    with pytest.raises(InsufficientFundsError, match="contribution"):
        GoalService(session, 1).contribute(
            goal.id,
            GoalContributionIn(
                account_id=account.id, amount_cents=20_000, date=date(2024, 3, 1)
            ),
        )

    assert session.get(Goal, goal.id).current_amount_cents == 0
    assert session.scalar(select(Transaction)) is None


def test_deleting_contribution_reverses_goal_progress() -> None:
    session = make_session()
    account, goal = seed(session)
    result = GoalService(session, 1).contribute(
        goal.id,
        GoalContributionIn(account_id=account.id, amount_cents=5_000, date=date(2024, 3, 1)),
    )

    TransactionService(session, 1).delete(result.transaction.id)

    assert session.get(Goal, goal.id).current_amount == Decimal("0.00")
    assert AccountService(session, 1).current_balance(account.id) == 10_000


def test_editing_contribution_amount_adjusts_goal() -> None:
    session = make_session()
    account, goal = seed(session)
    result = GoalService(session, 1).contribute(
        goal.id,
        GoalContributionIn(account_id=account.id, amount_cents=5_000, date=date(2024, 3, 1)),
    )

    TransactionService(session, 1).update(
        result.transaction.id, TransactionUpdate(amount_cents=2_000)
    )

    assert session.get(Goal, goal.id).current_amount_cents == 2_000


def test_deleting_goal_keeps_its_transactions() -> None:
    session = make_session()
    account, goal = seed(session)
    result = GoalService(session, 1).contribute(
        goal.id,
        GoalContributionIn(account_id=account.id, amount_cents=1_000, date=date(2024, 3, 1)),
    )

    GoalService(session, 1).delete(goal.id)

    txn = session.get(Transaction, result.transaction.id)
    session.refresh(txn)
    assert txn.goal_id is None


def test_goal_update_changes_target() -> None:
    session = make_session()
    _, goal = seed(session)

    updated = GoalService(session, 1).update(
        goal.id, GoalUpdate(target_amount_cents=50_000, deadline=None)
    )

    assert updated.target_amount == Decimal("500.00")
    assert updated.deadline is None
