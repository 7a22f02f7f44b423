import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from money import cents_to_reais


class AccountType(str, Enum):
    checking = "CHECKING"
    cash = "CASH"
    investment = "INVESTMENT"


class CategoryType(str, Enum):
    income = "INCOME"
    expense = "EXPENSE"


class BudgetType(str, Enum):
    essential_fixed = "ESSENTIAL_FIXED"
    essential_variable = "ESSENTIAL_VARIABLE"
    discretionary = "DISCRETIONARY"


class TransactionStatus(str, Enum):
    pending = "PENDING"
    paid = "PAID"


class Frequency(str, Enum):
    daily = "DAILY"
    weekly = "WEEKLY"
    monthly = "MONTHLY"
    yearly = "YEARLY"


class RuleStatus(str, Enum):
    active = "ACTIVE"
    paused = "PAUSED"
    cancelled = "CANCELLED"


def _value_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[AccountType] = mapped_column(
        _value_enum(AccountType, "accounttype"), nullable=False
    )
    initial_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account"
    )

    __table_args__ = (Index("ix_accounts_user", "user_id"),)

    @property
    def initial_balance(self) -> Decimal:
        return cents_to_reais(self.initial_balance_cents)


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[CategoryType] = mapped_column(
        _value_enum(CategoryType, "categorytype"), nullable=False
    )
    budget_type: Mapped[Optional[BudgetType]] = mapped_column(
        _value_enum(BudgetType, "budgettype")
    )
    color_hex: Mapped[Optional[str]] = mapped_column(String(7))

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )
    recurring_rules: Mapped[list["RecurringRule"]] = relationship(
        "RecurringRule", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "type", "name", name="uq_category_user_type_name"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False
    )
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    payment_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    status: Mapped[TransactionStatus] = mapped_column(
        _value_enum(TransactionStatus, "transactionstatus"),
        nullable=False,
        default=TransactionStatus.pending,
    )
    recurring_rule_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_rules.id", ondelete="SET NULL")
    )
    goal_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("goals.id", ondelete="SET NULL")
    )

    account: Mapped["Account"] = relationship("Account", back_populates="transactions")
    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )
    recurring_rule: Mapped[Optional["RecurringRule"]] = relationship(
        "RecurringRule", back_populates="transactions"
    )
    goal: Mapped[Optional["Goal"]] = relationship("Goal")

    __table_args__ = (
        UniqueConstraint(
            "recurring_rule_id", "date", name="uq_txn_recurring_occurrence"
        ),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_account", "user_id", "account_id"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_reais(self.amount_cents)

    @property
    def direction(self) -> Optional[CategoryType]:
        return self.category.type if self.category else None


class RecurringRule(Base, TimestampMixin):
    __tablename__ = "recurring_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[CategoryType] = mapped_column(
        _value_enum(CategoryType, "categorytype"), nullable=False
    )
    frequency: Mapped[Frequency] = mapped_column(
        _value_enum(Frequency, "frequency"), nullable=False
    )
    day_of_month: Mapped[Optional[int]] = mapped_column(Integer)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    status: Mapped[RuleStatus] = mapped_column(
        _value_enum(RuleStatus, "rulestatus"),
        nullable=False,
        default=RuleStatus.active,
    )
    next_run_date: Mapped[date] = mapped_column(Date, nullable=False)

    account: Mapped["Account"] = relationship("Account")
    category: Mapped["Category"] = relationship(
        "Category", back_populates="recurring_rules"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="recurring_rule"
    )

    __table_args__ = (
        Index("ix_rules_user_status_next", "user_id", "status", "next_run_date"),
        CheckConstraint("amount_cents >= 0", name="ck_rule_amount_positive"),
        CheckConstraint(
            "day_of_month IS NULL OR (day_of_month BETWEEN 1 AND 31)",
            name="ck_rule_day_of_month_range",
        ),
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_reais(self.amount_cents)


class Goal(Base, TimestampMixin):
    __tablename__ = "goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    target_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    current_amount_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    deadline: Mapped[Optional[date]] = mapped_column(Date)

    __table_args__ = (
        CheckConstraint("target_amount_cents > 0", name="ck_goal_target_positive"),
        CheckConstraint("current_amount_cents >= 0", name="ck_goal_current_positive"),
    )

    @property
    def target_amount(self) -> Decimal:
        return cents_to_reais(self.target_amount_cents)

    @property
    def current_amount(self) -> Decimal:
        return cents_to_reais(self.current_amount_cents)


class CatchUpRun(Base, TimestampMixin):
    __tablename__ = "catch_up_runs"
    __table_args__ = (UniqueConstraint("user_id", name="uq_catch_up_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    last_run_on: Mapped[date] = mapped_column(Date, nullable=False)
