import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import (
    AccountType,
    BudgetType,
    CategoryType,
    Frequency,
    RuleStatus,
    TransactionStatus,
)

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


class AccountIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    initial_balance_cents: int = 0
    is_active: bool = True


class AccountUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[AccountType] = None
    initial_balance_cents: Optional[int] = None
    is_active: Optional[bool] = None


class CategoryIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType
    budget_type: Optional[BudgetType] = None
    color_hex: Optional[str] = Field(default=None, pattern=HEX_COLOR)


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[CategoryType] = None
    budget_type: Optional[BudgetType] = None
    color_hex: Optional[str] = Field(default=None, pattern=HEX_COLOR)


class TransactionIn(BaseModel):
    """Transaction form payload; amounts travel as integer cents."""

    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: int
    category_id: Optional[int] = None
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., gt=0)
    date: dt.date
    payment_date: Optional[dt.date] = None
    status: TransactionStatus = TransactionStatus.pending

    is_recurring: bool = False
    frequency: Optional[Frequency] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    recurring_start_date: Optional[dt.date] = None
    recurring_end_date: Optional[dt.date] = None

    @model_validator(mode="after")
    def _check_recurrence(self) -> "TransactionIn":
        if not self.is_recurring:
            return self
        if self.frequency is None or self.recurring_start_date is None:
            raise ValueError(
                "Frequency and start date are required for recurring transactions"
            )
        if self.category_id is None:
            raise ValueError("Category is required for recurring transactions")
        if (
            self.recurring_end_date is not None
            and self.recurring_end_date < self.recurring_start_date
        ):
            raise ValueError("Recurring end date must not be before the start date")
        return self

    @property
    def effective_date(self) -> dt.date:
        if self.is_recurring and self.recurring_start_date:
            return self.recurring_start_date
        return self.date


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: Optional[int] = None
    category_id: Optional[int] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    date: Optional[dt.date] = None
    payment_date: Optional[dt.date] = None
    status: Optional[TransactionStatus] = None


class RecurringRuleIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: int
    category_id: int
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., gt=0)
    frequency: Frequency
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    start_date: dt.date
    end_date: Optional[dt.date] = None


class RecurringRuleUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: Optional[int] = None
    category_id: Optional[int] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    frequency: Optional[Frequency] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None


class RuleStatusIn(BaseModel):
    status: RuleStatus


class GoalIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=120)
    target_amount_cents: int = Field(..., gt=0)
    current_amount_cents: int = Field(default=0, ge=0)
    deadline: Optional[dt.date] = None


class GoalUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    target_amount_cents: Optional[int] = Field(default=None, gt=0)
    current_amount_cents: Optional[int] = Field(default=None, ge=0)
    deadline: Optional[dt.date] = None


class GoalContributionIn(BaseModel):
    account_id: int
    amount_cents: int = Field(..., gt=0)
    date: dt.date


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: AccountType
    initial_balance_cents: int
    initial_balance: Decimal
    is_active: bool


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: CategoryType
    budget_type: Optional[BudgetType]
    color_hex: Optional[str]


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    category_id: Optional[int]
    description: str
    amount_cents: int
    amount: Decimal
    date: dt.date
    payment_date: Optional[dt.date]
    status: TransactionStatus
    recurring_rule_id: Optional[int]
    goal_id: Optional[int]


class RecurringRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    category_id: int
    description: str
    amount_cents: int
    amount: Decimal
    type: CategoryType
    frequency: Frequency
    day_of_month: Optional[int]
    start_date: dt.date
    end_date: Optional[dt.date]
    status: RuleStatus
    next_run_date: dt.date


class GoalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    target_amount_cents: int
    current_amount_cents: int
    target_amount: Decimal
    current_amount: Decimal
    deadline: Optional[dt.date]
