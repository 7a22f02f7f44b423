"""Derived account balances.

An account never stores its current balance. It is always the initial balance
plus the signed sum of its transactions, where the sign comes from the
direction of the transaction's category: income adds, everything else
(including uncategorized rows) subtracts.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from models import CategoryType, Transaction


@dataclass(frozen=True)
class SignedAmount:
    direction: Optional[CategoryType]
    cents: int

    def __post_init__(self) -> None:
        if self.cents < 0:
            raise ValueError("Amounts are magnitudes and cannot be negative")

    @property
    def is_income(self) -> bool:
        return self.direction == CategoryType.income

    @property
    def delta(self) -> int:
        return self.cents if self.is_income else -self.cents


def signed_amount(txn: Transaction) -> SignedAmount:
    return SignedAmount(direction=txn.direction, cents=txn.amount_cents)


def derive_balance(
    initial_balance_cents: int, amounts: Iterable[SignedAmount]
) -> int:
    return initial_balance_cents + sum(amount.delta for amount in amounts)


def transaction_balance(
    initial_balance_cents: int, transactions: Iterable[Transaction]
) -> int:
    return derive_balance(
        initial_balance_cents, (signed_amount(txn) for txn in transactions)
    )


def balance_after(balance_before: int, candidate: SignedAmount) -> int:
    return balance_before + candidate.delta


def breaks_solvency(balance_before: int, balance_after: int) -> bool:
    # A write that raises the balance always passes, even below zero.
    return balance_after < 0 and balance_after < balance_before
