from itertools import permutations

import pytest

from ledger import SignedAmount, balance_after, breaks_solvency, derive_balance
from models import CategoryType


INCOME = CategoryType.income
EXPENSE = CategoryType.expense


def test_balance_is_initial_plus_signed_sum() -> None:
    amounts = [
        SignedAmount(INCOME, 5_000),
        SignedAmount(EXPENSE, 1_250),
        SignedAmount(EXPENSE, 750),
    ]
    assert derive_balance(10_000, amounts) == 13_000


def test_balance_is_order_independent() -> None:
    amounts = [
        SignedAmount(INCOME, 3_000),
        SignedAmount(EXPENSE, 1_000),
        SignedAmount(None, 500),
        SignedAmount(INCOME, 250),
    ]
    results = {derive_balance(1_000, list(order)) for order in permutations(amounts)}
    assert results == {2_750}


def test_uncategorized_amount_subtracts() -> None:
    assert SignedAmount(None, 400).delta == -400
    assert derive_balance(1_000, [SignedAmount(None, 400)]) == 600


def test_negative_magnitude_is_rejected() -> None:
    with pytest.raises(ValueError):
        SignedAmount(EXPENSE, -1)


def test_balance_after_candidate() -> None:
    assert balance_after(2_000, SignedAmount(EXPENSE, 500)) == 1_500
    assert balance_after(-100, SignedAmount(INCOME, 300)) == 200


def test_write_below_zero_breaks_solvency() -> None:
    assert breaks_solvency(1_000, -500)
    assert breaks_solvency(-100, -200)
    assert not breaks_solvency(1_000, 0)


def test_write_that_raises_balance_never_breaks_solvency() -> None:
    assert not breaks_solvency(-5_000, -4_900)
    assert not breaks_solvency(-5_000, -5_000)
