from decimal import Decimal

import pytest

from money import cents_to_reais
from session import InvalidSessionToken, _serializer, issue_user_token, read_user_token


def test_token_round_trip() -> None:
    token = issue_user_token(42)
    assert read_user_token(token) == 42


def test_tampered_token_is_rejected() -> None:
    token = issue_user_token(42)
    with pytest.raises(InvalidSessionToken, match="Invalid session token"):
        read_user_token("x" + token[1:])


def test_token_without_positive_user_is_rejected() -> None:
    with pytest.raises(InvalidSessionToken):
        read_user_token(_serializer().dumps({"u": 0}))
    with pytest.raises(InvalidSessionToken):
        read_user_token(_serializer().dumps(["u", 1]))


def test_cents_to_reais() -> None:
    assert cents_to_reais(12_345) == Decimal("123.45")
    assert cents_to_reais(-5) == Decimal("-0.05")
