from decimal import Decimal

import pytest

from treasury.core.errors import MissingExchangeRate
from treasury.models.constants import Currency
from treasury.services.money import format_amount, from_base, round2, to_base


def test_round2_is_half_up():
    assert round2("2.345") == Decimal("2.35")
    assert round2(Decimal("2.344")) == Decimal("2.34")
    assert round2(10) == Decimal("10.00")


def test_to_base_uses_expense_rate():
    # 40.00 USD at 3.75 PEN per USD
    assert to_base(Decimal("40.00"), Currency.USD, Decimal("3.75")) == Decimal("150.00")
    assert to_base(Decimal("99.999"), "PEN", None) == Decimal("100.00")


def test_to_base_without_rate_is_an_error():
    with pytest.raises(MissingExchangeRate) as exc:
        to_base(Decimal("10"), "EUR", None, ref="e-1")
    assert exc.value.detail["currency"] == "EUR"
    assert exc.value.detail["id"] == "e-1"


def test_from_base_divides_by_rate():
    assert from_base(Decimal("149.00"), "USD", Decimal("3.75")) == Decimal("39.73")
    assert from_base(Decimal("5"), Currency.PEN, None) == Decimal("5.00")


def test_format_amount():
    assert format_amount(Decimal("1234.5")) == "S/ 1,234.50"
    assert format_amount(Decimal("40"), "USD") == "$ 40.00"
    assert format_amount(None) == "S/ 0.00"
