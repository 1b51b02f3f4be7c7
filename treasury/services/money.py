"""Money / rounding helpers.

Centralized so the state machine, reconciliation and statistics use identical
rounding and conversion semantics. Exchange rates are base units (PEN) per
one unit of the foreign currency.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from treasury.core.errors import MissingExchangeRate
from treasury.models.constants import BASE_CURRENCY, CURRENCY_SYMBOLS

CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _code(currency: Any) -> str:
    return str(getattr(currency, "value", currency)).upper()


def to_base(
    amount: Any, currency: Any, exchange_rate: Optional[Any], ref: Any = None
) -> Decimal:
    """Convert `amount` in `currency` to the base currency.

    A non-base currency without a rate is a hard error, never a silent zero.
    """
    code = _code(currency)
    if code == BASE_CURRENCY:
        return round2(amount)
    if exchange_rate is None or to_decimal(exchange_rate) <= 0:
        raise MissingExchangeRate(ref if ref is not None else "amount", code)
    return round2(to_decimal(amount) * to_decimal(exchange_rate))


def from_base(
    amount: Any, currency: Any, exchange_rate: Optional[Any], ref: Any = None
) -> Decimal:
    code = _code(currency)
    if code == BASE_CURRENCY:
        return round2(amount)
    if exchange_rate is None or to_decimal(exchange_rate) <= 0:
        raise MissingExchangeRate(ref if ref is not None else "amount", code)
    return round2(to_decimal(amount) / to_decimal(exchange_rate))


def format_amount(amount: Optional[Any], currency: Any = BASE_CURRENCY) -> str:
    """Display format, e.g. `S/ 1,234.56`. Missing amounts render as zero."""
    symbol = CURRENCY_SYMBOLS.get(_code(currency), CURRENCY_SYMBOLS[BASE_CURRENCY])
    value = round2(amount) if amount is not None else Decimal("0.00")
    return f"{symbol} {value:,.2f}"
