"""
Money helpers: Decimal rounding and Kenyan Shilling formatting.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

Number = Union[int, float, Decimal, str]

CENTS = Decimal("0.01")

CURRENCY_SYMBOLS = {
    "KES": "KSh",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
}


def to_decimal(value: Number) -> Decimal:
    """Convert floats via str() so 0.1 stays 0.1"""
    if isinstance(value, Decimal):
        return value
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def quantize_money(value: Number) -> Decimal:
    """Round to cents, half-up"""
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def _whole_units(amount: Number) -> Decimal:
    return to_decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def format_currency_value(amount: Number) -> str:
    """Format a number with thousands separators and no decimals: 1250.4 -> '1,250'"""
    return f"{_whole_units(amount):,}"


def format_with_currency(amount: Number, currency: str = "KES") -> str:
    """Format an amount with the symbol for a currency code"""
    whole = _whole_units(amount)
    symbol = get_currency_symbol(currency)
    sign = "-" if whole < 0 else ""
    return f"{sign}{symbol} {abs(whole):,}"


def format_currency(amount: Number) -> str:
    """Format an amount as Kenyan Shillings: 1250 -> 'KSh 1,250'"""
    return format_with_currency(amount, "KES")


def get_currency_symbol(currency_code: str = "KES") -> str:
    """Symbol for a currency code; unknown codes are returned as-is"""
    return CURRENCY_SYMBOLS.get(currency_code.upper(), currency_code.upper())
