"""
Formatting helpers for amounts shown to shoppers and operators.
"""
from decimal import Decimal, InvalidOperation
from typing import Union

CURRENCY_SYMBOLS = {
    'ZAR': 'R',
    'USD': '$',
    'EUR': '€',
}


def money(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Format an amount with exactly 2 decimals and comma thousands.

    Examples:
        money(1500) -> "1,500.00"
        money(Decimal('-12.5')) -> "-12.50"
        money(None) -> "-"
    """
    if value is None or value == "":
        return "-"

    try:
        num = Decimal(str(value)).quantize(Decimal('0.01'))
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    sign = "-" if num < 0 else ""
    num = abs(num)

    integer_part, decimal_part = f"{num:.2f}".split(".")
    reversed_int = integer_part[::-1]
    groups = [reversed_int[i:i+3] for i in range(0, len(reversed_int), 3)]
    integer_formatted = ','.join(groups)[::-1]

    return f"{sign}{integer_formatted}.{decimal_part}"


def format_currency(amount: Union[int, float, Decimal, str, None], currency: str = 'ZAR') -> str:
    """
    Prefix the formatted amount with the currency symbol (or code).

    Examples:
        format_currency(Decimal('16')) -> "R16.00"
        format_currency(5, 'GBP') -> "GBP5.00"
    """
    formatted = money(amount)
    if formatted == "-":
        return formatted
    symbol = CURRENCY_SYMBOLS.get(currency, currency)
    if formatted.startswith("-"):
        return f"-{symbol}{formatted[1:]}"
    return f"{symbol}{formatted}"
