"""
Decimal Money Arithmetic

Every money-bearing calculation in SpendSync goes through this module.

DESIGN DECISION: Amounts are `Decimal`, never `float`.
- All results are quantized to exactly 2 fractional digits
- Rounding is ROUND_HALF_UP (0.005 -> 0.01), not banker's rounding
- Intermediate results use a private context with 28 significant digits

    add("100.10", "200.20")  -> Decimal("300.30")
    100.10 + 200.20          -> 300.30000000000007   # never do this

Float input is accepted for convenience but converted through `str()`
so the binary representation error never enters a Decimal.

User-facing parsing is deliberately forgiving: unparseable input
becomes zero instead of raising.
"""

import re
from decimal import (
    ROUND_HALF_UP,
    Context,
    Decimal,
    InvalidOperation,
    localcontext,
)
from typing import Iterable, Union

Amount = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal(100)

_CONTEXT = Context(prec=28, rounding=ROUND_HALF_UP)

# Currency prefixes stripped by parse_amount
_CURRENCY_PREFIX = re.compile(r"^(rp\.?|idr|\$|€|£)", re.IGNORECASE)


class DivisionByZero(ZeroDivisionError):
    """Money division with a zero divisor."""
    pass


def to_decimal(value: Amount) -> Decimal:
    """
    Convert input to an exact Decimal without rounding.

    Raises:
        InvalidOperation: If the value is not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise InvalidOperation(f"Not a monetary amount: {value!r}")
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        result = Decimal(value.strip())
    else:
        raise InvalidOperation(f"Not a monetary amount: {value!r}")

    if not result.is_finite():
        raise InvalidOperation(f"Not a finite amount: {value!r}")
    return result


def _quantize(value: Decimal, decimals: int = 2) -> Decimal:
    exponent = Decimal(1).scaleb(-decimals)
    with localcontext(_CONTEXT):
        return value.quantize(exponent, rounding=ROUND_HALF_UP)


# =============================================================================
# ARITHMETIC
# =============================================================================

def add(*amounts: Amount) -> Decimal:
    """Sum any number of amounts."""
    with localcontext(_CONTEXT):
        result = Decimal(0)
        for amount in amounts:
            result += to_decimal(amount)
    return _quantize(result)


def subtract(a: Amount, b: Amount) -> Decimal:
    with localcontext(_CONTEXT):
        result = to_decimal(a) - to_decimal(b)
    return _quantize(result)


def multiply(a: Amount, b: Amount) -> Decimal:
    with localcontext(_CONTEXT):
        result = to_decimal(a) * to_decimal(b)
    return _quantize(result)


def divide(a: Amount, b: Amount) -> Decimal:
    """
    Divide a by b.

    Raises:
        DivisionByZero: If b is zero. Never returns 0 or Infinity.
    """
    divisor = to_decimal(b)
    if divisor.is_zero():
        raise DivisionByZero(f"Cannot divide {a} by zero")
    with localcontext(_CONTEXT):
        result = to_decimal(a) / divisor
    return _quantize(result)


def sum_amounts(amounts: Iterable[Amount]) -> Decimal:
    return add(*amounts)


def average(amounts: Iterable[Amount]) -> Decimal:
    """Average of the amounts; zero for an empty input."""
    values = list(amounts)
    if not values:
        return ZERO
    return divide(sum_amounts(values), len(values))


def percentage(value: Amount, total: Amount, decimals: int = 2) -> Decimal:
    """
    Share of value in total, in percent, rounded to `decimals` digits.

    A zero total yields 0 rather than an error: an empty period
    is the common case for display ratios.
    """
    if to_decimal(total).is_zero():
        return ZERO
    with localcontext(_CONTEXT):
        result = to_decimal(value) / to_decimal(total) * HUNDRED
    return _quantize(result, decimals)


def round_amount(value: Amount, decimals: int = 2) -> Decimal:
    """Round half up to the given number of fractional digits."""
    return _quantize(to_decimal(value), decimals)


def abs_amount(value: Amount) -> Decimal:
    return _quantize(abs(to_decimal(value)))


# =============================================================================
# COMPARISON
# =============================================================================

def compare(a: Amount, b: Amount) -> int:
    """Return -1 if a < b, 0 if equal, 1 if a > b."""
    left, right = to_decimal(a), to_decimal(b)
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def is_zero(value: Amount) -> bool:
    return to_decimal(value).is_zero()


def is_positive(value: Amount) -> bool:
    return to_decimal(value) > 0


def is_negative(value: Amount) -> bool:
    return to_decimal(value) < 0


def is_valid_amount(value: Amount) -> bool:
    """True for finite, non-negative amounts."""
    try:
        return to_decimal(value) >= 0
    except (InvalidOperation, ValueError, TypeError):
        return False


# =============================================================================
# FORMATTING & PARSING
# =============================================================================

def format_currency(
    amount: Amount,
    show_symbol: bool = True,
    show_decimals: bool = False,
    symbol: str = "Rp",
    thousands_separator: str = ".",
    decimal_separator: str = ",",
) -> str:
    """
    Format an amount with grouped thousands.

    Defaults follow the id-ID convention:
        format_currency(1500000) -> "Rp 1.500.000"
        format_currency("1234.5", show_decimals=True) -> "Rp 1.234,50"
    """
    value = round_amount(amount, 2 if show_decimals else 0)
    sign = "-" if value < 0 else ""
    text = f"{abs(value):,.{2 if show_decimals else 0}f}"

    # Swap the separators through a placeholder so "." and "," can trade places
    text = (
        text.replace(",", "\0")
        .replace(".", decimal_separator)
        .replace("\0", thousands_separator)
    )
    formatted = f"{sign}{text}"
    return f"{symbol} {formatted}" if show_symbol else formatted


def parse_amount(
    value: Union[str, int, float, Decimal, None],
    thousands_separator: str = ".",
    decimal_separator: str = ",",
) -> Decimal:
    """
    Parse user input into an amount.

    Strips currency prefixes, whitespace and grouping separators and
    accepts a decimal comma. Unparseable input returns 0.

        parse_amount("Rp 1.500.000,50") -> Decimal("1500000.50")
        parse_amount("kopi")            -> Decimal("0.00")
    """
    if value is None:
        return ZERO
    if not isinstance(value, str):
        try:
            return round_amount(value)
        except (InvalidOperation, ValueError, TypeError):
            return ZERO

    cleaned = re.sub(r"\s+", "", value)
    negative = cleaned.startswith("-")
    cleaned = _CURRENCY_PREFIX.sub("", cleaned.lstrip("-"))
    cleaned = cleaned.replace(thousands_separator, "")
    cleaned = cleaned.replace(decimal_separator, ".")
    if negative:
        cleaned = f"-{cleaned}"

    try:
        return round_amount(cleaned)
    except (InvalidOperation, ValueError):
        return ZERO
