"""
Decimal money arithmetic package.

Import this module rather than doing native arithmetic on amounts:

    from spendsync import money
    total = money.add(total, record.amount)
"""

from spendsync.money.decimal_math import (
    CENT,
    ZERO,
    Amount,
    DivisionByZero,
    abs_amount,
    add,
    average,
    compare,
    divide,
    format_currency,
    is_negative,
    is_positive,
    is_valid_amount,
    is_zero,
    multiply,
    parse_amount,
    percentage,
    round_amount,
    subtract,
    sum_amounts,
    to_decimal,
)

__all__ = [
    "CENT",
    "ZERO",
    "Amount",
    "DivisionByZero",
    "abs_amount",
    "add",
    "average",
    "compare",
    "divide",
    "format_currency",
    "is_negative",
    "is_positive",
    "is_valid_amount",
    "is_zero",
    "multiply",
    "parse_amount",
    "percentage",
    "round_amount",
    "subtract",
    "sum_amounts",
    "to_decimal",
]
