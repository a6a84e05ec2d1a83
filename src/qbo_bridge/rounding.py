"""Numeric helpers shared by the tax, allocation and overpayment code.

Amounts stay floats (that is what the QBO JSON carries) and are rounded to two
decimals at every computed step. Rounding works on the exact binary value of
the float, half away from zero, the same as fixed-point formatting does:
``round2(1.005) == 1.0`` because 1.005 is stored as 1.00499999...,
while ``round2(10.125) == 10.13``.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

_CENT = Decimal("0.01")


def round2(value: float) -> float:
    return float(Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP))


def as_float(value: Any, default: float = 0.0) -> float:
    """Coerce a JSON amount to float; None, "" and junk become ``default``."""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def first_not_none(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None
