"""Decimal helpers for ledger amounts.

Amounts are summed exactly and rounded (ROUND_HALF_UP, two digits) only when a
value is about to be stored.
"""

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value) -> Decimal:
    """Convert a stored value to Decimal; None becomes zero.

    Floats go through str() so 0.1 stays 0.1 rather than its binary expansion.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize_amount(value: Decimal) -> Decimal:
    """Round to two fractional digits, half up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percent) -> Decimal:
    """``percent`` percent of ``amount``, unrounded."""
    return amount * to_decimal(percent) / HUNDRED


def is_positive(value) -> bool:
    """True for a configured, strictly positive rate."""
    return value is not None and to_decimal(value) > ZERO


__all__ = ["CENT", "ZERO", "to_decimal", "quantize_amount", "percent_of", "is_positive"]
