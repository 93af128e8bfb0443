"""
Exact amounts for money, pools and points.

Every value is a ``Fraction`` so that splitting a pool three ways and adding
the shares back together returns the original pool. Rounding is a display
concern only (see ``to_display``).
"""
from decimal import Decimal, ROUND_HALF_UP
from fractions import Fraction

from sqlalchemy import String
from sqlalchemy.types import TypeDecorator

ZERO = Fraction(0)
CENT = Decimal("0.01")


def to_amount(value) -> Fraction:
    if value is None:
        return ZERO
    if isinstance(value, Fraction):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not an amount")
    if isinstance(value, (int, Decimal)):
        return Fraction(value)
    if isinstance(value, float):
        # go through repr so 0.1 means one tenth, not its binary neighbour
        return Fraction(Decimal(repr(value)))
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("empty amount")
        return Fraction(text)
    raise TypeError(f"unsupported amount type: {type(value).__name__}")


def to_display(value, places: Decimal = CENT) -> Decimal:
    amount = to_amount(value)
    exact = Decimal(amount.numerator) / Decimal(amount.denominator)
    return exact.quantize(places, rounding=ROUND_HALF_UP)


def serialize(value: Fraction) -> str:
    if value.denominator == 1:
        return str(value.numerator)
    return f"{value.numerator}/{value.denominator}"


class ExactAmount(TypeDecorator):
    """Stores a Fraction as canonical ``n`` / ``n/d`` text."""

    impl = String(64)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return serialize(to_amount(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Fraction(value)
