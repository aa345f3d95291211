"""
Money helpers.

Single-currency amounts are plain ``Decimal`` values.  Every amount that
reaches a journal line or a stored document total goes through
``round_money`` (two decimals, ROUND_HALF_UP).  Floats are rejected: a
float that reaches this module is a bug upstream.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Convert an int, str or Decimal to Decimal.

    Raises:
        TypeError: for floats and other types.
        ValueError: for strings that are not numbers.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Monetary values must not be {type(value).__name__}: {value!r}")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        try:
            return Decimal(value)
        except InvalidOperation as exc:
            raise ValueError(f"Not a decimal amount: {value!r}") from exc
    raise TypeError(f"Unsupported monetary type {type(value).__name__}")


def round_money(value: Decimal | int | str) -> Decimal:
    """Quantize to cents, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def is_rounded(value: Decimal) -> bool:
    """True if ``value`` has no precision below a cent."""
    return value == value.quantize(CENT, rounding=ROUND_HALF_UP)


def exceeds_tolerance(difference: Decimal, tolerance: Decimal) -> bool:
    return abs(difference) > tolerance
