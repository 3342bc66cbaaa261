"""Fixed-point currency helpers.

Money is always a Decimal with two places. Floats never enter ledger
arithmetic; values arriving as float are converted through their string form.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Decimal | int | float | str) -> Decimal:
    """
    Convert a value to a two-place Decimal, rounding half up.

    Raises ValueError for values that are not numbers (including NaN/inf).
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
        if not amount.is_finite():
            raise ValueError(f"Not a finite amount: {value!r}")
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Not a valid amount: {value!r}")


def has_at_most_cents(value: Decimal) -> bool:
    """True when the value carries no precision beyond whole cents."""
    if not value.is_finite():
        return False
    return value == value.quantize(CENT)
