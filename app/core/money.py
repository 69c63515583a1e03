"""
Money helpers.

All salary, loan and debt arithmetic goes through these functions so that
every amount is a Decimal quantized to two places with ROUND_HALF_UP.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from app.core.exceptions import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def round_money(value: Decimal) -> Decimal:
    """Round a monetary value to 2 decimal places, half-up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value: Any, field: Optional[str] = None) -> Decimal:
    """
    Coerce user input into a rounded Decimal.

    Floats go through str() first so 0.1 becomes Decimal("0.10"), not its
    binary expansion.

    Raises:
        ValidationError: If the value is missing, not numeric, or not finite.
    """
    if value is None or value == "":
        raise ValidationError(f"{field or 'amount'} is required", field=field)
    if isinstance(value, bool):
        raise ValidationError(f"{field or 'amount'} must be numeric", field=field)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field or 'amount'} must be numeric, got {value!r}", field=field)
    if not amount.is_finite():
        raise ValidationError(f"{field or 'amount'} must be a finite number", field=field)
    return round_money(amount)


def percentage_of(amount: Decimal, rate: Decimal) -> Decimal:
    """amount * rate / 100, rounded."""
    return round_money(amount * rate / HUNDRED)
