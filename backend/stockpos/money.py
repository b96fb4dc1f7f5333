"""
Monetary helpers.

All amounts are Decimal values with two places. Rounding happens once, at the
point an amount is computed (half-up), never at display time.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round_money(value) -> Decimal:
    """Quantize to cents, half-up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value, field: str, *, allow_zero: bool = True) -> Decimal:
    """
    Coerce client input to a non-negative money amount.

    Floats go through str() so 0.1 stays 0.1 and not its binary expansion.
    Booleans are rejected even though they are ints.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", details={"field": field})
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={"field": field, "value": str(value)})
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number", details={"field": field, "value": str(value)})
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(
            f"{field} must be {'non-negative' if allow_zero else 'positive'}",
            details={"field": field, "value": str(value)},
        )
    return round_money(amount)


def to_json_amount(value: Decimal | None) -> str | None:
    """Serialize as a fixed two-place string so clients never see float noise."""
    if value is None:
        return None
    return str(round_money(value))
