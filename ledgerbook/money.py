"""
Money Handling Module

Fixed-point helpers for monetary values. Amounts are Decimal quantized to two
places with half-up rounding and cross storage and HTTP boundaries as strings.
NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Any, Optional

from .errors import ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28

TWO_PLACES = Decimal('0.01')
ZERO = Decimal('0.00')


def quantize(value: Decimal) -> Decimal:
    """Round to two decimal places (half-up)"""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """
    Convert a raw value into a Decimal, rejecting anything that is not a
    finite number. Floats are routed through str() so 0.1 stays 0.1.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip().replace(',', '')
        if not text:
            raise ValidationError(f"{field} must be a number")
        try:
            result = Decimal(text)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def parse_money(value: Any, field: str = "amount") -> Decimal:
    """Parse a signed monetary value with at most two decimal places"""
    result = to_decimal(value, field)
    if result != result.quantize(TWO_PLACES, rounding=ROUND_HALF_UP):
        raise ValidationError(f"{field} must have at most two decimal places")
    return quantize(result)


def parse_amount(value: Any, field: str = "amount") -> Decimal:
    """Parse a strictly positive monetary amount"""
    result = parse_money(value, field)
    if result <= ZERO:
        raise ValidationError(f"{field} must be a positive number")
    return result


def parse_optional_money(value: Any, field: str) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return parse_money(value, field)


def format_amount(value: Decimal) -> str:
    """Render an amount as a fixed two-place string"""
    return str(quantize(value))
