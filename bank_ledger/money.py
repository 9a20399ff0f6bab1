"""
Money Handling Module

Decimal parsing and formatting for ledger amounts. NEVER uses float for
monetary values: floats coming from JSON are converted through their string
form so 0.1 stays 0.1.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Any, Optional
import re

from .errors import ValidationError

# High precision context for balance arithmetic
getcontext().prec = 28

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
MAX_FRACTION_DIGITS = 2

# Largest amount or balance a NUMERIC(14, 2) column holds; every backend enforces it
MAX_AMOUNT = Decimal("999999999999.99")

CURRENCY_SYMBOLS = re.compile(r"[\s$€£¥]")
PLAIN_NUMBER = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)")


def decimal_from_string(value: str) -> Decimal:
    """
    Convert a user-supplied string to Decimal

    Strips currency symbols and whitespace. A comma is accepted as the
    decimal separator ("12,50") and as a thousands separator when a dot is
    also present ("1,234.50"). Exponents ("1e5"), hex and any other letters
    are rejected rather than dropped.

    Raises:
        ValueError: If the string is not a plain decimal number
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    clean_value = CURRENCY_SYMBOLS.sub("", value)

    if "," in clean_value and "." in clean_value:
        clean_value = clean_value.replace(",", "")
    elif clean_value.count(",") == 1:
        whole, fraction = clean_value.split(",")
        if len(fraction) <= MAX_FRACTION_DIGITS:
            clean_value = f"{whole}.{fraction}"
        else:
            clean_value = whole + fraction

    if not PLAIN_NUMBER.fullmatch(clean_value):
        raise ValueError(f"Cannot convert '{value}' to Decimal")

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")


def to_decimal(value: Any) -> Decimal:
    """Coerce a stored or submitted value to Decimal without float drift"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("Booleans are not amounts")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(repr(value))
    if isinstance(value, str):
        return decimal_from_string(value)
    raise ValueError(f"Unsupported amount type: {type(value).__name__}")


def parse_amount(value: Any, field: str = "amount", allow_zero: bool = False) -> Decimal:
    """
    Validate a money amount and normalise it to two decimal places

    Args:
        value: Submitted value (str, int, float or Decimal)
        field: Field name reported in the ValidationError
        allow_zero: Accept 0 (opening balances); negatives are always rejected

    Returns:
        Decimal quantized to cents

    Raises:
        ValidationError: Missing, non-numeric, non-finite, negative/zero,
            above MAX_AMOUNT, or more than two fractional digits
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", field=field)

    try:
        amount = to_decimal(value)
    except ValueError:
        raise ValidationError(f"{field} must be a number", field=field)

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)

    if allow_zero:
        if amount < 0:
            raise ValidationError(f"{field} cannot be negative", field=field)
    elif amount <= 0:
        raise ValidationError(f"{field} must be greater than 0", field=field)

    # Checked before quantizing: larger values overflow the decimal context
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT}", field=field)

    if amount.as_tuple().exponent < -MAX_FRACTION_DIGITS and amount != amount.quantize(CENT):
        raise ValidationError(
            f"{field} cannot have more than {MAX_FRACTION_DIGITS} decimal places", field=field
        )

    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def check_balance(balance: Decimal, field: str = "amount") -> Decimal:
    """
    Reject a computed balance the store cannot hold

    Raises:
        ValidationError: Balance above MAX_AMOUNT
    """
    if balance > MAX_AMOUNT:
        raise ValidationError(
            f"Resulting balance would exceed the maximum of {MAX_AMOUNT}", field=field
        )
    return balance


def quantize(value: Any) -> Decimal:
    """Normalise a trusted stored balance to cents"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(value: Optional[Decimal]) -> Optional[str]:
    """Render an amount for JSON output ("1150.00")"""
    if value is None:
        return None
    return str(quantize(value))
