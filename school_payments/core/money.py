"""
Amount conversion between wire values and stored minor units.

Amounts arrive as strings ("1000") or JSON numbers and are stored as
integer paise. They leave as JSON numbers again: whole amounts as ints,
fractional ones as floats.
"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Union

CENT = Decimal("0.01")

# Largest amount in paise that fits the BIGINT money columns.
MAX_MINOR_UNITS = 2**63 - 1


def parse_amount(value: Any) -> Decimal:
    """
    Parse a wire amount into a Decimal rounded to two places.

    Raises:
        ValueError: If the value is empty, boolean, not numeric or out of range
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"Invalid amount value: {value!r}")
    raw = value.strip() if isinstance(value, str) else str(value)
    if not raw:
        raise ValueError("Amount must not be empty")
    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise ValueError(f"Invalid amount value: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount value: {value!r}")
    if abs(amount) * 100 > MAX_MINOR_UNITS:
        raise ValueError(f"Amount out of range: {value!r}")
    try:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Amount out of range: {value!r}")


def to_minor_units(value: Any) -> int:
    """Convert a wire amount to integer minor units (paise)."""
    return int(parse_amount(value) * 100)


def from_minor_units(cents: int) -> Union[int, float]:
    """Convert minor units back to a JSON-friendly number."""
    amount = Decimal(cents) / 100
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)
