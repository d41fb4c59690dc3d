"""
Module: lending_kernel.db.types
Responsibility: Money coercion and rounding helpers.  Centralizes
    precision and rounding for the two monetary columns in the schema
    (item reference price, loan amount due).
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Failure modes:
    - ValueError on a value that cannot be read as a decimal amount.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a monetary value to the specified decimal places."""
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def money_from_value(value: Decimal | int | str | float | None) -> Decimal:
    """
    Coerce a request value into a rounded money amount.

    None and empty strings read as zero.  Floats go through ``str()`` so
    that binary representation noise never reaches the column.

    Raises:
        ValueError: If value cannot be converted to Decimal.
    """
    if value is None or value == "":
        return round_money(Decimal("0"))
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return round_money(amount)
