"""
Module: voucher_kernel.db.types
Responsibility: Money helpers shared by models, DTOs and services.
    Centralizes coercion and rounding so that balance checks and persisted
    amounts agree.

Invariants enforced:
    - No floats anywhere in the kernel.  All monetary amounts use Decimal.
    - round_money() is the ONLY sanctioned rounding function.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0")


def to_money(value: Any) -> Decimal:
    """
    Coerce a wire value (int, str, Decimal) into a Decimal amount.

    None is treated as zero, matching rows that only fill one side.
    Floats are converted through their string form to avoid binary noise.

    Raises:
        ValueError: If the value is not numeric.
    """
    if value is None or value == "":
        return ZERO
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return result


def round_money(
    value: Decimal,
    decimal_places: int = 2,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to specified decimal places.

    Preconditions: value is a Decimal.
    Postconditions: Returns value quantized to the specified decimal places.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)
