"""Display/base unit conversion for fixed-decimal on-chain amounts.

All trade arithmetic runs on ``Decimal`` values in base units; these helpers
only sit at the edges (user input in, presentation out).
"""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any

from shareswap.exceptions import InvalidAmountError


def to_decimal(value: Any) -> Decimal:
    """Parse a user-supplied amount without going through binary floats."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise InvalidAmountError(f"invalid amount: {value!r}")
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise InvalidAmountError(f"invalid amount: {value!r}") from exc
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        raise InvalidAmountError(f"invalid amount: {value!r}")
    if not result.is_finite():
        raise InvalidAmountError(f"invalid amount: {value!r}")
    return result


def to_base_units(amount: Decimal, decimals: int) -> Decimal:
    """Scale a display amount to base units (exact, may stay fractional)."""
    return amount.scaleb(decimals)


def from_base_units(amount: Decimal | int, decimals: int) -> Decimal:
    """Scale a base-unit amount to display units."""
    return Decimal(amount).scaleb(-decimals)


def floor_int(amount: Decimal) -> int:
    return int(amount.to_integral_value(rounding=ROUND_FLOOR))


def ceil_int(amount: Decimal) -> int:
    return int(amount.to_integral_value(rounding=ROUND_CEILING))


def format_units(amount: Decimal | int, decimals: int, places: int = 6) -> str:
    """Human-readable display string for a base-unit amount."""
    value = from_base_units(amount, decimals)
    quant = Decimal(1).scaleb(-places)
    return f"{value.quantize(quant, rounding=ROUND_FLOOR).normalize():f}"
