from shareswap.pricing.guard import (
    PriceGuard,
    expected_output,
    max_currency_to_spend,
    min_currency_to_receive,
    price_impact_bps,
    unit_price,
)
from shareswap.pricing.reserves import ReserveReader

__all__ = [
    "PriceGuard",
    "ReserveReader",
    "expected_output",
    "max_currency_to_spend",
    "min_currency_to_receive",
    "price_impact_bps",
    "unit_price",
]
