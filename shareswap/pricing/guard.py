"""Price, slippage and price-impact guard.

The pure helpers take base-unit ``Decimal`` amounts and never round. Rounding
to integers happens once, in ``PriceGuard.on_chain_terms``, toward the user:
the maximum spend rounds down and the minimum receive rounds up.
"""

from __future__ import annotations

import time
from decimal import Decimal
from typing import Callable, Optional

import structlog

from shareswap.exceptions import (
    InvalidAmountError,
    InvalidDeadlineError,
    InvalidSlippageError,
    NoLiquidityError,
)
from shareswap.execution.models import (
    Direction,
    OnChainTerms,
    PoolQuote,
    Reserves,
    TradeIntent,
)
from shareswap.utils.units import ceil_int, floor_int, to_base_units, to_decimal

logger = structlog.get_logger()

BPS = Decimal(10_000)


def unit_price(currency_reserve: int, asset_reserve: int) -> Decimal:
    """Currency base units per asset base unit."""
    if currency_reserve <= 0 or asset_reserve <= 0:
        raise NoLiquidityError("pool reserves must both be positive")
    return Decimal(currency_reserve) / Decimal(asset_reserve)


def expected_output(direction: Direction, input_amount: Decimal, price: Decimal) -> Decimal:
    """Spot-price output: assets for a BUY, currency for a SELL."""
    if direction is Direction.BUY:
        return input_amount / price
    return input_amount * price


def max_currency_to_spend(input_amount: Decimal, slippage_bps: int) -> Decimal:
    return input_amount * (1 + Decimal(slippage_bps) / BPS)


def min_currency_to_receive(
    input_amount: Decimal, price: Decimal, slippage_bps: int
) -> Decimal:
    return input_amount * price * (1 - Decimal(slippage_bps) / BPS)


def price_impact_bps(
    direction: Direction,
    currency_reserve: int,
    asset_reserve: int,
    input_amount: Decimal,
) -> Decimal:
    """Adverse price move implied by the constant-product curve, in bps.

    BUY adds ``input_amount`` currency to the pool; SELL adds ``input_amount``
    assets. The post-trade price is compared with the pre-trade spot price.
    With ``c * a = k`` held constant the price ratio after/before reduces to
    ``((c + x) / c) ** 2`` for a BUY and ``(a / (a + y)) ** 2`` for a SELL.
    """
    unit_price(currency_reserve, asset_reserve)
    if direction is Direction.BUY:
        ratio = (Decimal(currency_reserve) + input_amount) / Decimal(currency_reserve)
        return (ratio * ratio - 1) * BPS
    ratio = Decimal(asset_reserve) / (Decimal(asset_reserve) + input_amount)
    return (1 - ratio * ratio) * BPS


class PriceGuard:
    """Turns reserves plus an intent into the bounds signing must respect."""

    def __init__(
        self,
        *,
        currency_decimals: int = 6,
        asset_decimals: int = 18,
        min_slippage_bps: int = 1,
        max_slippage_bps: int = 5000,
        high_impact_bps: int = 500,
        max_deadline_seconds: int = 1800,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.currency_decimals = currency_decimals
        self.asset_decimals = asset_decimals
        self.min_slippage_bps = min_slippage_bps
        self.max_slippage_bps = max_slippage_bps
        self.high_impact_bps = Decimal(high_impact_bps)
        self.max_deadline_seconds = max_deadline_seconds
        self._clock = clock

    def input_decimals(self, direction: Direction) -> int:
        return self.currency_decimals if direction is Direction.BUY else self.asset_decimals

    def validate(self, intent: TradeIntent, now: Optional[float] = None) -> Decimal:
        """Check amount, slippage and deadline; return the amount in base units."""
        amount = to_decimal(intent.input_amount)
        if amount <= 0:
            raise InvalidAmountError(f"amount must be positive, got {amount}")

        slippage = intent.slippage_bps
        if isinstance(slippage, bool) or not isinstance(slippage, int):
            raise InvalidSlippageError(f"slippage must be whole bps, got {slippage!r}")
        if not self.min_slippage_bps <= slippage <= self.max_slippage_bps:
            raise InvalidSlippageError(
                f"slippage {slippage} bps outside "
                f"[{self.min_slippage_bps}, {self.max_slippage_bps}]"
            )

        ts = self._clock() if now is None else now
        if intent.deadline <= ts:
            raise InvalidDeadlineError("deadline already passed")
        if intent.deadline > ts + self.max_deadline_seconds:
            raise InvalidDeadlineError(
                f"deadline more than {self.max_deadline_seconds}s ahead"
            )

        base_amount = to_base_units(amount, self.input_decimals(intent.direction))
        if base_amount < 1:
            raise InvalidAmountError(f"amount {amount} is below one base unit")
        return base_amount

    def quote(self, intent: TradeIntent, reserves: Reserves) -> PoolQuote:
        base_amount = self.validate(intent)
        price = unit_price(reserves.currency_reserve, reserves.asset_reserve)
        output = expected_output(intent.direction, base_amount, price)
        if intent.direction is Direction.BUY:
            bound = max_currency_to_spend(base_amount, intent.slippage_bps)
        else:
            bound = min_currency_to_receive(base_amount, price, intent.slippage_bps)
        impact = price_impact_bps(
            intent.direction, reserves.currency_reserve, reserves.asset_reserve, base_amount
        )
        high = impact > self.high_impact_bps

        logger.debug(
            "quote_computed",
            asset_id=intent.asset_id,
            direction=intent.direction.value,
            unit_price=str(price),
            expected_output=str(output),
            bound=str(bound),
            impact_bps=f"{impact:.2f}",
        )
        if high:
            logger.warning(
                "high_price_impact",
                asset_id=intent.asset_id,
                impact_bps=f"{impact:.2f}",
                threshold_bps=str(self.high_impact_bps),
            )
        return PoolQuote(
            currency_reserve=reserves.currency_reserve,
            asset_reserve=reserves.asset_reserve,
            unit_price=price,
            input_amount=base_amount,
            expected_output=output,
            bound=bound,
            price_impact_bps=impact,
            high_impact=high,
        )

    def on_chain_terms(self, intent: TradeIntent, quote: PoolQuote) -> OnChainTerms:
        """Integer call arguments for the settlement contract."""
        if intent.direction is Direction.BUY:
            amount = floor_int(quote.expected_output)
            bound = floor_int(quote.bound)
        else:
            amount = floor_int(quote.input_amount)
            bound = ceil_int(quote.bound)
        if amount <= 0:
            raise InvalidAmountError("trade is too small to move a whole base unit")
        return OnChainTerms(
            asset_ids=(intent.asset_id,),
            amounts=(amount,),
            bound=bound,
            deadline=intent.deadline,
        )
