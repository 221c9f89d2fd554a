#!/usr/bin/env python3
"""Print a quote for one trade without signing anything.

Usage:
    python scripts/quote.py --asset 7 --buy 10
    python scripts/quote.py --asset 7 --sell 2.5 --slippage-bps 100
"""

import argparse
import asyncio
from decimal import Decimal

import structlog

from shareswap.utils.logging import configure_logging

configure_logging()

from config.settings import settings
from shareswap.exceptions import ShareSwapError
from shareswap.execution.models import Direction, TradeIntent
from shareswap.pipeline import Pipeline
from shareswap.utils.units import format_units, from_base_units

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Quote a trade against the pool")
    parser.add_argument("--asset", type=int, required=True, help="Asset (player token) id")
    side = parser.add_mutually_exclusive_group(required=True)
    side.add_argument("--buy", type=Decimal, help="Currency amount to spend")
    side.add_argument("--sell", type=Decimal, help="Asset amount to sell")
    parser.add_argument(
        "--slippage-bps", type=int, default=settings.DEFAULT_SLIPPAGE_BPS,
        help=f"Slippage tolerance in bps (default: {settings.DEFAULT_SLIPPAGE_BPS})",
    )
    return parser


async def main() -> int:
    args = build_parser().parse_args()
    direction = Direction.BUY if args.buy is not None else Direction.SELL
    amount = args.buy if args.buy is not None else args.sell

    pipeline = Pipeline.from_settings()
    try:
        intent = TradeIntent.create(
            args.asset, direction, amount, args.slippage_bps,
            deadline_seconds=settings.TRADE_DEADLINE_SECONDS,
        )
        quote = await pipeline.executor.quote(intent)
    except ShareSwapError as exc:
        logger.error("quote_rejected", kind=exc.kind.value, error=str(exc))
        return 1
    finally:
        await pipeline.close()

    cur, asset = settings.CURRENCY_DECIMALS, settings.ASSET_DECIMALS
    display_price = from_base_units(quote.currency_reserve, cur) / from_base_units(
        quote.asset_reserve, asset
    )
    print(f"price        {display_price:.6f} per share")
    if direction is Direction.BUY:
        print(f"you receive  ~{format_units(int(quote.expected_output), asset)} shares")
        print(f"max spend    {format_units(int(quote.bound), cur)}")
    else:
        print(f"you receive  ~{format_units(int(quote.expected_output), cur)}")
        print(f"min receive  {format_units(int(quote.bound), cur)}")
    print(f"impact       {quote.price_impact_bps:.1f} bps" + ("  (HIGH)" if quote.high_impact else ""))
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
