#!/usr/bin/env python3
"""Run one trade end-to-end and stream its status.

Warnings (high price impact, degraded nonce source) ask for y/N. Ctrl-C
cancels before submission, or stops waiting for confirmation after it.

Usage:
    python scripts/trade.py --asset 7 --buy 10
    python scripts/trade.py --asset 7 --sell 2.5 --slippage-bps 100 --no-login
"""

import argparse
import asyncio
import signal
from decimal import Decimal
from typing import Callable

import structlog

from shareswap.utils.logging import configure_logging

configure_logging()

from config.settings import settings
from shareswap.execution.executor import TradeExecutor
from shareswap.execution.models import Direction, ExecutionStatus, TradeIntent, TradeWarning
from shareswap.pipeline import Pipeline

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Execute one signed trade")
    parser.add_argument("--asset", type=int, required=True, help="Asset (player token) id")
    side = parser.add_mutually_exclusive_group(required=True)
    side.add_argument("--buy", type=Decimal, help="Currency amount to spend")
    side.add_argument("--sell", type=Decimal, help="Asset amount to sell")
    parser.add_argument(
        "--slippage-bps", type=int, default=settings.DEFAULT_SLIPPAGE_BPS,
        help=f"Slippage tolerance in bps (default: {settings.DEFAULT_SLIPPAGE_BPS})",
    )
    parser.add_argument(
        "--deadline", type=int, default=settings.TRADE_DEADLINE_SECONDS,
        help="Authorization lifetime in seconds",
    )
    parser.add_argument(
        "--no-login", action="store_true",
        help="Skip signing-service login (always sign locally)",
    )
    parser.add_argument("--yes", action="store_true", help="Acknowledge warnings without asking")
    return parser


async def ask(warning: TradeWarning) -> bool:
    answer = await asyncio.to_thread(input, f"WARNING: {warning.message}. Continue? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def cancel_handler(executor: TradeExecutor, execution_id: str) -> Callable[[], None]:
    """Signal handler that cancels the running execution instead of the event loop."""

    def _handler() -> None:
        if not executor.cancel(execution_id):
            print("cannot cancel while the trade is being submitted", flush=True)

    return _handler


def render(status: ExecutionStatus) -> str:
    line = f"[{status.phase.value}] {status.message}"
    if status.tx_hash:
        line += f" tx={status.tx_hash}"
    if status.reason:
        line += f" ({status.reason})"
    return line


async def main() -> int:
    args = build_parser().parse_args()
    direction = Direction.BUY if args.buy is not None else Direction.SELL
    amount = args.buy if args.buy is not None else args.sell

    pipeline = Pipeline.from_settings()
    if not args.no_login and pipeline.credentials() is None:
        await pipeline.login()

    intent = TradeIntent.create(
        args.asset, direction, amount, args.slippage_bps, deadline_seconds=args.deadline,
    )
    confirm = (lambda _w: True) if args.yes else ask
    stream = pipeline.executor.execute(intent, confirm=confirm)

    loop = asyncio.get_running_loop()
    handler = cancel_handler(pipeline.executor, stream.execution_id)
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handler)

    last = None
    try:
        # A cancelled execution still ends with a terminal status.
        async for status in stream:
            print(render(status), flush=True)
            last = status
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await pipeline.close()

    return 0 if last is not None and last.error is None else 1


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
