#!/usr/bin/env python3
"""Re-check journaled trades whose confirmation was never observed.

Reads receipts only; nothing is resubmitted.

Usage:
    python scripts/run_reconcile.py              # single pass
    python scripts/run_reconcile.py --loop       # continuous
    python scripts/run_reconcile.py --loop --interval 120
"""

import argparse
import asyncio

import structlog

from shareswap.utils.logging import configure_logging

configure_logging()

from config.settings import settings
from shareswap.pipeline import Pipeline

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reconcile pending trade submissions")
    parser.add_argument("--loop", action="store_true", help="Run continuously")
    parser.add_argument(
        "--interval", type=float, default=settings.RECONCILE_INTERVAL_SECONDS,
        help=f"Seconds between passes in loop mode (default: {settings.RECONCILE_INTERVAL_SECONDS:.0f})",
    )
    parser.add_argument(
        "--no-login", action="store_true",
        help="Do not log in to the signing service (skip ledger notifications)",
    )
    return parser


async def main() -> None:
    args = build_parser().parse_args()
    pipeline = Pipeline.from_settings()
    if not args.no_login and pipeline.credentials() is None:
        await pipeline.login()

    try:
        if not args.loop:
            await pipeline.reconciler.run_pass()
            return

        logger.info("reconcile_loop_start", interval=args.interval)
        while True:
            await pipeline.reconciler.run_pass()
            await asyncio.sleep(args.interval)
    finally:
        await pipeline.close()


if __name__ == "__main__":
    asyncio.run(main())
