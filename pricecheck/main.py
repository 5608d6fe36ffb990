"""pricecheck CLI entrypoint.

::

    python -m pricecheck.main --check-pending            # loop every interval
    python -m pricecheck.main --check-pending --once     # single pass
    python -m pricecheck.main --check-pending --once --dry-run --limit 20
    python -m pricecheck.main --price AAPL 2025-03-14
    python -m pricecheck.main --init-db
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from pricecheck import __version__
from pricecheck.config import get_settings
from pricecheck.db.database import close_db, init_db
from pricecheck.errors import PriceCheckError
from pricecheck.llm_client import get_judge_client
from pricecheck.marketdata.factory import build_resolver
from pricecheck.marketdata.resolver import PriceResolver
from pricecheck.utils import as_date, setup_logging
from pricecheck.verification.engine import VerificationEngine
from pricecheck.verification.judgment import AIJudge
from pricecheck.workers.prediction_checker import PredictionChecker

logger = logging.getLogger("pricecheck")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pricecheck",
        description="Price resolution and prediction verification",
    )
    group = parser.add_argument_group("commands")
    group.add_argument("--check-pending", action="store_true", help="Verify pending predictions that are due")
    group.add_argument("--price", nargs=2, metavar=("ASSET", "DATE"), help="Resolve one price and print it")
    group.add_argument("--init-db", action="store_true", help="Create missing tables and exit")

    parser.add_argument("--asset-type", default=None, help="Asset class hint for --price")
    parser.add_argument("--once", action="store_true", help="Run a single checker pass then exit")
    parser.add_argument("--dry-run", action="store_true", help="Verify without writing results")
    parser.add_argument("--limit", type=int, default=None, help="Max predictions per pass")
    parser.add_argument("--no-judge", action="store_true", help="Skip LLM judgment even if enabled")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


async def _lookup_price(resolver: PriceResolver, args: argparse.Namespace) -> None:
    asset, day = args.price
    price = await resolver.get_price_with_fallback(asset, as_date(day), args.asset_type)
    print(json.dumps({
        "asset": asset,
        "date": day,
        "price": price,
        "provider": resolver.last_trace.provider_used,
        "chain": resolver.last_trace.chain,
    }))


async def _run(args: argparse.Namespace) -> None:
    settings = get_settings()

    if args.init_db:
        await init_db()
        return

    resolver = build_resolver(settings)
    try:
        if args.price:
            await _lookup_price(resolver, args)
            return

        judge = None
        if settings.judge_enabled and not args.no_judge:
            judge = AIJudge(get_judge_client(settings))
            logger.info("LLM judgment enabled (%s/%s)", settings.judge_provider, settings.judge_model)

        checker = PredictionChecker(
            resolver,
            VerificationEngine(resolver, scan_cap_days=settings.scan_cap_days),
            judge,
            batch_size=settings.checker_batch_size,
            concurrency=settings.checker_concurrency,
            lookback_days=settings.lookback_days,
            interval_seconds=settings.checker_interval_seconds,
            dry_run=args.dry_run,
        )
        if args.once:
            stats = await checker.run_once(args.limit)
            logger.info("Checker pass done: %s", stats)
        else:
            await checker.run()
    finally:
        await resolver.cache.drain()
        logger.info("Provider health: %s", resolver.get_provider_health())
        await close_db()


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    if not (args.check_pending or args.price or args.init_db):
        parser.error("one of --check-pending, --price or --init-db is required")

    settings = get_settings()
    setup_logging(settings.log_level)

    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except PriceCheckError as exc:
        logger.error("%s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
