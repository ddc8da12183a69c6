"""
Scripts - Run Aggregation.

============================================================
RESPONSIBILITY
============================================================
One-shot analytics rollup for an external cron collaborator.

- hourly: roll up the previous UTC hour
- daily: roll up the previous UTC day
- range: roll up every bucket in [--start, --end)

Exit code is 1 when any scope reported an error.

============================================================
USAGE
============================================================
python -m scripts.run_aggregation hourly
python -m scripts.run_aggregation daily
python -m scripts.run_aggregation range --granularity hourly \
    --start 2024-01-01T00:00 --end 2024-01-02T00:00 [--scope chan1]

============================================================
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime

from dotenv import load_dotenv

from analytics.aggregator import AnalyticsAggregator
from analytics.types import AggregationRunResult, Granularity
from storage.database import Database, DatabaseConfig


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

logger = logging.getLogger("run_aggregation")


async def run(args: argparse.Namespace) -> AggregationRunResult:
    database = Database.from_config(DatabaseConfig.from_env())
    logger.info(f"Running {args.mode} aggregation")
    try:
        aggregator = AnalyticsAggregator(database.session_factory)
        if args.mode == "hourly":
            return await aggregator.aggregate_previous_hour()
        if args.mode == "daily":
            return await aggregator.aggregate_previous_day()
        return await aggregator.aggregate(
            start=args.start,
            end=args.end,
            granularity=Granularity(args.granularity),
            scope_id=args.scope,
        )
    finally:
        await database.dispose()


def main() -> None:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Run analytics rollups")
    parser.add_argument("mode", choices=["hourly", "daily", "range"])
    parser.add_argument("--granularity", choices=[g.value for g in Granularity], default="hourly")
    parser.add_argument("--start", type=datetime.fromisoformat, help="Range start (UTC)")
    parser.add_argument("--end", type=datetime.fromisoformat, help="Range end (UTC, exclusive)")
    parser.add_argument("--scope", default=None, help="Restrict to one scope")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"))
    args = parser.parse_args()

    if args.mode == "range" and (args.start is None or args.end is None):
        parser.error("range mode requires --start and --end")

    setup_logging(args.log_level)
    result = asyncio.run(run(args))
    print(json.dumps(result.to_dict(), indent=2))
    sys.exit(1 if result.errors else 0)


if __name__ == "__main__":
    main()
