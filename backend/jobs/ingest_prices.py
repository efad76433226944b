#!/usr/bin/env python3
"""
Price Ingestion Job - driver observations and target session bars.

Usage:
    python jobs/ingest_prices.py --drivers                   # Spot driver prices once
    python jobs/ingest_prices.py --drivers --backfill 90     # Hourly driver history
    python jobs/ingest_prices.py --targets --days 30         # Target sessions for the last 30 days
    python jobs/ingest_prices.py --drivers --loop            # Run continuously (hourly)
"""

import sys
import time
import argparse
from pathlib import Path
from datetime import timedelta

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from crossmarket.log_config import logger
from crossmarket.db.session import init_db
from crossmarket.tasks import run_driver_ingestion, run_target_ingestion
from crossmarket.utils.datetime import utc_now


def run_ingestion(args) -> bool:
    """Run the requested ingestion steps; True when nothing failed outright."""
    ok = True
    if args.drivers:
        stats = run_driver_ingestion(symbols=args.symbols, history_days=args.backfill)
        ok = ok and not stats.get("symbols_failed")
    if args.targets:
        end = utc_now().date()
        stats = run_target_ingestion(symbols=args.symbols, start=end - timedelta(days=args.days), end=end)
        ok = ok and not stats.get("symbols_failed")
    return ok


def main():
    """Main entry point for price ingestion."""
    parser = argparse.ArgumentParser(description="Price Ingestion Job - driver and target prices")
    parser.add_argument("--drivers", action="store_true", help="Ingest driver (crypto) prices")
    parser.add_argument("--targets", action="store_true", help="Ingest target (equity) session bars")
    parser.add_argument("--symbols", nargs="+", help="Restrict to these symbols")
    parser.add_argument("--backfill", type=int, default=None, help="Driver history days to backfill (max 90)")
    parser.add_argument("--days", type=int, default=10, help="Target sessions to refresh, in days (default: 10)")
    parser.add_argument("--loop", action="store_true", help="Run continuously")
    parser.add_argument("--interval", type=int, default=3600, help="Loop interval in seconds (default: 3600)")

    args = parser.parse_args()
    if not args.drivers and not args.targets:
        args.drivers = args.targets = True

    init_db()

    if args.loop:
        logger.info(f"Starting continuous price ingestion (interval: {args.interval}s)...")
        while True:
            try:
                run_ingestion(args)
            except Exception as e:
                logger.exception(f"Unhandled error in ingestion loop: {e}")
            logger.info(f"Sleeping for {args.interval}s until next run...")
            time.sleep(args.interval)
    else:
        sys.exit(0 if run_ingestion(args) else 1)


if __name__ == "__main__":
    main()
