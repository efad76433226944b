#!/usr/bin/env python3
"""
Detection Job - evaluate driver/target correlations and publish predictions.

Aligns stored driver prices to target sessions, re-evaluates every configured
(driver, target) pair, updates the pattern catalog, and swaps in a new
prediction generation with its combined alerts.

Usage:
    python jobs/run_detection.py                          # Run once
    python jobs/run_detection.py --as-of 2025-03-03T13:00 # Run as of a UTC timestamp
    python jobs/run_detection.py --loop                   # Run continuously (daily)
"""

import sys
import time
import argparse
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from crossmarket.log_config import logger
from crossmarket.db.session import init_db
from crossmarket.tasks import run_detection
from crossmarket.utils.datetime import parse_timestamp


def main():
    """Main entry point for the detection job."""
    parser = argparse.ArgumentParser(description="Detection Job - correlation patterns and predictions")
    parser.add_argument("--as-of", default=None, help="UTC timestamp (ISO 8601) to run as of")
    parser.add_argument("--loop", action="store_true", help="Run continuously")
    parser.add_argument("--interval", type=int, default=86400, help="Loop interval in seconds (default: 86400)")

    args = parser.parse_args()
    as_of = parse_timestamp(args.as_of) if args.as_of else None
    if args.as_of and as_of is None:
        parser.error(f"Invalid --as-of timestamp: {args.as_of}")

    init_db()

    if args.loop:
        logger.info(f"Starting continuous detection (interval: {args.interval}s)...")
        while True:
            try:
                run_detection()
            except Exception as e:
                logger.exception(f"Unhandled error in detection loop: {e}")
            logger.info(f"Sleeping for {args.interval}s until next run...")
            time.sleep(args.interval)
    else:
        try:
            stats = run_detection(as_of)
        except Exception as e:
            logger.exception(f"Detection run failed: {e}")
            sys.exit(1)
        for key, value in stats.items():
            logger.info(f"  {key}: {value}")
        sys.exit(0)


if __name__ == "__main__":
    main()
