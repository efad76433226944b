#!/usr/bin/env python3
"""
Validation Job - close resolved predictions and expire stale ones.

Pending predictions whose target session has closed and has stored prices are
validated (updating pattern accuracy); those older than the expiry horizon
without target data are expired.

Usage:
    python jobs/validate_predictions.py                 # Validate + expire once
    python jobs/validate_predictions.py --expire-only   # Only run the expiry sweep
    python jobs/validate_predictions.py --loop          # Run continuously (hourly)
"""

import sys
import time
import argparse
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from crossmarket.log_config import logger
from crossmarket.db.session import init_db
from crossmarket.tasks import run_expiry_sweep, run_validation


def run_once(expire_only: bool) -> dict:
    if expire_only:
        return run_expiry_sweep()
    return run_validation()


def main():
    """Main entry point for the validation job."""
    parser = argparse.ArgumentParser(description="Validation Job - validate and expire predictions")
    parser.add_argument("--expire-only", action="store_true", help="Only expire stale predictions")
    parser.add_argument("--loop", action="store_true", help="Run continuously")
    parser.add_argument("--interval", type=int, default=3600, help="Loop interval in seconds (default: 3600)")

    args = parser.parse_args()
    init_db()

    if args.loop:
        logger.info(f"Starting continuous validation (interval: {args.interval}s)...")
        while True:
            try:
                run_once(args.expire_only)
            except Exception as e:
                logger.exception(f"Unhandled error in validation loop: {e}")
            logger.info(f"Sleeping for {args.interval}s until next run...")
            time.sleep(args.interval)
    else:
        try:
            stats = run_once(args.expire_only)
        except Exception as e:
            logger.exception(f"Validation failed: {e}")
            sys.exit(1)
        sys.exit(1 if stats.get("failed") else 0)


if __name__ == "__main__":
    main()
