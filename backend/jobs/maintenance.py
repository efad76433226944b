#!/usr/bin/env python3
"""
Maintenance Job - stuck-job watchdog and prediction generation GC.

Usage:
    python jobs/maintenance.py                  # Watchdog + GC once
    python jobs/maintenance.py --retain 10      # Keep 10 superseded generations
    python jobs/maintenance.py --loop --interval 300
"""

import sys
import time
import argparse
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from crossmarket.log_config import logger
from crossmarket.db.session import check_db_health, init_db
from crossmarket.tasks import run_generation_gc, run_watchdog


def run_maintenance(retain=None, skip_gc: bool = False) -> dict:
    health = check_db_health()
    if health["status"] != "healthy":
        logger.error(f"Database unhealthy, skipping maintenance: {health['errors']}")
        return {"healthy": False}

    stats = {"healthy": True, "latency_ms": health["latency_ms"]}
    stats.update(run_watchdog())
    if not skip_gc:
        stats.update(run_generation_gc(retain))
    return stats


def main():
    """Main entry point for maintenance."""
    parser = argparse.ArgumentParser(description="Maintenance Job - watchdog and generation GC")
    parser.add_argument("--retain", type=int, default=None, help="Superseded generations to keep")
    parser.add_argument("--skip-gc", action="store_true", help="Only run the watchdog")
    parser.add_argument("--loop", action="store_true", help="Run continuously")
    parser.add_argument("--interval", type=int, default=300, help="Loop interval in seconds (default: 300)")

    args = parser.parse_args()
    init_db()

    if args.loop:
        logger.info(f"Starting continuous maintenance (interval: {args.interval}s)...")
        while True:
            try:
                run_maintenance(args.retain, skip_gc=args.skip_gc)
            except Exception as e:
                logger.exception(f"Unhandled error in maintenance loop: {e}")
            time.sleep(args.interval)
    else:
        stats = run_maintenance(args.retain, skip_gc=args.skip_gc)
        logger.info(f"Maintenance complete: {stats}")
        sys.exit(0 if stats["healthy"] else 1)


if __name__ == "__main__":
    main()
