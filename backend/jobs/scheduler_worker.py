#!/usr/bin/env python3
"""
Scheduler Worker - runs every batch job on its schedule in one process.

Usage:
    python jobs/scheduler_worker.py
"""

import sys
import time
import signal
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from crossmarket.log_config import logger
from crossmarket.db.session import init_db
from crossmarket.scheduler import start_scheduler, stop_scheduler


def main():
    init_db()
    start_scheduler()

    def _shutdown(signum, frame):
        logger.info(f"Received signal {signum}, shutting down scheduler...")
        stop_scheduler()
        sys.exit(0)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    while True:
        time.sleep(60)


if __name__ == "__main__":
    main()
