#!/usr/bin/env python3
"""
Background runner for the settlement sweep scheduler.

Runs the expiry sweepers as a standalone service, separate from the API
process (set SCHEDULER_ENABLED=false on the API when using this). It can be
run via systemd, supervisor, or directly.

Usage:
    python run_scheduler.py              # Run in foreground
    python run_scheduler.py --once       # Run every sweep once and exit
    python run_scheduler.py --init-db    # Create missing tables first
"""
import argparse
import asyncio
import json
import logging
import signal
import sys

from casino_settlement.core.config import settings
from casino_settlement.core.database import init_db, new_session
from casino_settlement.core.logging import configure_logging
from casino_settlement.core.scheduler import SweepScheduler
from casino_settlement.services.sweeper_service import SweeperService

logger = logging.getLogger(__name__)


class SchedulerRunner:
    """Runner for the sweep scheduler."""

    def __init__(self):
        self.scheduler: SweepScheduler = None
        self.shutdown = False

    async def start(self):
        """Start the scheduler and run until shutdown."""
        logger.info("🚀 Starting scheduler runner...")

        self.scheduler = SweepScheduler()
        await self.scheduler.start()

        logger.info("✅ Scheduler is now running")
        logger.info("Press Ctrl+C to stop")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._set_shutdown)

        while not self.shutdown:
            await asyncio.sleep(1)

        await self.scheduler.stop()
        logger.info("✅ Scheduler runner stopped")

    def _set_shutdown(self):
        logger.info("⏹️  Shutdown signal received")
        self.shutdown = True


def run_once() -> int:
    """Run every sweep once against a fresh session and print the results."""
    db = new_session()
    try:
        results = SweeperService(db).run_all()
    except Exception as e:
        logger.error(f"❌ Sweep failed: {e}")
        return 1
    finally:
        db.close()

    print(json.dumps(results, indent=2, default=str))
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run the settlement sweep scheduler")
    parser.add_argument("--once", action="store_true", help="Run every sweep once and exit")
    parser.add_argument("--init-db", action="store_true", help="Create missing tables before starting")
    args = parser.parse_args()

    configure_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)

    if args.init_db:
        init_db()
        logger.info("Database tables ensured")

    if args.once:
        return run_once()

    runner = SchedulerRunner()
    try:
        asyncio.run(runner.start())
    except KeyboardInterrupt:
        logger.info("🛑 Received interrupt, shutting down...")
    except Exception as e:
        logger.error(f"❌ Scheduler error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
