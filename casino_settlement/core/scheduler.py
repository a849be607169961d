"""
Sweep scheduler for the settlement service.

This module runs the expiry sweepers on fixed intervals:
- Coinflip expiry (refund + delete)
- Giveaway completion and purge
- Case battle expiry (entry refunds)
- Blackjack turn timeout (auto-stand)
- House giveaway creation

Scheduler: APScheduler (lightweight, FastAPI-compatible). Jobs are plain
functions, which AsyncIOScheduler runs in the event loop's default executor
so blocking database work never stalls request handling.
"""
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from casino_settlement.core.config import settings
from casino_settlement.core.database import new_session
from casino_settlement.services.sweeper_service import SweeperService

logger = logging.getLogger(__name__)


class SweepScheduler:
    """
    Main scheduler for background sweeps.

    All scheduled jobs are defined here with their intervals and error
    handling.
    """

    def __init__(self):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.running = False

    async def start(self):
        """Start the scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting sweep scheduler...")

        self.scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,  # Combine missed runs into one
                "max_instances": 1,  # Only one instance of each job
                "misfire_grace_time": 60,
            },
        )

        self._schedule_coinflip_sweep()
        self._schedule_giveaway_sweep()
        self._schedule_case_battle_sweep()
        self._schedule_blackjack_sweep()
        if settings.AUTO_GIVEAWAY_ENABLED:
            self._schedule_auto_giveaway()

        self.scheduler.start()
        self.running = True

        logger.info("✅ Scheduler started with %d jobs", len(self.scheduler.get_jobs()))
        self._log_scheduled_jobs()

    async def stop(self):
        """Stop the scheduler."""
        if not self.running:
            return

        logger.info("Stopping scheduler...")
        self.scheduler.shutdown(wait=True)
        self.running = False
        logger.info("✅ Scheduler stopped")

    def _schedule_coinflip_sweep(self):
        """
        Schedule: Expire stale coinflips.

        Frequency: Every SWEEP_INTERVAL_SECONDS
        Purpose: Refund creators whose game nobody joined in time
        """
        if self.scheduler is None:
            return

        @self.scheduler.scheduled_job(
            trigger=IntervalTrigger(seconds=settings.SWEEP_INTERVAL_SECONDS),
            id="coinflip_sweep",
            name="Expire Stale Coinflips",
        )
        def coinflip_sweep_job():
            db = new_session()
            try:
                result = SweeperService(db).sweep_coinflips(settings.COINFLIP_EXPIRY_MINUTES)
                if result["expired"] or result["failed"]:
                    logger.info(f"✅ Coinflip sweep: {result['expired']} expired, {result['failed']} failed")
            except Exception as e:
                logger.error(f"❌ Coinflip sweep failed: {e}")
            finally:
                db.close()

        logger.info("🪙 Scheduled: Coinflip expiry (every %ds)", settings.SWEEP_INTERVAL_SECONDS)

    def _schedule_giveaway_sweep(self):
        """
        Schedule: Settle ended giveaways and purge completed ones.

        Frequency: Every 10 seconds, matching the purge grace period
        """
        if self.scheduler is None:
            return

        @self.scheduler.scheduled_job(
            trigger=IntervalTrigger(seconds=settings.GIVEAWAY_PURGE_GRACE_SECONDS),
            id="giveaway_sweep",
            name="Complete and Purge Giveaways",
        )
        def giveaway_sweep_job():
            db = new_session()
            try:
                result = SweeperService(db).sweep_giveaways()
                if result["completed"] or result["failed"] or result["purged"]:
                    logger.info(
                        f"✅ Giveaway sweep: {result['completed']} completed, "
                        f"{result['purged']} purged, {result['failed']} failed"
                    )
            except Exception as e:
                logger.error(f"❌ Giveaway sweep failed: {e}")
            finally:
                db.close()

        logger.info("🎁 Scheduled: Giveaway completion (every %ds)", settings.GIVEAWAY_PURGE_GRACE_SECONDS)

    def _schedule_case_battle_sweep(self):
        """
        Schedule: Expire case battles that never filled.

        Frequency: Every minute
        """
        if self.scheduler is None:
            return

        @self.scheduler.scheduled_job(
            trigger=IntervalTrigger(minutes=1),
            id="case_battle_sweep",
            name="Expire Stale Case Battles",
        )
        def case_battle_sweep_job():
            db = new_session()
            try:
                result = SweeperService(db).sweep_case_battles()
                if result["expired"] or result["failed"]:
                    logger.info(f"✅ Case battle sweep: {result['expired']} expired, {result['failed']} failed")
            except Exception as e:
                logger.error(f"❌ Case battle sweep failed: {e}")
            finally:
                db.close()

        logger.info("📦 Scheduled: Case battle expiry (every minute)")

    def _schedule_blackjack_sweep(self):
        """
        Schedule: Auto-stand players whose turn timed out.

        Frequency: Every 5 seconds
        """
        if self.scheduler is None:
            return

        @self.scheduler.scheduled_job(
            trigger=IntervalTrigger(seconds=5),
            id="blackjack_turn_sweep",
            name="Blackjack Turn Timeout",
        )
        def blackjack_sweep_job():
            db = new_session()
            try:
                result = SweeperService(db).sweep_blackjack_turns()
                if result["stood"] or result["failed"]:
                    logger.info(f"✅ Blackjack auto-stand: {result['stood']} stood, {result['failed']} failed")
            except Exception as e:
                logger.error(f"❌ Blackjack auto-stand failed: {e}")
            finally:
                db.close()

        logger.info("🃏 Scheduled: Blackjack turn timeout (every 5s)")

    def _schedule_auto_giveaway(self):
        """
        Schedule: Create a house giveaway.

        Frequency: Every AUTO_GIVEAWAY_INTERVAL_MINUTES
        """
        if self.scheduler is None:
            return

        @self.scheduler.scheduled_job(
            trigger=IntervalTrigger(minutes=settings.AUTO_GIVEAWAY_INTERVAL_MINUTES),
            id="auto_giveaway",
            name="Create House Giveaway",
        )
        def auto_giveaway_job():
            db = new_session()
            try:
                giveaway = SweeperService(db).create_auto_giveaway()
                if giveaway:
                    logger.info(f"✅ Auto giveaway created: {giveaway['id']}")
            except Exception as e:
                logger.error(f"❌ Auto giveaway failed: {e}")
            finally:
                db.close()

        logger.info("🎉 Scheduled: House giveaway (every %d minutes)", settings.AUTO_GIVEAWAY_INTERVAL_MINUTES)

    def _log_scheduled_jobs(self):
        """Log all scheduled jobs for visibility."""
        jobs = self.scheduler.get_jobs()

        logger.info("=" * 60)
        logger.info("SCHEDULED SWEEP JOBS")
        logger.info("=" * 60)

        for job in jobs:
            next_run = job.next_run_time
            next_run_str = next_run.strftime("%Y-%m-%d %H:%M:%S UTC") if next_run else "Pending"
            logger.info(f"  • {job.name}")
            logger.info(f"    ID: {job.id}")
            logger.info(f"    Next run: {next_run_str}")

        logger.info("=" * 60)
        logger.info(f"Total jobs scheduled: {len(jobs)}")
        logger.info("=" * 60)


# Global scheduler instance
_scheduler: Optional[SweepScheduler] = None


async def start_scheduler():
    """Start the global scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = SweepScheduler()
        await _scheduler.start()
    return _scheduler


async def stop_scheduler():
    """Stop the global scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None


def get_scheduler() -> Optional[SweepScheduler]:
    """Get the global scheduler instance."""
    return _scheduler
