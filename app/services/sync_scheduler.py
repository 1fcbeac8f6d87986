"""
Periodic subscription reconciliation
Runs SubscriptionReconciler.sync_all on an APScheduler interval
"""
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.services.subscription_reconciler import SubscriptionReconciler, SyncReport

logger = logging.getLogger(__name__)


class SubscriptionSyncScheduler:
    """
    APScheduler manager for the comprehensive subscription sync.
    """

    def __init__(self, reconciler: SubscriptionReconciler, interval_minutes: int = 30):
        self.reconciler = reconciler
        self.interval_minutes = interval_minutes
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.last_report: Optional[SyncReport] = None

    async def start(self) -> None:
        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.run_sync,
            IntervalTrigger(minutes=self.interval_minutes),
            id="subscription_sync",
            name="Comprehensive Subscription Sync",
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Subscription sync scheduler started (every {self.interval_minutes} min)")

    async def stop(self) -> None:
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
            logger.info("Subscription sync scheduler stopped")

    @property
    def running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running)

    async def run_sync(self) -> Optional[SyncReport]:
        try:
            report = await self.reconciler.sync_all()
        except Exception as exc:
            logger.exception("Error during scheduled subscription sync: %s", exc)
            return None

        self.last_report = report
        if report.errors:
            logger.warning(
                f"Scheduled sync finished with {len(report.errors)} errors: "
                + ", ".join(f"member {e.member_id}: {e.error_code}" for e in report.errors)
            )
        return report
