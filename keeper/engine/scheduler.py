"""
Reconciliation scheduler: APScheduler cron trigger for the daily sweep.

max_instances=1 and the dedup guard keep overlapping triggers from running
two sweeps at once in this process.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from keeper.engine.dedup import RECONCILE_KEY, run_exclusive
from keeper.errors import ConfigurationError

if TYPE_CHECKING:
    from keeper.config import ScheduleConfig
    from keeper.engine.lifecycle import VaultLifecycleEngine
    from keeper.vault.models import ReconcileReport

logger = logging.getLogger(__name__)

JOB_ID = "vault:reconcile"


class ReconcileScheduler:
    """Runs ``engine.reconcile()`` on a cron schedule."""

    def __init__(self, config: ScheduleConfig, engine: VaultLifecycleEngine) -> None:
        self.config = config
        self.engine = engine
        self.scheduler = AsyncIOScheduler(timezone=config.timezone)
        self.last_report: ReconcileReport | None = None

    def register(self) -> None:
        try:
            trigger = CronTrigger.from_crontab(
                self.config.reconcile_cron, timezone=self.config.timezone
            )
        except ValueError as e:
            raise ConfigurationError(
                f"invalid reconcile cron {self.config.reconcile_cron!r}: {e}"
            ) from e
        self.scheduler.add_job(
            self.run_once,
            trigger=trigger,
            id=JOB_ID,
            name="reconcile:vaults",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
            replace_existing=True,
        )
        logger.info(
            "Reconciliation scheduled: %s (%s)", self.config.reconcile_cron, self.config.timezone
        )

    async def start(self) -> None:
        """Register the job and start the scheduler."""
        self.register()
        self.scheduler.start()
        logger.info("Reconcile scheduler started")

        # Keep running
        while True:
            await asyncio.sleep(60)

    async def run_once(self) -> ReconcileReport | None:
        """One sweep, skipped if another is already in flight."""
        ran, report = await run_exclusive(RECONCILE_KEY, self.engine.reconcile)
        if not ran:
            logger.info("Cron skipped: reconciliation already running")
            return None
        self.last_report = report
        return report

    def next_run_time(self):
        job = self.scheduler.get_job(JOB_ID)
        return getattr(job, "next_run_time", None) if job else None

    async def stop(self) -> None:
        """Stop the scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Reconcile scheduler stopped")
