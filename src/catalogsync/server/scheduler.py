"""Scheduler for periodic reconciliation.

This module provides:
- Cron-driven reconciliation runs (hourly by default)
- A manual trigger sharing the job's single-flight guard
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from catalogsync.core.config import DEFAULT_SCHEDULE

if TYPE_CHECKING:
    from catalogsync.core.types import RunReport
    from catalogsync.server.reconcile import ReconciliationJob

logger = logging.getLogger(__name__)

JOB_ID = "store_catalog_reconciliation"


class ReconciliationScheduler:
    """Runs a ReconciliationJob on a crontab schedule (UTC)."""

    def __init__(
        self,
        job: ReconciliationJob,
        schedule: str = DEFAULT_SCHEDULE,
        timezone: str = "UTC",
    ) -> None:
        """Initialize the scheduler.

        Args:
            job: Reconciliation job to trigger.
            schedule: Five-field crontab expression.
            timezone: Timezone the expression is evaluated in.

        Raises:
            ValueError: If the crontab expression is invalid.
        """
        self._job = job
        self._schedule = schedule
        self._timezone = timezone
        self._trigger = CronTrigger.from_crontab(schedule, timezone=timezone)
        self._scheduler: BackgroundScheduler | None = None

    @property
    def schedule(self) -> str:
        return self._schedule

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def _reconcile_job(self) -> None:
        """Job function for scheduled reconciliation."""
        try:
            self._job.run_reconciliation()
        except Exception:
            logger.exception("Error during scheduled reconciliation")

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler(timezone=self._timezone)
        self._scheduler.add_job(
            self._reconcile_job,
            trigger=self._trigger,
            id=JOB_ID,
            name="Store/catalog reconciliation",
            replace_existing=True,
            # The job's own guard turns away overlaps; don't queue missed runs.
            coalesce=True,
            max_instances=2,
        )
        self._scheduler.start()
        logger.info("Reconciliation scheduler started (schedule: %s %s)", self._schedule, self._timezone)

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Reconciliation scheduler stopped")

    def run_now(self, dry_run: bool = False) -> RunReport:
        """Run reconciliation immediately (manual trigger).

        Returns:
            Report of the run.

        Raises:
            SnapshotReadError: If a snapshot read fails.
        """
        return self._job.run_reconciliation(dry_run=dry_run)
