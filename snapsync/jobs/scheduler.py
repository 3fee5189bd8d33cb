"""APScheduler setup for the daily backup and its housekeeping jobs."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from snapsync.config import Settings, describe_schedule, get_settings

logger = logging.getLogger(__name__)

BACKUP_JOB_ID = "daily_backup"


@dataclass(frozen=True)
class SchedulerHandle:
    """Owned reference to a running scheduler, returned by ``start()``."""

    scheduler: Any
    generation: int


class BackupScheduler:
    """Owns the background scheduler for one process.

    ``start()`` is idempotent and ``stop()`` is safe to call at any time, so
    the host can wire both into its lifespan without extra bookkeeping.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        scheduler_factory: Optional[Callable[[], Any]] = None,
    ):
        self.settings = settings or get_settings()
        self._scheduler_factory = scheduler_factory or AsyncIOScheduler
        self._handle: Optional[SchedulerHandle] = None
        self._generation = 0

    @property
    def handle(self) -> Optional[SchedulerHandle]:
        return self._handle

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self) -> SchedulerHandle:
        """Register the jobs and start the scheduler."""
        if self._handle is not None:
            logger.debug("Backup scheduler already running")
            return self._handle

        settings = self.settings
        scheduler = self._scheduler_factory()

        # Backup - daily at the configured time
        scheduler.add_job(
            "snapsync.jobs.backup_job:run_scheduled_backup",
            trigger=CronTrigger(
                hour=settings.backup_hour,
                minute=settings.backup_minute,
                timezone=settings.backup_timezone,
            ),
            id=BACKUP_JOB_ID,
            name="Daily Backup",
            replace_existing=True,
        )

        # Alert queue processing - every minute
        scheduler.add_job(
            "snapsync.jobs.alerts:process_alert_queue",
            trigger=IntervalTrigger(minutes=settings.alert_process_minutes),
            id="alert_processing",
            name="Alert Queue Processing",
            replace_existing=True,
        )

        # Stale alert and run log cleanup - daily at 4 AM
        scheduler.add_job(
            "snapsync.jobs.alerts:cleanup_stale_alerts",
            trigger=CronTrigger(hour=4, minute=0),
            id="stale_alert_cleanup",
            name="Stale Alert Cleanup",
            replace_existing=True,
        )

        scheduler.start()
        self._generation += 1
        self._handle = SchedulerHandle(scheduler=scheduler, generation=self._generation)
        logger.info(f"Backup scheduler started ({describe_schedule(settings)})")
        return self._handle

    def stop(self, handle: Optional[SchedulerHandle] = None) -> None:
        """Shut the scheduler down.

        Passing a handle from an earlier ``start()`` that has since been
        stopped is a no-op.
        """
        current = self._handle
        if current is None:
            return
        if handle is not None and handle != current:
            logger.debug("Ignoring stop for a stale scheduler handle")
            return

        current.scheduler.shutdown(wait=False)
        self._handle = None
        logger.info("Backup scheduler stopped")

    async def run_once(self):
        """Run one backup cycle immediately, outside the schedule."""
        from snapsync.jobs.backup_job import run_backup_cycle

        return await run_backup_cycle()

    def next_run(self) -> Optional[str]:
        if self._handle is None:
            return None
        job = self._handle.scheduler.get_job(BACKUP_JOB_ID)
        next_run_time = getattr(job, "next_run_time", None) if job else None
        return next_run_time.isoformat() if next_run_time else None

    async def status(self) -> dict:
        """Report the scheduler and authorization state without changing either."""
        from snapsync.auth.credentials import get_credential_store

        return {
            "running": self.running,
            "configured": await get_credential_store().is_active(),
            "schedule": describe_schedule(self.settings),
            "max_backups": self.settings.max_backups,
            "next_run": self.next_run(),
        }


_scheduler: Optional[BackupScheduler] = None


def setup_scheduler() -> BackupScheduler:
    """Create the process-wide backup scheduler and start it."""
    global _scheduler

    if _scheduler is None:
        _scheduler = BackupScheduler()
    _scheduler.start()
    return _scheduler


def shutdown_scheduler() -> None:
    """Shutdown the scheduler."""
    global _scheduler

    if _scheduler:
        _scheduler.stop()
        _scheduler = None


def get_scheduler() -> Optional[BackupScheduler]:
    """Get the current scheduler instance."""
    return _scheduler


async def get_scheduler_status() -> dict:
    """Status of the process-wide scheduler, also when it was never started."""
    scheduler = _scheduler or BackupScheduler()
    return await scheduler.status()
