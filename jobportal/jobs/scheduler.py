from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from jobportal.core.config import settings
from jobportal.jobs.tasks import run_storage_cleanup


def start_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        run_storage_cleanup,
        IntervalTrigger(minutes=max(int(settings.cleanup_interval_minutes), 1)),
        id="storage_cleanup",
        replace_existing=True,
    )
    scheduler.start()
    return scheduler
